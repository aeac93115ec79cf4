import numpy as np
import polars as pl
import pytest

from conftest import make_panel
from trade_panel_analysis.analysis.regression import (
    BASELINE,
    FIXED_EFFECTS,
    build_regression_input,
    fit_ols,
    fit_summary_frame,
    log_transform,
    results_to_frame,
    run_regressions,
    significance_stars,
)
from trade_panel_analysis.config import get_config
from trade_panel_analysis.etl.reference import GDP_SCHEMA, GRAVITY_SCHEMA
from trade_panel_analysis.utils.errors import DomainError, RunDiagnostics

REGRESSORS = ["ln_gdp", "ln_dist", "comlang_off"]
FE_GROUPS = ["reporter", "partner", "sector", "year"]
TRUE_COEFS = {"const": 1.0, "ln_gdp": 0.8, "ln_dist": -1.2, "comlang_off": 0.5}


@pytest.fixture(scope="module")
def regression_rows() -> pl.DataFrame:
    """Synthetic sector-level rows generated from known coefficients."""
    rng = np.random.default_rng(42)
    n = 240
    i = np.arange(n)
    ln_gdp = rng.normal(27.0, 1.0, n)
    ln_dist = rng.normal(7.0, 0.5, n)
    comlang = (rng.random(n) < 0.3).astype(float)
    noise = rng.normal(0.0, 0.1 + 0.1 * comlang, n)
    y = (
        TRUE_COEFS["const"]
        + TRUE_COEFS["ln_gdp"] * ln_gdp
        + TRUE_COEFS["ln_dist"] * ln_dist
        + TRUE_COEFS["comlang_off"] * comlang
        + noise
    )
    return pl.DataFrame(
        {
            "reporter": np.where((i // 10) % 2 == 0, "ROM", "HUN"),
            "partner": [f"P{k:02d}" for k in i % 10],
            "sector": [["01", "27", "84"][k] for k in i % 3],
            "year": 2010 + (i // 3) % 3,
            "flow": np.where(i % 2 == 0, "Import", "Export"),
            "ln_trade_value": y,
            "ln_gdp": ln_gdp,
            "ln_dist": ln_dist,
            "comlang_off": comlang,
        }
    )


def test_baseline_recovers_coefficients(regression_rows):
    result = fit_ols(regression_rows, "ln_trade_value", REGRESSORS)

    for term in REGRESSORS:
        assert result.coefficients[term] == pytest.approx(TRUE_COEFS[term], abs=0.05)
    assert result.nobs == regression_rows.height
    assert result.r_squared > 0.95
    assert result.n_dummies == 0
    assert result.cov_type == "HC1"
    assert result.terms == REGRESSORS + ["const"]


def test_fixed_effects_use_one_dummy_per_non_base_level(regression_rows):
    result = fit_ols(regression_rows, "ln_trade_value", REGRESSORS, fixed_effect_groups=FE_GROUPS)

    # (2 - 1) reporters + (10 - 1) partners + (3 - 1) sectors + (3 - 1) years
    assert result.n_dummies == 14
    assert result.df_resid == pytest.approx(regression_rows.height - 1 - len(REGRESSORS) - 14)
    for term in REGRESSORS:
        assert result.coefficients[term] == pytest.approx(TRUE_COEFS[term], abs=0.05)
    assert set(result.coefficients) == set(REGRESSORS) | {"const"}


def test_fit_is_deterministic(regression_rows):
    a = fit_ols(regression_rows, "ln_trade_value", REGRESSORS, fixed_effect_groups=FE_GROUPS)
    b = fit_ols(regression_rows, "ln_trade_value", REGRESSORS, fixed_effect_groups=FE_GROUPS)

    assert a.coefficients == b.coefficients
    assert a.std_errors == b.std_errors
    assert a.r_squared == b.r_squared


def test_robust_errors_differ_from_classical(regression_rows):
    robust = fit_ols(regression_rows, "ln_trade_value", REGRESSORS, robust=True)
    classical = fit_ols(regression_rows, "ln_trade_value", REGRESSORS, robust=False)

    assert robust.coefficients == pytest.approx(classical.coefficients)
    assert robust.std_errors["comlang_off"] != pytest.approx(classical.std_errors["comlang_off"], rel=1e-6)
    assert classical.cov_type == "nonrobust"


def test_input_not_modified(regression_rows):
    before = regression_rows.clone()
    fit_ols(regression_rows, "ln_trade_value", REGRESSORS, fixed_effect_groups=FE_GROUPS)
    assert regression_rows.equals(before)


def test_too_few_observations(regression_rows):
    with pytest.raises(ValueError, match="Not enough observations"):
        fit_ols(regression_rows.head(4), "ln_trade_value", REGRESSORS)


def test_missing_column(regression_rows):
    with pytest.raises(ValueError, match="not found"):
        fit_ols(regression_rows, "ln_product_count", REGRESSORS)


@pytest.mark.parametrize("bad_value", [0.0, -3.0])
def test_log_transform_rejects_non_positive(bad_value):
    df = pl.DataFrame({"trade_value": [10.0, bad_value]})
    with pytest.raises(DomainError):
        log_transform(df, ["trade_value"])


def test_log_transform_adds_columns():
    df = pl.DataFrame({"dist": [1.0, np.e]})
    out = log_transform(df, ["dist"])

    assert out.columns == ["dist", "ln_dist"]
    assert out["ln_dist"].to_list() == pytest.approx([0.0, 1.0])


@pytest.mark.parametrize(
    "p, stars",
    [(0.001, "***"), (0.03, "**"), (0.07, "*"), (0.2, ""), (float("nan"), "")],
)
def test_significance_stars(p, stars):
    assert significance_stars(p) == stars


def test_run_regressions_per_flow_and_specification(regression_rows):
    config = get_config(fixed_effect_groups=tuple(FE_GROUPS))
    results = run_regressions(regression_rows, config)

    assert [(r.specification, r.flow) for r in results] == [
        (BASELINE, "Import"),
        (BASELINE, "Export"),
        (FIXED_EFFECTS, "Import"),
        (FIXED_EFFECTS, "Export"),
    ]
    assert all(r.nobs == regression_rows.height // 2 for r in results)

    table = results_to_frame(results)
    assert table.height == 4 * (len(REGRESSORS) + 1)
    assert not table.select(["flow", "specification", "dependent", "term"]).is_duplicated().any()
    assert fit_summary_frame(results).height == 4


def test_build_regression_input():
    panel = make_panel(
        [
            ("ROM", "DEU", "Import", "271011", 100, 2011),
            ("ROM", "DEU", "Import", "271019", 20, 2011),
            ("ROM", "DEU", "Import", "271011", 5, 2011),
            ("ROM", "ITA", "Export", "840991", 70, 2011),
            ("ROM", "FRA", "Export", "840991", 7, 2011),
        ]
    )
    gdp = pl.DataFrame({"iso3": ["DEU", "ITA", "USA"], "year": [2011] * 3, "gdp": [3.7e12, 2.2e12, 1.5e13]}, schema=GDP_SCHEMA)
    gravity = pl.DataFrame(
        {"iso_o": ["ROM", "ROM", "ROM"], "iso_d": ["DEU", "ITA", "FRA"], "dist": [1300.0, 1140.0, 1880.0], "comlang_off": [0, 1, 0]},
        schema=GRAVITY_SCHEMA,
    )
    diagnostics = RunDiagnostics()

    out = build_regression_input(panel, gdp, gravity, diagnostics)

    # FRA has no GDP and is dropped
    assert out.select(["partner", "sector", "flow"]).rows() == [("DEU", "27", "Import"), ("ITA", "84", "Export")]
    deu = out.row(0, named=True)
    assert deu["trade_value"] == pytest.approx(125.0)
    assert deu["product_count"] == 2
    assert deu["ln_trade_value"] == pytest.approx(np.log(125.0))
    assert deu["ln_product_count"] == pytest.approx(np.log(2.0))
    assert deu["ln_gdp"] == pytest.approx(np.log(3.7e12))
    assert deu["ln_dist"] == pytest.approx(np.log(1300.0))
    assert out.schema["comlang_off"] == pl.Float64

    assert diagnostics.quality_counts["missing_reference_values"] == 1
    assert [s.name for s in diagnostics.join_stats] == ["gdp_partner", "gravity"]
    assert diagnostics.join_stats[0].match_rate == pytest.approx(2 / 3)
    assert diagnostics.join_stats[1].match_rate == pytest.approx(1.0)


@pytest.fixture
def single_reporter_rows() -> pl.DataFrame:
    """One reporter: distance varies only by partner and no partner shares a language."""
    rng = np.random.default_rng(7)
    partners = [f"P{k}" for k in range(8)]
    dist = {p: 500.0 + 150.0 * k for k, p in enumerate(partners)}
    records = []
    for p in partners:
        for sector in ("27", "84"):
            for year in (2010, 2011, 2012):
                ln_gdp = rng.normal(27.0, 1.0)
                records.append(
                    {
                        "reporter": "ROM",
                        "partner": p,
                        "sector": sector,
                        "year": year,
                        "ln_trade_value": 1.0 + 0.8 * ln_gdp - 1.2 * np.log(dist[p]) + rng.normal(0.0, 0.05),
                        "ln_gdp": ln_gdp,
                        "ln_dist": np.log(dist[p]),
                        "comlang_off": 0.0,
                    }
                )
    return pl.DataFrame(records)


def test_collinear_regressors_are_omitted(single_reporter_rows, caplog):
    with caplog.at_level("WARNING"):
        result = fit_ols(single_reporter_rows, "ln_trade_value", REGRESSORS, fixed_effect_groups=FE_GROUPS)

    assert result.omitted == ("ln_dist", "comlang_off")
    for term in result.omitted:
        assert np.isnan(result.coefficients[term])
        assert np.isnan(result.std_errors[term])
        assert result.stars(term) == ""
    assert result.coefficients["ln_gdp"] == pytest.approx(0.8, abs=0.05)
    # (8 - 1) partners + (2 - 1) sectors + (3 - 1) years, no reporter dummies
    assert result.n_dummies == 10
    assert "collinearity" in caplog.text

    table = results_to_frame([result])
    omitted_rows = table.filter(pl.col("term").is_in(["ln_dist", "comlang_off"]))
    assert omitted_rows["coef"].is_nan().all()
    assert omitted_rows["stars"].to_list() == ["", ""]
    assert fit_summary_frame([result])["omitted"].to_list() == ["ln_dist, comlang_off"]


def test_baseline_omits_constant_regressor(single_reporter_rows):
    result = fit_ols(single_reporter_rows, "ln_trade_value", REGRESSORS)

    assert result.omitted == ("comlang_off",)
    assert result.coefficients["ln_dist"] == pytest.approx(-1.2, abs=0.1)


def test_full_rank_fit_omits_nothing(regression_rows):
    result = fit_ols(regression_rows, "ln_trade_value", REGRESSORS, fixed_effect_groups=FE_GROUPS)

    assert result.omitted == ()
    assert fit_summary_frame([result])["omitted"].to_list() == [""]
