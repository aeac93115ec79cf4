"""
Gravity-style regressions of log trade on partner GDP, distance and common language.

Two specifications are estimated separately for imports and exports:

- baseline:       ln_y = b0 + b1 ln_gdp + b2 ln_dist + b3 comlang_off + e
- fixed_effects:  the same plus reporter, partner, sector and year dummies

Fixed effects are estimated as explicit dummy columns (least squares dummy
variables), not by demeaning, so coefficient and degree-of-freedom output
matches a regression with `i.group` terms. Standard errors are HC1 robust.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
import polars as pl
import statsmodels.api as sm

from trade_panel_analysis.analysis.aggregate import aggregate, hs_sector
from trade_panel_analysis.config import PipelineConfig
from trade_panel_analysis.etl.reference import left_join
from trade_panel_analysis.utils.errors import DomainError, RunDiagnostics
from trade_panel_analysis.utils.logging_config import get_logger

logger = get_logger(__name__)

SECTOR_GRAIN = ["reporter", "partner", "sector", "year", "flow"]
LOG_COLUMNS = ["trade_value", "product_count", "gdp", "dist"]
BASELINE = "baseline"
FIXED_EFFECTS = "fixed_effects"
CONSTANT = "const"


@dataclass(frozen=True)
class RegressionResult:
    flow: Optional[str]
    specification: Optional[str]
    dependent: str
    regressors: tuple
    fixed_effect_groups: tuple
    coefficients: Dict[str, float]
    std_errors: Dict[str, float]
    p_values: Dict[str, float]
    nobs: int
    r_squared: float
    r_squared_adj: float
    df_resid: float
    n_dummies: int
    cov_type: str
    omitted: tuple = ()

    @property
    def terms(self) -> List[str]:
        return list(self.regressors) + [CONSTANT]

    def stars(self, term: str) -> str:
        return significance_stars(self.p_values[term])


def significance_stars(p_value: float) -> str:
    if p_value is None or np.isnan(p_value):
        return ""
    if p_value < 0.01:
        return "***"
    if p_value < 0.05:
        return "**"
    if p_value < 0.1:
        return "*"
    return ""


def log_transform(df: pl.DataFrame, columns: Sequence[str], prefix: str = "ln_") -> pl.DataFrame:
    """
    Add natural-log copies of `columns`.

    Raises:
        DomainError: if any non-null value in the columns is zero or negative.
    """
    for column in columns:
        n_bad = df.filter(pl.col(column) <= 0).height
        if n_bad:
            raise DomainError(
                f"Cannot take the log of '{column}': {n_bad} zero or negative values"
            )
    return df.with_columns([pl.col(c).cast(pl.Float64).log().alias(f"{prefix}{c}") for c in columns])


def build_regression_input(
    panel: pl.DataFrame,
    gdp: pl.DataFrame,
    gravity: pl.DataFrame,
    diagnostics: Optional[RunDiagnostics] = None,
) -> pl.DataFrame:
    """
    Collapse the panel to (reporter, partner, sector, year, flow) and attach
    partner GDP and gravity variables.

    Rows that miss either reference table are dropped before the log transform,
    the way a regression would drop them listwise.
    """
    sector_rows = aggregate(
        panel,
        group_keys=["reporter", "partner", hs_sector(), "year", "flow"],
        reductions={
            "trade_value": ("trade_value", "sum"),
            "product_count": ("product_code", "n_unique"),
        },
    )
    logger.info(f"Collapsed panel to {sector_rows.height} sector-level rows")

    with_gdp, _ = left_join(
        sector_rows, gdp, {"partner": "iso3", "year": "year"}, name="gdp_partner", diagnostics=diagnostics
    )
    with_gravity, _ = left_join(
        with_gdp, gravity, {"reporter": "iso_o", "partner": "iso_d"}, name="gravity", diagnostics=diagnostics
    )

    complete = with_gravity.drop_nulls(subset=["gdp", "dist", "comlang_off"])
    n_dropped = with_gravity.height - complete.height
    if diagnostics is not None:
        diagnostics.record_quality("missing_reference_values", n_dropped, "dropped before regression")
    elif n_dropped:
        logger.warning(f"Dropped {n_dropped} rows with missing GDP or gravity values")

    regression_input = log_transform(complete, LOG_COLUMNS).with_columns(
        pl.col("comlang_off").cast(pl.Float64)
    )
    return regression_input.sort(SECTOR_GRAIN)


def _dummy_columns(df: pl.DataFrame, group: str) -> List[pl.Expr]:
    """One 0/1 column per level of `group`, omitting the first (sorted) level as base."""
    levels = sorted(df.get_column(group).drop_nulls().unique().to_list())
    return [(pl.col(group) == level).cast(pl.Float64).alias(f"{group}_{level}") for level in levels[1:]]


def _full_rank_columns(X: pd.DataFrame) -> List[str]:
    """Columns of X, left to right, skipping any that do not raise the matrix rank."""
    values = X.to_numpy()
    if np.linalg.matrix_rank(values) == values.shape[1]:
        return list(X.columns)

    selected: List[int] = []
    for i in range(values.shape[1]):
        if np.linalg.matrix_rank(values[:, selected + [i]]) > len(selected):
            selected.append(i)
    return [X.columns[i] for i in selected]


def _term_values(values: pd.Series, terms: Sequence[str]) -> Dict[str, float]:
    """Per-term floats from a fitted statistic; terms left out of the fit are NaN."""
    return {t: float(values[t]) if t in values.index else float("nan") for t in terms}


def fit_ols(
    rows: pl.DataFrame,
    dependent: str,
    regressors: Sequence[str],
    fixed_effect_groups: Sequence[str] = (),
    robust: bool = True,
    *,
    flow: Optional[str] = None,
    specification: Optional[str] = None,
) -> RegressionResult:
    """
    Fit an OLS model with a constant and optional dummy-variable fixed effects.

    Args:
        rows: Regression input; never modified.
        dependent: Dependent variable column.
        regressors: Explanatory columns whose coefficients are reported.
        fixed_effect_groups: Categorical columns expanded into dummy columns.
        robust: HC1 heteroskedasticity-consistent errors if True, classical otherwise.
        flow, specification: Labels carried onto the result.

    Returns:
        RegressionResult for the reported terms (regressors and constant). A regressor
        collinear with the constant, the dummies or an earlier regressor is listed in
        `omitted` and reported with NaN coefficient, standard error and p-value.
    """
    used = [dependent, *regressors, *fixed_effect_groups]
    missing = [c for c in used if c not in rows.columns]
    if missing:
        raise ValueError(f"Columns not found for regression: {missing}")

    data = rows.drop_nulls(subset=used)
    if data.height < rows.height:
        logger.warning(f"Dropped {rows.height - data.height} rows with missing regression values")

    dummy_exprs = []
    for group in fixed_effect_groups:
        dummy_exprs.extend(_dummy_columns(data, group))

    design = data.select([pl.col(c).cast(pl.Float64) for c in regressors] + dummy_exprs)
    n_params = design.width + 1
    if data.height <= n_params:
        raise ValueError(
            f"Not enough observations ({data.height}) for {n_params} parameters "
            f"(dependent={dependent}, flow={flow}, specification={specification})"
        )

    X = sm.add_constant(design.to_pandas(), prepend=True, has_constant="add")
    dummy_names = [c for c in design.columns if c not in regressors]
    # Constant and dummies first so a regressor they absorb is the column dropped
    X = X[[CONSTANT, *dummy_names, *regressors]]
    kept = _full_rank_columns(X)
    omitted = tuple(t for t in regressors if t not in kept)
    if omitted:
        logger.warning(
            f"[{flow}/{specification}] {dependent}: omitting {list(omitted)} because of collinearity"
        )
    n_dropped_dummies = len(dummy_names) - sum(1 for c in dummy_names if c in kept)
    if n_dropped_dummies:
        logger.debug(f"Dropped {n_dropped_dummies} collinear dummy columns")
    X = X[kept]

    y = data.get_column(dependent).cast(pl.Float64).to_pandas()
    cov_type = "HC1" if robust else "nonrobust"

    logger.debug(
        f"Fitting {dependent} ~ {' + '.join(regressors)} with {len(dummy_names)} dummies "
        f"on {data.height} rows (flow={flow}, specification={specification})"
    )
    model = sm.OLS(y, X).fit(cov_type=cov_type)

    terms = list(regressors) + [CONSTANT]
    result = RegressionResult(
        flow=flow,
        specification=specification,
        dependent=dependent,
        regressors=tuple(regressors),
        fixed_effect_groups=tuple(fixed_effect_groups),
        coefficients=_term_values(model.params, terms),
        std_errors=_term_values(model.bse, terms),
        p_values=_term_values(model.pvalues, terms),
        nobs=int(model.nobs),
        r_squared=float(model.rsquared),
        r_squared_adj=float(model.rsquared_adj),
        df_resid=float(model.df_resid),
        n_dummies=len(dummy_names) - n_dropped_dummies,
        cov_type=cov_type,
        omitted=omitted,
    )
    logger.info(
        f"[{flow}/{specification}] {dependent}: N={result.nobs}, R2={result.r_squared:.3f}, "
        + ", ".join(f"{t}={result.coefficients[t]:.3f}{result.stars(t)}" for t in regressors)
    )
    return result


def run_regressions(regression_input: pl.DataFrame, config: PipelineConfig) -> List[RegressionResult]:
    """Estimate every configured (flow, specification, dependent) combination."""
    specifications = [(BASELINE, ()), (FIXED_EFFECTS, tuple(config.fixed_effect_groups))]
    results = []
    for specification, fe_groups in specifications:
        for flow in config.flows:
            rows = regression_input.filter(pl.col("flow") == flow)
            for dependent in config.dependents:
                results.append(
                    fit_ols(
                        rows,
                        dependent,
                        config.regressors,
                        fixed_effect_groups=fe_groups,
                        robust=config.robust,
                        flow=flow,
                        specification=specification,
                    )
                )
    return results


def results_to_frame(results: Sequence[RegressionResult]) -> pl.DataFrame:
    """Long coefficient table keyed by (flow, specification, dependent, term)."""
    records = []
    for r in results:
        for term in r.terms:
            records.append(
                {
                    "flow": r.flow,
                    "specification": r.specification,
                    "dependent": r.dependent,
                    "term": term,
                    "coef": r.coefficients[term],
                    "std_error": r.std_errors[term],
                    "p_value": r.p_values[term],
                    "stars": r.stars(term),
                    "nobs": r.nobs,
                    "r_squared": r.r_squared,
                }
            )
    return pl.DataFrame(
        records,
        schema={
            "flow": pl.Utf8,
            "specification": pl.Utf8,
            "dependent": pl.Utf8,
            "term": pl.Utf8,
            "coef": pl.Float64,
            "std_error": pl.Float64,
            "p_value": pl.Float64,
            "stars": pl.Utf8,
            "nobs": pl.Int64,
            "r_squared": pl.Float64,
        },
    )


def fit_summary_frame(results: Sequence[RegressionResult]) -> pl.DataFrame:
    return pl.DataFrame(
        [
            {
                "flow": r.flow,
                "specification": r.specification,
                "dependent": r.dependent,
                "nobs": r.nobs,
                "r_squared": r.r_squared,
                "r_squared_adj": r.r_squared_adj,
                "df_resid": r.df_resid,
                "n_dummies": r.n_dummies,
                "fixed_effects": ", ".join(r.fixed_effect_groups),
                "omitted": ", ".join(r.omitted),
                "cov_type": r.cov_type,
            }
            for r in results
        ],
        schema={
            "flow": pl.Utf8,
            "specification": pl.Utf8,
            "dependent": pl.Utf8,
            "nobs": pl.Int64,
            "r_squared": pl.Float64,
            "r_squared_adj": pl.Float64,
            "df_resid": pl.Float64,
            "n_dummies": pl.Int64,
            "fixed_effects": pl.Utf8,
            "omitted": pl.Utf8,
            "cov_type": pl.Utf8,
        },
    )
