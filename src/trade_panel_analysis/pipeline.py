"""
Trade panel analysis: load extracts, build the panel, run the descriptive views,
merge reference data and estimate the gravity regressions.

Usage:
    python -m trade_panel_analysis.pipeline --countries ROM HUN --years 2010 2011 2012
"""

import argparse
import sys
from typing import Dict, List, Optional

import polars as pl

from trade_panel_analysis.analysis.regression import (
    BASELINE,
    FIXED_EFFECTS,
    RegressionResult,
    build_regression_input,
    fit_summary_frame,
    results_to_frame,
    run_regressions,
)
from trade_panel_analysis.analysis.views import export_shares, summary_statistics, top_partners, top_products
from trade_panel_analysis.config import PipelineConfig, get_config
from trade_panel_analysis.etl.loader import load_trade_files
from trade_panel_analysis.etl.panel import build_panel, validate_panel
from trade_panel_analysis.etl.reference import load_gdp, load_gravity
from trade_panel_analysis.reporting import export_tables
from trade_panel_analysis.utils.errors import RunDiagnostics, TradePanelError
from trade_panel_analysis.utils.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


# --- Pipeline Steps as Functions ---


def build_trade_panel(config: PipelineConfig, diagnostics: RunDiagnostics) -> pl.DataFrame:
    logger.info("--- Step 1: Loading trade extracts and building the panel ---")
    logger.info(f"Countries: {list(config.countries)}, years: {list(config.years)}")
    frames = load_trade_files(config, diagnostics)
    panel = build_panel(frames)
    validate_panel(panel)
    return panel


def run_descriptive_views(panel: pl.DataFrame, config: PipelineConfig) -> Dict[str, pl.DataFrame]:
    logger.info("--- Step 2: Descriptive statistics and exploratory views ---")
    return {
        "summary_statistics": summary_statistics(panel),
        "top_partners": top_partners(panel, config.top_partners_n),
        "export_shares": export_shares(panel, config.top_partners_n),
        "top_products": top_products(panel, config.top_products_n),
    }


def estimate_regressions(
    panel: pl.DataFrame, config: PipelineConfig, diagnostics: RunDiagnostics
) -> List[RegressionResult]:
    logger.info("--- Step 3: Merging reference data and estimating regressions ---")
    gdp = load_gdp(config.gdp_path)
    gravity = load_gravity(config.gravity_path)
    regression_input = build_regression_input(panel, gdp, gravity, diagnostics)
    return run_regressions(regression_input, config)


def write_reports(
    views: Dict[str, pl.DataFrame],
    results: List[RegressionResult],
    config: PipelineConfig,
    diagnostics: RunDiagnostics,
) -> None:
    logger.info("--- Step 4: Writing reports ---")
    export_tables(
        {"summary_statistics": views["summary_statistics"]},
        config.output_path("summary_statistics.xlsx"),
    )
    export_tables(
        {k: views[k] for k in ("top_partners", "export_shares", "top_products")},
        config.output_path("top_partners.xlsx"),
    )
    for specification in (BASELINE, FIXED_EFFECTS):
        spec_results = [r for r in results if r.specification == specification]
        export_tables(
            {"coefficients": results_to_frame(spec_results), "fit": fit_summary_frame(spec_results)},
            config.output_path(f"regression_{specification}.xlsx"),
        )
    export_tables(diagnostics.as_tables(), config.output_path("diagnostics.xlsx"))


def run_pipeline(config: PipelineConfig) -> List[RegressionResult]:
    """Run every stage in order; any fatal error propagates to the caller."""
    diagnostics = RunDiagnostics()
    panel = build_trade_panel(config, diagnostics)
    views = run_descriptive_views(panel, config)
    results = estimate_regressions(panel, config, diagnostics)
    write_reports(views, results, config, diagnostics)
    diagnostics.log_summary()
    return results


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    defaults = get_config()
    ap = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    ap.add_argument("--countries", nargs="+", default=list(defaults.countries), help="reporter ISO3 codes")
    ap.add_argument("--years", nargs="+", type=int, default=list(defaults.years))
    ap.add_argument("--raw-dir", default=str(defaults.raw_data_dir), help="directory of trade extracts")
    ap.add_argument("--file-pattern", default=defaults.file_pattern)
    ap.add_argument("--gdp", default=str(defaults.gdp_path), help="GDP reference CSV")
    ap.add_argument("--gravity", default=str(defaults.gravity_path), help="gravity reference CSV")
    ap.add_argument("--output-dir", default=str(defaults.output_dir))
    ap.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ...")
    return ap.parse_args(argv)


# --- Main Execution ---
def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging(args.log_level)
    logger.info("--- Starting Trade Panel Analysis Pipeline ---")

    try:
        config = get_config(
            countries=tuple(args.countries),
            years=tuple(args.years),
            raw_data_dir=args.raw_dir,
            file_pattern=args.file_pattern,
            gdp_path=args.gdp,
            gravity_path=args.gravity,
            output_dir=args.output_dir,
        )
        run_pipeline(config)
    except (TradePanelError, ValueError, OSError) as e:
        logger.critical(f"Pipeline aborted: {e}", exc_info=True)
        sys.exit(1)

    logger.info("--- Pipeline Execution Finished Successfully ---")
    sys.exit(0)


if __name__ == "__main__":
    main()
