"""
Descriptive and exploratory tables built from the panel: summary statistics,
top partners, top products and export shares.
"""

import polars as pl

from trade_panel_analysis.analysis.aggregate import aggregate, grouped_sums
from trade_panel_analysis.analysis.ranking import rank_within, top_n
from trade_panel_analysis.utils.logging_config import get_logger

logger = get_logger(__name__)

REPORTER_YEAR_FLOW = ["reporter", "year", "flow"]


def _partner_totals(panel: pl.DataFrame, keys, filter=None) -> pl.DataFrame:
    # Names can vary between extracts for one ISO code; keep one per partner
    return aggregate(
        panel,
        filter=filter,
        group_keys=list(keys) + ["partner"],
        reductions={
            "partner_name": ("partner_name", "min"),
            "trade_value": ("trade_value", "sum"),
        },
    )


def summary_statistics(panel: pl.DataFrame) -> pl.DataFrame:
    """Distribution of trade values per (reporter, year, flow)."""
    return aggregate(
        panel,
        group_keys=REPORTER_YEAR_FLOW,
        reductions={
            "records": ("trade_value", "count"),
            "total_value": ("trade_value", "sum"),
            "mean_value": ("trade_value", "mean"),
            "median_value": ("trade_value", "median"),
            "sd_value": ("trade_value", "stdev"),
            "min_value": ("trade_value", "min"),
            "max_value": ("trade_value", "max"),
            "partners": ("partner", "n_unique"),
            "products": ("product_code", "n_unique"),
        },
    )


def top_partners(panel: pl.DataFrame, n: int = 3) -> pl.DataFrame:
    """
    Largest partners per (reporter, year, flow) by total trade value.
    Ties at rank n are kept, so a partition may hold more than n rows.
    """
    totals = _partner_totals(panel, REPORTER_YEAR_FLOW)
    ranked = rank_within(totals, REPORTER_YEAR_FLOW, "trade_value")
    out = top_n(ranked, n).sort(REPORTER_YEAR_FLOW + ["rank", "partner"])
    logger.info(f"Top {n} partners: {out.height} rows")
    return out


def top_products(panel: pl.DataFrame, n: int = 5) -> pl.DataFrame:
    """Largest HS6 products per (reporter, year, flow) by total trade value."""
    totals = grouped_sums(panel, REPORTER_YEAR_FLOW + ["product_code"])
    ranked = rank_within(totals, REPORTER_YEAR_FLOW, "trade_value")
    out = top_n(ranked, n).sort(REPORTER_YEAR_FLOW + ["rank", "product_code"])
    logger.info(f"Top {n} products: {out.height} rows")
    return out


def export_shares(panel: pl.DataFrame, n: int = 3) -> pl.DataFrame:
    """
    Share of each top-n export partner in the reporter's total exports for the year.
    """
    exports = pl.col("flow") == "Export"
    by_partner = _partner_totals(panel, ["reporter", "year"], filter=exports)
    totals = aggregate(
        panel,
        filter=exports,
        group_keys=["reporter", "year"],
        reductions={"total_exports": ("trade_value", "sum")},
    )
    shares = by_partner.join(totals, on=["reporter", "year"], how="left").with_columns(
        (pl.col("trade_value") / pl.col("total_exports")).alias("share")
    )
    ranked = rank_within(shares, ["reporter", "year"], "trade_value")
    return top_n(ranked, n).sort(["reporter", "year", "rank", "partner"])
