"""
Build the unified long-format trade panel from per-file record frames.
"""

from typing import Sequence

import polars as pl

from trade_panel_analysis.etl.loader import SIX_DIGIT_CODE, TRADE_SCHEMA, WORLD_PARTNER
from trade_panel_analysis.utils.errors import ParseError
from trade_panel_analysis.utils.logging_config import get_logger

logger = get_logger(__name__)

PANEL_SORT_KEY = ["reporter", "product_code", "partner", "year"]
# Rows equal on the panel key are ordered by these so the panel is independent of load order
_TIEBREAK = ["flow", "trade_value"]


def build_panel(frames: Sequence[pl.DataFrame]) -> pl.DataFrame:
    """
    Concatenate per-(country, year) frames and sort by the canonical panel key.

    The returned frame is shared by every downstream view; callers that need a
    different order sort their own copy.

    Args:
        frames: Outputs of load_trade_file, in any order.

    Returns:
        The panel, sorted by (reporter, product_code, partner, year).
    """
    if not frames:
        raise ValueError("No trade frames supplied; nothing to build a panel from.")

    panel = pl.concat(list(frames), how="vertical").sort(PANEL_SORT_KEY + _TIEBREAK)

    logger.info(
        f"Built panel: {panel.height} records, "
        f"{panel.get_column('reporter').n_unique()} reporters, "
        f"{panel.get_column('partner').n_unique()} partners, "
        f"{panel.get_column('product_code').n_unique()} products"
    )
    return panel


def validate_panel(panel: pl.DataFrame) -> None:
    """Raise ParseError if the panel breaks any of its invariants."""
    if dict(panel.schema) != TRADE_SCHEMA:
        raise ParseError(f"Panel schema mismatch: {dict(panel.schema)}")

    bad_codes = panel.filter(~pl.col("product_code").str.contains(SIX_DIGIT_CODE)).height
    if bad_codes:
        raise ParseError(f"Panel contains {bad_codes} product codes that are not six digits")

    world_rows = panel.filter(pl.col("partner") == WORLD_PARTNER).height
    if world_rows:
        raise ParseError(f"Panel contains {world_rows} world-aggregate rows")

    if not panel.select(PANEL_SORT_KEY).equals(panel.select(PANEL_SORT_KEY).sort(PANEL_SORT_KEY)):
        raise ParseError(f"Panel is not sorted by {PANEL_SORT_KEY}")

    logger.debug("Panel validation passed.")
