"""
Within-partition ranking of aggregate rows.
"""

from typing import Sequence

import polars as pl

from trade_panel_analysis.utils.logging_config import get_logger

logger = get_logger(__name__)

RANK_COLUMN = "rank"
RANK_METHODS = ("min", "dense")


def rank_within(
    rows: pl.DataFrame,
    partition_keys: Sequence[str],
    metric: str,
    descending: bool = True,
    method: str = "min",
) -> pl.DataFrame:
    """
    Add a rank of `metric` within each partition.

    The default is competition ("1224") ranking: equal values share a rank and the
    next distinct value skips ahead, so {100, 100, 50} ranks as {1, 1, 3}.
    `method="dense"` closes the gap ({1, 1, 2}). Rank 1 is the largest value when
    `descending` is True.

    Args:
        rows: Aggregate rows; never modified.
        partition_keys: Columns defining the partitions. Empty ranks the whole table.
        metric: Column to rank on.
        descending: Rank the largest value first.
        method: "min" (competition) or "dense".

    Returns:
        A copy of `rows` with an Int64 'rank' column.
    """
    if metric not in rows.columns:
        raise ValueError(f"Metric column '{metric}' not found. Available columns: {rows.columns}")
    if method not in RANK_METHODS:
        raise ValueError(f"Unknown rank method '{method}'. Choose from: {RANK_METHODS}")

    rank_expr = pl.col(metric).rank(method=method, descending=descending).cast(pl.Int64)
    if partition_keys:
        rank_expr = rank_expr.over(list(partition_keys))

    ranked = rows.with_columns(rank_expr.alias(RANK_COLUMN))
    logger.debug(f"Ranked {ranked.height} rows on '{metric}' within {list(partition_keys)}")
    return ranked


def top_n(ranked: pl.DataFrame, n: int) -> pl.DataFrame:
    """Keep rows ranked n or better; ties at the cut-off are all kept."""
    if n < 1:
        raise ValueError("n must be >= 1")
    return ranked.filter(pl.col(RANK_COLUMN) <= n)
