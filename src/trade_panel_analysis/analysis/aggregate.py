"""
Generic filter / group / reduce over panel-shaped tables.
"""

from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import polars as pl

from trade_panel_analysis.utils.logging_config import get_logger

logger = get_logger(__name__)

GroupKey = Union[str, pl.Expr]
Reduction = Tuple[str, str]

OPERATIONS = ("sum", "count", "mean", "median", "stdev", "min", "max", "n_unique")


def hs_sector(column: str = "product_code", digits: int = 2) -> pl.Expr:
    """Expression truncating an HS6 code to its chapter (2 digits) or heading (4)."""
    if digits not in (2, 4, 6):
        raise ValueError("Invalid aggregation level. Choose from: [2, 4, 6]")
    name = "sector" if digits == 2 else f"hs{digits}"
    return pl.col(column).str.slice(0, digits).alias(name)


def _reduction_expr(output: str, source: str, operation: str) -> pl.Expr:
    col = pl.col(source)
    if operation == "sum":
        expr = col.sum()
    elif operation == "count":
        expr = col.count()
    elif operation == "mean":
        expr = col.mean()
    elif operation == "median":
        expr = col.median()
    elif operation == "stdev":
        # Sample stdev is undefined for one observation: report NaN, not null
        expr = (
            pl.when(col.count() > 1)
            .then(col.std(ddof=1))
            .otherwise(pl.lit(float("nan")))
        )
    elif operation == "min":
        expr = col.min()
    elif operation == "max":
        expr = col.max()
    elif operation == "n_unique":
        expr = col.drop_nulls().n_unique()
    else:
        raise ValueError(f"Unknown reduction '{operation}' for '{output}'. Choose from: {OPERATIONS}")
    return expr.alias(output)


def _key_names(group_keys: Sequence[GroupKey]) -> List[str]:
    names = []
    for key in group_keys:
        names.append(key if isinstance(key, str) else key.meta.output_name())
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate group keys: {names}")
    return names


def aggregate(
    table: pl.DataFrame,
    filter: Optional[pl.Expr] = None,
    group_keys: Sequence[GroupKey] = (),
    reductions: Optional[Mapping[str, Reduction]] = None,
) -> pl.DataFrame:
    """
    Filter a table, group it by a key tuple and reduce each group.

    Args:
        table: Input table; never modified.
        filter: Optional boolean expression selecting the rows to aggregate.
        group_keys: Column names or aliased expressions forming the group key.
        reductions: Mapping of output column -> (source column, operation), where
            operation is one of OPERATIONS.

    Returns:
        One row per distinct key tuple in the filtered input, sorted by the keys.
        With no group keys, a single row reducing the whole filtered table.
    """
    if not reductions:
        raise ValueError("At least one reduction is required.")

    exprs = [_reduction_expr(out, src, op) for out, (src, op) in reductions.items()]
    key_names = _key_names(group_keys)

    lf = table.lazy()
    if filter is not None:
        lf = lf.filter(filter)

    if group_keys:
        lf = lf.group_by(list(group_keys)).agg(exprs).sort(key_names)
    else:
        lf = lf.select(exprs)

    result = lf.collect()
    logger.debug(f"Aggregated {table.height} rows by {key_names} into {result.height} groups")
    return result


def grouped_sums(
    table: pl.DataFrame,
    group_keys: Sequence[GroupKey],
    value: str = "trade_value",
    filter: Optional[pl.Expr] = None,
) -> pl.DataFrame:
    """Shorthand for the common 'total value per key' aggregation."""
    reductions: Dict[str, Reduction] = {value: (value, "sum")}
    return aggregate(table, filter=filter, group_keys=group_keys, reductions=reductions)
