"""
External reference data (GDP, CEPII-style gravity variables) and the left join
used to attach it to trade tables.
"""

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Tuple, Union

import polars as pl

from trade_panel_analysis.utils.errors import ParseError, RunDiagnostics
from trade_panel_analysis.utils.logging_config import get_logger

logger = get_logger(__name__)

GDP_SCHEMA = {"iso3": pl.Utf8, "year": pl.Int64, "gdp": pl.Float64}
GRAVITY_SCHEMA = {"iso_o": pl.Utf8, "iso_d": pl.Utf8, "dist": pl.Float64, "comlang_off": pl.Int64}

_MATCH_FLAG = "__reference_matched"

JoinKeys = Union[Sequence[str], Mapping[str, str]]


@dataclass(frozen=True)
class MatchStats:
    name: str
    primary_rows: int
    matched_rows: int
    reference_only_keys: int

    @property
    def unmatched_rows(self) -> int:
        return self.primary_rows - self.matched_rows

    @property
    def match_rate(self) -> float:
        if self.primary_rows == 0:
            return 0.0
        return self.matched_rows / self.primary_rows

    def as_dict(self) -> Dict:
        out = asdict(self)
        out["unmatched_rows"] = self.unmatched_rows
        out["match_rate"] = self.match_rate
        return out


def _read_reference(path: str | Path, schema: Dict[str, pl.DataType], label: str) -> pl.DataFrame:
    path = Path(path)
    if not path.exists():
        raise ParseError(f"{label} reference file not found: {path}")
    try:
        df = pl.read_csv(
            path,
            columns=list(schema.keys()),
            schema_overrides=schema,
            null_values=["", "NA", "."],
        )
    except pl.exceptions.PolarsError as e:
        raise ParseError(f"Could not read {label} reference {path}: {e}") from e

    # Keep the declared column order whatever the file order is
    df = df.select(list(schema.keys()))
    logger.info(f"Loaded {label} reference: {df.height} rows from {path}")
    return df


def load_gdp(path: str | Path) -> pl.DataFrame:
    """GDP table keyed by (iso3, year), gdp in current USD."""
    return _read_reference(path, GDP_SCHEMA, "GDP")


def load_gravity(path: str | Path) -> pl.DataFrame:
    """Bilateral gravity table keyed by (iso_o, iso_d): distance and common official language."""
    return _read_reference(path, GRAVITY_SCHEMA, "gravity")


def _split_keys(join_keys: JoinKeys) -> Tuple[list, list]:
    if isinstance(join_keys, Mapping):
        return list(join_keys.keys()), list(join_keys.values())
    keys = list(join_keys)
    return keys, keys


def left_join(
    primary: pl.DataFrame,
    reference: pl.DataFrame,
    join_keys: JoinKeys,
    name: str = "reference",
    diagnostics: Optional[RunDiagnostics] = None,
) -> Tuple[pl.DataFrame, MatchStats]:
    """
    Many-to-one left join of a reference table onto a primary table.

    Reference rows whose key is absent from the primary table are dropped; primary
    rows with no match keep null reference columns.

    Args:
        primary: Panel or aggregate table; never modified.
        reference: Reference table, unique on its join keys.
        join_keys: Shared column names, or a mapping {primary column: reference column}.
        name: Label used in logs and match statistics.
        diagnostics: Optional collector the match statistics are recorded on.

    Returns:
        (joined table with the primary row order and count, MatchStats)

    Raises:
        ParseError: if a join key is missing or the reference keys are not unique.
    """
    left_on, right_on = _split_keys(join_keys)
    missing_left = [c for c in left_on if c not in primary.columns]
    missing_right = [c for c in right_on if c not in reference.columns]
    if missing_left or missing_right:
        raise ParseError(
            f"Join '{name}': key columns missing (primary: {missing_left}, reference: {missing_right})"
        )

    n_duplicated = reference.select(pl.struct(right_on).is_duplicated().sum()).item()
    if n_duplicated:
        raise ParseError(f"Join '{name}': {n_duplicated} reference rows share a join key {right_on}")

    joined = primary.join(
        reference.with_columns(pl.lit(True).alias(_MATCH_FLAG)),
        left_on=left_on,
        right_on=right_on,
        how="left",
        coalesce=True,
        maintain_order="left",
    )
    matched_rows = joined.get_column(_MATCH_FLAG).fill_null(False).sum()
    joined = joined.drop(_MATCH_FLAG)

    primary_keys = primary.select(left_on).unique().rename(dict(zip(left_on, right_on)))
    reference_only = reference.select(right_on).join(primary_keys, on=right_on, how="anti").height

    stats = MatchStats(
        name=name,
        primary_rows=primary.height,
        matched_rows=int(matched_rows),
        reference_only_keys=reference_only,
    )
    logger.info(
        f"Join '{name}': {stats.matched_rows}/{stats.primary_rows} primary rows matched "
        f"({stats.match_rate:.1%}); {stats.reference_only_keys} reference-only keys dropped"
    )
    if diagnostics is not None:
        diagnostics.record_join(stats)
    return joined, stats
