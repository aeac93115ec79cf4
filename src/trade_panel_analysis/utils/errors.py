"""
Error taxonomy and run-level diagnostics.

Fatal errors (ParseError, DomainError) are raised and abort the run. Row-level
problems (DataQualityWarning, JoinMismatch) are recorded on a RunDiagnostics
object and reported once the pipeline finishes.
"""

from collections import Counter
from typing import Dict, List

import polars as pl

from trade_panel_analysis.utils.logging_config import get_logger

logger = get_logger(__name__)


class TradePanelError(Exception):
    """Base class for errors raised by the pipeline."""


class ParseError(TradePanelError):
    """Malformed input file, or a table whose schema does not match what was declared."""


class DomainError(TradePanelError, ValueError):
    """A non-positive value reached a log transform."""


class DataQualityWarning(UserWarning):
    """Row-level anomaly in the input (e.g. an unexpected product code length)."""


class JoinMismatch(UserWarning):
    """Primary rows that found no match in a reference table."""


class RunDiagnostics:
    """
    Collects non-fatal issues over a run: data quality counts keyed by kind,
    and the match statistics of every reference join.
    """

    def __init__(self):
        self.quality_counts: Counter = Counter()
        self.quality_warnings: List[DataQualityWarning] = []
        self.join_stats: List = []
        self.join_mismatches: List[JoinMismatch] = []

    def record_quality(self, kind: str, count: int, detail: str = "") -> None:
        if count <= 0:
            return
        self.quality_counts[kind] += count
        warning = DataQualityWarning(f"{kind}: {count} rows {detail}".strip())
        self.quality_warnings.append(warning)
        logger.warning(str(warning))

    def record_join(self, stats) -> None:
        self.join_stats.append(stats)
        if stats.unmatched_rows > 0:
            mismatch = JoinMismatch(
                f"{stats.name}: {stats.unmatched_rows} of {stats.primary_rows} rows unmatched"
            )
            self.join_mismatches.append(mismatch)
            logger.warning(str(mismatch))

    @property
    def has_issues(self) -> bool:
        return bool(self.quality_counts) or bool(self.join_mismatches)

    def quality_frame(self) -> pl.DataFrame:
        kinds = sorted(self.quality_counts)
        return pl.DataFrame(
            {"kind": kinds, "rows": [self.quality_counts[k] for k in kinds]},
            schema={"kind": pl.Utf8, "rows": pl.Int64},
        )

    def join_frame(self) -> pl.DataFrame:
        return pl.DataFrame(
            [s.as_dict() for s in self.join_stats],
            schema={
                "name": pl.Utf8,
                "primary_rows": pl.Int64,
                "matched_rows": pl.Int64,
                "unmatched_rows": pl.Int64,
                "reference_only_keys": pl.Int64,
                "match_rate": pl.Float64,
            },
        )

    def as_tables(self) -> Dict[str, pl.DataFrame]:
        return {"join_matches": self.join_frame(), "data_quality": self.quality_frame()}

    def log_summary(self) -> None:
        logger.info("--- Run diagnostics ---")
        for kind, count in sorted(self.quality_counts.items()):
            logger.info(f"Data quality: {kind} = {count}")
        for stats in self.join_stats:
            logger.info(
                f"Join '{stats.name}': matched {stats.matched_rows}/{stats.primary_rows} "
                f"({stats.match_rate:.1%}), reference-only keys {stats.reference_only_keys}"
            )
        if not self.has_issues:
            logger.info("No data quality issues or join misses recorded.")
