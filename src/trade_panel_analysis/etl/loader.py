"""
Load per-country, per-year customs extracts into typed trade records.

Each extract is a 9-column CSV with a header row:

    1 reporter ISO3      4 trade flow name     7 trade value (1000 USD)
    2 partner ISO3       5 product code (HS6)  8 nomenclature
    3 partner name       6 product description 9 year

Columns are read positionally, so header spelling differs between extracts
without consequence.
"""

from pathlib import Path
from typing import List, Optional

import polars as pl
from tqdm.auto import tqdm

from trade_panel_analysis.config import PipelineConfig
from trade_panel_analysis.utils.errors import ParseError, RunDiagnostics
from trade_panel_analysis.utils.logging_config import get_logger

logger = get_logger(__name__)

# Positional schema: columns 1-6 and 8 are strings, 7 and 9 numeric
TRADE_SCHEMA = {
    "reporter": pl.Utf8,
    "partner": pl.Utf8,
    "partner_name": pl.Utf8,
    "flow": pl.Utf8,
    "product_code": pl.Utf8,
    "product_description": pl.Utf8,
    "trade_value": pl.Float64,
    "nomenclature": pl.Utf8,
    "year": pl.Int64,
}

REQUIRED_COLUMNS = ["reporter", "partner", "flow", "product_code", "trade_value", "year"]
VALID_FLOWS = ("Import", "Export")
WORLD_PARTNER = "WLD"
PRODUCT_CODE_LENGTH = 6
SIX_DIGIT_CODE = r"^\d{6}$"
FIVE_DIGIT_CODE = r"^\d{5}$"


def trade_file_path(config: PipelineConfig, country: str, year: int) -> Path:
    return config.trade_file(country, year)


def _report_quality(diagnostics: Optional[RunDiagnostics], kind: str, count: int, detail: str = ""):
    if diagnostics is not None:
        diagnostics.record_quality(kind, count, detail)
    elif count > 0:
        logger.warning(f"{kind}: {count} rows {detail}".strip())


def _read_raw(path: Path) -> pl.DataFrame:
    """Read every column as a string so type problems can be reported per column."""
    try:
        raw = pl.read_csv(
            path,
            has_header=True,
            infer_schema=False,
            null_values=[""],
        )
    except pl.exceptions.PolarsError as e:
        raise ParseError(f"Could not parse {path}: {e}") from e

    if raw.width != len(TRADE_SCHEMA):
        raise ParseError(
            f"{path}: expected {len(TRADE_SCHEMA)} columns, found {raw.width} ({raw.columns})"
        )
    return raw.rename(dict(zip(raw.columns, TRADE_SCHEMA.keys())))


def _cast_to_schema(raw: pl.DataFrame, path: Path) -> pl.DataFrame:
    exprs = []
    for name, dtype in TRADE_SCHEMA.items():
        col = pl.col(name).str.strip_chars()
        exprs.append(col.cast(dtype, strict=True).alias(name))
    try:
        typed = raw.select(exprs)
    except pl.exceptions.PolarsError as e:
        raise ParseError(f"{path}: values inconsistent with the declared schema: {e}") from e

    null_counts = typed.select(pl.col(c).null_count() for c in REQUIRED_COLUMNS).row(0, named=True)
    missing = {c: n for c, n in null_counts.items() if n > 0}
    if missing:
        raise ParseError(f"{path}: missing values in required columns {missing}")

    bad_flows = typed.filter(~pl.col("flow").is_in(VALID_FLOWS)).get_column("flow").unique()
    if len(bad_flows) > 0:
        raise ParseError(f"{path}: unknown trade flow(s) {sorted(bad_flows.to_list())}")

    return typed


def _report_code_anomalies(
    df: pl.DataFrame, mask: pl.Expr, kind: str, diagnostics: Optional[RunDiagnostics]
) -> None:
    anomalous = df.filter(mask)
    if anomalous.height > 0:
        examples = anomalous.get_column("product_code").unique().sort().head(5).to_list()
        _report_quality(diagnostics, kind, anomalous.height, f"(e.g. {examples})")


def normalize_product_codes(
    df: pl.DataFrame, diagnostics: Optional[RunDiagnostics] = None
) -> pl.DataFrame:
    """
    Restore the leading zero lost on 5-digit product codes.

    Only all-digit codes of length 5 or 6 are product codes. Digit codes of any
    other length, and codes with non-digit characters (e.g. a 'Total' row), are
    anomalies: they are counted and excluded rather than padded or truncated.

    Args:
        df: Trade records with a string 'product_code' column.
        diagnostics: Optional collector for the anomaly counts.

    Returns:
        A new DataFrame whose product codes are all exactly six digits.
    """
    code = pl.col("product_code")
    is_digits = code.str.contains(r"^\d+$")
    is_padded = code.str.contains(FIVE_DIGIT_CODE)
    is_valid = is_padded | code.str.contains(SIX_DIGIT_CODE)

    _report_code_anomalies(df, is_digits & ~is_valid, "unexpected_product_code_length", diagnostics)
    _report_code_anomalies(df, ~is_digits, "non_numeric_product_code", diagnostics)

    n_padded = df.filter(is_padded).height
    out = df.filter(is_valid).with_columns(code.str.zfill(PRODUCT_CODE_LENGTH))
    if n_padded:
        logger.debug(f"Zero-padded {n_padded} five-digit product codes")
    return out


def load_trade_file(path: str | Path, diagnostics: Optional[RunDiagnostics] = None) -> pl.DataFrame:
    """
    Load one (country, year) extract.

    Args:
        path: CSV file to read.
        diagnostics: Optional collector for non-fatal data quality counts.

    Returns:
        Trade records in file order, with world-aggregate rows removed and
        product codes normalised to six characters.

    Raises:
        ParseError: if the column count or any value does not fit the schema.
    """
    path = Path(path)
    if not path.exists():
        raise ParseError(f"Trade extract not found: {path}")

    raw = _read_raw(path)
    df = _cast_to_schema(raw, path)
    rows_read = df.height

    # WLD rows aggregate all partners and would double count the bilateral flows
    df = df.filter(pl.col("partner") != WORLD_PARTNER)
    logger.debug(f"{path.name}: dropped {rows_read - df.height} world-aggregate rows")

    df = normalize_product_codes(df, diagnostics)
    logger.info(f"Loaded {df.height} records from {path.name} ({rows_read} rows read)")
    return df
def load_trade_files(
    config: PipelineConfig, diagnostics: Optional[RunDiagnostics] = None
) -> List[pl.DataFrame]:
    """
    Load every configured (country, year) extract, one file at a time.

    Rows whose reporter or year differs from the (country, year) the file was
    loaded for are kept but counted as `extract_reporter_year_mismatch`.
    """
    pairs = [(country, year) for country in config.countries for year in config.years]
    logger.info(f"Loading {len(pairs)} trade extracts from {config.raw_data_dir}")

    frames = []
    for country, year in tqdm(pairs, desc="Loading trade extracts"):
        path = trade_file_path(config, country, year)
        logger.debug(f"Loading {country} {year} from {path}")
        df = load_trade_file(path, diagnostics)
        mismatched = df.filter((pl.col("reporter") != country) | (pl.col("year") != year)).height
        _report_quality(
            diagnostics,
            "extract_reporter_year_mismatch",
            mismatched,
            f"in {path.name} (expected {country} {year})",
        )
        frames.append(df)
    return frames
