"""
Write result tables to disk. Formatting is left to the spreadsheet.
"""

from pathlib import Path
from typing import Mapping, Union

import pandas as pd
import polars as pl

from trade_panel_analysis.utils.logging_config import get_logger

logger = get_logger(__name__)

Tables = Union[pl.DataFrame, Mapping[str, pl.DataFrame]]

MAX_SHEET_NAME = 31  # Excel limit


def export_tables(tables: Tables, destination: str | Path) -> Path:
    """
    Write one table, or a mapping of sheet name -> table, to `destination`.

    `.xlsx` gets one sheet per table; `.csv` accepts a single table only.
    Row and column order are written exactly as given.
    """
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)

    if isinstance(tables, pl.DataFrame):
        tables = {destination.stem: tables}

    suffix = destination.suffix.lower()
    if suffix == ".csv":
        if len(tables) != 1:
            raise ValueError(f"CSV output holds one table; got {len(tables)} for {destination}")
        (table,) = tables.values()
        table.write_csv(destination)
    elif suffix == ".xlsx":
        with pd.ExcelWriter(destination, engine="openpyxl") as writer:
            for sheet_name, table in tables.items():
                table.to_pandas().to_excel(writer, sheet_name=sheet_name[:MAX_SHEET_NAME], index=False)
    else:
        raise ValueError(f"Unsupported output format '{suffix}' for {destination}")

    logger.info(f"Wrote {len(tables)} table(s) to {destination}")
    return destination
