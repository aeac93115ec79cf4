import csv
from pathlib import Path

import polars as pl
import pytest

from trade_panel_analysis.etl.loader import TRADE_SCHEMA

# Header spelling as found in WITS trade extracts; columns are read positionally
EXTRACT_HEADER = [
    "ReporterISO3",
    "PartnerISO3",
    "PartnerName",
    "TradeFlowName",
    "ProductCode",
    "ProductDescription",
    "TradeValue in 1000 USD",
    "NomenclatureCode",
    "Year",
]

PARTNER_NAMES = {
    "AUT": "Austria",
    "DEU": "Germany",
    "FRA": "France",
    "HUN": "Hungary",
    "ITA": "Italy",
    "POL": "Poland",
    "ROM": "Romania",
    "WLD": "World",
}


def write_extract(path: Path, rows, header=EXTRACT_HEADER) -> Path:
    """Write a 9-column extract; each row is (reporter, partner, flow, product, value, year)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        for row in rows:
            if len(row) == 6:
                reporter, partner, flow, product, value, year = row
                row = [reporter, partner, PARTNER_NAMES.get(partner, partner), flow, product, "desc", value, "H3", year]
            writer.writerow(row)
    return path


def make_panel(rows) -> pl.DataFrame:
    """Panel-shaped frame from (reporter, partner, flow, product, value, year) tuples."""
    records = [
        {
            "reporter": reporter,
            "partner": partner,
            "partner_name": PARTNER_NAMES.get(partner, partner),
            "flow": flow,
            "product_code": product,
            "product_description": "desc",
            "trade_value": float(value),
            "nomenclature": "H3",
            "year": year,
        }
        for reporter, partner, flow, product, value, year in rows
    ]
    return pl.DataFrame(records, schema=TRADE_SCHEMA)


@pytest.fixture
def scenario_rows():
    return [
        ("ROM", "DEU", "Import", "271011", 100, 2011),
        ("ROM", "ITA", "Import", "271011", 50, 2011),
        ("ROM", "WLD", "Import", "271011", 9999, 2011),
    ]


@pytest.fixture
def small_panel() -> pl.DataFrame:
    return make_panel(
        [
            ("ROM", "DEU", "Import", "271011", 100, 2011),
            ("ROM", "ITA", "Import", "271011", 50, 2011),
            ("ROM", "DEU", "Import", "840991", 30, 2011),
            ("ROM", "ITA", "Export", "840991", 70, 2011),
            ("ROM", "HUN", "Export", "010121", 20, 2011),
            ("ROM", "DEU", "Export", "840991", 10, 2011),
            ("HUN", "DEU", "Import", "271011", 80, 2011),
            ("HUN", "ROM", "Export", "271011", 40, 2012),
            ("HUN", "AUT", "Export", "271011", 40, 2012),
            ("HUN", "ITA", "Export", "840991", 5, 2012),
        ]
    )
