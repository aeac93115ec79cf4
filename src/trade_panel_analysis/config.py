"""
Run configuration for the trade panel pipeline.

Everything that used to be implied by the working directory (which countries and
years to read, where the inputs live, where reports go) is carried explicitly on
a PipelineConfig.
"""

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Tuple

RAW_DATA_DIR = "data/raw"
REFERENCE_DATA_DIR = "data/reference"
OUTPUT_DIR = "data/output"

DEFAULT_COUNTRIES = ("ROM", "HUN")
DEFAULT_YEARS = (2010, 2011, 2012)

FLOWS = ("Import", "Export")
FIXED_EFFECT_GROUPS = ("reporter", "partner", "sector", "year")


@dataclass(frozen=True)
class PipelineConfig:
    countries: Tuple[str, ...] = DEFAULT_COUNTRIES
    years: Tuple[int, ...] = DEFAULT_YEARS
    raw_data_dir: Path = Path(RAW_DATA_DIR)
    # Formatted with country and year, e.g. ROM_2011.csv
    file_pattern: str = "{country}_{year}.csv"
    gdp_path: Path = Path(REFERENCE_DATA_DIR) / "gdp.csv"
    gravity_path: Path = Path(REFERENCE_DATA_DIR) / "dist_cepii.csv"
    output_dir: Path = Path(OUTPUT_DIR)
    top_partners_n: int = 3
    top_products_n: int = 5
    flows: Tuple[str, ...] = FLOWS
    fixed_effect_groups: Tuple[str, ...] = FIXED_EFFECT_GROUPS
    dependents: Tuple[str, ...] = ("ln_trade_value",)
    regressors: Tuple[str, ...] = ("ln_gdp", "ln_dist", "comlang_off")
    robust: bool = True

    def __post_init__(self):
        if not self.countries:
            raise ValueError("At least one country must be configured.")
        if not self.years:
            raise ValueError("At least one year must be configured.")
        if self.top_partners_n < 1 or self.top_products_n < 1:
            raise ValueError("top_partners_n and top_products_n must be >= 1.")
        # Normalise list inputs (e.g. from argparse) to tuples and paths to Path
        object.__setattr__(self, "countries", tuple(c.upper() for c in self.countries))
        object.__setattr__(self, "years", tuple(int(y) for y in self.years))
        for name in ("raw_data_dir", "gdp_path", "gravity_path", "output_dir"):
            object.__setattr__(self, name, Path(getattr(self, name)))

    def trade_file(self, country: str, year: int) -> Path:
        return self.raw_data_dir / self.file_pattern.format(country=country, year=year)

    def output_path(self, name: str) -> Path:
        return self.output_dir / name


def get_config(**overrides) -> PipelineConfig:
    """
    Returns the default configuration (two countries x three years) with any
    keyword overrides applied.
    """
    config = PipelineConfig()
    if overrides:
        config = replace(config, **overrides)
    return config
