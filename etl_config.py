"""
ETL Pipeline Configuration
Central configuration for the state housing-budget pipeline
"""

import datetime as dt
from dataclasses import dataclass, field
from typing import Dict, List, Optional

# Source column maps (raw header -> pipeline name)
DATA_SOURCES = {
    'home_values': {
        'id_columns': {'RegionID': 'region_id', 'State': 'state', 'RegionType': 'region_type'},
        'descriptor_columns': ['SizeRank', 'RegionName', 'StateName', 'City', 'Metro', 'CountyName'],
        'value_name': 'home_value',
    },
    'inventory': {
        'id_columns': {'RegionID': 'region_id', 'StateName': 'state', 'RegionType': 'region_type'},
        'descriptor_columns': ['SizeRank', 'RegionName'],
        'region_types': ['msa'],
        'value_name': 'inventory_level',
    },
    'mortgage_rates': {
        'date_candidates': ['date', 'observation_date', 'ds', 'period'],
        'value_candidates': ['rate_30yr', 'mortgage30us', '30yr_fixed', '30_yr_fixed', 'rate', 'value'],
    },
    'wages': {
        'columns': ['state_name', 'sep_2020_avg_weekly_wage', 'sep_2021_avg_weekly_wage',
                    'net_change', 'pct_change'],
        'weeks_per_year': 52,
    },
}

# Comparison window (month-end snapshot dates)
SNAPSHOT_DATES = {
    'jan': dt.date(2020, 1, 31),
    'mar': dt.date(2022, 3, 31),
}
SNAPSHOT_SUFFIXES = ('_jan', '_mar')

# Wage year paired with each snapshot ("a buyer that year")
WAGE_YEAR_FOR_SNAPSHOT = {
    'jan': 'annual_2020_wages',
    'mar': 'annual_2021_wages',
}

# FRED fallback for the rate series (public CSV endpoint, no API key)
FRED_SERIES: Dict[str, str] = {
    "mortgage_rate": "MORTGAGE30US",   # weekly, %
}
FRED_CSV_BASE = "https://fred.stlouisfed.org/graph/fredgraph.csv"
HTTP_TIMEOUT = 45


@dataclass(frozen=True)
class LoanTerms:
    term_years: int = 30
    down_payment_fraction: float = 0.20

    @property
    def periods(self) -> int:
        return self.term_years * 12


LOAN_TERMS = LoanTerms()

# Output configuration
OUTPUT_CONFIG = {
    'out_path': 'data/gold',
    'formats': ['csv'],
    'manifest': 'manifest.json',
    'tables': [
        'home_values_long', 'inventory_long', 'wages', 'mortgage_rates',
        'home_value_change', 'inventory_change', 'state_budget',
    ],
}

# Data quality checks
QUALITY_CHECKS = {
    'expected_final_rows': None,  # e.g. 49 or 50 for a full national run
    'warn_below_states': 50,
}


@dataclass
class ETLConfig:
    home_values: str
    inventory: str
    rates: str
    wages: Optional[str] = None        # persisted wage CSV
    wages_url: Optional[str] = None    # scrape when no CSV is given
    out: str = OUTPUT_CONFIG['out_path']
    formats: List[str] = field(default_factory=lambda: list(OUTPUT_CONFIG['formats']))
    expect_rows: Optional[int] = QUALITY_CHECKS['expected_final_rows']
    fetch_fred_rates: bool = False
    loan: LoanTerms = LOAN_TERMS
