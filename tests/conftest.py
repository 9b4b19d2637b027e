"""
Pytest configuration and shared fixtures.

The synthetic inputs cover three states (CA, NY, TX) plus D.C., with
hand-picked values so the expected averages are easy to read:
    CA home value  500,000 -> 600,000  (+20%)
    NY home value  300,000 -> 330,000  (+10%)
    TX home value  200,000 -> 250,000  (+25%)
"""
import datetime as dt
from pathlib import Path

import polars as pl
import pytest

from etl_config import ETLConfig


JAN = dt.date(2020, 1, 31)
MAR = dt.date(2022, 3, 31)

HOME_VALUES_CSV = """\
RegionID,SizeRank,RegionName,RegionType,StateName,State,City,Metro,CountyName,2020-01-31,2021-06-30,2022-03-31
61639,1,90001,zip,CA,CA,Los Angeles,Los Angeles-Long Beach-Anaheim,Los Angeles County,400000,450000,500000
61640,2,90002,zip,CA,CA,Los Angeles,Los Angeles-Long Beach-Anaheim,Los Angeles County,600000,650000,700000
62037,3,10001,zip,NY,NY,New York,New York-Newark-Jersey City,New York County,300000,310000,330000
62038,4,10002,zip,NY,NY,New York,New York-Newark-Jersey City,New York County,,,
91982,5,73301,zip,TX,TX,Austin,Austin-Round Rock,Travis County,200000,,250000
66126,6,20001,zip,DC,DC,Washington,Washington-Arlington-Alexandria,District of Columbia,600000,620000,650000
58196,7,01001,zip,MA,MA,Agawam,Springfield,Hampden County,,280000,
"""

INVENTORY_CSV = """\
RegionID,SizeRank,RegionName,RegionType,StateName,2020-01-31,2022-03-31
102001,0,United States,country,,1400000,900000
753899,1,"Los Angeles, CA",msa,CA,1000,800
395056,2,"San Diego, CA",msa,CA,500,300
394913,3,"New York, NY",msa,NY,2000,1500
394514,4,"Dallas, TX",msa,TX,900,600
395209,5,"Washington, DC",msa,DC,400,300
"""

RATES_CSV = """\
date,rate_30yr
2020-01-29,3.55
2020-01-30,3.51
2020-02-03,3.60
2022-03-30,4.90
2022-03-31,4.95
"""

WAGE_ROWS = [
    {"state_name": "United States", "sep_2020_avg_weekly_wage": "$1,248",
     "sep_2021_avg_weekly_wage": "$1,304", "net_change": "$56", "pct_change": "4.5%"},
    {"state_name": "California", "sep_2020_avg_weekly_wage": "$1,500",
     "sep_2021_avg_weekly_wage": "$1,600", "net_change": "$100", "pct_change": "6.7%"},
    {"state_name": "New York", "sep_2020_avg_weekly_wage": "$1,800",
     "sep_2021_avg_weekly_wage": "$1,900", "net_change": "$100", "pct_change": "5.6%"},
    {"state_name": "Texas", "sep_2020_avg_weekly_wage": "$1,200",
     "sep_2021_avg_weekly_wage": "$1,260", "net_change": "$60", "pct_change": "5.0%"},
]


@pytest.fixture
def home_values_csv(tmp_path) -> Path:
    p = tmp_path / "zhvi_zip.csv"
    p.write_text(HOME_VALUES_CSV)
    return p


@pytest.fixture
def inventory_csv(tmp_path) -> Path:
    p = tmp_path / "inventory_metro.csv"
    p.write_text(INVENTORY_CSV)
    return p


@pytest.fixture
def rates_csv(tmp_path) -> Path:
    p = tmp_path / "mortgage_rates.csv"
    p.write_text(RATES_CSV)
    return p


@pytest.fixture
def wage_rows() -> list:
    return [dict(r) for r in WAGE_ROWS]


@pytest.fixture
def wages_csv(tmp_path, wage_rows) -> Path:
    p = tmp_path / "wages.csv"
    pl.DataFrame(wage_rows).write_csv(p.as_posix())
    return p


@pytest.fixture
def etl_config(tmp_path, home_values_csv, inventory_csv, rates_csv, wages_csv) -> ETLConfig:
    return ETLConfig(
        home_values=str(home_values_csv),
        inventory=str(inventory_csv),
        rates=str(rates_csv),
        wages=str(wages_csv),
        out=str(tmp_path / "gold"),
    )


@pytest.fixture
def rates_frame() -> pl.DataFrame:
    return pl.DataFrame({
        "date": [dt.date(2020, 1, 29), dt.date(2020, 1, 30), dt.date(2020, 2, 3), dt.date(2022, 3, 31)],
        "rate_30yr": [3.55, 3.51, 3.60, 4.95],
    })


def make_snapshots(values_jan: dict, values_mar: dict, column: str = "avg_value") -> pl.DataFrame:
    """
    Build a StateSnapshot frame from {state: value} maps.

    Usage:
        snaps = make_snapshots({"CA": 200000.0}, {"CA": 250000.0})
    """
    rows = [{"state": s, "date": JAN, column: v} for s, v in values_jan.items()]
    rows += [{"state": s, "date": MAR, column: v} for s, v in values_mar.items()]
    return pl.DataFrame(rows, schema={"state": pl.Utf8, "date": pl.Date, column: pl.Float64})
