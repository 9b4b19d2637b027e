from __future__ import annotations

import datetime as dt
from unittest.mock import MagicMock, patch

import polars as pl
import pytest

from etl_errors import MalformedDateColumn, MalformedNumericField, SourceUnavailable
from etl_extract import (
    BlsWageProvider,
    CsvWageProvider,
    StaticWageProvider,
    WageProvider,
    download_fred_series,
    fred_url,
    load_home_values,
    load_inventory,
    load_mortgage_rates,
    load_wages,
    parse_wage_html,
)

WAGE_HTML = """
<html><body>
<table id="state-wages">
  <thead><tr><th>State</th><th>Sep 2020</th><th>Sep 2021</th><th>Net</th><th>Pct</th></tr></thead>
  <tbody>
    <tr><th>California(1)</th><td>$1,500</td><td>$1,600</td><td>$100</td><td>6.7%</td></tr>
    <tr><th>Texas</th><td>$1,200</td><td>$1,260</td><td>$60</td><td>5.0%</td></tr>
    <tr><td colspan="5">Footnotes</td></tr>
  </tbody>
</table>
</body></html>
"""


def _response(status_code: int, text: str = "") -> MagicMock:
    r = MagicMock()
    r.status_code = status_code
    r.text = text
    r.content = text.encode("utf-8")
    return r


def test_missing_file_is_source_unavailable(tmp_path):
    with pytest.raises(SourceUnavailable) as exc:
        load_home_values(tmp_path / "nope.csv")
    assert exc.value.stage == "home_values"


def test_remote_non_success_status_is_source_unavailable():
    with patch("etl_extract.requests.get", return_value=_response(404)):
        with pytest.raises(SourceUnavailable, match="HTTP 404"):
            load_inventory("https://example.org/inventory.csv")


def test_remote_csv_is_read_from_response_body(inventory_csv):
    with patch("etl_extract.requests.get", return_value=_response(200, inventory_csv.read_text())) as get:
        df = load_inventory("https://example.org/inventory.csv")
    get.assert_called_once()
    assert df.height == 5


def test_load_home_values_renames_identity_and_drops_descriptors(home_values_csv):
    df = load_home_values(home_values_csv)
    assert df.columns[:3] == ["region_id", "state", "region_type"]
    assert "RegionName" not in df.columns
    assert "CountyName" not in df.columns
    assert "2020-01-31" in df.columns
    assert df.height == 7


def test_load_inventory_keeps_only_metros(inventory_csv):
    df = load_inventory(inventory_csv)
    assert "region_type" not in df.columns
    assert df["state"].null_count() == 0
    assert sorted(df["state"].unique().to_list()) == ["CA", "DC", "NY", "TX"]


def test_load_mortgage_rates_normalizes_schema(rates_csv):
    rates = load_mortgage_rates(rates_csv)
    assert rates.columns == ["date", "rate_30yr"]
    assert rates.schema["date"] == pl.Date
    assert rates["date"].to_list()[0] == dt.date(2020, 1, 29)
    assert rates.filter(pl.col("date") == dt.date(2020, 1, 30))["rate_30yr"][0] == pytest.approx(3.51)


def test_load_mortgage_rates_accepts_fred_layout_with_missing_marker(tmp_path):
    p = tmp_path / "fred.csv"
    p.write_text("observation_date,MORTGAGE30US\n2020-01-23,3.60\n2020-01-30,.\n2020-02-06,3.45\n")
    rates = load_mortgage_rates(p)
    assert rates.height == 2
    assert rates["rate_30yr"].to_list() == [3.60, 3.45]


def test_load_mortgage_rates_rejects_non_numeric_rate(tmp_path):
    p = tmp_path / "rates.csv"
    p.write_text("date,rate_30yr\n2020-01-30,3.51\n2020-01-31,n/a%\n")
    with pytest.raises(MalformedNumericField) as exc:
        load_mortgage_rates(p)
    assert exc.value.record["date"] == "2020-01-31"


def test_load_mortgage_rates_rejects_bad_dates(tmp_path):
    p = tmp_path / "rates.csv"
    p.write_text("date,rate_30yr\nnot-a-date,3.51\n")
    with pytest.raises(MalformedDateColumn):
        load_mortgage_rates(p)


def test_csv_wage_provider_returns_string_columns(wages_csv):
    df = load_wages(CsvWageProvider(wages_csv))
    assert df["sep_2020_avg_weekly_wage"].to_list()[1] == "$1,500"
    assert all(dtype == pl.Utf8 for dtype in df.dtypes)


def test_csv_wage_provider_missing_columns(tmp_path):
    p = tmp_path / "wages.csv"
    p.write_text("state_name,pct_change\nTexas,5.0%\n")
    with pytest.raises(SourceUnavailable, match="missing columns"):
        CsvWageProvider(p).fetch_wage_table()


def test_static_wage_provider(wage_rows):
    df = StaticWageProvider(wage_rows).fetch_wage_table()
    assert df.height == len(wage_rows)


def test_wage_provider_requires_fetch_wage_table():
    class Incomplete(WageProvider):
        pass

    with pytest.raises(TypeError):
        WageProvider()
    with pytest.raises(TypeError):
        Incomplete()


def test_parse_wage_html_strips_footnotes_and_skips_non_data_rows():
    rows = parse_wage_html(WAGE_HTML, table_id="state-wages")
    assert [r["state_name"] for r in rows] == ["California", "Texas"]
    assert rows[0]["pct_change"] == "6.7%"


def test_bls_provider_persists_scraped_table(tmp_path):
    cache = tmp_path / "cache" / "wages.csv"
    with patch("etl_extract.requests.get", return_value=_response(200, WAGE_HTML)):
        df = BlsWageProvider("https://example.org/wages", cache_path=cache).fetch_wage_table()
    assert df.height == 2
    assert cache.exists()
    assert CsvWageProvider(cache).fetch_wage_table().equals(df)


def test_bls_provider_http_error():
    with patch("etl_extract.requests.get", return_value=_response(503)):
        with pytest.raises(SourceUnavailable):
            BlsWageProvider("https://example.org/wages").fetch_wage_table()


def test_download_fred_series_persists_rate_csv(tmp_path):
    body = "observation_date,MORTGAGE30US\n2020-01-30,3.51\n2020-02-06,3.45\n"
    dest = tmp_path / "raw" / "mortgage_rates.csv"
    with patch("etl_extract.requests.get", return_value=_response(200, body)) as get:
        out = download_fred_series(dest, start="2020-01-01")
    assert get.call_args[0][0] == fred_url("MORTGAGE30US", "2020-01-01")
    assert out == dest
    assert load_mortgage_rates(dest)["rate_30yr"].to_list() == [3.51, 3.45]
    assert dest.with_suffix(".json").exists()
