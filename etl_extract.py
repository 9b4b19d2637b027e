#!/usr/bin/env python3
"""
ETL Extract Module - Bronze Layer
Loads the four pipeline sources (Zillow home values, Zillow inventory,
state wage table, 30-year mortgage rates) from flat files or URLs.
"""

import io
import json
import logging
import pathlib
import re
import datetime as dt
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Union

import requests
import pandas as pd
import polars as pl
from bs4 import BeautifulSoup

from etl_config import DATA_SOURCES, FRED_CSV_BASE, FRED_SERIES, HTTP_TIMEOUT
from etl_errors import MalformedDateColumn, MalformedNumericField, SourceUnavailable

logger = logging.getLogger(__name__)

HEADERS = {"User-Agent": "Mozilla/5.0 (housing-budget-etl)"}
WAGE_COLUMNS: List[str] = DATA_SOURCES["wages"]["columns"]

Source = Union[str, pathlib.Path]


# =========================
# Utils
# =========================
def is_url(source: Source) -> bool:
    return str(source).lower().startswith(("http://", "https://"))


def read_source(source: Source, stage: str) -> Union[str, io.BytesIO]:
    """
    Resolve a path or URL into something the CSV readers accept.
    Local files must exist; URLs must answer 200. No retries.
    """
    if is_url(source):
        url = str(source)
        logger.info(f"Fetching {stage} from {url}")
        try:
            r = requests.get(url, headers=HEADERS, timeout=HTTP_TIMEOUT)
        except requests.RequestException as e:
            raise SourceUnavailable(stage, f"request to {url} failed: {e}") from e
        if r.status_code != 200:
            raise SourceUnavailable(stage, f"HTTP {r.status_code} from {url}")
        return io.BytesIO(r.content)

    path = pathlib.Path(source)
    if not path.exists():
        raise SourceUnavailable(stage, f"file not found: {path}")
    return path.as_posix()


def write_json(path: pathlib.Path, obj):
    """Write JSON file"""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)


def _coalesce_first(cols: List[str], options: Iterable[str]) -> Optional[str]:
    lcset = {c.lower(): c for c in cols}
    for want in options:
        if want.lower() in lcset:
            return lcset[want.lower()]
    return None


def fred_url(series_id: str, start: Optional[str] = None, end: Optional[str] = None) -> str:
    """Build FRED download URL"""
    qs = f"id={series_id}"
    if start:
        qs += f"&cosd={start}"
    if end:
        qs += f"&coed={end}"
    return f"{FRED_CSV_BASE}?{qs}"


# =========================
# Zillow (wide CSVs)
# =========================
def _read_wide_csv(source: Source, stage: str) -> pl.DataFrame:
    """Read a Zillow wide CSV with every column as text; the reshaper casts values."""
    src_cfg = DATA_SOURCES[stage]
    df = pl.read_csv(read_source(source, stage), infer_schema_length=0)

    missing = [c for c in src_cfg["id_columns"] if c not in df.columns]
    if missing:
        raise SourceUnavailable(stage, f"missing identity columns {missing}; got {df.columns[:10]}...")

    drop = [c for c in src_cfg["descriptor_columns"] if c in df.columns]
    df = df.drop(drop).rename(src_cfg["id_columns"])
    # identity columns lead in config order, whatever order the file uses
    ids = list(src_cfg["id_columns"].values())
    return df.select(ids + [c for c in df.columns if c not in ids])


def load_home_values(source: Source) -> pl.DataFrame:
    """
    Zip-level ZHVI, wide: region_id, state, region_type + one column per month-end.
    """
    df = _read_wide_csv(source, "home_values")
    logger.info(f"Loaded home values: {df.height:,} regions, {df.width - 3} months")
    return df


def load_inventory(source: Source) -> pl.DataFrame:
    """
    Metro-level for-sale inventory, wide: region_id, state + one column per month-end.
    Only metro rows are kept (the national row has no state).
    """
    df = _read_wide_csv(source, "inventory")
    keep = DATA_SOURCES["inventory"]["region_types"]
    before = df.height
    df = (
        df.filter(pl.col("region_type").str.to_lowercase().is_in(keep))
          .drop("region_type")
    )
    if before != df.height:
        logger.info(f"Inventory: dropped {before - df.height} non-metro rows")
    logger.info(f"Loaded inventory: {df.height:,} metros, {df.width - 2} months")
    return df


# =========================
# Wages
# =========================
class WageProvider(ABC):
    """Anything that can hand back the raw (string-typed) state wage table."""

    @abstractmethod
    def fetch_wage_table(self) -> pl.DataFrame:
        ...


class CsvWageProvider(WageProvider):
    """Wage table persisted as CSV (the reproducible source)."""

    def __init__(self, path: Source):
        self.path = path

    def fetch_wage_table(self) -> pl.DataFrame:
        df = pl.read_csv(read_source(self.path, "wages"), infer_schema_length=0)
        missing = [c for c in WAGE_COLUMNS if c not in df.columns]
        if missing:
            raise SourceUnavailable("wages", f"missing columns {missing} in {self.path}")
        return df.select(WAGE_COLUMNS)


class StaticWageProvider(WageProvider):
    def __init__(self, rows: List[Dict[str, str]]):
        self.rows = rows

    def fetch_wage_table(self) -> pl.DataFrame:
        return pl.DataFrame(
            {c: [r[c] for r in self.rows] for c in WAGE_COLUMNS},
            schema={c: pl.Utf8 for c in WAGE_COLUMNS},
        )


class BlsWageProvider(WageProvider):
    """
    Scrapes the BLS state average-weekly-wage table.

    Each body row is expected to carry the state name in a <th> and the
    four figures (Sep 2020, Sep 2021, net change, percent change) in <td>
    cells; `value_cells` picks which cells those are.
    """

    def __init__(self, url: str, cache_path: Optional[Source] = None,
                 table_id: Optional[str] = None, value_cells=(0, 1, 2, 3)):
        self.url = url
        self.cache_path = cache_path
        self.table_id = table_id
        self.value_cells = value_cells

    def fetch_wage_table(self) -> pl.DataFrame:
        logger.info(f"Scraping wage table from {self.url}")
        try:
            r = requests.get(self.url, headers=HEADERS, timeout=HTTP_TIMEOUT)
        except requests.RequestException as e:
            raise SourceUnavailable("wages", f"request to {self.url} failed: {e}") from e
        if r.status_code != 200:
            raise SourceUnavailable("wages", f"HTTP {r.status_code} from {self.url}")

        rows = parse_wage_html(r.text, self.table_id, self.value_cells)
        if not rows:
            raise SourceUnavailable("wages", f"no wage rows found at {self.url}")
        df = StaticWageProvider(rows).fetch_wage_table()

        if self.cache_path is not None:
            out = pathlib.Path(self.cache_path)
            out.parent.mkdir(parents=True, exist_ok=True)
            df.write_csv(out.as_posix())
            logger.info(f"Persisted scraped wage table -> {out}")
        return df


def parse_wage_html(html: str, table_id: Optional[str] = None, value_cells=(0, 1, 2, 3)) -> List[Dict[str, str]]:
    soup = BeautifulSoup(html, "html.parser")
    table = soup.find("table", id=table_id) if table_id else soup.find("table")
    if table is None:
        return []
    body = table.find("tbody") or table

    rows = []
    for tr in body.find_all("tr"):
        head = tr.find("th")
        cells = [td.get_text(strip=True) for td in tr.find_all("td")]
        if head is None or len(cells) <= max(value_cells):
            continue
        # strip footnote markers such as "California(1)"
        name = re.sub(r"\(\d+\)", "", head.get_text(strip=True)).strip()
        values = [cells[i] for i in value_cells]
        rows.append(dict(zip(WAGE_COLUMNS, [name] + values)))
    return rows


def load_wages(provider: WageProvider) -> pl.DataFrame:
    df = provider.fetch_wage_table()
    logger.info(f"Loaded wage table: {df.height} rows")
    return df


# =========================
# Mortgage rates
# =========================
def load_mortgage_rates(source: Source) -> pl.DataFrame:
    """
    Daily (or weekly) 30-year fixed rate series -> {date: Date, rate_30yr: Float64}.
    """
    src_cfg = DATA_SOURCES["mortgage_rates"]
    df = pd.read_csv(read_source(source, "mortgage_rates"), dtype=str, keep_default_na=False)

    dcol = _coalesce_first(df.columns.tolist(), src_cfg["date_candidates"])
    vcol = _coalesce_first(df.columns.tolist(), src_cfg["value_candidates"])
    if dcol is None or vcol is None:
        raise SourceUnavailable("mortgage_rates", f"unexpected columns: {df.columns.tolist()}")

    try:
        dates = pd.to_datetime(df[dcol], errors="raise")
    except (ValueError, TypeError) as e:
        raise MalformedDateColumn("mortgage_rates", f"cannot parse dates in '{dcol}': {e}") from e

    # FRED marks missing observations with '.'
    raw = df[vcol].str.strip().replace({".": "", "NA": ""})
    rates = pd.to_numeric(raw.where(raw != ""), errors="coerce")
    bad = rates.isna() & raw.ne("")
    if bad.any():
        i = bad.idxmax()
        raise MalformedNumericField("mortgage_rates", f"non-numeric rate in '{vcol}'",
                                    record={"date": df[dcol][i], vcol: df[vcol][i]})

    out = (
        pd.DataFrame({"date": dates.dt.normalize(), "rate_30yr": rates})
          .dropna(subset=["date", "rate_30yr"])
          .drop_duplicates(subset=["date"], keep="last")
          .sort_values("date")
    )
    pl_out = pl.from_pandas(out.reset_index(drop=True)).with_columns(
        pl.col("date").cast(pl.Date), pl.col("rate_30yr").cast(pl.Float64)
    )
    logger.info(f"Loaded mortgage rates: {pl_out.height:,} observations")
    return pl_out


def download_fred_series(
    dest: Source,
    series_id: str = FRED_SERIES["mortgage_rate"],
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> pathlib.Path:
    """
    Download a FRED series via the public CSV endpoint and persist it as a
    rate CSV (date, rate_30yr) that load_mortgage_rates() understands.
    """
    url = fred_url(series_id, start, end)
    logger.info(f"Downloading FRED {series_id} -> {url}")
    try:
        r = requests.get(url, timeout=HTTP_TIMEOUT)
    except requests.RequestException as e:
        raise SourceUnavailable("mortgage_rates", f"request to {url} failed: {e}") from e
    if r.status_code != 200:
        raise SourceUnavailable("mortgage_rates", f"HTTP {r.status_code} from {url}")

    df = pd.read_csv(io.StringIO(r.text))
    if "observation_date" not in df.columns or series_id not in df.columns:
        raise SourceUnavailable("mortgage_rates", f"Unexpected columns for {series_id}: {df.columns.tolist()}")
    df.rename(columns={"observation_date": "date", series_id: "rate_30yr"}, inplace=True)

    out = pathlib.Path(dest)
    out.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out, index=False)

    write_json(out.with_suffix(".json"), {
        "id": series_id,
        "url": url,
        "rows": int(df.shape[0]),
        "downloaded_at": dt.datetime.now(dt.timezone.utc).isoformat(),
        "csv": out.as_posix(),
    })
    logger.info(f"Saved {out.name} ({df.shape[0]} rows)")
    return out
