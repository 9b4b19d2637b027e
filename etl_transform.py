#!/usr/bin/env python3
"""
Transform Module - Silver Layer
Wide -> long reshaping, state-level aggregation and wage-table parsing.
"""

import re
import logging
import datetime as dt
from typing import Dict, List, Optional, Sequence

import polars as pl

from etl_config import DATA_SOURCES
from etl_errors import JoinCardinalityMismatch, MalformedDateColumn, MalformedNumericField

logger = logging.getLogger(__name__)

HOME_VALUE_ID_COLUMNS = ["region_id", "state", "region_type"]
INVENTORY_ID_COLUMNS = ["region_id", "state"]

CURRENCY_RE = re.compile(r"^(?P<s1>[-+]?)\$?(?P<s2>[-+]?)(?P<num>\d[\d,]*(?:\.\d+)?)$")
PERCENT_RE = re.compile(r"^(?P<num>[-+]?\d+(?:\.\d+)?)\s*%$")


# =========================
# Reshaper
# =========================
def parse_date_column(header: str, stage: str = "reshape") -> dt.date:
    try:
        return dt.datetime.strptime(header.strip(), "%Y-%m-%d").date()
    except ValueError as e:
        raise MalformedDateColumn(stage, f"column header '{header}' is not YYYY-MM-DD") from e


def reshape_wide_to_long(
    table: pl.DataFrame,
    id_columns: Sequence[str],
    date_columns: Optional[Sequence[str]] = None,
    value_name: str = "value",
    stage: str = "reshape",
) -> pl.DataFrame:
    """
    One output row per (id..., date) where the wide cell is non-null.

    Every column outside `id_columns` (or the explicit `date_columns`) must be
    a YYYY-MM-DD header; null cells are sparse coverage and are dropped.
    """
    id_columns = list(id_columns)
    if date_columns is None:
        date_columns = [c for c in table.columns if c not in id_columns]
    date_columns = list(date_columns)
    for c in date_columns:
        parse_date_column(c, stage)

    if not date_columns:
        return table.select(id_columns).clear().with_columns(
            pl.lit(None, dtype=pl.Date).alias("date"),
            pl.lit(None, dtype=pl.Float64).alias(value_name),
        )

    casts = []
    for c in date_columns:
        casts.append(pl.col(c).cast(pl.Float64))
    try:
        values = table.select([pl.col(c) for c in id_columns] + casts)
    except (pl.exceptions.InvalidOperationError, pl.exceptions.ComputeError) as e:
        raise MalformedNumericField(stage, f"non-numeric value in a date column: {e}") from e

    long = (
        values.unpivot(index=id_columns, on=date_columns, variable_name="_header", value_name=value_name)
              .drop_nulls(value_name)
              .filter(pl.col(value_name).is_not_nan())
              .with_columns(pl.col("_header").str.strip_chars().str.to_date("%Y-%m-%d").alias("date"))
              .select(id_columns + ["date", value_name])
    )
    return long


def reshape_home_values(wide: pl.DataFrame) -> pl.DataFrame:
    """HomeValueRecord rows: region_id, state, region_type, date, home_value."""
    long = reshape_wide_to_long(
        wide, HOME_VALUE_ID_COLUMNS,
        value_name=DATA_SOURCES["home_values"]["value_name"],
        stage="home_values",
    )
    logger.info(f"Home values long: {long.height:,} rows")
    return long


def reshape_inventory(wide: pl.DataFrame) -> pl.DataFrame:
    """InventoryRecord rows: region_id, state, date, inventory_level (integer count)."""
    value_name = DATA_SOURCES["inventory"]["value_name"]
    long = reshape_wide_to_long(wide, INVENTORY_ID_COLUMNS, value_name=value_name, stage="inventory")
    long = long.with_columns(pl.col(value_name).round(0).cast(pl.Int64))
    logger.info(f"Inventory long: {long.height:,} rows")
    return long


# =========================
# Aggregator
# =========================
def aggregate_by_state(
    long_table: pl.DataFrame,
    value_column: str,
    group_keys: Sequence[str] = ("state", "date"),
    out_column: Optional[str] = None,
) -> pl.DataFrame:
    """
    Mean of `value_column` per (state, date); exactly one row per group.
    Duplicate rows are collapsed first. Groups with no records are absent.
    """
    keys = list(group_keys)
    out_column = out_column or f"avg_{value_column}"

    deduped = long_table.unique()
    if deduped.height != long_table.height:
        logger.info(f"Aggregate: collapsed {long_table.height - deduped.height} duplicate rows")

    null_keys = deduped.filter(pl.any_horizontal([pl.col(k).is_null() for k in keys])).height
    if null_keys:
        logger.warning(f"Aggregate: dropping {null_keys} rows with null {keys}")

    return (
        deduped.drop_nulls(keys)
               .group_by(keys)
               .agg(pl.col(value_column).cast(pl.Float64).mean().alias(out_column))
               .sort(keys)
    )


# =========================
# Wages
# =========================
def parse_currency(text: Optional[str], field: str, state: str) -> float:
    m = CURRENCY_RE.match((text or "").strip())
    if m is None:
        raise MalformedNumericField("wages", f"'{field}' is not a currency amount", record={"state": state, field: text})
    value = float(m.group("num").replace(",", ""))
    return -value if "-" in (m.group("s1"), m.group("s2")) else value


def parse_percent(text: Optional[str], field: str, state: str) -> float:
    m = PERCENT_RE.match((text or "").strip())
    if m is None:
        raise MalformedNumericField("wages", f"'{field}' is not a percentage like NN.N%", record={"state": state, field: text})
    return float(m.group("num"))


def parse_wage_table(raw: pl.DataFrame) -> pl.DataFrame:
    """
    Raw string wage table -> WageRecord rows with numeric fields and
    annual wages (weekly x 52).
    """
    weeks = DATA_SOURCES["wages"]["weeks_per_year"]
    rows: List[Dict[str, object]] = []
    for r in raw.iter_rows(named=True):
        state = (r["state_name"] or "").strip()
        w2020 = parse_currency(r["sep_2020_avg_weekly_wage"], "sep_2020_avg_weekly_wage", state)
        w2021 = parse_currency(r["sep_2021_avg_weekly_wage"], "sep_2021_avg_weekly_wage", state)
        rows.append({
            "state_name": state,
            "pct_change": parse_percent(r["pct_change"], "pct_change", state),
            "sep_2020_avg_weekly_wage": w2020,
            "sep_2021_avg_weekly_wage": w2021,
            "net_change": parse_currency(r["net_change"], "net_change", state),
            "annual_2020_wages": w2020 * weeks,
            "annual_2021_wages": w2021 * weeks,
        })

    wages = pl.DataFrame(rows, schema={
        "state_name": pl.Utf8,
        "pct_change": pl.Float64,
        "sep_2020_avg_weekly_wage": pl.Float64,
        "sep_2021_avg_weekly_wage": pl.Float64,
        "net_change": pl.Float64,
        "annual_2020_wages": pl.Float64,
        "annual_2021_wages": pl.Float64,
    })

    dupes = wages.filter(pl.col("state_name").is_duplicated())["state_name"].unique().to_list()
    if dupes:
        raise JoinCardinalityMismatch("wages", f"state names appear more than once: {sorted(dupes)}")
    logger.info(f"Parsed wage table: {wages.height} states")
    return wages
