#!/usr/bin/env python3
"""
Join Module - Gold Layer
Pairs the two snapshot dates per state, attaches mortgage rates and
bridges 2-letter state codes to the full names used by the wage table.
"""

import logging
import datetime as dt
from typing import Dict, Iterable, Optional, Sequence

import polars as pl

from etl_config import SNAPSHOT_SUFFIXES
from etl_errors import JoinCardinalityMismatch, JoinYieldedEmpty

logger = logging.getLogger(__name__)

# 50 states + District of Columbia (no territories)
STATE_NAMES: Dict[str, str] = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas",
    "CA": "California", "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware",
    "DC": "District of Columbia", "FL": "Florida", "GA": "Georgia", "HI": "Hawaii",
    "ID": "Idaho", "IL": "Illinois", "IN": "Indiana", "IA": "Iowa",
    "KS": "Kansas", "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine",
    "MD": "Maryland", "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota",
    "MS": "Mississippi", "MO": "Missouri", "MT": "Montana", "NE": "Nebraska",
    "NV": "Nevada", "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico",
    "NY": "New York", "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio",
    "OK": "Oklahoma", "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island",
    "SC": "South Carolina", "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas",
    "UT": "Utah", "VT": "Vermont", "VA": "Virginia", "WA": "Washington",
    "WV": "West Virginia", "WI": "Wisconsin", "WY": "Wyoming",
}

# The wage source publishes no figure for these codes.
WAGELESS_STATES = frozenset({"DC"})


# =========================
# Quality checks
# =========================
def check_cardinality(
    frame: pl.DataFrame,
    stage: str,
    expected: Optional[int] = None,
    key: Optional[str] = "state",
) -> pl.DataFrame:
    """Fail loudly on empty joins, unexpected row counts and key fan-out."""
    n = frame.height
    if n == 0:
        raise JoinYieldedEmpty(stage, "join produced no rows; check key formats on both sides")
    if key is not None and key in frame.columns:
        dupes = frame.filter(pl.col(key).is_duplicated())[key].unique().sort().to_list()
        if dupes:
            raise JoinCardinalityMismatch(stage, f"key '{key}' repeats after join: {dupes}")
    if expected is not None and n != expected:
        raise JoinCardinalityMismatch(stage, f"expected {expected} rows, got {n}")
    logger.info(f"{stage}: {n} rows")
    return frame


# =========================
# Snapshot pairing
# =========================
def pair_snapshots(
    snapshots: pl.DataFrame,
    value_column: str,
    start: dt.date,
    end: dt.date,
    suffixes: Sequence[str] = SNAPSHOT_SUFFIXES,
    stage: Optional[str] = None,
) -> pl.DataFrame:
    """
    Inner-join the `start` and `end` snapshots on state and derive
    percent_change = (end - start) / start * 100.
    """
    stage = stage or f"pair_{value_column}"
    first, last = (f"{value_column}{s}" for s in suffixes)

    left = snapshots.filter(pl.col("date") == start).select("state", pl.col(value_column).alias(first))
    right = snapshots.filter(pl.col("date") == end).select("state", pl.col(value_column).alias(last))
    if left.height == 0:
        raise JoinYieldedEmpty(stage, f"no {value_column} snapshot for {start}")
    if right.height == 0:
        raise JoinYieldedEmpty(stage, f"no {value_column} snapshot for {end}")

    unmatched = sorted(set(left["state"].to_list()) ^ set(right["state"].to_list()))
    if unmatched:
        logger.warning(f"{stage}: dropping states missing one snapshot: {unmatched}")

    paired = left.join(right, on="state", how="inner")

    # percent change is undefined for a non-positive baseline
    bad_base = paired.filter(pl.col(first) <= 0)["state"].sort().to_list()
    if bad_base:
        logger.warning(f"{stage}: dropping states with non-positive {first}: {bad_base}")
        paired = paired.filter(pl.col(first) > 0)

    paired = (
        paired.with_columns((((pl.col(last) - pl.col(first)) / pl.col(first)) * 100).alias("percent_change"))
            .sort("state")
    )
    return check_cardinality(paired, stage)


# =========================
# Mortgage rates
# =========================
def rate_on_or_before(rates: pl.DataFrame, target: dt.date) -> Optional[float]:
    """Most recent published rate on or before `target` (None if the series starts later)."""
    prior = rates.filter(pl.col("date") <= target).sort("date")
    if prior.height == 0:
        return None
    return prior["rate_30yr"][-1]


def backfill_rates_for_dates(rates: pl.DataFrame, targets: Iterable[dt.date]) -> pl.DataFrame:
    """
    Gap policy: a lookup date with no published rate gets a synthesized
    record carrying the most recent prior rate. (2020-01-31 has no native
    record; the prior close is 3.51.)
    """
    base = rates.select(pl.col("date").cast(pl.Date), pl.col("rate_30yr").cast(pl.Float64))
    have = set(base["date"].to_list())

    synth = []
    for target in targets:
        if target in have:
            continue
        value = rate_on_or_before(base, target)
        if value is None:
            raise JoinYieldedEmpty("mortgage_rates", f"no rate on or before {target}")
        logger.info(f"No rate published for {target}; using {value:.2f} from the most recent prior date")
        synth.append({"date": target, "rate_30yr": value})

    if not synth:
        return base
    filled = pl.DataFrame(synth, schema={"date": pl.Date, "rate_30yr": pl.Float64})
    return pl.concat([base, filled]).sort("date")


def attach_rates(change: pl.DataFrame, rates: pl.DataFrame, dates: Dict[str, dt.date]) -> pl.DataFrame:
    """
    Left-join the rate series once per snapshot (exact date match after
    backfill), adding date_<label> and rate_<label> columns.
    """
    rates = backfill_rates_for_dates(rates, dates.values())
    out = change
    for label, target in dates.items():
        date_col, rate_col = f"date_{label}", f"rate_{label}"
        lookup = rates.select(pl.col("date").alias(date_col), pl.col("rate_30yr").alias(rate_col))
        out = (
            out.with_columns(pl.lit(target, dtype=pl.Date).alias(date_col))
               .join(lookup, on=date_col, how="left")
        )
    return check_cardinality(out.sort("state"), "attach_rates", expected=change.height)


# =========================
# State bridging
# =========================
def state_lookup() -> pl.DataFrame:
    return pl.DataFrame({"state": list(STATE_NAMES.keys()), "state_name": list(STATE_NAMES.values())})


def drop_states_without_wage_data(change: pl.DataFrame) -> pl.DataFrame:
    """Remove codes the wage source never covers (D.C.)."""
    dropped = change.filter(pl.col("state").is_in(list(WAGELESS_STATES)))
    if dropped.height:
        logger.info(f"Excluding states with no wage data: {dropped['state'].to_list()}")
    return change.filter(~pl.col("state").is_in(list(WAGELESS_STATES)))


def attach_state_names(change: pl.DataFrame) -> pl.DataFrame:
    lookup = state_lookup()
    unknown = change.join(lookup, on="state", how="anti")
    if unknown.height:
        logger.warning(f"Dropping unknown state codes: {unknown['state'].to_list()}")
    return change.join(lookup, on="state", how="inner")


def join_wages(change: pl.DataFrame, wages: pl.DataFrame, expected: Optional[int] = None) -> pl.DataFrame:
    """Inner join on full state name; states missing a wage row are excluded."""
    missing = change.join(wages, on="state_name", how="anti")
    if missing.height:
        logger.warning(f"No wage row for: {missing['state_name'].to_list()}")
    joined = change.join(wages, on="state_name", how="inner").sort("state")
    return check_cardinality(joined, "join_wages", expected=expected)
