#!/usr/bin/env python3
"""
ETL Pipeline Orchestrator
Zillow home values + inventory, state wages and 30Y mortgage rates ->
per-state mortgage budget for Jan-2020 vs Mar-2022.

Usage:
  python etl_pipeline.py --home-values data/raw/zhvi_zip.csv \
      --inventory data/raw/inventory_metro.csv \
      --rates data/raw/mortgage_rates.csv --wages data/raw/wages.csv \
      --out data/gold
"""

import sys
import logging
import pathlib
import argparse
from dataclasses import asdict
from typing import Dict, Optional

import polars as pl

import etl_budget
import etl_export
import etl_extract
import etl_join
import etl_transform
from etl_config import QUALITY_CHECKS, SNAPSHOT_DATES, ETLConfig
from etl_errors import PipelineError

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
        datefmt="%H:%M:%S",
    )


def wage_provider_for(cfg: ETLConfig) -> etl_extract.WageProvider:
    if cfg.wages:
        return etl_extract.CsvWageProvider(cfg.wages)
    if cfg.wages_url:
        cache = pathlib.Path(cfg.out) / "wages_scraped.csv"
        return etl_extract.BlsWageProvider(cfg.wages_url, cache_path=cache)
    raise ValueError("Either a wage CSV (--wages) or a wage page URL (--wages-url) is required.")


def build_change_tables(home_long: pl.DataFrame, inventory_long: pl.DataFrame) -> Dict[str, pl.DataFrame]:
    start, end = SNAPSHOT_DATES["jan"], SNAPSHOT_DATES["mar"]

    home_snap = etl_transform.aggregate_by_state(home_long, "home_value", out_column="avg_value")
    inv_snap = etl_transform.aggregate_by_state(inventory_long, "inventory_level", out_column="avg_inventory")

    return {
        "home_value_change": etl_join.pair_snapshots(home_snap, "avg_value", start, end, stage="home_value_change"),
        "inventory_change": etl_join.pair_snapshots(inv_snap, "avg_inventory", start, end, stage="inventory_change"),
    }


def build_state_budget(
    home_value_change: pl.DataFrame,
    rates: pl.DataFrame,
    wages: pl.DataFrame,
    cfg: Optional[ETLConfig] = None,
) -> pl.DataFrame:
    expect = cfg.expect_rows if cfg else None

    joined = etl_join.attach_rates(home_value_change, rates, SNAPSHOT_DATES)
    joined = etl_join.drop_states_without_wage_data(joined)
    joined = etl_join.attach_state_names(joined)
    joined = etl_join.join_wages(joined, wages, expected=expect)

    if joined.height < QUALITY_CHECKS["warn_below_states"]:
        covered = set(joined["state"].to_list())
        missing = sorted(set(etl_join.STATE_NAMES) - etl_join.WAGELESS_STATES - covered)
        logger.warning(
            f"State budget covers {joined.height} states (< {QUALITY_CHECKS['warn_below_states']}); "
            f"missing: {missing}"
        )

    if cfg is not None:
        return etl_budget.compute_budget(joined, cfg.loan)
    return etl_budget.compute_budget(joined)


def run_pipeline(cfg: ETLConfig, wage_provider: Optional[etl_extract.WageProvider] = None,
                 export: bool = True) -> Dict[str, pl.DataFrame]:
    """
    Run every stage once. Returns the named tables (also written to cfg.out
    when `export` is set).
    """
    # Extract
    logger.info("Stage 1: Extract")
    if cfg.fetch_fred_rates:
        etl_extract.download_fred_series(cfg.rates)
    home_wide = etl_extract.load_home_values(cfg.home_values)
    inventory_wide = etl_extract.load_inventory(cfg.inventory)
    wages_raw = etl_extract.load_wages(wage_provider or wage_provider_for(cfg))
    rates = etl_extract.load_mortgage_rates(cfg.rates)

    # Transform
    logger.info("Stage 2: Transform")
    home_long = etl_transform.reshape_home_values(home_wide)
    inventory_long = etl_transform.reshape_inventory(inventory_wide)
    wages = etl_transform.parse_wage_table(wages_raw)
    changes = build_change_tables(home_long, inventory_long)

    # Gold
    logger.info("Stage 3: Join + budget")
    budget = build_state_budget(changes["home_value_change"], rates, wages, cfg)

    tables = {
        "home_values_long": home_long,
        "inventory_long": inventory_long,
        "wages": wages,
        "mortgage_rates": rates,
        **changes,
        "state_budget": budget,
    }
    if export:
        logger.info("Stage 4: Export")
        etl_export.export_tables(tables, cfg.out, cfg.formats)
    return tables


def parse_args(argv=None) -> ETLConfig:
    p = argparse.ArgumentParser(description="State housing budget ETL (Jan-2020 vs Mar-2022)")
    p.add_argument("--home-values", required=True, help="Zip-level home value wide CSV (path or URL)")
    p.add_argument("--inventory", required=True, help="Metro-level inventory wide CSV (path or URL)")
    p.add_argument("--rates", required=True, help="Daily 30Y mortgage rate CSV (path or URL)")
    p.add_argument("--wages", default=None, help="Persisted state wage CSV")
    p.add_argument("--wages-url", default=None, help="Wage table page to scrape when no CSV is given")
    p.add_argument("--out", default="data/gold", help="Output directory")
    p.add_argument("--format", dest="formats", action="append", choices=list(etl_export.SUPPORTED_FORMATS),
                   help="Output format (repeatable, default csv)")
    p.add_argument("--expect-rows", type=int, default=QUALITY_CHECKS["expected_final_rows"],
                   help="Fail unless the final table has exactly this many states")
    p.add_argument("--fetch-fred-rates", action="store_true",
                   help="Download MORTGAGE30US from FRED into --rates before loading")
    p.add_argument("--verbose", action="store_true")
    a = p.parse_args(argv)
    if not a.wages and not a.wages_url:
        p.error("one of --wages or --wages-url is required")

    setup_logging(a.verbose)
    return ETLConfig(
        home_values=a.home_values,
        inventory=a.inventory,
        rates=a.rates,
        wages=a.wages,
        wages_url=a.wages_url,
        out=a.out,
        formats=a.formats or ["csv"],
        expect_rows=a.expect_rows,
        fetch_fred_rates=a.fetch_fred_rates,
    )


def main(argv=None) -> int:
    cfg = parse_args(argv)
    logger.info(f"Config: {asdict(cfg)}")
    try:
        tables = run_pipeline(cfg)
    except PipelineError as e:
        logger.error(f"{e.stage} failed: {e}")
        return 1

    budget = tables["state_budget"]
    logger.info(f"ETL complete. {budget.height} states -> {cfg.out}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
