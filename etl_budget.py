#!/usr/bin/env python3
"""
Budget Module - Gold Layer
Mortgage payment per state at each snapshot and its share of annual wages.
"""

import logging
from typing import List, Union

import numpy as np
import numpy_financial as npf
import polars as pl

from etl_config import LOAN_TERMS, WAGE_YEAR_FOR_SNAPSHOT, LoanTerms

logger = logging.getLogger(__name__)

ArrayLike = Union[float, np.ndarray]

BUDGET_COLUMNS: List[str] = [
    "state", "state_name",
    "avg_value_jan", "avg_value_mar", "percent_change",
    "date_jan", "rate_jan", "date_mar", "rate_mar",
    "pct_change", "sep_2020_avg_weekly_wage", "sep_2021_avg_weekly_wage", "net_change",
    "annual_2020_wages", "annual_2021_wages",
    "loan_amount_jan", "loan_amount_mar",
    "monthly_payment_jan", "monthly_payment_mar", "payment_difference",
    "mortgage_pct_of_wages_jan", "mortgage_pct_of_wages_mar", "budget_change",
]


def monthly_rate(rate_percent: ArrayLike) -> ArrayLike:
    return (np.asarray(rate_percent, dtype=float) / 100) / 12


def amortized_payment(monthly_rate: ArrayLike, periods: int, principal: ArrayLike) -> ArrayLike:
    """
    Fixed payment retiring `principal` over `periods` months, signed as a
    cash outflow (negative), same convention as a spreadsheet PMT.
    A zero rate reduces to -principal / periods.
    """
    rate = np.asarray(monthly_rate, dtype=float)
    principal = np.asarray(principal, dtype=float)
    zero = rate == 0
    payment = npf.pmt(np.where(zero, 1.0, rate), periods, principal)
    payment = np.where(zero, -principal / periods, payment)
    return float(payment) if payment.ndim == 0 else payment


def compute_budget(joined: pl.DataFrame, terms: LoanTerms = LOAN_TERMS) -> pl.DataFrame:
    """
    Add loan, payment and payment-to-wage columns for both snapshots.

    Payments are stored as positive magnitudes, so
    payment_difference = payment_mar - payment_jan is positive when the
    March 2022 buyer pays more. Jan pairs with 2020 wages, Mar with 2021.
    """
    derived = {}
    for label, wage_col in WAGE_YEAR_FOR_SNAPSHOT.items():
        value = joined[f"avg_value_{label}"].to_numpy()
        rate = joined[f"rate_{label}"].to_numpy()
        wages = joined[wage_col].to_numpy()

        loan = value * (1 - terms.down_payment_fraction)
        payment = np.abs(amortized_payment(monthly_rate(rate), terms.periods, loan))

        derived[f"loan_amount_{label}"] = loan
        derived[f"monthly_payment_{label}"] = payment
        derived[f"mortgage_pct_of_wages_{label}"] = payment * 12 / wages * 100

    budget = (
        joined.with_columns([pl.Series(name, values, dtype=pl.Float64) for name, values in derived.items()])
              .with_columns(
                  (pl.col("monthly_payment_mar") - pl.col("monthly_payment_jan")).alias("payment_difference"),
                  (pl.col("mortgage_pct_of_wages_mar") - pl.col("mortgage_pct_of_wages_jan")).alias("budget_change"),
              )
    )
    logger.info(f"Budget computed for {budget.height} states")
    return budget.select(BUDGET_COLUMNS)
