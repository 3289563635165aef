"""
Fiscal calendar helpers.

A fiscal year is named after the calendar year in which it starts.  With the
default start month of 1 the fiscal year and period are simply the calendar
year and month of the transaction date.
"""

from datetime import date


def fiscal_year_and_period(
    transaction_date: date, fiscal_year_start_month: int = 1,
) -> tuple[int, int]:
    """
    Derive (fiscal_year, fiscal_period) for a transaction date.

    Periods are months numbered 1..12 from the start month.

    Raises:
        ValueError: If fiscal_year_start_month is outside 1..12.
    """
    if not 1 <= fiscal_year_start_month <= 12:
        raise ValueError(
            f"fiscal_year_start_month must be 1..12, got {fiscal_year_start_month}"
        )
    if transaction_date.month >= fiscal_year_start_month:
        year = transaction_date.year
    else:
        year = transaction_date.year - 1
    period = (transaction_date.month - fiscal_year_start_month) % 12 + 1
    return year, period
