"""
LedgerSettings schema.

Operational tunables for the ledger engine.  Parsed from YAML by the
loader; every field has a default so an empty file is a valid config.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class LedgerSettings:
    """Runtime settings shared by services, batch and API layers."""

    default_currency: str = "INR"
    fiscal_year_start_month: int = 1  # 1 = January
    large_amount_threshold: Decimal = Decimal("1000000")
    reconciliation_window_days: int = 30
    match_confidence: Decimal = Decimal("0.8")
    batch_max_workers: int = 1  # 1 = sequential, one transaction per item
    default_page_size: int = 20
    max_page_size: int = 100
    database_url: str = "sqlite:///ledger.db"
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    echo: bool = False
