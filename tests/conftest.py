"""
Pytest fixtures for the ledger engine test suite.

Provides:
- A fresh SQLite file database per test (tmp_path), created through the
  same engine module production code uses
- A ``session`` for single-unit-of-work service tests
- Seeded accounts for two companies
- A DeterministicClock and request builders

SQLite connections take the write lock at BEGIN, so a test that drives the
batch executor or spawns threads must not hold ``session`` open at the same
time.  Such tests read through ``session_scope(session_factory)`` instead.
"""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from types import SimpleNamespace
from uuid import uuid4

import pytest

from ledger_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.dtos import (
    AccountStatus,
    AccountType,
    CreateTransactionRequest,
    EntryRequest,
    TransactionType,
)
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ledger_kernel.models.account import Account
from ledger_kernel.services.transaction_service import TransactionService


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture ledger_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service):
            service.create(...)
            logs = captured_logs()
            assert any(r["event"] == "transaction_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ledger_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine(tmp_path):
    engine = init_engine_from_url(f"sqlite:///{tmp_path / 'ledger.db'}")
    create_tables()
    yield engine
    reset_engine()


@pytest.fixture
def session_factory(engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


# =============================================================================
# Identity and time
# =============================================================================


@pytest.fixture
def company_id():
    return uuid4()


@pytest.fixture
def other_company_id():
    return uuid4()


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def clock():
    return DeterministicClock()


# =============================================================================
# Accounts
# =============================================================================


def _account(company_id, user_id, code, name, account_type, **kwargs):
    return Account(
        company_id=company_id,
        code=code,
        name=name,
        account_type=account_type,
        currency="INR",
        created_by_id=user_id,
        **kwargs,
    )


@pytest.fixture
def accounts(session_factory, company_id, other_company_id, user_id):
    """
    Committed accounts.  Returns a namespace of account ids:
    cash, bank (assets), revenue, expense, payable (liability),
    inactive (asset), header (asset, not postable), foreign (other company).
    """
    with session_scope(session_factory) as s:
        rows = {
            "cash": _account(company_id, user_id, "1000", "Cash", AccountType.ASSET),
            "bank": _account(company_id, user_id, "1100", "Bank", AccountType.ASSET),
            "header": _account(
                company_id, user_id, "1900", "Current Assets", AccountType.ASSET,
                allow_direct_transactions=False,
            ),
            "payable": _account(company_id, user_id, "2000", "Payables", AccountType.LIABILITY),
            "revenue": _account(company_id, user_id, "4000", "Sales", AccountType.REVENUE),
            "expense": _account(company_id, user_id, "5000", "Rent", AccountType.EXPENSE),
            "inactive": _account(
                company_id, user_id, "1999", "Old Petty Cash", AccountType.ASSET,
                status=AccountStatus.INACTIVE,
            ),
            "foreign": _account(other_company_id, user_id, "1000", "Cash", AccountType.ASSET),
        }
        s.add_all(rows.values())
        s.flush()
        ids = {name: account.id for name, account in rows.items()}
    return SimpleNamespace(**ids)


# =============================================================================
# Requests and services
# =============================================================================


def _make_request(
    debit_account,
    credit_account,
    amount="100.00",
    transaction_date=date(2024, 1, 15),
    transaction_type=TransactionType.JOURNAL_ENTRY,
    **kwargs,
) -> CreateTransactionRequest:
    """Two-line balanced request: debit one account, credit another."""
    return CreateTransactionRequest(
        transaction_type=transaction_type,
        transaction_date=transaction_date,
        entries=(
            EntryRequest(account_id=debit_account, debit_amount=Decimal(amount)),
            EntryRequest(account_id=credit_account, credit_amount=Decimal(amount)),
        ),
        **kwargs,
    )


@pytest.fixture
def make_request():
    return _make_request


@pytest.fixture
def service(session, clock, accounts):
    return TransactionService(session, clock=clock)
