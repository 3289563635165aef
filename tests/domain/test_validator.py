"""
Tests for ledger_kernel.domain.validation.TransactionValidator.

The validator is pure apart from the injected account lookup, so these tests
use an in-memory lookup instead of a database.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from ledger_kernel.domain.dtos import (
    AccountRef,
    AccountStatus,
    EntryRequest,
    NormalBalance,
)
from ledger_kernel.domain.validation import TransactionValidator
from ledger_kernel.exceptions import LedgerStorageError

COMPANY = uuid4()


def _ref(account_id, allow_direct=True, status=AccountStatus.ACTIVE):
    return AccountRef(
        id=account_id,
        company_id=COMPANY,
        code="X",
        allow_direct_transactions=allow_direct,
        status=status,
        normal_balance=NormalBalance.DEBIT,
    )


class Directory:
    """Dict-backed account lookup that records how often it is called."""

    def __init__(self, *refs):
        self.refs = {r.id: r for r in refs}
        self.calls = 0

    def __call__(self, company_id, account_ids):
        self.calls += 1
        return {i: self.refs[i] for i in account_ids if i in self.refs}


@pytest.fixture
def a():
    return uuid4()


@pytest.fixture
def b():
    return uuid4()


@pytest.fixture
def validator(a, b):
    return TransactionValidator(Directory(_ref(a), _ref(b)))


def debit(account, amount):
    return EntryRequest(account_id=account, debit_amount=Decimal(amount))


def credit(account, amount):
    return EntryRequest(account_id=account, credit_amount=Decimal(amount))


class TestBalancedEntries:

    def test_balanced_pair_is_valid(self, validator, a, b):
        result = validator.validate([debit(a, "100"), credit(b, "100")], COMPANY)
        assert result.is_valid
        assert result.errors == ()
        assert result.warnings == ()

    def test_unbalanced_reports_totals(self, validator, a, b):
        result = validator.validate([debit(a, "100"), credit(b, "90")], COMPANY)

        assert result.error_codes() == ["UNBALANCED_ENTRIES"]
        value = result.errors[0].value
        assert value["total_debits"] == Decimal("100")
        assert value["total_credits"] == Decimal("90")
        assert value["difference"] == Decimal("10")

    def test_decimal_sums_are_exact(self, validator, a, b):
        entries = [debit(a, "0.10"), debit(a, "0.20"), credit(b, "0.30")]
        assert validator.validate(entries, COMPANY).is_valid


class TestEntryCount:

    def test_single_entry_rejected(self, validator, a):
        result = validator.validate([debit(a, "100")], COMPANY)
        assert "MIN_ENTRIES_REQUIRED" in result.error_codes()

    def test_no_entries_rejected_without_lookup(self, a, b):
        directory = Directory(_ref(a), _ref(b))
        result = TransactionValidator(directory).validate([], COMPANY)

        assert result.error_codes() == ["MIN_ENTRIES_REQUIRED"]
        assert directory.calls == 0


class TestAmounts:

    def test_negative_amount(self, validator, a, b):
        result = validator.validate([debit(a, "-5"), credit(b, "-5")], COMPANY)
        assert result.error_codes().count("NEGATIVE_AMOUNT") == 2

    def test_both_sides(self, validator, a, b):
        both = EntryRequest(account_id=a, debit_amount=Decimal("5"), credit_amount=Decimal("5"))
        result = validator.validate([both, credit(b, "0.01"), debit(b, "0.01")], COMPANY)

        assert "BOTH_DEBIT_CREDIT" in result.error_codes()
        assert result.errors[0].field == "entries[0]"

    def test_zero_line(self, validator, a, b):
        result = validator.validate(
            [EntryRequest(account_id=a), debit(a, "1"), credit(b, "1")], COMPANY,
        )
        assert result.error_codes() == ["NO_AMOUNT"]


class TestAccounts:

    def test_unknown_account(self, validator, a):
        stranger = uuid4()
        result = validator.validate([debit(a, "1"), credit(stranger, "1")], COMPANY)

        assert result.error_codes() == ["ACCOUNT_NOT_FOUND"]
        assert result.errors[0].field == "entries[1].account_id"

    def test_header_account(self, a, b):
        validator = TransactionValidator(Directory(_ref(a), _ref(b, allow_direct=False)))
        result = validator.validate([debit(a, "1"), credit(b, "1")], COMPANY)
        assert result.error_codes() == ["ACCOUNT_NO_DIRECT_TRANSACTIONS"]

    @pytest.mark.parametrize("status", [AccountStatus.INACTIVE, AccountStatus.ARCHIVED])
    def test_non_active_account(self, a, b, status):
        validator = TransactionValidator(Directory(_ref(a), _ref(b, status=status)))
        result = validator.validate([debit(a, "1"), credit(b, "1")], COMPANY)
        assert result.error_codes() == ["ACCOUNT_INACTIVE"]

    def test_lookup_is_batched(self, a, b):
        directory = Directory(_ref(a), _ref(b))
        entries = [debit(a, "1"), debit(a, "1"), credit(b, "1"), credit(b, "1")]
        TransactionValidator(directory).validate(entries, COMPANY)
        assert directory.calls == 1

    def test_storage_failure_is_reported_per_entry(self, a, b):
        def broken(company_id, account_ids):
            raise LedgerStorageError("account_lookup", "connection reset")

        result = TransactionValidator(broken).validate([debit(a, "1"), credit(b, "1")], COMPANY)

        assert result.error_codes() == ["ACCOUNT_VALIDATION_ERROR"] * 2


class TestErrorsAreCollected:

    def test_all_problems_reported_together(self, validator, a):
        stranger = uuid4()
        result = validator.validate([debit(a, "-1"), credit(stranger, "3")], COMPANY)

        assert set(result.error_codes()) == {
            "NEGATIVE_AMOUNT",
            "ACCOUNT_NOT_FOUND",
            "UNBALANCED_ENTRIES",
        }


class TestWarnings:

    def test_large_amount_warns_but_stays_valid(self, validator, a, b):
        result = validator.validate([debit(a, "1000000.01"), credit(b, "1000000.01")], COMPANY)

        assert result.is_valid
        assert [w.code for w in result.warnings] == ["LARGE_AMOUNT"]

    def test_threshold_is_exclusive(self, validator, a, b):
        result = validator.validate([debit(a, "1000000"), credit(b, "1000000")], COMPANY)
        assert result.warnings == ()

    def test_threshold_is_configurable(self, a, b):
        validator = TransactionValidator(
            Directory(_ref(a), _ref(b)), large_amount_threshold=Decimal("50"),
        )
        result = validator.validate([debit(a, "51"), credit(b, "51")], COMPANY)
        assert [w.code for w in result.warnings] == ["LARGE_AMOUNT"]


amounts = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("999999.99"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


class TestBalanceProperty:

    @settings(max_examples=75, deadline=None)
    @given(debits=st.lists(amounts, min_size=1, max_size=6), credit_lines=st.integers(1, 4))
    def test_valid_iff_debits_equal_credits(self, debits, credit_lines):
        a, b = uuid4(), uuid4()
        validator = TransactionValidator(
            Directory(_ref(a), _ref(b)), large_amount_threshold=Decimal("1e12"),
        )
        total = sum(debits)
        share = (total / credit_lines).quantize(Decimal("0.01"))
        credits = [share] * (credit_lines - 1) + [total - share * (credit_lines - 1)]
        if share <= 0 or credits[-1] <= 0:
            credits = [total]

        entries = [debit(a, d) for d in debits] + [credit(b, c) for c in credits]
        assert validator.validate(entries, COMPANY).is_valid

        skewed = entries[:-1] + [credit(b, credits[-1] + Decimal("0.01"))]
        result = validator.validate(skewed, COMPANY)
        assert result.error_codes() == ["UNBALANCED_ENTRIES"]
