"""
TransactionValidator -- double-entry and account-usability rules.

Responsibility:
    Given a candidate set of entries and a read-only account lookup,
    produce a ValidationResult.  Every rule runs; errors are collected in
    order rather than short-circuited so a client sees all problems at once.

Architecture position:
    Kernel > Domain -- pure.  The only I/O is the injected ``account_lookup``
    callable, which the service layer backs with a single batched query.

Rules, in order:
    1. At least two entries                  MIN_ENTRIES_REQUIRED
    2. Per entry, non-negative amounts        NEGATIVE_AMOUNT
       and exactly one side set               BOTH_DEBIT_CREDIT / NO_AMOUNT
    3. Per entry, usable account              ACCOUNT_NOT_FOUND /
                                              ACCOUNT_NO_DIRECT_TRANSACTIONS /
                                              ACCOUNT_INACTIVE /
                                              ACCOUNT_VALIDATION_ERROR
    4. Sum of debits equals sum of credits    UNBALANCED_ENTRIES
    5. Warning above the large-amount limit   LARGE_AMOUNT

Invariants enforced:
    - Totals are Decimal sums with zero tolerance.  The unbalanced check can
      never be disabled or downgraded to a warning.
"""

from __future__ import annotations

from collections.abc import Callable, Collection, Mapping, Sequence
from decimal import Decimal
from uuid import UUID

from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.dtos import (
    AccountRef,
    AccountStatus,
    EntryRequest,
    ValidationError,
    ValidationResult,
    ValidationWarning,
)
from ledger_kernel.exceptions import LedgerStorageError
from ledger_kernel.logging_config import get_logger

logger = get_logger("domain.validation")

AccountLookup = Callable[[UUID, Collection[UUID]], Mapping[UUID, AccountRef]]

DEFAULT_LARGE_AMOUNT_THRESHOLD = Decimal("1000000")


class TransactionValidator:
    """Validates entries against double-entry rules and the account directory."""

    def __init__(
        self,
        account_lookup: AccountLookup,
        large_amount_threshold: Decimal = DEFAULT_LARGE_AMOUNT_THRESHOLD,
    ):
        self._account_lookup = account_lookup
        self._large_amount_threshold = large_amount_threshold

    def validate(
        self, entries: Sequence[EntryRequest], company_id: UUID,
    ) -> ValidationResult:
        errors: list[ValidationError] = []
        warnings: list[ValidationWarning] = []

        if len(entries) < 2:
            errors.append(
                ValidationError(
                    field="entries",
                    message="A transaction requires at least two entries",
                    code="MIN_ENTRIES_REQUIRED",
                    value=len(entries),
                )
            )

        accounts, lookup_failed = self._load_accounts(entries, company_id)

        total_debits = ZERO
        total_credits = ZERO

        for index, entry in enumerate(entries):
            errors.extend(self._check_amounts(index, entry))
            errors.extend(self._check_account(index, entry, accounts, lookup_failed))
            total_debits += entry.debit_amount
            total_credits += entry.credit_amount

        if total_debits != total_credits:
            errors.append(
                ValidationError(
                    field="entries",
                    message=(
                        f"Total debits ({total_debits}) must equal "
                        f"total credits ({total_credits})"
                    ),
                    code="UNBALANCED_ENTRIES",
                    value={
                        "total_debits": total_debits,
                        "total_credits": total_credits,
                        "difference": total_debits - total_credits,
                    },
                )
            )

        if total_debits > self._large_amount_threshold:
            warnings.append(
                ValidationWarning(
                    field="entries",
                    message=(
                        f"Transaction total {total_debits} exceeds "
                        f"{self._large_amount_threshold}; review recommended"
                    ),
                    code="LARGE_AMOUNT",
                    value=total_debits,
                )
            )

        result = ValidationResult(errors=tuple(errors), warnings=tuple(warnings))
        if not result.is_valid:
            logger.info(
                "transaction_validation_failed",
                extra={"validation": result, "entry_count": len(entries)},
            )
        return result

    def _load_accounts(
        self, entries: Sequence[EntryRequest], company_id: UUID,
    ) -> tuple[Mapping[UUID, AccountRef], bool]:
        account_ids = {e.account_id for e in entries if e.account_id is not None}
        if not account_ids:
            return {}, False
        try:
            return self._account_lookup(company_id, account_ids), False
        except LedgerStorageError:
            logger.warning("account_lookup_failed", exc_info=True)
            return {}, True

    @staticmethod
    def _check_amounts(index: int, entry: EntryRequest) -> list[ValidationError]:
        field = f"entries[{index}]"
        debit, credit = entry.debit_amount, entry.credit_amount

        if debit < ZERO or credit < ZERO:
            return [
                ValidationError(
                    field=field,
                    message="Debit and credit amounts cannot be negative",
                    code="NEGATIVE_AMOUNT",
                    value={"debit_amount": debit, "credit_amount": credit},
                )
            ]
        if debit > ZERO and credit > ZERO:
            return [
                ValidationError(
                    field=field,
                    message="Entry cannot have both debit and credit amounts",
                    code="BOTH_DEBIT_CREDIT",
                    value={"debit_amount": debit, "credit_amount": credit},
                )
            ]
        if debit == ZERO and credit == ZERO:
            return [
                ValidationError(
                    field=field,
                    message="Entry must have either a debit or a credit amount",
                    code="NO_AMOUNT",
                    value={"debit_amount": debit, "credit_amount": credit},
                )
            ]
        return []

    @staticmethod
    def _check_account(
        index: int,
        entry: EntryRequest,
        accounts: Mapping[UUID, AccountRef],
        lookup_failed: bool,
    ) -> list[ValidationError]:
        field = f"entries[{index}].account_id"

        if lookup_failed:
            return [
                ValidationError(
                    field=field,
                    message="Account could not be validated",
                    code="ACCOUNT_VALIDATION_ERROR",
                    value=entry.account_id,
                )
            ]

        account = accounts.get(entry.account_id)
        if account is None:
            return [
                ValidationError(
                    field=field,
                    message=f"Account {entry.account_id} not found",
                    code="ACCOUNT_NOT_FOUND",
                    value=entry.account_id,
                )
            ]

        errors = []
        if not account.allow_direct_transactions:
            errors.append(
                ValidationError(
                    field=field,
                    message=f"Account {account.code} does not allow direct transactions",
                    code="ACCOUNT_NO_DIRECT_TRANSACTIONS",
                    value=entry.account_id,
                )
            )
        if account.status != AccountStatus.ACTIVE:
            errors.append(
                ValidationError(
                    field=field,
                    message=f"Account {account.code} is {account.status.value}",
                    code="ACCOUNT_INACTIVE",
                    value=entry.account_id,
                )
            )
        return errors
