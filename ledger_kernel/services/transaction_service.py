"""
TransactionService -- the transaction lifecycle state machine.

Responsibility:
    Creates, edits, posts, reverses, cancels, voids and deletes
    transactions.  Every write path runs the TransactionValidator first and
    refuses to touch the store if the entries are unbalanced.

Architecture position:
    Kernel > Services.  Orchestrates TransactionValidator (domain),
    SequenceService, EntryStore and BalanceApplier within the caller's
    session.  Flushes, never commits.

State machine::

    draft ──edit──> draft
    draft/pending ──post──> POSTED ──reverse──> REVERSED (+ new posted reversal)
                                   └──void────> VOIDED
    draft/pending ──cancel──> CANCELLED
    draft/pending/cancelled ──remove──> (deleted, entries cascade)

Invariants enforced:
    - Unbalanced entries are rejected before any write, on create, on
      update, and again on post against the stored lines.
    - Entries are written only after the header row exists.
    - Posting and balance application happen in one session transaction.
    - A reversal is a new first-class transaction.  The original is only
      flagged reversed; its lines are never touched.

Failure modes:
    - TransactionValidationError (VALIDATION_FAILED) with the full result.
    - TransactionStateError subclasses for illegal transitions.
    - TransactionNotFoundError for unknown or foreign ids.
    - SQLAlchemy errors propagate; the caller's scope rolls back.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO, is_valid_currency, validate_currency
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    CreateTransactionRequest,
    EntryRequest,
    TransactionDTO,
    TransactionFilters,
    TransactionPage,
    TransactionStatus,
    TransactionType,
    UpdateTransactionRequest,
    ValidationError,
    ValidationResult,
)
from ledger_kernel.domain.fiscal import fiscal_year_and_period
from ledger_kernel.domain.validation import TransactionValidator
from ledger_kernel.exceptions import (
    AlreadyCancelledError,
    AlreadyPostedError,
    AlreadyReversedError,
    CannotCancelPostedError,
    CannotDeletePostedError,
    CannotEditCancelledError,
    CannotEditPostedError,
    CannotPostCancelledError,
    CannotReverseReversalError,
    NotPostedError,
    TransactionNotFoundError,
    TransactionValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.transaction import Transaction, TransactionEntry
from ledger_kernel.selectors.account_selector import AccountSelector
from ledger_kernel.selectors.transaction_selector import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    TransactionSelector,
)
from ledger_kernel.services.balance_applier import BalanceApplier
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.entry_store import EntryStore
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.transaction")

_FROZEN_STATUSES = (
    TransactionStatus.POSTED,
    TransactionStatus.REVERSED,
    TransactionStatus.VOIDED,
)


def compute_total_amount(entries: Sequence[EntryRequest]) -> Decimal:
    """Half the sum of debit + credit; equals either side of a balanced set."""
    gross = sum((e.debit_amount + e.credit_amount for e in entries), ZERO)
    return gross / 2


def _entry_requests(entries: Sequence[TransactionEntry]) -> list[EntryRequest]:
    return [
        EntryRequest(
            account_id=e.account_id,
            debit_amount=e.debit_amount,
            credit_amount=e.credit_amount,
            description=e.description,
            tax_code=e.tax_code,
            tax_amount=e.tax_amount,
            project_id=e.project_id,
            cost_center_id=e.cost_center_id,
            department_id=e.department_id,
        )
        for e in entries
    ]


class TransactionService(BaseService):
    """
    Transaction lifecycle manager.

    Contract:
        Every public write method either completes all of its writes within
        the session or raises before making any of them visible to a commit.

    Non-goals:
        - Does NOT commit.  Callers wrap calls in ``session_scope`` (the batch
          executor opens one per item).
        - Does NOT implement approval workflow rules; ``approval_status`` is
          carried as data only.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        validator: TransactionValidator | None = None,
        default_currency: str = "INR",
        fiscal_year_start_month: int = 1,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._validator = validator or TransactionValidator(
            AccountSelector(session).lookup_refs
        )
        self._default_currency = default_currency
        self._fiscal_year_start_month = fiscal_year_start_month
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size
        self._sequence = SequenceService(session)
        self._entries = EntryStore(session)
        self._balances = BalanceApplier(session)
        self._selector = TransactionSelector(session)

    # -------------------------------------------------------------------------
    # Create / update
    # -------------------------------------------------------------------------

    def create(
        self,
        request: CreateTransactionRequest,
        company_id: UUID,
        user_id: UUID,
        batch_id: UUID | None = None,
    ) -> TransactionDTO:
        """
        Validate and persist a new draft transaction.

        Raises:
            TransactionValidationError: If any validation error is found.
                Nothing has been written in that case.
        """
        txn = self._create(request, company_id, user_id, batch_id=batch_id)
        return txn.to_dto()

    def _create(
        self,
        request: CreateTransactionRequest,
        company_id: UUID,
        user_id: UUID,
        batch_id: UUID | None = None,
        reversal_of_id: UUID | None = None,
    ) -> Transaction:
        result = self.validate_request(request, company_id)
        if not result.is_valid:
            raise TransactionValidationError(result)

        currency = validate_currency(request.currency or self._default_currency)
        now = self._clock.now()
        number = self._sequence.next_document_number(
            company_id, request.transaction_type, self._clock.today().year,
        )
        fiscal_year, fiscal_period = fiscal_year_and_period(
            request.transaction_date, self._fiscal_year_start_month,
        )

        txn = Transaction(
            company_id=company_id,
            transaction_number=number,
            transaction_type=request.transaction_type.value,
            transaction_date=request.transaction_date,
            posting_date=request.posting_date,
            fiscal_year=fiscal_year,
            fiscal_period=fiscal_period,
            description=request.description,
            reference=request.reference,
            memo=request.memo,
            tags=list(request.tags) or None,
            total_amount=compute_total_amount(request.entries),
            currency=currency,
            exchange_rate=request.exchange_rate,
            tax_amount=request.tax_amount,
            status=TransactionStatus.DRAFT.value,
            is_recurring=request.is_recurring,
            recurring_rule=request.recurring_rule,
            source_document_type=request.source_document_type,
            source_document_id=request.source_document_id,
            reversal_of_id=reversal_of_id,
            batch_id=batch_id,
            created_by_id=user_id,
            created_at=now,
        )
        self.session.add(txn)
        # Header first: a failed header insert must not leave orphan entries
        self.session.flush()

        self._entries.create_entries(txn, request.entries, created_at=now)

        with LogContext.bind(transaction_id=txn.id, transaction_number=number):
            logger.info(
                "transaction_created",
                extra={
                    "transaction_type": request.transaction_type.value,
                    "total_amount": txn.total_amount,
                    "entry_count": len(request.entries),
                    "validation": result,
                },
            )
        return txn

    def update(
        self,
        transaction_id: UUID,
        request: UpdateTransactionRequest,
        company_id: UUID,
        user_id: UUID,
    ) -> TransactionDTO:
        """
        Edit a draft or pending transaction.

        Replacement entries are validated first and swapped in atomically.

        Raises:
            CannotEditPostedError: If posted, reversed or voided.
            CannotEditCancelledError: If cancelled.
            TransactionValidationError: If replacement entries are invalid.
        """
        txn = self._load(transaction_id, company_id, for_update=True)
        status = txn.status_enum

        if status in _FROZEN_STATUSES:
            raise CannotEditPostedError(str(txn.id), status.value)
        if status == TransactionStatus.CANCELLED:
            raise CannotEditCancelledError(str(txn.id))

        if request.entries is not None:
            result = self._validator.validate(request.entries, company_id)
            if not result.is_valid:
                raise TransactionValidationError(result)
            self._entries.replace_entries(txn, request.entries, created_at=self._clock.now())
            txn.total_amount = compute_total_amount(request.entries)

        if request.transaction_date is not None:
            txn.transaction_date = request.transaction_date
            txn.fiscal_year, txn.fiscal_period = fiscal_year_and_period(
                request.transaction_date, self._fiscal_year_start_month,
            )
        for name in ("description", "reference", "memo", "posting_date", "tax_amount"):
            value = getattr(request, name)
            if value is not None:
                setattr(txn, name, value)
        if request.tags is not None:
            txn.tags = list(request.tags)

        txn.updated_by_id = user_id
        self.session.flush()

        logger.info(
            "transaction_updated",
            extra={
                "transaction_id": str(txn.id),
                "entries_replaced": request.entries is not None,
            },
        )
        return txn.to_dto()

    # -------------------------------------------------------------------------
    # Post / reverse / cancel / void / remove
    # -------------------------------------------------------------------------

    def post(self, transaction_id: UUID, company_id: UUID, user_id: UUID) -> TransactionDTO:
        """
        Post a draft or pending transaction and apply it to account balances.

        Raises:
            AlreadyPostedError: If posted, reversed or voided.
            CannotPostCancelledError: If cancelled.
            TransactionValidationError: If the stored entries no longer
                validate (for example an account was deactivated).
        """
        txn = self._load(transaction_id, company_id, for_update=True)
        self._post(txn, user_id)
        return txn.to_dto()

    def _post(self, txn: Transaction, user_id: UUID) -> None:
        status = txn.status_enum
        if status in _FROZEN_STATUSES:
            raise AlreadyPostedError(str(txn.id), status.value)
        if status == TransactionStatus.CANCELLED:
            raise CannotPostCancelledError(str(txn.id))

        result = self._validator.validate(_entry_requests(txn.entries), txn.company_id)
        if not result.is_valid:
            raise TransactionValidationError(result)

        now = self._clock.now()
        txn.status = TransactionStatus.POSTED.value
        txn.posted_by = user_id
        txn.posted_at = now
        if txn.posting_date is None:
            txn.posting_date = self._clock.today()
        txn.updated_by_id = user_id

        with LogContext.bind(transaction_id=txn.id, transaction_number=txn.transaction_number):
            self._balances.apply(txn)
            self.session.flush()

            logger.info(
                "transaction_posted",
                extra={
                    "total_amount": txn.total_amount,
                    "posting_date": txn.posting_date,
                },
            )

    def reverse(
        self,
        transaction_id: UUID,
        company_id: UUID,
        user_id: UUID,
        reason: str | None = None,
        reversal_date: date | None = None,
    ) -> TransactionDTO:
        """
        Reverse a posted transaction.

        Creates and posts a new reversal-typed transaction whose entries are
        the original's with debit and credit swapped, then flags the original
        reversed.  All three steps share the caller's transaction.

        Returns:
            The new reversal transaction.

        Raises:
            AlreadyReversedError: If the original is already reversed.
            CannotReverseReversalError: If the original is itself a reversal.
            NotPostedError: If the original is not posted.
        """
        txn = self._load(transaction_id, company_id, for_update=True)
        status = txn.status_enum

        if status == TransactionStatus.REVERSED:
            raise AlreadyReversedError(str(txn.id))
        if txn.transaction_type == TransactionType.REVERSAL.value:
            raise CannotReverseReversalError(str(txn.id), status.value)
        if status != TransactionStatus.POSTED:
            raise NotPostedError(str(txn.id), status.value)

        request = self._build_reversal_request(txn, reason, reversal_date)
        reversal = self._create(request, company_id, user_id, reversal_of_id=txn.id)
        self._post(reversal, user_id)

        txn.status = TransactionStatus.REVERSED.value
        txn.updated_by_id = user_id
        self.session.flush()

        with LogContext.bind(transaction_id=txn.id, transaction_number=txn.transaction_number):
            logger.info(
                "transaction_reversed",
                extra={
                    "reversal_id": str(reversal.id),
                    "reversal_number": reversal.transaction_number,
                },
            )
        return reversal.to_dto()

    def _build_reversal_request(
        self, txn: Transaction, reason: str | None, reversal_date: date | None,
    ) -> CreateTransactionRequest:
        original_label = txn.description or txn.transaction_number
        entries = tuple(
            EntryRequest(
                account_id=e.account_id,
                debit_amount=e.credit_amount,
                credit_amount=e.debit_amount,
                description=f"Reversal of {e.description or original_label}",
                tax_code=e.tax_code,
                tax_amount=-e.tax_amount if e.tax_amount is not None else None,
                project_id=e.project_id,
                cost_center_id=e.cost_center_id,
                department_id=e.department_id,
            )
            for e in txn.entries
        )
        memo = f"Reversal of transaction {txn.transaction_number}"
        if reason:
            memo = f"{memo}: {reason}"

        return CreateTransactionRequest(
            transaction_type=TransactionType.REVERSAL,
            transaction_date=reversal_date or self._clock.today(),
            entries=entries,
            description=f"Reversal of {original_label}",
            reference=f"REV-{txn.transaction_number}",
            memo=memo,
            currency=txn.currency,
            exchange_rate=txn.exchange_rate,
            tax_amount=-txn.tax_amount if txn.tax_amount is not None else None,
            source_document_type="transaction",
            source_document_id=txn.id,
        )

    def cancel(self, transaction_id: UUID, company_id: UUID, user_id: UUID) -> TransactionDTO:
        """
        Raises:
            CannotCancelPostedError: If posted, reversed or voided.
            AlreadyCancelledError: If already cancelled.
        """
        txn = self._load(transaction_id, company_id, for_update=True)
        status = txn.status_enum

        if status in _FROZEN_STATUSES:
            raise CannotCancelPostedError(str(txn.id), status.value)
        if status == TransactionStatus.CANCELLED:
            raise AlreadyCancelledError(str(txn.id))

        txn.status = TransactionStatus.CANCELLED.value
        txn.cancelled_by = user_id
        txn.cancelled_at = self._clock.now()
        txn.updated_by_id = user_id
        self.session.flush()

        logger.info("transaction_cancelled", extra={"transaction_id": str(txn.id)})
        return txn.to_dto()

    def void(self, transaction_id: UUID, company_id: UUID, user_id: UUID) -> TransactionDTO:
        """
        Void a posted transaction, removing its effect from account balances.

        Raises:
            NotPostedError: If the transaction is not posted.
        """
        txn = self._load(transaction_id, company_id, for_update=True)
        status = txn.status_enum

        if status != TransactionStatus.POSTED:
            raise NotPostedError(str(txn.id), status.value)

        self._balances.unapply(txn)
        txn.status = TransactionStatus.VOIDED.value
        txn.voided_by = user_id
        txn.voided_at = self._clock.now()
        txn.updated_by_id = user_id
        self.session.flush()

        logger.info("transaction_voided", extra={"transaction_id": str(txn.id)})
        return txn.to_dto()

    def remove(self, transaction_id: UUID, company_id: UUID) -> None:
        """
        Delete a transaction that never reached the ledger.

        Raises:
            CannotDeletePostedError: If posted, reversed or voided.
        """
        txn = self._load(transaction_id, company_id, for_update=True)
        status = txn.status_enum

        if status in _FROZEN_STATUSES:
            raise CannotDeletePostedError(str(txn.id), status.value)

        self._entries.delete_entries(txn)
        self.session.delete(txn)
        self.session.flush()

        logger.info(
            "transaction_deleted",
            extra={
                "transaction_id": str(transaction_id),
                "transaction_number": txn.transaction_number,
            },
        )

    # -------------------------------------------------------------------------
    # Reads and dry-run validation
    # -------------------------------------------------------------------------

    def get(self, transaction_id: UUID, company_id: UUID) -> TransactionDTO:
        return self._selector.get(transaction_id, company_id)

    def list(self, filters: TransactionFilters, company_id: UUID) -> TransactionPage:
        return self._selector.list(
            filters,
            company_id,
            default_limit=self._default_page_size,
            max_limit=self._max_page_size,
        )

    def validate_request(
        self, request: CreateTransactionRequest, company_id: UUID,
    ) -> ValidationResult:
        """Run every create-time check without writing anything."""
        result = self._validator.validate(request.entries, company_id)
        currency = request.currency or self._default_currency
        if not is_valid_currency(currency):
            return ValidationResult(
                errors=result.errors + (
                    ValidationError(
                        field="currency",
                        message=f"'{currency}' is not an ISO 4217 currency code",
                        code="INVALID_CURRENCY",
                        value=currency,
                    ),
                ),
                warnings=result.warnings,
            )
        return result

    def validate_existing(self, transaction_id: UUID, company_id: UUID) -> ValidationResult:
        """Re-validate the stored entries of a transaction."""
        txn = self._load(transaction_id, company_id)
        return self._validator.validate(_entry_requests(txn.entries), company_id)

    def _load(
        self, transaction_id: UUID, company_id: UUID, for_update: bool = False,
    ) -> Transaction:
        stmt = select(Transaction).where(
            Transaction.id == transaction_id,
            Transaction.company_id == company_id,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        txn = self.session.execute(stmt).scalar_one_or_none()
        if txn is None:
            raise TransactionNotFoundError(str(transaction_id))
        return txn
