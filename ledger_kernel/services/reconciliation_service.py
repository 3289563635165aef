"""
ReconciliationService -- match ledger transactions against a statement.

Responsibility:
    Proposes candidate matches between unreconciled posted transactions on
    an account and an external statement line, and records reconciliation
    once the caller confirms which transactions match.

Architecture position:
    Kernel > Services.  find_matches and reconciliation_status are reads;
    reconcile flushes within the caller's transaction.

Invariants enforced:
    - The match score is a fixed heuristic confidence, not an exact match.
      Callers must confirm matches through reconcile().
    - reconcile() is idempotent: rows that are already reconciled keep their
      original reconciled_at/reconciled_by and are reported, not rewritten.
    - Only transactions owned by the caller's company are touched; other
      ids are reported as not found.
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    ReconciliationMatch,
    ReconciliationStatus,
    ReconciliationStatusReport,
    ReconciliationSummary,
    TransactionStatus,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.transaction import Transaction, TransactionEntry
from ledger_kernel.selectors.account_selector import AccountSelector
from ledger_kernel.services.base import BaseService

logger = get_logger("services.reconciliation")

DEFAULT_WINDOW_DAYS = 30
DEFAULT_MATCH_CONFIDENCE = Decimal("0.8")


class ReconciliationService(BaseService):

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        window_days: int = DEFAULT_WINDOW_DAYS,
        match_confidence: Decimal = DEFAULT_MATCH_CONFIDENCE,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._window_days = window_days
        self._match_confidence = match_confidence
        self._accounts = AccountSelector(session)

    def _touches_account(self, account_id: UUID):
        return Transaction.id.in_(
            select(TransactionEntry.transaction_id).where(
                TransactionEntry.account_id == account_id
            )
        )

    def find_matches(
        self,
        account_id: UUID,
        statement_date: date,
        tolerance: Decimal,
        company_id: UUID,
    ) -> list[ReconciliationMatch]:
        """
        Candidate matches for a statement line.

        Candidates are unreconciled posted transactions with an entry on the
        account, dated within the window around statement_date, whose
        absolute amount is at least ``tolerance``.  Closest dates first.

        Only POSTED rows are offered, narrower than filtering on
        reconciliation_status alone: drafts and cancelled work never reached
        the bank, and a reversed or voided transaction no longer stands on
        the books.  A posted reversal is itself a candidate.

        Raises:
            AccountNotFoundError: If the account is not in the company.
        """
        self._accounts.get(account_id, company_id)
        window = timedelta(days=self._window_days)

        candidates = self.session.execute(
            select(Transaction)
            .where(
                Transaction.company_id == company_id,
                Transaction.status == TransactionStatus.POSTED.value,
                Transaction.reconciliation_status == ReconciliationStatus.UNRECONCILED.value,
                Transaction.transaction_date >= statement_date - window,
                Transaction.transaction_date <= statement_date + window,
                self._touches_account(account_id),
            )
            .order_by(Transaction.transaction_date, Transaction.transaction_number)
        ).scalars().all()

        matches = [
            ReconciliationMatch(
                transaction_id=txn.id,
                transaction_number=txn.transaction_number,
                match_confidence=self._match_confidence,
                transaction_amount=txn.total_amount,
                date_difference=abs((txn.transaction_date - statement_date).days),
                description=txn.description,
            )
            for txn in candidates
            if abs(txn.total_amount) >= tolerance
        ]
        matches.sort(key=lambda m: m.date_difference)

        logger.debug(
            "reconciliation_matches_found",
            extra={
                "account_id": str(account_id),
                "statement_date": statement_date,
                "candidates": len(candidates),
                "matches": len(matches),
            },
        )
        return matches

    def reconcile(
        self,
        account_id: UUID,
        transaction_ids: list[UUID],
        company_id: UUID,
        user_id: UUID,
    ) -> ReconciliationSummary:
        """
        Mark the named transactions reconciled.

        Re-applying to already reconciled rows leaves them unchanged and does
        not raise.

        Raises:
            AccountNotFoundError: If the account is not in the company.
        """
        self._accounts.get(account_id, company_id)
        now = self._clock.now()
        requested = list(dict.fromkeys(transaction_ids))

        rows = self.session.execute(
            select(Transaction)
            .where(
                Transaction.company_id == company_id,
                Transaction.id.in_(requested),
            )
            .with_for_update()
        ).scalars().all()
        found = {t.id: t for t in rows}

        reconciled = 0
        already = 0
        total = ZERO
        for txn_id in requested:
            txn = found.get(txn_id)
            if txn is None:
                continue
            if txn.reconciliation_status == ReconciliationStatus.RECONCILED.value:
                already += 1
                continue
            txn.reconciliation_status = ReconciliationStatus.RECONCILED.value
            txn.reconciled_at = now
            txn.reconciled_by = user_id
            txn.updated_by_id = user_id
            reconciled += 1
            total += txn.total_amount

        self.session.flush()

        not_found = tuple(t for t in requested if t not in found)
        logger.info(
            "transactions_reconciled",
            extra={
                "account_id": str(account_id),
                "reconciled_count": reconciled,
                "already_reconciled_count": already,
                "not_found_count": len(not_found),
                "total_reconciled_amount": total,
            },
        )

        return ReconciliationSummary(
            account_id=account_id,
            reconciled_count=reconciled,
            already_reconciled_count=already,
            total_reconciled_amount=total,
            reconciled_at=now,
            not_found_ids=not_found,
        )

    def reconciliation_status(
        self, account_id: UUID, company_id: UUID,
    ) -> ReconciliationStatusReport:
        """Reconciled vs. unreconciled posted transactions on an account."""
        self._accounts.get(account_id, company_id)

        base = (
            Transaction.company_id == company_id,
            Transaction.status == TransactionStatus.POSTED.value,
            self._touches_account(account_id),
        )

        reconciled, last_at = self.session.execute(
            select(func.count(Transaction.id), func.max(Transaction.reconciled_at)).where(
                *base,
                Transaction.reconciliation_status == ReconciliationStatus.RECONCILED.value,
            )
        ).one()

        unreconciled = self.session.execute(
            select(func.count(Transaction.id)).where(
                *base,
                Transaction.reconciliation_status == ReconciliationStatus.UNRECONCILED.value,
            )
        ).scalar_one()

        return ReconciliationStatusReport(
            account_id=account_id,
            reconciled_count=reconciled,
            unreconciled_count=unreconciled,
            last_reconciled_at=last_at,
        )
