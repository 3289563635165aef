"""
EntryStore -- create, replace and delete the lines of a transaction.

Responsibility:
    Persists TransactionEntry rows for a header that already exists.

Invariants enforced:
    - Entries are only written after the header row has been flushed, so a
      failed header insert can never leave orphan lines.
    - Replacement (delete + re-insert) runs inside a SAVEPOINT: either both
      steps land or the transaction keeps its previous lines.
    - Line numbers are 1..n in request order.
"""

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy.orm import Session

from ledger_kernel.domain.dtos import EntryRequest
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.transaction import Transaction, TransactionEntry

logger = get_logger("services.entry_store")


class EntryStore:
    """Line-item persistence for a single session."""

    def __init__(self, session: Session):
        self._session = session

    def create_entries(
        self,
        transaction: Transaction,
        entries: Sequence[EntryRequest],
        created_at: datetime,
    ) -> list[TransactionEntry]:
        if transaction.id is None or transaction not in self._session:
            raise ValueError("Entries require a persisted transaction header")

        rows = []
        for line_number, entry in enumerate(entries, start=1):
            row = TransactionEntry(
                account_id=entry.account_id,
                line_number=line_number,
                description=entry.description,
                debit_amount=entry.debit_amount,
                credit_amount=entry.credit_amount,
                tax_code=entry.tax_code,
                tax_amount=entry.tax_amount,
                project_id=entry.project_id,
                cost_center_id=entry.cost_center_id,
                department_id=entry.department_id,
                created_at=created_at,
            )
            transaction.entries.append(row)
            rows.append(row)

        self._session.flush()
        return rows

    def replace_entries(
        self,
        transaction: Transaction,
        entries: Sequence[EntryRequest],
        created_at: datetime,
    ) -> list[TransactionEntry]:
        previous = len(transaction.entries)
        savepoint = self._session.begin_nested()
        try:
            self.delete_entries(transaction)
            rows = self.create_entries(transaction, entries, created_at)
            savepoint.commit()
        except Exception:
            savepoint.rollback()
            logger.warning(
                "entry_replace_rolled_back",
                extra={"transaction_id": str(transaction.id)},
                exc_info=True,
            )
            raise

        logger.debug(
            "entries_replaced",
            extra={
                "transaction_id": str(transaction.id),
                "previous_count": previous,
                "new_count": len(rows),
            },
        )
        return rows

    def delete_entries(self, transaction: Transaction) -> None:
        transaction.entries.clear()
        self._session.flush()
