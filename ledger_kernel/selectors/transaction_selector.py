"""
TransactionSelector -- read access to transactions and their entries.

Unknown ids and ids owned by another company raise the same
TransactionNotFoundError, so callers cannot probe other tenants.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import asc, desc, func, or_, select

from ledger_kernel.domain.dtos import (
    TransactionDTO,
    TransactionFilters,
    TransactionPage,
    TransactionStatus,
)
from ledger_kernel.exceptions import TransactionNotFoundError
from ledger_kernel.models.transaction import Transaction, TransactionEntry
from ledger_kernel.selectors.base import BaseSelector

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class TransactionSelector(BaseSelector):

    def get(self, transaction_id: UUID, company_id: UUID) -> TransactionDTO:
        txn = self.session.execute(
            select(Transaction).where(
                Transaction.id == transaction_id,
                Transaction.company_id == company_id,
            )
        ).scalar_one_or_none()
        if txn is None:
            raise TransactionNotFoundError(str(transaction_id))
        return txn.to_dto()

    def list_for_batch(self, batch_id: UUID, company_id: UUID) -> list[TransactionDTO]:
        rows = self.session.execute(
            select(Transaction)
            .where(
                Transaction.batch_id == batch_id,
                Transaction.company_id == company_id,
            )
            .order_by(Transaction.transaction_number)
        ).scalars().all()
        return [t.to_dto() for t in rows]

    def list(
        self,
        filters: TransactionFilters,
        company_id: UUID,
        default_limit: int = DEFAULT_PAGE_SIZE,
        max_limit: int = MAX_PAGE_SIZE,
    ) -> TransactionPage:
        """
        Filtered, sorted, paginated listing.

        ``limit`` defaults to ``default_limit`` and is clamped to
        ``1..max_limit``.
        """
        stmt = select(Transaction).where(Transaction.company_id == company_id)

        if filters.search:
            pattern = f"%{filters.search}%"
            stmt = stmt.where(
                or_(
                    Transaction.transaction_number.ilike(pattern),
                    Transaction.description.ilike(pattern),
                    Transaction.reference.ilike(pattern),
                )
            )
        if filters.transaction_type is not None:
            stmt = stmt.where(Transaction.transaction_type == filters.transaction_type.value)
        if filters.status is not None:
            stmt = stmt.where(Transaction.status == filters.status.value)
        if filters.approval_status is not None:
            stmt = stmt.where(Transaction.approval_status == filters.approval_status.value)
        if filters.reconciliation_status is not None:
            stmt = stmt.where(
                Transaction.reconciliation_status == filters.reconciliation_status.value
            )
        if filters.date_from is not None:
            stmt = stmt.where(Transaction.transaction_date >= filters.date_from)
        if filters.date_to is not None:
            stmt = stmt.where(Transaction.transaction_date <= filters.date_to)
        if filters.min_amount is not None:
            stmt = stmt.where(Transaction.total_amount >= filters.min_amount)
        if filters.max_amount is not None:
            stmt = stmt.where(Transaction.total_amount <= filters.max_amount)
        if filters.account_id is not None:
            stmt = stmt.where(
                Transaction.id.in_(
                    select(TransactionEntry.transaction_id).where(
                        TransactionEntry.account_id == filters.account_id
                    )
                )
            )
        if filters.unposted_only:
            stmt = stmt.where(
                Transaction.status.in_(
                    [TransactionStatus.DRAFT.value, TransactionStatus.PENDING.value]
                )
            )

        total = self.session.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()

        limit = max(1, min(filters.limit or default_limit, max_limit))
        direction = asc if filters.sort_order == "asc" else desc
        stmt = (
            stmt.order_by(
                direction(getattr(Transaction, filters.sort_by)),
                direction(Transaction.transaction_number),
            )
            .offset((filters.page - 1) * limit)
            .limit(limit)
        )

        items = self.session.execute(stmt).scalars().all()
        return TransactionPage(
            items=tuple(t.to_dto() for t in items),
            total=total,
            page=filters.page,
            limit=limit,
        )
