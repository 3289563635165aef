"""
ORM model for per-item batch results.

Contract:
    BatchItemModel records what happened to each transaction-creation
    request of a batch, so a failed batch still shows which items produced
    transactions.  ``to_dto()`` / ``from_dto()`` convert to and from
    BatchItemResult.

Architecture: ledger_batch/models.  Imports from ledger_kernel.db.base and
    ledger_kernel.models only.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.models.batch import BatchTransaction

from ledger_batch.domain.types import (
    BatchItemResult,
    BatchItemStatus,
    BatchStatus,
    BatchStatusDTO,
)


class BatchItemModel(TrackedBase):
    """Outcome of one request within a batch."""

    __tablename__ = "batch_items"

    __table_args__ = (
        UniqueConstraint("batch_id", "item_index", name="uq_batch_item_index"),
        Index("ix_batch_items_batch_status", "batch_id", "status"),
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("batch_transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
    item_index: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    transaction_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    transaction_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def to_dto(self) -> BatchItemResult:
        return BatchItemResult(
            item_index=self.item_index,
            status=BatchItemStatus(self.status),
            transaction_id=self.transaction_id,
            transaction_number=self.transaction_number,
            error_code=self.error_code,
            error_message=self.error_message,
            duration_ms=self.duration_ms,
        )

    @classmethod
    def from_dto(
        cls, dto: BatchItemResult, batch_id: UUID, created_by_id: UUID,
    ) -> BatchItemModel:
        return cls(
            batch_id=batch_id,
            item_index=dto.item_index,
            status=dto.status.value,
            transaction_id=dto.transaction_id,
            transaction_number=dto.transaction_number,
            error_code=dto.error_code,
            error_message=dto.error_message,
            duration_ms=dto.duration_ms,
            created_by_id=created_by_id,
            updated_by_id=None,
        )


def batch_status_dto(
    batch: BatchTransaction,
    items: list[BatchItemModel],
    transaction_ids: list[UUID],
) -> BatchStatusDTO:
    return BatchStatusDTO(
        batch_id=batch.id,
        batch_number=batch.batch_number,
        batch_name=batch.batch_name,
        status=BatchStatus(batch.status),
        total_transactions=batch.total_transactions,
        succeeded_count=batch.succeeded_count,
        failed_count=batch.failed_count,
        total_amount=batch.total_amount,
        currency=batch.currency,
        description=batch.description,
        processing_started_at=batch.processing_started_at,
        processing_completed_at=batch.processing_completed_at,
        error_message=batch.error_message,
        items=tuple(i.to_dto() for i in sorted(items, key=lambda i: i.item_index)),
        transaction_ids=tuple(transaction_ids),
    )
