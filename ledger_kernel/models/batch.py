"""
Module: ledger_kernel.models.batch
Responsibility: Header row for a named group of transaction-creation
    requests.  Lives in the kernel because transactions carry a foreign key
    to it; the batch machinery (per-item results, execution) lives in
    ledger_batch.
Architecture position: Kernel > Models.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class BatchTransaction(TrackedBase):
    """Batch header.  Owns no transactions; they reference it by batch_id."""

    __tablename__ = "batch_transactions"

    __table_args__ = (
        UniqueConstraint("company_id", "batch_number", name="uq_batch_company_number"),
        Index("idx_batch_company_status", "company_id", "status"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    batch_number: Mapped[str] = mapped_column(String(50), nullable=False)
    batch_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    total_transactions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    succeeded_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    processing_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    processing_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<BatchTransaction {self.batch_number} [{self.status}]>"
