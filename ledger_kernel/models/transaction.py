"""
Module: ledger_kernel.models.transaction
Responsibility: ORM models for transaction headers and their ledger lines.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/dtos.py.  MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    - (company_id, transaction_number) is unique; a second line of defence
      behind the sequence counter.
    - Entries are exclusively owned by their transaction (delete-orphan
      cascade, ON DELETE CASCADE).
    - Each entry has non-negative debit and credit and never both non-zero
      (CHECK constraints).  Balance across entries is enforced by
      TransactionValidator before any write.
    - batch_id is an association, not containment: deleting a batch leaves
      its transactions in place.

Audit relevance:
    A reversal is a new transaction linked through reversal_of_id and
    source_document_*; the reversed original is never edited beyond its
    status flag.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import Base, TrackedBase, UUIDString
from ledger_kernel.domain.dtos import (
    ApprovalStatus,
    EntryDTO,
    ReconciliationStatus,
    TransactionDTO,
    TransactionStatus,
    TransactionType,
)


class Transaction(TrackedBase):
    """Financial event header."""

    __tablename__ = "transactions"

    __table_args__ = (
        UniqueConstraint(
            "company_id", "transaction_number", name="uq_transaction_company_number",
        ),
        Index("idx_transaction_company_date", "company_id", "transaction_date"),
        Index("idx_transaction_company_status", "company_id", "status"),
        Index("idx_transaction_batch", "batch_id"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    transaction_number: Mapped[str] = mapped_column(String(50), nullable=False)

    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)

    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    posting_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    fiscal_period: Mapped[int] = mapped_column(Integer, nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    memo: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list | None] = mapped_column(JSON, nullable=True)

    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("1"))
    tax_amount: Mapped[Decimal | None] = mapped_column(nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.DRAFT.value,
    )
    approval_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ApprovalStatus.NOT_REQUIRED.value,
    )
    reconciliation_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ReconciliationStatus.UNRECONCILED.value,
    )

    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recurring_rule: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    source_document_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    source_document_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("transactions.id"), nullable=True,
    )

    batch_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("batch_transactions.id", ondelete="SET NULL"),
        nullable=True,
    )

    posted_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    reconciled_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reconciled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    cancelled_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    voided_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    entries: Mapped[list["TransactionEntry"]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TransactionEntry.line_number",
    )

    def __repr__(self) -> str:
        return f"<Transaction {self.transaction_number} [{self.status}]>"

    @property
    def status_enum(self) -> TransactionStatus:
        return TransactionStatus(self.status)

    @property
    def total_debits(self) -> Decimal:
        return sum((e.debit_amount for e in self.entries), Decimal("0"))

    @property
    def total_credits(self) -> Decimal:
        return sum((e.credit_amount for e in self.entries), Decimal("0"))

    def to_dto(self) -> TransactionDTO:
        return TransactionDTO(
            id=self.id,
            company_id=self.company_id,
            transaction_number=self.transaction_number,
            transaction_type=TransactionType(self.transaction_type),
            transaction_date=self.transaction_date,
            fiscal_year=self.fiscal_year,
            fiscal_period=self.fiscal_period,
            total_amount=self.total_amount,
            currency=self.currency,
            exchange_rate=self.exchange_rate,
            status=TransactionStatus(self.status),
            approval_status=ApprovalStatus(self.approval_status),
            reconciliation_status=ReconciliationStatus(self.reconciliation_status),
            entries=tuple(e.to_dto() for e in self.entries),
            description=self.description,
            reference=self.reference,
            memo=self.memo,
            tags=tuple(self.tags or ()),
            tax_amount=self.tax_amount,
            posting_date=self.posting_date,
            is_recurring=self.is_recurring,
            recurring_rule=self.recurring_rule,
            source_document_type=self.source_document_type,
            source_document_id=self.source_document_id,
            reversal_of_id=self.reversal_of_id,
            batch_id=self.batch_id,
            created_by=self.created_by_id,
            created_at=self.created_at,
            posted_by=self.posted_by,
            posted_at=self.posted_at,
            reconciled_by=self.reconciled_by,
            reconciled_at=self.reconciled_at,
        )


class TransactionEntry(Base):
    """One ledger line.  Exactly one of debit_amount/credit_amount is > 0."""

    __tablename__ = "transaction_entries"

    __table_args__ = (
        CheckConstraint("debit_amount >= 0", name="ck_entry_debit_non_negative"),
        CheckConstraint("credit_amount >= 0", name="ck_entry_credit_non_negative"),
        CheckConstraint(
            "NOT (debit_amount > 0 AND credit_amount > 0)", name="ck_entry_one_side",
        ),
        UniqueConstraint("transaction_id", "line_number", name="uq_entry_line_number"),
        Index("idx_entry_account", "account_id"),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("accounts.id"), nullable=False,
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    debit_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    credit_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    tax_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    tax_amount: Mapped[Decimal | None] = mapped_column(nullable=True)

    project_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    cost_center_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    department_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )

    transaction: Mapped["Transaction"] = relationship(back_populates="entries")

    def __repr__(self) -> str:
        return (
            f"<TransactionEntry #{self.line_number} "
            f"Dr {self.debit_amount} Cr {self.credit_amount}>"
        )

    @property
    def amount(self) -> Decimal:
        return self.debit_amount - self.credit_amount

    def to_dto(self) -> EntryDTO:
        return EntryDTO(
            id=self.id,
            account_id=self.account_id,
            line_number=self.line_number,
            debit_amount=self.debit_amount,
            credit_amount=self.credit_amount,
            description=self.description,
            tax_code=self.tax_code,
            tax_amount=self.tax_amount,
            project_id=self.project_id,
            cost_center_id=self.cost_center_id,
            department_id=self.department_id,
        )
