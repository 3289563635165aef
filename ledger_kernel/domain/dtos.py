"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that flow through the ledger:
    requests (CreateTransactionRequest, UpdateTransactionRequest,
    EntryRequest, TransactionFilters), validation output (ValidationResult),
    persisted views (TransactionDTO, EntryDTO), and report rows
    (AccountBalance, TrialBalance, AccountActivity, ReconciliationMatch).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    ORM models convert to these via ``to_dto()``; services and selectors
    return them, never ORM instances.

Invariants enforced:
    - Monetary fields are Decimal.  Request constructors coerce incoming
      numbers through ``to_decimal`` so binary floats never reach a total.
    - ``from_dict`` mappers accept an explicit field list and reject unknown
      keys instead of dropping them silently.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from ledger_kernel.db.types import ZERO, to_decimal


class TransactionType(str, Enum):
    JOURNAL_ENTRY = "journal_entry"
    INVOICE = "invoice"
    PAYMENT = "payment"
    RECEIPT = "receipt"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    DEPRECIATION = "depreciation"
    ACCRUAL = "accrual"
    REVERSAL = "reversal"
    OPENING_BALANCE = "opening_balance"
    CLOSING_ENTRY = "closing_entry"


class TransactionStatus(str, Enum):
    """
    Lifecycle status of a transaction header.

    DRAFT/PENDING are editable.  POSTED, CANCELLED, REVERSED and VOIDED are
    frozen; REVERSED and VOIDED are reached only from POSTED.
    """

    DRAFT = "draft"
    PENDING = "pending"
    POSTED = "posted"
    CANCELLED = "cancelled"
    REVERSED = "reversed"
    VOIDED = "voided"

    @property
    def is_editable(self) -> bool:
        return self in (TransactionStatus.DRAFT, TransactionStatus.PENDING)


class ApprovalStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReconciliationStatus(str, Enum):
    UNRECONCILED = "unreconciled"
    PARTIAL = "partial"
    RECONCILED = "reconciled"
    DISPUTED = "disputed"


class AccountType(str, Enum):
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"


class NormalBalance(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"

    @classmethod
    def for_account_type(cls, account_type: AccountType) -> NormalBalance:
        if account_type in (AccountType.ASSET, AccountType.EXPENSE):
            return cls.DEBIT
        return cls.CREDIT


class AccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


def _reject_unknown(cls: type, payload: dict[str, Any]) -> None:
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ValueError(f"Unknown field(s) for {cls.__name__}: {', '.join(unknown)}")


def _as_uuid(value: Any) -> UUID | None:
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))


def _as_date(value: Any) -> date | None:
    if value is None or (isinstance(value, date) and not isinstance(value, datetime)):
        return value
    if isinstance(value, datetime):
        return value.date()
    return date.fromisoformat(str(value))


# =============================================================================
# Requests
# =============================================================================


@dataclass(frozen=True)
class EntryRequest:
    """One requested ledger line.  Exactly one of debit/credit should be > 0."""

    account_id: UUID
    debit_amount: Decimal = ZERO
    credit_amount: Decimal = ZERO
    description: str | None = None
    tax_code: str | None = None
    tax_amount: Decimal | None = None
    project_id: UUID | None = None
    cost_center_id: UUID | None = None
    department_id: UUID | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "account_id", _as_uuid(self.account_id))
        object.__setattr__(self, "debit_amount", to_decimal(self.debit_amount))
        object.__setattr__(self, "credit_amount", to_decimal(self.credit_amount))
        if self.tax_amount is not None:
            object.__setattr__(self, "tax_amount", to_decimal(self.tax_amount))
        for name in ("project_id", "cost_center_id", "department_id"):
            object.__setattr__(self, name, _as_uuid(getattr(self, name)))

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> EntryRequest:
        _reject_unknown(cls, payload)
        if "account_id" not in payload:
            raise ValueError("Entry is missing account_id")
        return cls(**payload)


@dataclass(frozen=True)
class CreateTransactionRequest:
    """Everything needed to create a transaction in draft."""

    transaction_type: TransactionType
    transaction_date: date
    entries: tuple[EntryRequest, ...]
    description: str | None = None
    reference: str | None = None
    memo: str | None = None
    currency: str | None = None
    exchange_rate: Decimal = Decimal("1")
    posting_date: date | None = None
    tags: tuple[str, ...] = ()
    tax_amount: Decimal | None = None
    source_document_type: str | None = None
    source_document_id: UUID | None = None
    is_recurring: bool = False
    recurring_rule: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "transaction_type", TransactionType(self.transaction_type))
        object.__setattr__(self, "transaction_date", _as_date(self.transaction_date))
        object.__setattr__(self, "posting_date", _as_date(self.posting_date))
        object.__setattr__(self, "entries", tuple(self.entries))
        object.__setattr__(self, "tags", tuple(self.tags))
        object.__setattr__(self, "exchange_rate", to_decimal(self.exchange_rate))
        if self.tax_amount is not None:
            object.__setattr__(self, "tax_amount", to_decimal(self.tax_amount))
        object.__setattr__(self, "source_document_id", _as_uuid(self.source_document_id))

    @property
    def total_debits(self) -> Decimal:
        return sum((e.debit_amount for e in self.entries), ZERO)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> CreateTransactionRequest:
        _reject_unknown(cls, payload)
        for required in ("transaction_type", "transaction_date", "entries"):
            if required not in payload:
                raise ValueError(f"Missing required field: {required}")
        data = dict(payload)
        data["entries"] = tuple(
            e if isinstance(e, EntryRequest) else EntryRequest.from_dict(e)
            for e in data["entries"]
        )
        return cls(**data)


@dataclass(frozen=True)
class UpdateTransactionRequest:
    """Partial update.  ``None`` means "leave unchanged"."""

    transaction_date: date | None = None
    description: str | None = None
    reference: str | None = None
    memo: str | None = None
    posting_date: date | None = None
    tags: tuple[str, ...] | None = None
    tax_amount: Decimal | None = None
    entries: tuple[EntryRequest, ...] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "transaction_date", _as_date(self.transaction_date))
        object.__setattr__(self, "posting_date", _as_date(self.posting_date))
        if self.tags is not None:
            object.__setattr__(self, "tags", tuple(self.tags))
        if self.tax_amount is not None:
            object.__setattr__(self, "tax_amount", to_decimal(self.tax_amount))
        if self.entries is not None:
            object.__setattr__(self, "entries", tuple(self.entries))

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> UpdateTransactionRequest:
        _reject_unknown(cls, payload)
        data = dict(payload)
        if data.get("entries") is not None:
            data["entries"] = tuple(
                e if isinstance(e, EntryRequest) else EntryRequest.from_dict(e)
                for e in data["entries"]
            )
        return cls(**data)


SORTABLE_FIELDS = frozenset(
    {"transaction_date", "transaction_number", "total_amount", "created_at"}
)


@dataclass(frozen=True)
class TransactionFilters:
    """Listing filters.  ``page`` is 1-based; ``limit`` is clamped by the selector."""

    search: str | None = None
    transaction_type: TransactionType | None = None
    status: TransactionStatus | None = None
    approval_status: ApprovalStatus | None = None
    reconciliation_status: ReconciliationStatus | None = None
    date_from: date | None = None
    date_to: date | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    account_id: UUID | None = None
    unposted_only: bool = False
    sort_by: str = "transaction_date"
    sort_order: str = "desc"
    page: int = 1
    limit: int | None = None

    def __post_init__(self) -> None:
        if self.transaction_type is not None:
            object.__setattr__(self, "transaction_type", TransactionType(self.transaction_type))
        if self.status is not None:
            object.__setattr__(self, "status", TransactionStatus(self.status))
        if self.approval_status is not None:
            object.__setattr__(self, "approval_status", ApprovalStatus(self.approval_status))
        if self.reconciliation_status is not None:
            object.__setattr__(
                self, "reconciliation_status", ReconciliationStatus(self.reconciliation_status),
            )
        object.__setattr__(self, "date_from", _as_date(self.date_from))
        object.__setattr__(self, "date_to", _as_date(self.date_to))
        if self.min_amount is not None:
            object.__setattr__(self, "min_amount", to_decimal(self.min_amount))
        if self.max_amount is not None:
            object.__setattr__(self, "max_amount", to_decimal(self.max_amount))
        object.__setattr__(self, "account_id", _as_uuid(self.account_id))
        if self.sort_by not in SORTABLE_FIELDS:
            raise ValueError(f"Cannot sort by {self.sort_by!r}")
        if self.sort_order not in ("asc", "desc"):
            raise ValueError(f"sort_order must be 'asc' or 'desc', got {self.sort_order!r}")
        if self.page < 1:
            raise ValueError("page must be >= 1")

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> TransactionFilters:
        _reject_unknown(cls, payload)
        return cls(**payload)


# =============================================================================
# Validation
# =============================================================================


@dataclass(frozen=True)
class ValidationError:
    """A blocking, client-fixable problem with the submitted entries."""

    field: str
    message: str
    code: str
    value: Any = None


@dataclass(frozen=True)
class ValidationWarning:
    """Same shape as ValidationError, but never blocks."""

    field: str
    message: str
    code: str
    value: Any = None


@dataclass(frozen=True)
class ValidationResult:
    errors: tuple[ValidationError, ...] = ()
    warnings: tuple[ValidationWarning, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def error_codes(self) -> list[str]:
        return [e.code for e in self.errors]


@dataclass(frozen=True)
class AccountRef:
    """What the validator needs to know about an account."""

    id: UUID
    company_id: UUID
    code: str
    allow_direct_transactions: bool
    status: AccountStatus
    normal_balance: NormalBalance


# =============================================================================
# Persisted views
# =============================================================================


@dataclass(frozen=True)
class EntryDTO:
    id: UUID
    account_id: UUID
    line_number: int
    debit_amount: Decimal
    credit_amount: Decimal
    description: str | None = None
    tax_code: str | None = None
    tax_amount: Decimal | None = None
    project_id: UUID | None = None
    cost_center_id: UUID | None = None
    department_id: UUID | None = None

    @property
    def amount(self) -> Decimal:
        """Signed amount: debit minus credit."""
        return self.debit_amount - self.credit_amount


@dataclass(frozen=True)
class TransactionDTO:
    id: UUID
    company_id: UUID
    transaction_number: str
    transaction_type: TransactionType
    transaction_date: date
    fiscal_year: int
    fiscal_period: int
    total_amount: Decimal
    currency: str
    exchange_rate: Decimal
    status: TransactionStatus
    approval_status: ApprovalStatus
    reconciliation_status: ReconciliationStatus
    entries: tuple[EntryDTO, ...] = ()
    description: str | None = None
    reference: str | None = None
    memo: str | None = None
    tags: tuple[str, ...] = ()
    tax_amount: Decimal | None = None
    posting_date: date | None = None
    is_recurring: bool = False
    recurring_rule: dict[str, Any] | None = None
    source_document_type: str | None = None
    source_document_id: UUID | None = None
    reversal_of_id: UUID | None = None
    batch_id: UUID | None = None
    created_by: UUID | None = None
    created_at: datetime | None = None
    posted_by: UUID | None = None
    posted_at: datetime | None = None
    reconciled_by: UUID | None = None
    reconciled_at: datetime | None = None

    @property
    def total_debits(self) -> Decimal:
        return sum((e.debit_amount for e in self.entries), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((e.credit_amount for e in self.entries), ZERO)


@dataclass(frozen=True)
class TransactionPage:
    items: tuple[TransactionDTO, ...]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


# =============================================================================
# Reconciliation
# =============================================================================


@dataclass(frozen=True)
class ReconciliationMatch:
    """A heuristic proposal, not an exact match."""

    transaction_id: UUID
    transaction_number: str
    match_confidence: Decimal
    transaction_amount: Decimal
    date_difference: int
    description: str | None = None


@dataclass(frozen=True)
class ReconciliationSummary:
    account_id: UUID
    reconciled_count: int
    already_reconciled_count: int
    total_reconciled_amount: Decimal
    reconciled_at: datetime
    not_found_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class ReconciliationStatusReport:
    account_id: UUID
    reconciled_count: int
    unreconciled_count: int
    last_reconciled_at: datetime | None = None


# =============================================================================
# Balances and reports
# =============================================================================


@dataclass(frozen=True)
class AccountBalance:
    account_id: UUID
    debit_total: Decimal
    credit_total: Decimal
    net: Decimal
    as_of: date | None = None


@dataclass(frozen=True)
class TrialBalanceRow:
    account_id: UUID
    account_code: str
    account_name: str
    account_type: AccountType
    debit_balance: Decimal
    credit_balance: Decimal
    net_balance: Decimal


@dataclass(frozen=True)
class TrialBalance:
    as_of: date
    company_id: UUID
    rows: tuple[TrialBalanceRow, ...] = field(default_factory=tuple)

    @property
    def total_debits(self) -> Decimal:
        return sum((r.debit_balance for r in self.rows), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((r.credit_balance for r in self.rows), ZERO)

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits


@dataclass(frozen=True)
class ActivityLine:
    transaction_id: UUID
    transaction_number: str
    transaction_date: date
    description: str | None
    debit_amount: Decimal
    credit_amount: Decimal
    running_balance: Decimal


@dataclass(frozen=True)
class AccountActivity:
    account_id: UUID
    start_date: date
    end_date: date
    opening_balance: Decimal
    closing_balance: Decimal
    lines: tuple[ActivityLine, ...] = ()


@dataclass(frozen=True)
class PeriodTotal:
    """Posted transactions of one calendar month (``period`` is "YYYY-MM")."""

    period: str
    transaction_count: int
    total_amount: Decimal


@dataclass(frozen=True)
class TypeTotal:
    transaction_type: TransactionType
    transaction_count: int
    total_amount: Decimal


@dataclass(frozen=True)
class TransactionSummary:
    """Counts and totals of posted transactions dated within a range."""

    company_id: UUID
    start_date: date
    end_date: date
    transaction_count: int
    total_amount: Decimal
    by_month: tuple[PeriodTotal, ...] = ()
    by_type: tuple[TypeTotal, ...] = ()
