"""
Module: ledger_kernel.models.account
Responsibility: ORM model for the account directory consumed by the ledger.
    Account metadata CRUD lives outside this package; the ledger reads
    usability flags for validation and maintains ``current_balance`` on post.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/dtos.py only.

Invariants enforced:
    - (company_id, code) is unique.
    - current_balance changes only through BalanceApplier, once per posted
      entry and once more (inverted) if the transaction is voided.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.domain.dtos import AccountRef, AccountStatus, AccountType, NormalBalance


class Account(TrackedBase):
    """A ledger account owned by exactly one company."""

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("company_id", "code", name="uq_account_company_code"),
        Index("idx_account_company", "company_id"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[str] = mapped_column(String(20), nullable=False)

    # Derived from account_type when not supplied
    normal_balance: Mapped[str] = mapped_column(String(10), nullable=False)

    sub_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Header/summary accounts are not postable
    allow_direct_transactions: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20), default=AccountStatus.ACTIVE.value, nullable=False,
    )

    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)

    opening_balance: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    current_balance: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    def __init__(self, **kwargs):
        if "normal_balance" not in kwargs and "account_type" in kwargs:
            kwargs["normal_balance"] = NormalBalance.for_account_type(
                AccountType(kwargs["account_type"])
            ).value
        for key in ("account_type", "normal_balance", "status"):
            if isinstance(kwargs.get(key), Enum):
                kwargs[key] = kwargs[key].value
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT.value

    def to_ref(self) -> AccountRef:
        return AccountRef(
            id=self.id,
            company_id=self.company_id,
            code=self.code,
            allow_direct_transactions=self.allow_direct_transactions,
            status=AccountStatus(self.status),
            normal_balance=NormalBalance(self.normal_balance),
        )
