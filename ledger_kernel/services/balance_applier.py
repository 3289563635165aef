"""
BalanceApplier -- keep accounts.current_balance in step with posting.

Responsibility:
    Applies each entry of a posted transaction to its account's running
    balance, and applies the inverse when a posted transaction is voided.

Invariants enforced:
    - Runs inside the same session transaction as the status change, so a
      posted transaction whose entries never reached the balances (or the
      reverse) cannot be committed.
    - Account rows are locked FOR UPDATE in id order, so two posts touching
      the same accounts cannot deadlock each other.
    - Debit-normal accounts move by debit - credit; credit-normal accounts
      by credit - debit.

Reversal needs no special case: the reversal transaction is posted through
the same path and its swapped entries cancel the original's effect.
"""

from collections import defaultdict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.transaction import Transaction

logger = get_logger("services.balance_applier")


class BalanceApplier:

    def __init__(self, session: Session):
        self._session = session

    def apply(self, transaction: Transaction) -> dict[UUID, Decimal]:
        """Apply a transaction's entries.  Returns the delta per account."""
        return self._apply(transaction, sign=Decimal("1"))

    def unapply(self, transaction: Transaction) -> dict[UUID, Decimal]:
        """Remove a transaction's effect (void)."""
        return self._apply(transaction, sign=Decimal("-1"))

    def _apply(self, transaction: Transaction, sign: Decimal) -> dict[UUID, Decimal]:
        net_by_account: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        for entry in transaction.entries:
            net_by_account[entry.account_id] += entry.debit_amount - entry.credit_amount

        accounts = self._session.execute(
            select(Account)
            .where(
                Account.id.in_(sorted(net_by_account, key=str)),
                Account.company_id == transaction.company_id,
            )
            .order_by(Account.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()

        deltas: dict[UUID, Decimal] = {}
        for account in accounts:
            debit_net = net_by_account[account.id] * sign
            delta = debit_net if account.is_debit_normal else -debit_net
            account.current_balance = (account.current_balance or ZERO) + delta
            deltas[account.id] = delta

        self._session.flush()

        logger.debug(
            "account_balances_applied",
            extra={
                "transaction_id": str(transaction.id),
                "direction": "apply" if sign > 0 else "unapply",
                "accounts": len(deltas),
            },
        )
        return deltas
