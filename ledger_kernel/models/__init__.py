"""ORM models for the ledger kernel."""

from ledger_kernel.models.account import Account
from ledger_kernel.models.batch import BatchTransaction
from ledger_kernel.models.transaction import Transaction, TransactionEntry

__all__ = [
    "Account",
    "BatchTransaction",
    "Transaction",
    "TransactionEntry",
]
