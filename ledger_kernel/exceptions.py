"""
Typed exception hierarchy for the ledger kernel.

Every error has a typed class (catch by type, not message), a ``code`` class
attribute (machine-readable, API-safe), and structured attributes carrying
the data the caller needs to act on it.

    LedgerKernelError (base)
    |
    +-- TransactionValidationError      VALIDATION_FAILED
    |
    +-- TransactionStateError           STATE_CONFLICT
    |   +-- AlreadyPostedError          ALREADY_POSTED
    |   +-- CannotEditPostedError       CANNOT_EDIT_POSTED
    |   +-- CannotEditCancelledError    CANNOT_EDIT_CANCELLED
    |   +-- CannotPostCancelledError    CANNOT_POST_CANCELLED
    |   +-- CannotCancelPostedError     CANNOT_CANCEL_POSTED
    |   +-- AlreadyCancelledError       ALREADY_CANCELLED
    |   +-- NotPostedError              NOT_POSTED
    |   +-- AlreadyReversedError        ALREADY_REVERSED
    |   +-- CannotReverseReversalError  CANNOT_REVERSE_REVERSAL
    |   +-- CannotDeletePostedError     CANNOT_DELETE_POSTED
    |   +-- BatchStateError             BATCH_STATE_CONFLICT
    |
    +-- NotFoundError                   NOT_FOUND
    |   +-- TransactionNotFoundError    TRANSACTION_NOT_FOUND
    |   +-- BatchNotFoundError          BATCH_NOT_FOUND
    |   +-- AccountNotFoundError        ACCOUNT_NOT_FOUND
    |
    +-- InvalidCurrencyError            INVALID_CURRENCY
    +-- LedgerStorageError              STORAGE_ERROR
    +-- ConfigurationError              CONFIGURATION_ERROR

Not-found errors never distinguish "does not exist" from "belongs to another
company"; both surface as the same error so callers cannot probe other
tenants.  Validation and state errors are terminal for the request and must
not be retried.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ledger_kernel.domain.dtos import ValidationResult


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses must have a ``code`` class attribute.
    """

    code: str = "LEDGER_KERNEL_ERROR"


# Validation


class TransactionValidationError(LedgerKernelError):
    """Entries failed validation; carries the full error and warning list."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, result: ValidationResult):
        self.result = result
        codes = ", ".join(e.code for e in result.errors)
        super().__init__(f"Transaction validation failed: {codes}")


# State conflicts


class TransactionStateError(LedgerKernelError):
    """Base for operations rejected by the transaction lifecycle."""

    code: str = "STATE_CONFLICT"

    def __init__(self, transaction_id: str, status: str, message: str | None = None):
        self.transaction_id = transaction_id
        self.status = status
        super().__init__(
            message or f"Transaction {transaction_id} cannot change from status {status}"
        )


class AlreadyPostedError(TransactionStateError):
    code: str = "ALREADY_POSTED"

    def __init__(self, transaction_id: str, status: str = "posted"):
        super().__init__(
            transaction_id, status, f"Transaction {transaction_id} is already posted"
        )


class CannotEditPostedError(TransactionStateError):
    code: str = "CANNOT_EDIT_POSTED"

    def __init__(self, transaction_id: str, status: str = "posted"):
        super().__init__(
            transaction_id, status,
            f"Transaction {transaction_id} is {status} and can no longer be edited",
        )


class CannotEditCancelledError(TransactionStateError):
    code: str = "CANNOT_EDIT_CANCELLED"

    def __init__(self, transaction_id: str, status: str = "cancelled"):
        super().__init__(
            transaction_id, status, f"Cancelled transaction {transaction_id} cannot be edited"
        )


class CannotPostCancelledError(TransactionStateError):
    code: str = "CANNOT_POST_CANCELLED"

    def __init__(self, transaction_id: str, status: str = "cancelled"):
        super().__init__(
            transaction_id, status, f"Cancelled transaction {transaction_id} cannot be posted"
        )


class CannotCancelPostedError(TransactionStateError):
    """Posted transactions are undone by reversal or void, never by cancel."""

    code: str = "CANNOT_CANCEL_POSTED"

    def __init__(self, transaction_id: str, status: str = "posted"):
        super().__init__(
            transaction_id, status,
            f"Transaction {transaction_id} is {status}; reverse or void it instead",
        )


class AlreadyCancelledError(TransactionStateError):
    code: str = "ALREADY_CANCELLED"

    def __init__(self, transaction_id: str, status: str = "cancelled"):
        super().__init__(
            transaction_id, status, f"Transaction {transaction_id} is already cancelled"
        )


class NotPostedError(TransactionStateError):
    code: str = "NOT_POSTED"

    def __init__(self, transaction_id: str, status: str):
        super().__init__(
            transaction_id, status,
            f"Transaction {transaction_id} is {status}; only posted transactions qualify",
        )


class AlreadyReversedError(TransactionStateError):
    code: str = "ALREADY_REVERSED"

    def __init__(self, transaction_id: str, status: str = "reversed"):
        super().__init__(
            transaction_id, status, f"Transaction {transaction_id} has already been reversed"
        )


class CannotReverseReversalError(TransactionStateError):
    code: str = "CANNOT_REVERSE_REVERSAL"

    def __init__(self, transaction_id: str, status: str = "posted"):
        super().__init__(
            transaction_id, status,
            f"Transaction {transaction_id} is itself a reversal and cannot be reversed",
        )


class CannotDeletePostedError(TransactionStateError):
    code: str = "CANNOT_DELETE_POSTED"

    def __init__(self, transaction_id: str, status: str = "posted"):
        super().__init__(
            transaction_id, status,
            f"Transaction {transaction_id} is {status} and cannot be deleted",
        )


class BatchStateError(TransactionStateError):
    """A batch is not in a status that allows the requested action."""

    code: str = "BATCH_STATE_CONFLICT"

    def __init__(self, batch_id: str, status: str, action: str):
        self.batch_id = batch_id
        self.action = action
        super().__init__(
            batch_id, status, f"Batch {batch_id} is {status}; cannot {action}"
        )


# Not found


class NotFoundError(LedgerKernelError):
    """Base for unknown ids or ids outside the caller's company."""

    code: str = "NOT_FOUND"


class TransactionNotFoundError(NotFoundError):
    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class BatchNotFoundError(NotFoundError):
    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Batch not found: {batch_id}")


class AccountNotFoundError(NotFoundError):
    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


# Values, storage, configuration


class InvalidCurrencyError(LedgerKernelError):
    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'")


class LedgerStorageError(LedgerKernelError):
    """
    The backing store failed.

    The message and attributes are for logs only; callers receive a generic
    failure without internals.
    """

    code: str = "STORAGE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage failure during {operation}: {detail}")


class ConfigurationError(LedgerKernelError):
    code: str = "CONFIGURATION_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
