"""ORM models for batch item results."""

from ledger_batch.models.batch import BatchItemModel

__all__ = ["BatchItemModel"]
