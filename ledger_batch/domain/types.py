"""
ledger_batch.domain.types -- Pure frozen dataclasses for the batch system.

ZERO I/O.  Status enums plus immutable snapshots of a batch, its per-item
outcomes and a completed run.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class BatchStatus(str, Enum):
    """Batch-level lifecycle status."""

    PENDING = "pending"  # Created, not yet started
    PROCESSING = "processing"  # Items are being created
    COMPLETED = "completed"  # Every item succeeded
    FAILED = "failed"  # At least one item failed
    CANCELLED = "cancelled"  # Cancel flag observed before all items ran

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED)


class BatchItemStatus(str, Enum):
    """Per-item outcome within a batch."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"  # Not attempted because the batch was cancelled


@dataclass(frozen=True)
class BatchHandle:
    """Returned immediately by create_batch, before any item is processed."""

    batch_id: UUID
    batch_number: str
    status: BatchStatus
    total_transactions: int
    total_amount: Decimal
    currency: str


@dataclass(frozen=True)
class BatchItemResult:
    """Outcome of one transaction-creation request within a batch."""

    item_index: int  # 0-indexed position in the submitted list
    status: BatchItemStatus
    transaction_id: UUID | None = None
    transaction_number: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    duration_ms: int = 0

    @property
    def item_key(self) -> str:
        return f"item-{self.item_index:04d}"


@dataclass(frozen=True)
class BatchRunResult:
    """Result of processing every item of a batch."""

    batch_id: UUID
    status: BatchStatus
    total_items: int
    succeeded: int
    failed: int
    skipped: int
    item_results: tuple[BatchItemResult, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
    error_message: str | None = None


@dataclass(frozen=True)
class BatchStatusDTO:
    """Batch record, per-item outcomes and the transactions it created."""

    batch_id: UUID
    batch_number: str
    batch_name: str
    status: BatchStatus
    total_transactions: int
    succeeded_count: int
    failed_count: int
    total_amount: Decimal
    currency: str
    description: str | None = None
    processing_started_at: datetime | None = None
    processing_completed_at: datetime | None = None
    error_message: str | None = None
    items: tuple[BatchItemResult, ...] = ()
    transaction_ids: tuple[UUID, ...] = ()
