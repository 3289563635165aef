"""
BatchExecutor -- per-item isolated creation of transactions for a batch.

Contract:
    Owns the batch lifecycle: submit (pending header), execute (create one
    transaction per request), cancel, query.  One item's failure never
    undoes another item's transaction.

Architecture: ledger_batch/services.  Imports from ledger_batch.domain,
    ledger_batch.models and kernel services/selectors.

Invariants enforced:
    - Every item commits in its own short session and transaction, in both
      sequential and pool mode.  No write transaction spans the batch, so a
      concurrent cancel or create never waits for the whole run.
    - The final status and item rows are written in a separate transaction.
    - Final status is completed iff no item failed; a cancel flag observed
      before the last item turns the batch cancelled and skips the rest.
    - All timestamps come from the injected Clock.
    - The header row is locked (SELECT ... FOR UPDATE) for every status
      transition.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.db.engine import session_scope
from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import CreateTransactionRequest
from ledger_kernel.exceptions import (
    BatchNotFoundError,
    BatchStateError,
    LedgerKernelError,
    TransactionValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.batch import BatchTransaction
from ledger_kernel.selectors.transaction_selector import TransactionSelector
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.services.transaction_service import TransactionService

from ledger_batch.domain.types import (
    BatchHandle,
    BatchItemResult,
    BatchItemStatus,
    BatchRunResult,
    BatchStatus,
    BatchStatusDTO,
)
from ledger_batch.models.batch import BatchItemModel, batch_status_dto

logger = get_logger("batch.executor")

ServiceFactory = Callable[[Session], TransactionService]


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _failure_message(index: int, exc: Exception) -> str:
    if isinstance(exc, TransactionValidationError):
        detail = ", ".join(e.message for e in exc.result.errors)
    elif isinstance(exc, LedgerKernelError):
        detail = str(exc)
    elif isinstance(exc, SQLAlchemyError):
        detail = "storage failure"
    else:
        detail = f"unexpected error: {exc}"
    return f"Transaction {index + 1}: {detail}"


def _failure_code(exc: Exception) -> str:
    if isinstance(exc, LedgerKernelError):
        return exc.code
    if isinstance(exc, SQLAlchemyError):
        return "STORAGE_ERROR"
    return "UNHANDLED_EXCEPTION"


class BatchExecutor:
    """Batch execution engine.

    Contract:
        - ``submit()`` commits a PENDING header and returns a BatchHandle.
        - ``execute()`` runs every request and commits the final status
          together with the per-item results.
        - ``cancel()`` cancels a PENDING batch outright; a PROCESSING batch
          is left to the caller's cancel flag.
        - ``get()`` for queries.

    Non-goals:
        - Does NOT manage background threads for whole batches; that is the
          orchestrator's job.  The pool used here is per-execute.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        service_factory: ServiceFactory | None = None,
        clock: Clock | None = None,
        max_workers: int = 1,
        default_currency: str = "INR",
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._service_factory = service_factory or (
            lambda session: TransactionService(
                session, clock=self._clock, default_currency=default_currency,
            )
        )
        self._max_workers = max(1, max_workers)
        self._default_currency = default_currency

    # -------------------------------------------------------------------------
    # Submit
    # -------------------------------------------------------------------------

    def submit(
        self,
        batch_name: str,
        description: str | None,
        requests: Sequence[CreateTransactionRequest],
        company_id: UUID,
        user_id: UUID,
    ) -> BatchHandle:
        """Commit a PENDING batch header for ``requests``."""
        now = self._clock.now()
        total_amount = sum((r.total_debits for r in requests), ZERO)
        currency = next(
            (r.currency for r in requests if r.currency), self._default_currency,
        )

        with session_scope(self._session_factory) as session:
            batch_number = SequenceService(session).next_batch_number(
                company_id, self._clock.today().year,
            )
            batch = BatchTransaction(
                company_id=company_id,
                batch_number=batch_number,
                batch_name=batch_name,
                description=description,
                status=BatchStatus.PENDING.value,
                total_transactions=len(requests),
                succeeded_count=0,
                failed_count=0,
                total_amount=total_amount,
                currency=currency,
                created_by_id=user_id,
                created_at=now,
            )
            session.add(batch)
            session.flush()
            handle = BatchHandle(
                batch_id=batch.id,
                batch_number=batch_number,
                status=BatchStatus.PENDING,
                total_transactions=len(requests),
                total_amount=total_amount,
                currency=currency,
            )

        logger.info(
            "batch_submitted",
            extra={
                "batch_id": str(handle.batch_id),
                "batch_number": handle.batch_number,
                "total_transactions": handle.total_transactions,
                "total_amount": total_amount,
            },
        )
        return handle

    # -------------------------------------------------------------------------
    # Execute
    # -------------------------------------------------------------------------

    def execute(
        self,
        batch_id: UUID,
        company_id: UUID,
        user_id: UUID,
        requests: Sequence[CreateTransactionRequest],
        cancel_event: threading.Event | None = None,
    ) -> BatchRunResult:
        """Create one transaction per request and record the outcome.

        Raises:
            BatchNotFoundError: If the batch is not in the company.
            BatchStateError: If the batch is already processing or finished.
        """
        started = time.monotonic()
        cancel_event = cancel_event or threading.Event()

        with LogContext.bind(batch_id=batch_id):
            with session_scope(self._session_factory) as session:
                batch = self._lock(session, batch_id, company_id)
                already_cancelled = batch.status == BatchStatus.CANCELLED.value
                if not already_cancelled:
                    if batch.status != BatchStatus.PENDING.value:
                        raise BatchStateError(str(batch_id), batch.status, "process")
                    batch.status = BatchStatus.PROCESSING.value
                    batch.processing_started_at = self._clock.now()
                    batch.updated_by_id = user_id

            if already_cancelled:
                cancel_event.set()

            logger.info(
                "batch_processing_started",
                extra={"total_items": len(requests), "max_workers": self._max_workers},
            )

            if self._max_workers > 1:
                results = self._run_pooled(
                    batch_id, company_id, user_id, requests, cancel_event,
                )
            else:
                results = [
                    self._run_item(index, request, batch_id, company_id, user_id, cancel_event)
                    for index, request in enumerate(requests)
                ]

            with session_scope(self._session_factory) as session:
                return self._finalize(
                    session, batch_id, company_id, user_id, results, started,
                    already_cancelled,
                )

    def _run_item(
        self,
        index: int,
        request: CreateTransactionRequest,
        batch_id: UUID,
        company_id: UUID,
        user_id: UUID,
        cancel_event: threading.Event,
    ) -> BatchItemResult:
        """Create one item's transaction in its own session and commit it."""
        if cancel_event.is_set():
            return self._skipped(index)
        item_started = time.monotonic()
        with LogContext.bind(item_index=index):
            try:
                with session_scope(self._session_factory) as session:
                    dto = self._service_factory(session).create(
                        request, company_id, user_id, batch_id=batch_id,
                    )
            except Exception as exc:
                return self._failed(index, exc, item_started)
        return BatchItemResult(
            item_index=index,
            status=BatchItemStatus.SUCCEEDED,
            transaction_id=dto.id,
            transaction_number=dto.transaction_number,
            duration_ms=_elapsed_ms(item_started),
        )

    def _run_pooled(
        self,
        batch_id: UUID,
        company_id: UUID,
        user_id: UUID,
        requests: Sequence[CreateTransactionRequest],
        cancel_event: threading.Event,
    ) -> list[BatchItemResult]:
        context = LogContext.get_all()

        def run(index: int, request: CreateTransactionRequest) -> BatchItemResult:
            with LogContext.bind(**context):
                return self._run_item(
                    index, request, batch_id, company_id, user_id, cancel_event,
                )

        with ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="ledger-batch-item",
        ) as pool:
            futures = [pool.submit(run, i, r) for i, r in enumerate(requests)]
            return [f.result() for f in futures]

    def _failed(self, index: int, exc: Exception, item_started: float) -> BatchItemResult:
        code = _failure_code(exc)
        message = _failure_message(index, exc)
        if isinstance(exc, TransactionValidationError):
            logger.warning(
                "batch_item_failed",
                extra={"failure_code": code, "validation": exc.result},
            )
        elif isinstance(exc, LedgerKernelError):
            logger.warning("batch_item_failed", extra={"failure_code": code})
        else:
            logger.error("batch_item_failed", extra={"failure_code": code}, exc_info=exc)
        return BatchItemResult(
            item_index=index,
            status=BatchItemStatus.FAILED,
            error_code=code,
            error_message=message,
            duration_ms=_elapsed_ms(item_started),
        )

    @staticmethod
    def _skipped(index: int) -> BatchItemResult:
        return BatchItemResult(item_index=index, status=BatchItemStatus.SKIPPED)

    def _finalize(
        self,
        session: Session,
        batch_id: UUID,
        company_id: UUID,
        user_id: UUID,
        results: list[BatchItemResult],
        started: float,
        cancelled: bool = False,
    ) -> BatchRunResult:
        batch = self._lock(session, batch_id, company_id)

        succeeded = sum(1 for r in results if r.status == BatchItemStatus.SUCCEEDED)
        failed = sum(1 for r in results if r.status == BatchItemStatus.FAILED)
        skipped = sum(1 for r in results if r.status == BatchItemStatus.SKIPPED)

        if skipped or cancelled:
            status = BatchStatus.CANCELLED
        elif failed:
            status = BatchStatus.FAILED
        else:
            status = BatchStatus.COMPLETED

        messages = [r.error_message for r in results if r.error_message]
        error_message = "; ".join(messages) or None
        if status == BatchStatus.CANCELLED and batch.error_message:
            error_message = batch.error_message

        completed_at = self._clock.now()
        batch.status = status.value
        batch.succeeded_count = succeeded
        batch.failed_count = failed
        batch.error_message = error_message
        batch.processing_completed_at = completed_at
        batch.updated_by_id = user_id

        for result in results:
            item = BatchItemModel.from_dto(result, batch_id=batch_id, created_by_id=user_id)
            item.created_at = completed_at
            session.add(item)
        session.flush()

        duration = _elapsed_ms(started)
        log = logger.info if status == BatchStatus.COMPLETED else logger.warning
        log(
            f"batch_{status.value}",
            extra={
                "succeeded": succeeded,
                "failed": failed,
                "skipped": skipped,
                "duration_ms": duration,
            },
        )

        return BatchRunResult(
            batch_id=batch_id,
            status=status,
            total_items=len(results),
            succeeded=succeeded,
            failed=failed,
            skipped=skipped,
            item_results=tuple(results),
            started_at=batch.processing_started_at,
            completed_at=completed_at,
            duration_ms=duration,
            error_message=error_message,
        )

    # -------------------------------------------------------------------------
    # Cancel
    # -------------------------------------------------------------------------

    def cancel(self, batch_id: UUID, company_id: UUID, user_id: UUID) -> BatchStatus:
        """Cancel a batch.

        A PENDING batch becomes CANCELLED immediately.  A PROCESSING batch is
        returned unchanged; the caller's cancel flag stops it between items.

        Raises:
            BatchNotFoundError: If the batch is not in the company.
            BatchStateError: If the batch has already finished.
        """
        with session_scope(self._session_factory) as session:
            batch = self._lock(session, batch_id, company_id)
            status = BatchStatus(batch.status)
            if status.is_terminal:
                raise BatchStateError(str(batch_id), batch.status, "cancel")
            if status == BatchStatus.PENDING:
                batch.status = BatchStatus.CANCELLED.value
                batch.error_message = "Cancelled before processing"
                batch.processing_completed_at = self._clock.now()
                batch.updated_by_id = user_id
                status = BatchStatus.CANCELLED

        logger.info(
            "batch_cancel_requested",
            extra={"batch_id": str(batch_id), "status": status.value},
        )
        return status

    def mark_failed(
        self, batch_id: UUID, company_id: UUID, user_id: UUID, message: str,
    ) -> None:
        """Close out a batch whose processing aborted outside any single item."""
        with session_scope(self._session_factory) as session:
            batch = self._lock(session, batch_id, company_id)
            if BatchStatus(batch.status).is_terminal:
                return
            batch.status = BatchStatus.FAILED.value
            batch.error_message = message
            batch.processing_completed_at = self._clock.now()
            batch.updated_by_id = user_id
        logger.error("batch_aborted", extra={"batch_id": str(batch_id)})

    # -------------------------------------------------------------------------
    # Query
    # -------------------------------------------------------------------------

    def get(self, batch_id: UUID, company_id: UUID) -> BatchStatusDTO:
        """Batch record, per-item results and linked transaction ids.

        Raises:
            BatchNotFoundError: If the batch is not in the company.
        """
        with session_scope(self._session_factory) as session:
            batch = session.execute(
                select(BatchTransaction).where(
                    BatchTransaction.id == batch_id,
                    BatchTransaction.company_id == company_id,
                )
            ).scalar_one_or_none()
            if batch is None:
                raise BatchNotFoundError(str(batch_id))

            items = list(session.execute(
                select(BatchItemModel).where(BatchItemModel.batch_id == batch_id)
            ).scalars())
            transaction_ids = [
                t.id for t in TransactionSelector(session).list_for_batch(batch_id, company_id)
            ]
            return batch_status_dto(batch, items, transaction_ids)

    @staticmethod
    def _lock(session: Session, batch_id: UUID, company_id: UUID) -> BatchTransaction:
        batch = session.execute(
            select(BatchTransaction)
            .where(
                BatchTransaction.id == batch_id,
                BatchTransaction.company_id == company_id,
            )
            .with_for_update()
        ).scalar_one_or_none()
        if batch is None:
            raise BatchNotFoundError(str(batch_id))
        return batch
