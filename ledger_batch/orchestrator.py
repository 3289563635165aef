"""
BatchOrchestrator -- background execution of transaction batches.

Contract:
    ``create_batch()`` commits a pending batch and hands processing to a
    background worker, returning a BatchHandle at once.  Status queries,
    cooperative cancellation and ``wait()`` operate on batches started by
    this orchestrator.

Architecture: ledger_batch (top-level).  Composes BatchExecutor with
    TransactionService instances built from LedgerSettings.  The kernel
    never imports ledger_batch.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Sequence
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from ledger_config.schema import LedgerSettings
from ledger_kernel.db.engine import get_session_factory
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import CreateTransactionRequest
from ledger_kernel.domain.validation import TransactionValidator
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.selectors.account_selector import AccountSelector
from ledger_kernel.services.transaction_service import TransactionService

from ledger_batch.domain.types import (
    BatchHandle,
    BatchRunResult,
    BatchStatus,
    BatchStatusDTO,
)
from ledger_batch.services.executor import BatchExecutor, ServiceFactory

logger = get_logger("batch.orchestrator")

DEFAULT_BACKGROUND_WORKERS = 2


def transaction_service_factory(settings: LedgerSettings, clock: Clock) -> ServiceFactory:
    """Build TransactionService instances configured from ``settings``."""

    def build(session: Session) -> TransactionService:
        validator = TransactionValidator(
            AccountSelector(session).lookup_refs,
            large_amount_threshold=settings.large_amount_threshold,
        )
        return TransactionService(
            session,
            clock=clock,
            validator=validator,
            default_currency=settings.default_currency,
            fiscal_year_start_month=settings.fiscal_year_start_month,
            default_page_size=settings.default_page_size,
            max_page_size=settings.max_page_size,
        )

    return build


class BatchOrchestrator:
    """Runs batches on a background thread pool.

    Non-goals:
        - Does NOT survive a process restart; a batch left PROCESSING by a
          crash stays that way until an operator intervenes.
    """

    def __init__(
        self,
        executor: BatchExecutor,
        background_workers: int = DEFAULT_BACKGROUND_WORKERS,
    ) -> None:
        self._executor = executor
        self._pool = ThreadPoolExecutor(
            max_workers=background_workers, thread_name_prefix="ledger-batch",
        )
        self._jobs: dict[UUID, Future[BatchRunResult]] = {}
        self._cancel_events: dict[UUID, threading.Event] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: LedgerSettings,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
    ) -> BatchOrchestrator:
        """Create a fully wired orchestrator.

        Args:
            settings: Loaded LedgerSettings.
            session_factory: Defaults to the engine module's factory.
            clock: Optional clock for deterministic testing.
        """
        effective_clock = clock or SystemClock()
        executor = BatchExecutor(
            session_factory=session_factory or get_session_factory(),
            service_factory=transaction_service_factory(settings, effective_clock),
            clock=effective_clock,
            max_workers=settings.batch_max_workers,
            default_currency=settings.default_currency,
        )
        return cls(executor)

    @property
    def executor(self) -> BatchExecutor:
        return self._executor

    def create_batch(
        self,
        batch_name: str,
        description: str | None,
        requests: Sequence[CreateTransactionRequest],
        company_id: UUID,
        user_id: UUID,
    ) -> BatchHandle:
        """Commit a pending batch and start processing it in the background."""
        requests = list(requests)
        handle = self._executor.submit(
            batch_name, description, requests, company_id, user_id,
        )
        cancel_event = threading.Event()
        context = LogContext.get_all()

        with self._lock:
            self._cancel_events[handle.batch_id] = cancel_event
            future = self._pool.submit(
                self._run, handle.batch_id, company_id, user_id, requests,
                cancel_event, context,
            )
            self._jobs[handle.batch_id] = future
        future.add_done_callback(lambda _f: self._forget_cancel(handle.batch_id))

        logger.info(
            "batch_scheduled",
            extra={"batch_id": str(handle.batch_id), "batch_number": handle.batch_number},
        )
        return handle

    def _run(
        self,
        batch_id: UUID,
        company_id: UUID,
        user_id: UUID,
        requests: list[CreateTransactionRequest],
        cancel_event: threading.Event,
        context: dict[str, str],
    ) -> BatchRunResult:
        with LogContext.bind(**context):
            try:
                return self._executor.execute(
                    batch_id, company_id, user_id, requests, cancel_event,
                )
            except Exception as exc:
                logger.exception(
                    "batch_processing_crashed", extra={"batch_id": str(batch_id)},
                )
                self._executor.mark_failed(
                    batch_id, company_id, user_id,
                    f"Batch processing aborted: {type(exc).__name__}",
                )
                raise

    def _forget_cancel(self, batch_id: UUID) -> None:
        with self._lock:
            self._cancel_events.pop(batch_id, None)

    def get_batch(self, batch_id: UUID, company_id: UUID) -> BatchStatusDTO:
        return self._executor.get(batch_id, company_id)

    def get_batch_status(self, batch_id: UUID, company_id: UUID) -> BatchStatus:
        return self._executor.get(batch_id, company_id).status

    def cancel_batch(self, batch_id: UUID, company_id: UUID, user_id: UUID) -> BatchStatus:
        """Request cancellation.

        Returns the status right after the request: CANCELLED for a batch
        that had not started, PROCESSING for one that will stop before its
        next item.

        Raises:
            BatchNotFoundError: If the batch is not in the company.
            BatchStateError: If the batch has already finished.
        """
        with self._lock:
            event = self._cancel_events.get(batch_id)
        if event is not None:
            event.set()
        return self._executor.cancel(batch_id, company_id, user_id)

    def wait(self, batch_id: UUID, timeout: float | None = None) -> BatchRunResult | None:
        """Block until a batch started here finishes; None if not started here.

        Raises:
            TimeoutError: If the batch does not finish within ``timeout``.
        """
        with self._lock:
            future = self._jobs.get(batch_id)
        if future is None:
            return None
        return future.result(timeout=timeout)

    def shutdown(self, wait: bool = True, cancel_running: bool = False) -> None:
        if cancel_running:
            with self._lock:
                for event in self._cancel_events.values():
                    event.set()
        self._pool.shutdown(wait=wait)
        logger.info("batch_orchestrator_shutdown")
