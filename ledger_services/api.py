"""
LedgerAPI -- HTTP-shaped facade over the ledger services.

Responsibility:
    Accepts request payloads (plain dicts, as decoded from JSON), runs the
    matching kernel or batch operation inside one unit of work, and returns
    an ``ApiResponse(status_code, body)``.  Transport binding (routing,
    auth, JSON encoding) belongs to the host application.

Status mapping:
    - TransactionValidationError          -> 400 {code, message, errors, warnings}
    - State conflicts and other kernel errors -> 400 {code, message}
    - Malformed payloads (ValueError)     -> 400 {code: INVALID_REQUEST}
    - NotFoundError family                -> 404 {code, message}
    - Storage failures                    -> 500 generic body, details logged
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ledger_batch.orchestrator import BatchOrchestrator, transaction_service_factory
from ledger_config.schema import LedgerSettings
from ledger_kernel.db.engine import get_session_factory, init_engine_from_url, session_scope
from ledger_kernel.db.types import to_decimal
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    CreateTransactionRequest,
    TransactionFilters,
    UpdateTransactionRequest,
)
from ledger_kernel.exceptions import (
    LedgerKernelError,
    LedgerStorageError,
    NotFoundError,
    TransactionValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.reconciliation_service import ReconciliationService
from ledger_kernel.services.transaction_service import TransactionService

from ledger_services.serialization import to_primitive

logger = get_logger("services.api")

STORAGE_ERROR_BODY = {"code": "STORAGE_ERROR", "message": "Internal storage error"}

# Range used by transaction_summary when no start date is given
SUMMARY_DEFAULT_DAYS = 365


@dataclass(frozen=True)
class ApiResponse:
    status_code: int
    body: Any = None


def _as_uuid(value: Any) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def _as_date(value: Any) -> date:
    return value if isinstance(value, date) else date.fromisoformat(str(value))


class LedgerAPI:
    """Facade exposing every ledger operation with HTTP status semantics."""

    def __init__(
        self,
        settings: LedgerSettings | None = None,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        orchestrator: BatchOrchestrator | None = None,
    ):
        self._settings = settings or LedgerSettings()
        self._session_factory = session_factory or get_session_factory()
        self._clock = clock or SystemClock()
        self._service_factory = transaction_service_factory(self._settings, self._clock)
        self._orchestrator = orchestrator or BatchOrchestrator.from_settings(
            self._settings, self._session_factory, self._clock,
        )

    @classmethod
    def from_settings(cls, settings: LedgerSettings, clock: Clock | None = None) -> LedgerAPI:
        """Initialize the engine from ``settings`` and build a facade on it."""
        init_engine_from_url(
            settings.database_url,
            echo=settings.echo,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
        )
        return cls(settings=settings, session_factory=get_session_factory(), clock=clock)

    @property
    def orchestrator(self) -> BatchOrchestrator:
        return self._orchestrator

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def _handle(
        self,
        operation: str,
        success_status: int,
        company_id: Any,
        user_id: Any,
        action: Callable[[], Any],
    ) -> ApiResponse:
        with LogContext.bind(company_id=company_id, actor_id=user_id):
            try:
                result = action()
            except TransactionValidationError as exc:
                logger.info(
                    "api_validation_rejected",
                    extra={"operation": operation, "validation": exc.result},
                )
                return ApiResponse(400, {
                    "code": exc.code,
                    "message": str(exc),
                    "errors": to_primitive(exc.result.errors),
                    "warnings": to_primitive(exc.result.warnings),
                })
            except NotFoundError as exc:
                return ApiResponse(404, {"code": exc.code, "message": str(exc)})
            except LedgerStorageError:
                logger.error("api_storage_error", extra={"operation": operation}, exc_info=True)
                return ApiResponse(500, dict(STORAGE_ERROR_BODY))
            except LedgerKernelError as exc:
                return ApiResponse(400, {"code": exc.code, "message": str(exc)})
            except SQLAlchemyError:
                logger.error("api_storage_error", extra={"operation": operation}, exc_info=True)
                return ApiResponse(500, dict(STORAGE_ERROR_BODY))
            except (ValueError, KeyError) as exc:
                logger.info(
                    "api_invalid_request",
                    extra={"operation": operation, "detail": str(exc)},
                )
                return ApiResponse(400, {"code": "INVALID_REQUEST", "message": str(exc)})

        if success_status == 204:
            return ApiResponse(204, None)
        return ApiResponse(success_status, to_primitive(result))

    def _with_transactions(self, fn: Callable[[TransactionService], Any]) -> Callable[[], Any]:
        def run() -> Any:
            with session_scope(self._session_factory) as session:
                return fn(self._service_factory(session))
        return run

    def _with_session(self, fn: Callable[[Session], Any]) -> Callable[[], Any]:
        def run() -> Any:
            with session_scope(self._session_factory) as session:
                return fn(session)
        return run

    def _reconciliation(self, session: Session) -> ReconciliationService:
        return ReconciliationService(
            session,
            clock=self._clock,
            window_days=self._settings.reconciliation_window_days,
            match_confidence=self._settings.match_confidence,
        )

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def create_transaction(self, payload: dict, company_id: Any, user_id: Any) -> ApiResponse:
        def action(service: TransactionService):
            request = CreateTransactionRequest.from_dict(payload)
            return service.create(request, _as_uuid(company_id), _as_uuid(user_id))

        return self._handle(
            "create_transaction", 201, company_id, user_id, self._with_transactions(action),
        )

    def update_transaction(
        self, transaction_id: Any, payload: dict, company_id: Any, user_id: Any,
    ) -> ApiResponse:
        def action(service: TransactionService):
            request = UpdateTransactionRequest.from_dict(payload)
            return service.update(
                _as_uuid(transaction_id), request, _as_uuid(company_id), _as_uuid(user_id),
            )

        return self._handle(
            "update_transaction", 200, company_id, user_id, self._with_transactions(action),
        )

    def post_transaction(self, transaction_id: Any, company_id: Any, user_id: Any) -> ApiResponse:
        return self._handle(
            "post_transaction", 200, company_id, user_id,
            self._with_transactions(lambda service: service.post(
                _as_uuid(transaction_id), _as_uuid(company_id), _as_uuid(user_id),
            )),
        )

    def reverse_transaction(
        self,
        transaction_id: Any,
        company_id: Any,
        user_id: Any,
        reason: str | None = None,
        reversal_date: Any = None,
    ) -> ApiResponse:
        def action(service: TransactionService):
            return service.reverse(
                _as_uuid(transaction_id),
                _as_uuid(company_id),
                _as_uuid(user_id),
                reason=reason,
                reversal_date=_as_date(reversal_date) if reversal_date else None,
            )

        return self._handle(
            "reverse_transaction", 201, company_id, user_id, self._with_transactions(action),
        )

    def cancel_transaction(self, transaction_id: Any, company_id: Any, user_id: Any) -> ApiResponse:
        return self._handle(
            "cancel_transaction", 200, company_id, user_id,
            self._with_transactions(lambda service: service.cancel(
                _as_uuid(transaction_id), _as_uuid(company_id), _as_uuid(user_id),
            )),
        )

    def void_transaction(self, transaction_id: Any, company_id: Any, user_id: Any) -> ApiResponse:
        return self._handle(
            "void_transaction", 200, company_id, user_id,
            self._with_transactions(lambda service: service.void(
                _as_uuid(transaction_id), _as_uuid(company_id), _as_uuid(user_id),
            )),
        )

    def delete_transaction(self, transaction_id: Any, company_id: Any, user_id: Any) -> ApiResponse:
        return self._handle(
            "delete_transaction", 204, company_id, user_id,
            self._with_transactions(lambda service: service.remove(
                _as_uuid(transaction_id), _as_uuid(company_id),
            )),
        )

    def get_transaction(self, transaction_id: Any, company_id: Any) -> ApiResponse:
        return self._handle(
            "get_transaction", 200, company_id, None,
            self._with_transactions(lambda service: service.get(
                _as_uuid(transaction_id), _as_uuid(company_id),
            )),
        )

    def list_transactions(self, query: dict | None, company_id: Any) -> ApiResponse:
        def action(service: TransactionService):
            return service.list(TransactionFilters.from_dict(query or {}), _as_uuid(company_id))

        return self._handle(
            "list_transactions", 200, company_id, None, self._with_transactions(action),
        )

    def validate_transaction(self, payload: dict, company_id: Any) -> ApiResponse:
        """Dry-run validation.  Always 200 when the payload parses."""

        def action(service: TransactionService):
            request = CreateTransactionRequest.from_dict(payload)
            return service.validate_request(request, _as_uuid(company_id))

        return self._handle(
            "validate_transaction", 200, company_id, None, self._with_transactions(action),
        )

    def validate_existing_transaction(self, transaction_id: Any, company_id: Any) -> ApiResponse:
        return self._handle(
            "validate_existing_transaction", 200, company_id, None,
            self._with_transactions(lambda service: service.validate_existing(
                _as_uuid(transaction_id), _as_uuid(company_id),
            )),
        )

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    def create_batch(self, payload: dict, company_id: Any, user_id: Any) -> ApiResponse:
        """Payload: ``{batch_name, description?, transactions: [...]}``."""

        def action():
            items = payload.get("transactions") or []
            if not items:
                raise ValueError("A batch needs at least one transaction")
            requests = [CreateTransactionRequest.from_dict(item) for item in items]
            return self._orchestrator.create_batch(
                payload["batch_name"],
                payload.get("description"),
                requests,
                _as_uuid(company_id),
                _as_uuid(user_id),
            )

        return self._handle("create_batch", 201, company_id, user_id, action)

    def get_batch(self, batch_id: Any, company_id: Any) -> ApiResponse:
        return self._handle(
            "get_batch", 200, company_id, None,
            lambda: self._orchestrator.get_batch(_as_uuid(batch_id), _as_uuid(company_id)),
        )

    def cancel_batch(self, batch_id: Any, company_id: Any, user_id: Any) -> ApiResponse:
        def action():
            status = self._orchestrator.cancel_batch(
                _as_uuid(batch_id), _as_uuid(company_id), _as_uuid(user_id),
            )
            return {"batch_id": _as_uuid(batch_id), "status": status}

        return self._handle("cancel_batch", 200, company_id, user_id, action)

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def find_matches(self, account_id: Any, payload: dict, company_id: Any) -> ApiResponse:
        """Payload: ``{statement_date, tolerance?}``."""

        def action(session: Session):
            tolerance = payload.get("tolerance")
            return self._reconciliation(session).find_matches(
                _as_uuid(account_id),
                _as_date(payload["statement_date"]),
                to_decimal(tolerance) if tolerance is not None else Decimal("0"),
                _as_uuid(company_id),
            )

        return self._handle("find_matches", 200, company_id, None, self._with_session(action))

    def reconcile(
        self, account_id: Any, transaction_ids: list, company_id: Any, user_id: Any,
    ) -> ApiResponse:
        def action(session: Session):
            return self._reconciliation(session).reconcile(
                _as_uuid(account_id),
                [_as_uuid(t) for t in transaction_ids],
                _as_uuid(company_id),
                _as_uuid(user_id),
            )

        return self._handle("reconcile", 200, company_id, user_id, self._with_session(action))

    def reconciliation_status(self, account_id: Any, company_id: Any) -> ApiResponse:
        return self._handle(
            "reconciliation_status", 200, company_id, None,
            self._with_session(lambda session: self._reconciliation(session).reconciliation_status(
                _as_uuid(account_id), _as_uuid(company_id),
            )),
        )

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def trial_balance(self, as_of: Any, company_id: Any) -> ApiResponse:
        return self._handle(
            "trial_balance", 200, company_id, None,
            self._with_session(lambda session: LedgerSelector(session).trial_balance(
                _as_date(as_of), _as_uuid(company_id),
            )),
        )

    def account_balance(
        self,
        account_id: Any,
        company_id: Any,
        as_of: Any = None,
        posted_only: bool = False,
    ) -> ApiResponse:
        return self._handle(
            "account_balance", 200, company_id, None,
            self._with_session(lambda session: LedgerSelector(session).account_balance(
                _as_uuid(account_id),
                _as_uuid(company_id),
                as_of=_as_date(as_of) if as_of else None,
                posted_only=posted_only,
            )),
        )

    def account_activity(
        self, account_id: Any, company_id: Any, start_date: Any, end_date: Any,
    ) -> ApiResponse:
        return self._handle(
            "account_activity", 200, company_id, None,
            self._with_session(lambda session: LedgerSelector(session).account_activity(
                _as_uuid(account_id),
                _as_uuid(company_id),
                _as_date(start_date),
                _as_date(end_date),
            )),
        )

    def transaction_summary(
        self, company_id: Any, start_date: Any = None, end_date: Any = None,
    ) -> ApiResponse:
        """Posted totals by month and by type; defaults to the last 365 days."""
        def action(session: Session):
            end = _as_date(end_date) if end_date is not None else self._clock.today()
            start = (
                _as_date(start_date) if start_date is not None
                else end - timedelta(days=SUMMARY_DEFAULT_DAYS)
            )
            return LedgerSelector(session).transaction_summary(_as_uuid(company_id), start, end)

        return self._handle(
            "transaction_summary", 200, company_id, None, self._with_session(action),
        )
