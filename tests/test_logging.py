"""Tests for ledger event logging: context binding and JSON rendering."""

import json
import logging
import sys
from datetime import date
from decimal import Decimal
from io import StringIO

import pytest

from ledger_batch.services.executor import BatchExecutor
from ledger_kernel.domain.dtos import (
    CreateTransactionRequest,
    EntryRequest,
    TransactionType,
    ValidationError,
    ValidationResult,
    ValidationWarning,
)
from ledger_kernel.exceptions import AlreadyPostedError, TransactionValidationError
from ledger_kernel.logging_config import (
    CONTEXT_FIELDS,
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


def _events(records, name):
    return [r for r in records if r["event"] == name]


def _short_by_ten(accounts):
    return CreateTransactionRequest(
        transaction_type=TransactionType.JOURNAL_ENTRY,
        transaction_date=date(2024, 1, 15),
        entries=(
            EntryRequest(account_id=accounts.cash, debit_amount=Decimal("100")),
            EntryRequest(account_id=accounts.revenue, credit_amount=Decimal("90")),
        ),
    )


# ---------------------------------------------------------------------------
# Transaction lifecycle events
# ---------------------------------------------------------------------------


class TestTransactionEvents:

    def test_posted_event_carries_ledger_identifiers(
        self, service, accounts, company_id, user_id, make_request, captured_logs,
    ):
        with LogContext.bind(company_id=company_id, actor_id=user_id):
            draft = service.create(make_request(accounts.cash, accounts.revenue), company_id, user_id)
            posted = service.post(draft.id, company_id, user_id)

        [record] = _events(captured_logs(), "transaction_posted")
        assert record["company_id"] == str(company_id)
        assert record["actor_id"] == str(user_id)
        assert record["transaction_id"] == str(posted.id)
        assert record["transaction_number"] == "JE2024000001"
        assert Decimal(record["total_amount"]) == Decimal("100")
        assert record["posting_date"] == posted.posting_date.isoformat()

    def test_balance_update_is_logged_under_the_posted_transaction(
        self, service, accounts, company_id, user_id, make_request, captured_logs,
    ):
        draft = service.create(make_request(accounts.cash, accounts.revenue), company_id, user_id)
        service.post(draft.id, company_id, user_id)

        [record] = _events(captured_logs(), "account_balances_applied")
        assert record["transaction_number"] == draft.transaction_number
        assert record["accounts"] == 2

    def test_transaction_fields_do_not_outlive_the_call(
        self, service, accounts, company_id, user_id, make_request,
    ):
        draft = service.create(make_request(accounts.cash, accounts.revenue), company_id, user_id)
        service.post(draft.id, company_id, user_id)

        assert "transaction_id" not in LogContext.get_all()
        assert "transaction_number" not in LogContext.get_all()

    def test_reversal_events_name_their_own_transactions(
        self, service, accounts, company_id, user_id, make_request, captured_logs,
    ):
        draft = service.create(make_request(accounts.cash, accounts.revenue), company_id, user_id)
        service.post(draft.id, company_id, user_id)
        reversal = service.reverse(draft.id, company_id, user_id)

        records = captured_logs()
        [reversed_] = _events(records, "transaction_reversed")
        assert reversed_["transaction_number"] == draft.transaction_number
        assert reversed_["reversal_number"] == reversal.transaction_number
        assert [r["transaction_number"] for r in _events(records, "transaction_posted")] == [
            draft.transaction_number,
            reversal.transaction_number,
        ]

    def test_created_event_reports_warning_codes(
        self, service, accounts, company_id, user_id, make_request, captured_logs,
    ):
        service.create(
            make_request(accounts.cash, accounts.revenue, "2000000.00"), company_id, user_id,
        )

        [record] = _events(captured_logs(), "transaction_created")
        assert record["is_valid"] is True
        assert record["error_codes"] == []
        assert record["warning_codes"] == ["LARGE_AMOUNT"]
        assert "validation" not in record

    def test_rejected_entries_log_error_codes(
        self, service, accounts, company_id, user_id, captured_logs,
    ):
        with pytest.raises(TransactionValidationError):
            service.create(_short_by_ten(accounts), company_id, user_id)

        [record] = _events(captured_logs(), "transaction_validation_failed")
        assert record["is_valid"] is False
        assert record["error_codes"] == ["UNBALANCED_ENTRIES"]
        assert record["entry_count"] == 2
        assert not _events(captured_logs(), "transaction_created")


# ---------------------------------------------------------------------------
# Batch item events
# ---------------------------------------------------------------------------


class TestBatchItemEvents:

    def _execute(self, executor, requests, company_id, user_id):
        handle = executor.submit("Feed", None, requests, company_id, user_id)
        return executor.execute(handle.batch_id, company_id, user_id, requests)

    def test_failed_item_is_logged_with_batch_and_index(
        self, session_factory, clock, accounts, company_id, user_id, make_request, captured_logs,
    ):
        executor = BatchExecutor(session_factory, clock=clock)
        requests = [make_request(accounts.cash, accounts.revenue), _short_by_ten(accounts)]

        result = self._execute(executor, requests, company_id, user_id)

        [failed] = _events(captured_logs(), "batch_item_failed")
        assert failed["level"] == "WARNING"
        assert failed["batch_id"] == str(result.batch_id)
        assert failed["item_index"] == "1"
        assert failed["failure_code"] == "VALIDATION_FAILED"
        assert failed["error_codes"] == ["UNBALANCED_ENTRIES"]

    def test_created_item_carries_batch_index_and_number(
        self, session_factory, clock, accounts, company_id, user_id, make_request, captured_logs,
    ):
        executor = BatchExecutor(session_factory, clock=clock)
        requests = [make_request(accounts.cash, accounts.revenue)]

        result = self._execute(executor, requests, company_id, user_id)

        [created] = _events(captured_logs(), "transaction_created")
        assert created["batch_id"] == str(result.batch_id)
        assert created["item_index"] == "0"
        assert created["transaction_number"] == result.item_results[0].transaction_number

    def test_pooled_items_keep_their_context_on_worker_threads(
        self, session_factory, clock, accounts, company_id, user_id, make_request, captured_logs,
    ):
        executor = BatchExecutor(session_factory, clock=clock, max_workers=2)
        requests = [
            make_request(accounts.cash, accounts.revenue, "10.00"),
            make_request(accounts.expense, accounts.cash, "5.00"),
            make_request(accounts.bank, accounts.cash, "1.00"),
        ]

        with LogContext.bind(company_id=company_id):
            result = self._execute(executor, requests, company_id, user_id)

        created = _events(captured_logs(), "transaction_created")
        assert {r["item_index"] for r in created} == {"0", "1", "2"}
        assert {r["batch_id"] for r in created} == {str(result.batch_id)}
        assert {r["company_id"] for r in created} == {str(company_id)}


# ---------------------------------------------------------------------------
# Error rendering
# ---------------------------------------------------------------------------


class TestErrorRendering:

    def _render(self, exc):
        try:
            raise exc
        except Exception:
            record = logging.LogRecord(
                "ledger_kernel.api", logging.WARNING, __file__, 1, "rejected", (), None,
            )
            record.exc_info = sys.exc_info()
        return json.loads(StructuredFormatter().format(record))

    def test_validation_error_is_reduced_to_codes(self):
        result = ValidationResult(
            errors=(ValidationError(field="entries", message="short", code="UNBALANCED_ENTRIES"),),
            warnings=(ValidationWarning(field="entries", message="big", code="LARGE_AMOUNT"),),
        )

        rendered = self._render(TransactionValidationError(result))

        assert rendered["error_type"] == "TransactionValidationError"
        assert rendered["error_code"] == "VALIDATION_FAILED"
        assert rendered["error_codes"] == ["UNBALANCED_ENTRIES"]
        assert rendered["warning_codes"] == ["LARGE_AMOUNT"]
        assert "error_result" not in rendered
        assert "Traceback" in rendered["traceback"]

    def test_state_error_exposes_its_identifiers(self):
        rendered = self._render(AlreadyPostedError("txn-1"))

        assert rendered["error_code"] == "ALREADY_POSTED"
        assert rendered["error_transaction_id"] == "txn-1"
        assert rendered["error_status"] == "posted"

    def test_unexpected_error_has_no_code(self):
        rendered = self._render(RuntimeError("disk gone"))

        assert rendered["error_type"] == "RuntimeError"
        assert rendered["error_message"] == "disk gone"
        assert "error_code" not in rendered


# ---------------------------------------------------------------------------
# LogContext
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_fields_come_back_in_scope_order(self):
        LogContext.set(transaction_number="JE2024000001", company_id="co")

        assert list(LogContext.get_all()) == ["company_id", "transaction_number"]
        assert list(CONTEXT_FIELDS).index("batch_id") < list(CONTEXT_FIELDS).index("item_index")

    def test_nested_binds_restore_outer_transaction(self):
        with LogContext.bind(transaction_number="JE2024000001"):
            with LogContext.bind(transaction_number="RV2024000001", item_index=3):
                assert LogContext.get_all() == {
                    "item_index": "3",
                    "transaction_number": "RV2024000001",
                }
            assert LogContext.get_all() == {"transaction_number": "JE2024000001"}
        assert LogContext.get_all() == {}

    def test_none_values_are_skipped(self):
        with LogContext.bind(batch_id=None, item_index=0):
            assert LogContext.get_all() == {"item_index": "0"}

    def test_unknown_field_is_rejected(self):
        with pytest.raises(ValueError, match="ledger_code"):
            with LogContext.bind(ledger_code="x"):
                pass


# ---------------------------------------------------------------------------
# configure_logging / reset_logging
# ---------------------------------------------------------------------------


@pytest.fixture
def unconfigured():
    reset_logging()
    yield
    reset_logging()
    configure_logging(level=logging.DEBUG)


@pytest.mark.usefixtures("unconfigured")
class TestConfigureLogging:

    def test_first_configuration_wins_until_reset(self):
        first, second = logging.StreamHandler(StringIO()), logging.StreamHandler(StringIO())
        root = logging.getLogger("ledger_kernel")

        configure_logging(handler=first)
        configure_logging(handler=second)
        assert first in root.handlers and second not in root.handlers

        reset_logging()
        configure_logging(handler=second)
        assert second in root.handlers and first not in root.handlers

    def test_component_loggers_write_ledger_json(self):
        stream = StringIO()
        configure_logging(stream=stream, level=logging.INFO)

        get_logger("services.reconciliation").info("transactions_reconciled", extra={"count": 2})
        get_logger("services.reconciliation").debug("reconciliation_candidates")

        [line] = stream.getvalue().splitlines()
        record = json.loads(line)
        assert record["logger"] == "ledger_kernel.services.reconciliation"
        assert record["event"] == "transactions_reconciled"
        assert record["count"] == 2
