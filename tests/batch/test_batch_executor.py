"""
Tests for BatchExecutor: per-item isolation, final status, cancellation.

Every test reads through ``session_scope(session_factory)``; holding the
``session`` fixture open would keep the SQLite write lock away from the
executor.
"""

import threading
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_batch.domain.types import BatchItemStatus, BatchStatus
from ledger_batch.services.executor import BatchExecutor
from ledger_kernel.db.engine import session_scope
from ledger_kernel.domain.dtos import CreateTransactionRequest, EntryRequest, TransactionType
from ledger_kernel.exceptions import BatchNotFoundError, BatchStateError
from ledger_kernel.selectors.transaction_selector import TransactionSelector
from ledger_kernel.services.transaction_service import TransactionService


def _unbalanced(accounts):
    return CreateTransactionRequest(
        transaction_type=TransactionType.JOURNAL_ENTRY,
        transaction_date=date(2024, 1, 15),
        entries=(
            EntryRequest(account_id=accounts.cash, debit_amount=Decimal("100")),
            EntryRequest(account_id=accounts.revenue, credit_amount=Decimal("90")),
        ),
    )


@pytest.fixture
def executor(session_factory, clock, accounts):
    return BatchExecutor(session_factory, clock=clock)


@pytest.fixture
def valid_requests(accounts, make_request):
    return [
        make_request(accounts.cash, accounts.revenue, "100.00"),
        make_request(accounts.expense, accounts.cash, "40.00"),
        make_request(accounts.bank, accounts.cash, "25.50"),
    ]


def _run(executor, requests, company_id, user_id, cancel_event=None):
    handle = executor.submit("January import", None, requests, company_id, user_id)
    return handle, executor.execute(
        handle.batch_id, company_id, user_id, requests, cancel_event,
    )


class TestSubmit:

    def test_pending_header(self, executor, valid_requests, company_id, user_id):
        handle = executor.submit("January import", "bank feed", valid_requests, company_id, user_id)

        assert handle.status == BatchStatus.PENDING
        assert handle.batch_number == "BATCH2024000001"
        assert handle.total_transactions == 3
        assert handle.total_amount == Decimal("165.50")
        assert handle.currency == "INR"

        status = executor.get(handle.batch_id, company_id)
        assert status.status == BatchStatus.PENDING
        assert status.description == "bank feed"
        assert status.items == ()

    def test_batch_numbers_increase(self, executor, valid_requests, company_id, user_id):
        first = executor.submit("a", None, valid_requests, company_id, user_id)
        second = executor.submit("b", None, valid_requests, company_id, user_id)

        assert (first.batch_number, second.batch_number) == (
            "BATCH2024000001", "BATCH2024000002",
        )


class TestExecute:

    def test_all_valid_completes(
        self, executor, session_factory, valid_requests, company_id, user_id,
    ):
        handle, result = _run(executor, valid_requests, company_id, user_id)

        assert result.status == BatchStatus.COMPLETED
        assert (result.succeeded, result.failed, result.skipped) == (3, 0, 0)
        assert result.error_message is None

        with session_scope(session_factory) as s:
            created = TransactionSelector(s).list_for_batch(handle.batch_id, company_id)
        assert len(created) == 3
        assert len({t.transaction_number for t in created}) == 3

    def test_one_invalid_item_fails_batch_but_keeps_the_rest(
        self, executor, session_factory, valid_requests, accounts, company_id, user_id,
    ):
        requests = valid_requests + [_unbalanced(accounts)]

        handle, result = _run(executor, requests, company_id, user_id)

        assert result.status == BatchStatus.FAILED
        assert (result.succeeded, result.failed) == (3, 1)
        assert result.error_message.startswith("Transaction 4:")
        assert "must equal total credits" in result.error_message

        status = executor.get(handle.batch_id, company_id)
        assert status.status == BatchStatus.FAILED
        assert (status.succeeded_count, status.failed_count) == (3, 1)
        assert len(status.transaction_ids) == 3
        assert [i.status for i in status.items] == [
            BatchItemStatus.SUCCEEDED,
            BatchItemStatus.SUCCEEDED,
            BatchItemStatus.SUCCEEDED,
            BatchItemStatus.FAILED,
        ]
        assert status.items[3].error_code == "VALIDATION_FAILED"

        with session_scope(session_factory) as s:
            selector = TransactionSelector(s)
            for transaction_id in status.transaction_ids:
                assert selector.get(transaction_id, company_id).batch_id == handle.batch_id

    def test_failure_messages_joined(
        self, executor, valid_requests, accounts, company_id, user_id,
    ):
        requests = [_unbalanced(accounts), valid_requests[0], _unbalanced(accounts)]

        _, result = _run(executor, requests, company_id, user_id)

        assert result.error_message.startswith("Transaction 1:")
        assert "; Transaction 3:" in result.error_message

    def test_unexpected_item_error_is_recorded(
        self, session_factory, clock, valid_requests, company_id, user_id,
    ):
        class ExplodingService(TransactionService):
            def create(self, *args, **kwargs):
                raise RuntimeError("boom")

        executor = BatchExecutor(
            session_factory,
            service_factory=lambda s: ExplodingService(s, clock=clock),
            clock=clock,
        )

        _, result = _run(executor, valid_requests[:1], company_id, user_id)

        item = result.item_results[0]
        assert result.status == BatchStatus.FAILED
        assert item.error_code == "UNHANDLED_EXCEPTION"
        assert item.error_message == "Transaction 1: unexpected error: boom"

    def test_pooled_mode(
        self, session_factory, clock, accounts, make_request, company_id, user_id,
    ):
        executor = BatchExecutor(session_factory, clock=clock, max_workers=3)
        requests = [
            make_request(accounts.cash, accounts.revenue, f"{10 + i}.00") for i in range(6)
        ]
        requests.append(_unbalanced(accounts))

        handle, result = _run(executor, requests, company_id, user_id)

        assert result.status == BatchStatus.FAILED
        assert (result.succeeded, result.failed) == (6, 1)
        assert [r.item_index for r in result.item_results] == list(range(7))
        numbers = {r.transaction_number for r in result.item_results if r.transaction_number}
        assert len(numbers) == 6
        assert len(executor.get(handle.batch_id, company_id).transaction_ids) == 6

    def test_cannot_execute_twice(self, executor, valid_requests, company_id, user_id):
        handle, _ = _run(executor, valid_requests, company_id, user_id)

        with pytest.raises(BatchStateError):
            executor.execute(handle.batch_id, company_id, user_id, valid_requests)

    def test_unknown_batch(self, executor, valid_requests, company_id, user_id):
        with pytest.raises(BatchNotFoundError):
            executor.execute(uuid4(), company_id, user_id, valid_requests)


class TestCancel:

    def test_cancel_pending_then_execute_skips_everything(
        self, executor, session_factory, valid_requests, company_id, user_id,
    ):
        handle = executor.submit("x", None, valid_requests, company_id, user_id)

        assert executor.cancel(handle.batch_id, company_id, user_id) == BatchStatus.CANCELLED

        result = executor.execute(handle.batch_id, company_id, user_id, valid_requests)
        assert result.status == BatchStatus.CANCELLED
        assert result.skipped == 3
        assert result.error_message == "Cancelled before processing"

        with session_scope(session_factory) as s:
            assert TransactionSelector(s).list_for_batch(handle.batch_id, company_id) == []

    def test_cancel_flag_stops_between_items(
        self, session_factory, clock, valid_requests, company_id, user_id,
    ):
        event = threading.Event()

        class CancellingService(TransactionService):
            def create(self, *args, **kwargs):
                dto = super().create(*args, **kwargs)
                event.set()
                return dto

        executor = BatchExecutor(
            session_factory,
            service_factory=lambda s: CancellingService(s, clock=clock),
            clock=clock,
        )

        handle, result = _run(executor, valid_requests, company_id, user_id, event)

        assert result.status == BatchStatus.CANCELLED
        assert (result.succeeded, result.skipped) == (1, 2)
        assert len(executor.get(handle.batch_id, company_id).transaction_ids) == 1

    def test_cannot_cancel_finished_batch(self, executor, valid_requests, company_id, user_id):
        handle, _ = _run(executor, valid_requests, company_id, user_id)

        with pytest.raises(BatchStateError) as exc_info:
            executor.cancel(handle.batch_id, company_id, user_id)
        assert exc_info.value.code == "BATCH_STATE_CONFLICT"

    def test_other_company_cannot_see_batch(
        self, executor, valid_requests, company_id, other_company_id, user_id,
    ):
        handle = executor.submit("x", None, valid_requests, company_id, user_id)

        with pytest.raises(BatchNotFoundError):
            executor.get(handle.batch_id, other_company_id)
        with pytest.raises(BatchNotFoundError):
            executor.cancel(handle.batch_id, other_company_id, user_id)


class TestMarkFailed:

    def test_marks_unfinished_batch(self, executor, valid_requests, company_id, user_id):
        handle = executor.submit("x", None, valid_requests, company_id, user_id)

        executor.mark_failed(handle.batch_id, company_id, user_id, "worker crashed")

        status = executor.get(handle.batch_id, company_id)
        assert status.status == BatchStatus.FAILED
        assert status.error_message == "worker crashed"

    def test_leaves_finished_batch_alone(self, executor, valid_requests, company_id, user_id):
        handle, _ = _run(executor, valid_requests, company_id, user_id)

        executor.mark_failed(handle.batch_id, company_id, user_id, "late")

        assert executor.get(handle.batch_id, company_id).status == BatchStatus.COMPLETED
