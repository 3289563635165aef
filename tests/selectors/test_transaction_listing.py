"""Tests for TransactionSelector.list via TransactionService.list."""

from datetime import date
from decimal import Decimal

import pytest

from ledger_kernel.domain.dtos import (
    TransactionFilters,
    TransactionStatus,
    TransactionType,
)
from ledger_kernel.services.transaction_service import TransactionService


@pytest.fixture
def seeded(service, accounts, company_id, user_id, make_request):
    """
    Five transactions for the company, one for another company:
    JE1 rent 100 (posted, Jan 5), JE2 sale 250 (draft, Jan 20),
    JE3 sale 75 (draft, Feb 2), INV1 invoice 500 (posted, Feb 15),
    JE4 bank transfer 40 (cancelled, Mar 1).
    """
    def create(debit, credit, amount, day, **kwargs):
        return service.create(
            make_request(debit, credit, amount, transaction_date=day, **kwargs),
            company_id, user_id,
        )

    rent = create(accounts.expense, accounts.cash, "100", date(2024, 1, 5), description="Office rent")
    service.post(rent.id, company_id, user_id)
    sale = create(accounts.cash, accounts.revenue, "250", date(2024, 1, 20), description="Counter sale")
    small = create(accounts.cash, accounts.revenue, "75", date(2024, 2, 2), reference="POS-77")
    invoice = create(
        accounts.cash, accounts.revenue, "500", date(2024, 2, 15),
        transaction_type=TransactionType.INVOICE, description="Invoice 9",
    )
    service.post(invoice.id, company_id, user_id)
    transfer = create(accounts.bank, accounts.cash, "40", date(2024, 3, 1))
    service.cancel(transfer.id, company_id, user_id)
    return {"rent": rent, "sale": sale, "small": small, "invoice": invoice, "transfer": transfer}


def _numbers(page):
    return [t.transaction_number for t in page.items]


class TestFilters:

    def test_default_sort_is_newest_first(self, service, seeded, company_id):
        page = service.list(TransactionFilters(), company_id)

        assert page.total == 5
        assert [t.id for t in page.items] == [
            seeded["transfer"].id, seeded["invoice"].id, seeded["small"].id,
            seeded["sale"].id, seeded["rent"].id,
        ]

    def test_search_covers_number_description_reference(self, service, seeded, company_id):
        assert service.list(TransactionFilters(search="sale"), company_id).total == 1
        assert _numbers(service.list(TransactionFilters(search="pos-77"), company_id)) == [
            seeded["small"].transaction_number,
        ]
        assert service.list(TransactionFilters(search="INV2024"), company_id).total == 1

    def test_status_and_type(self, service, seeded, company_id):
        posted = service.list(TransactionFilters(status=TransactionStatus.POSTED), company_id)
        assert {t.id for t in posted.items} == {seeded["rent"].id, seeded["invoice"].id}

        invoices = service.list(TransactionFilters(transaction_type="invoice"), company_id)
        assert [t.id for t in invoices.items] == [seeded["invoice"].id]

    def test_unposted_only(self, service, seeded, company_id):
        page = service.list(TransactionFilters(unposted_only=True), company_id)
        assert {t.id for t in page.items} == {seeded["sale"].id, seeded["small"].id}

    def test_date_and_amount_ranges(self, service, seeded, company_id):
        january = service.list(
            TransactionFilters(date_from=date(2024, 1, 1), date_to=date(2024, 1, 31)), company_id,
        )
        assert january.total == 2

        mid = service.list(
            TransactionFilters(min_amount=Decimal("75"), max_amount=Decimal("250")), company_id,
        )
        assert {t.id for t in mid.items} == {
            seeded["rent"].id, seeded["sale"].id, seeded["small"].id,
        }

    def test_account_filter(self, service, seeded, accounts, company_id):
        page = service.list(TransactionFilters(account_id=accounts.bank), company_id)
        assert [t.id for t in page.items] == [seeded["transfer"].id]

    def test_company_isolation(self, service, seeded, other_company_id):
        assert service.list(TransactionFilters(), other_company_id).total == 0


class TestSortingAndPaging:

    def test_sort_by_amount_ascending(self, service, seeded, company_id):
        page = service.list(TransactionFilters(sort_by="total_amount", sort_order="asc"), company_id)
        assert [t.total_amount for t in page.items] == [
            Decimal("40"), Decimal("75"), Decimal("100"), Decimal("250"), Decimal("500"),
        ]

    def test_pages(self, service, seeded, company_id):
        first = service.list(TransactionFilters(limit=2, sort_order="asc"), company_id)
        third = service.list(TransactionFilters(limit=2, page=3, sort_order="asc"), company_id)

        assert (first.total, first.pages, len(first.items)) == (5, 3, 2)
        assert [t.id for t in third.items] == [seeded["transfer"].id]

    def test_limit_is_clamped(self, session, clock, seeded, company_id):
        service = TransactionService(session, clock=clock, default_page_size=2, max_page_size=3)

        assert service.list(TransactionFilters(), company_id).limit == 2
        assert service.list(TransactionFilters(limit=50), company_id).limit == 3

    @pytest.mark.parametrize(
        "kwargs",
        [{"sort_by": "memo"}, {"sort_order": "sideways"}, {"page": 0}],
    )
    def test_bad_filters_rejected(self, kwargs):
        with pytest.raises(ValueError):
            TransactionFilters(**kwargs)

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ValueError):
            TransactionFilters.from_dict({"colour": "red"})
