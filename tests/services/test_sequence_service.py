"""Tests for ledger_kernel.services.sequence_service."""

from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import TransactionType
from ledger_kernel.services.sequence_service import (
    FALLBACK_PREFIX,
    SequenceService,
    format_document_number,
    prefix_for,
)


class TestFormatting:

    def test_format(self):
        assert format_document_number("JE", 2024, 1) == "JE2024000001"
        assert format_document_number("INV", 2025, 123456) == "INV2025123456"

    @pytest.mark.parametrize(
        "document_type, prefix",
        [
            (TransactionType.JOURNAL_ENTRY, "JE"),
            (TransactionType.INVOICE, "INV"),
            (TransactionType.REVERSAL, "REV"),
            ("payment", "PAY"),
        ],
    )
    def test_prefixes(self, document_type, prefix):
        assert prefix_for(document_type) == prefix

    def test_unknown_type_falls_back(self):
        assert prefix_for("barter") == FALLBACK_PREFIX


class TestNextValue:

    def test_starts_at_one_and_increments(self, session, engine):
        sequences = SequenceService(session)
        assert [sequences.next_value("s") for _ in range(3)] == [1, 2, 3]
        assert sequences.current_value("s") == 3

    def test_scopes_are_independent(self, session, engine):
        sequences = SequenceService(session)
        company_a, company_b = uuid4(), uuid4()

        assert sequences.next_document_number(company_a, TransactionType.INVOICE, 2024) == "INV2024000001"
        assert sequences.next_document_number(company_b, TransactionType.INVOICE, 2024) == "INV2024000001"
        assert sequences.next_document_number(company_a, TransactionType.INVOICE, 2025) == "INV2025000001"
        assert sequences.next_document_number(company_a, TransactionType.INVOICE, 2024) == "INV2024000002"

    def test_batch_numbers(self, session, engine):
        company = uuid4()
        assert SequenceService(session).next_batch_number(company, 2024) == "BATCH2024000001"

    def test_unused_counter_is_none(self, session, engine):
        assert SequenceService(session).current_value("never") is None

    def test_rolled_back_allocation_is_reused(self, session_factory):
        """The increment rolls back with the caller's transaction."""
        session = session_factory()
        try:
            SequenceService(session).next_value("s")
            session.rollback()
            assert SequenceService(session).next_value("s") == 1
            session.commit()
        finally:
            session.close()

    def test_reset(self, session, engine):
        sequences = SequenceService(session)
        sequences.next_value("s")
        sequences.reset("s", 100)
        assert sequences.next_value("s") == 101
