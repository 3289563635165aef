"""
SequenceService -- collision-free document numbers via counter rows.

Responsibility:
    Allocates human-readable transaction and batch numbers of the form
    ``<PREFIX><YEAR><6-digit counter>`` scoped by (company, document type,
    year).  Each scope owns one row in ``sequence_counters``.

Architecture position:
    Kernel > Services.  Called by TransactionService (transaction numbers)
    and the batch executor (batch numbers).

Invariants enforced:
    - The counter is advanced with a single atomic
      ``UPDATE ... SET current_value = current_value + 1 RETURNING`` in the
      caller's transaction.  Reading the greatest existing number and adding
      one is FORBIDDEN: two writers would read the same maximum.
    - The unique constraint on (company_id, transaction_number) backs this
      up; a duplicate can never be committed.

Failure modes:
    - IntegrityError on concurrent creation of a scope's first counter row,
      handled by savepoint rollback and retrying the increment.
    - On rollback of the caller's transaction the increment is rolled back
      too, so numbers are gap-free for committed work.
"""

from uuid import UUID

from sqlalchemy import BigInteger, String, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from ledger_kernel.db.base import Base
from ledger_kernel.domain.dtos import TransactionType
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


DOCUMENT_PREFIXES: dict[TransactionType, str] = {
    TransactionType.JOURNAL_ENTRY: "JE",
    TransactionType.INVOICE: "INV",
    TransactionType.PAYMENT: "PAY",
    TransactionType.RECEIPT: "REC",
    TransactionType.ADJUSTMENT: "ADJ",
    TransactionType.TRANSFER: "TXF",
    TransactionType.DEPRECIATION: "DEP",
    TransactionType.ACCRUAL: "ACC",
    TransactionType.REVERSAL: "REV",
    TransactionType.OPENING_BALANCE: "OB",
    TransactionType.CLOSING_ENTRY: "CE",
}

FALLBACK_PREFIX = "TXN"
BATCH_PREFIX = "BATCH"
COUNTER_WIDTH = 6


def prefix_for(document_type: TransactionType | str) -> str:
    """Return the number prefix for a document type, TXN if unknown."""
    try:
        return DOCUMENT_PREFIXES[TransactionType(document_type)]
    except ValueError:
        return FALLBACK_PREFIX


def format_document_number(prefix: str, year: int, value: int) -> str:
    return f"{prefix}{year}{value:0{COUNTER_WIDTH}d}"


class SequenceCounter(Base):
    """
    One row per numbering scope.

    ``name`` is ``<company_id>:<prefix>:<year>``.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Guarantees:
        - Strictly increasing values per scope, unique under concurrent
          callers.
        - The increment commits or rolls back with the caller's transaction.

    Non-goals:
        - Does NOT call ``session.commit()``; caller controls boundaries.

    Usage:
        number = SequenceService(session).next_document_number(
            company_id, TransactionType.JOURNAL_ENTRY, 2024,
        )
        # "JE2024000001"
    """

    def __init__(self, session: Session):
        self._session = session

    @staticmethod
    def scope_name(company_id: UUID, prefix: str, year: int) -> str:
        return f"{company_id}:{prefix}:{year}"

    def next_value(self, sequence_name: str) -> int:
        """
        Atomically advance a named counter and return its new value.

        The first call for a name inserts the row inside a savepoint; if a
        concurrent caller inserted it first the savepoint is rolled back and
        the increment is retried against the winner's row.

        Returns:
            The next value (always > 0).
        """
        increment = (
            update(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .values(current_value=SequenceCounter.current_value + 1)
            .returning(SequenceCounter.current_value)
            .execution_options(synchronize_session=False)
        )

        value = self._session.execute(increment).scalar_one_or_none()

        if value is None:
            savepoint = self._session.begin_nested()
            try:
                self._session.add(SequenceCounter(name=sequence_name, current_value=1))
                self._session.flush()
                savepoint.commit()
                value = 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                value = self._session.execute(increment).scalar_one()

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return value

    def next_document_number(
        self, company_id: UUID, document_type: TransactionType | str, year: int,
    ) -> str:
        prefix = prefix_for(document_type)
        value = self.next_value(self.scope_name(company_id, prefix, year))
        return format_document_number(prefix, year, value)

    def next_batch_number(self, company_id: UUID, year: int) -> str:
        value = self.next_value(self.scope_name(company_id, BATCH_PREFIX, year))
        return format_document_number(BATCH_PREFIX, year, value)

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a counter without incrementing, None if unused."""
        return self._session.execute(
            select(SequenceCounter.current_value)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

    def reset(self, sequence_name: str, value: int = 0) -> None:
        """
        Reset a counter to a specific value.

        WARNING: only for tests and data migrations.  Resetting below the
        highest issued number makes the next allocation collide with the
        unique constraint.
        """
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
        ).scalar_one_or_none()

        if counter is None:
            self._session.add(SequenceCounter(name=sequence_name, current_value=value))
        else:
            counter.current_value = value

        self._session.flush()
