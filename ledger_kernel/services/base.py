"""
BaseService -- abstract base for all ledger services.

Services receive a SQLAlchemy ``Session`` from the caller and persist with
``session.flush()``.  They never commit or roll back: the caller
(``session_scope``, the API facade, or the batch executor.s per-item scopes) owns
the transaction boundary, which is what makes post-plus-balance and
reverse-plus-mark-original single atomic units.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for all ledger services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide query-only methods; those live in
          ``ledger_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
