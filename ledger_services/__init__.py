"""
ledger_services -- outer facade over the ledger kernel and batch system.

Dependency direction:
    ledger_services/ -> ledger_batch/, ledger_config/, ledger_kernel/  (allowed)
    ledger_kernel/   -> ledger_services/                               (FORBIDDEN)
"""

from ledger_services.api import ApiResponse, LedgerAPI

__all__ = ["ApiResponse", "LedgerAPI"]
