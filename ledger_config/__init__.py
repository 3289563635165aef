"""
ledger_config -- YAML-backed runtime settings for the ledger engine.

``load_settings()`` is the single way to obtain settings.  The kernel never
imports this package; callers pass individual values into services.
"""

from ledger_config.loader import compute_checksum, load_settings
from ledger_config.schema import LedgerSettings

__all__ = ["LedgerSettings", "compute_checksum", "load_settings"]
