"""
Settings loader (``ledger_config.loader``).

Responsibility
--------------
Reads a YAML file into a frozen ``LedgerSettings``.  Resolution order for
the file is: explicit ``path`` argument, the ``LEDGER_CONFIG`` environment
variable, then the packaged ``defaults.yaml``.  ``LEDGER_DATABASE_URL``
always overrides ``database_url``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key, wrong type or out-of-range value  -> ``ConfigurationError``.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from ledger_kernel.exceptions import ConfigurationError
from ledger_kernel.logging_config import get_logger

from ledger_config.schema import LedgerSettings

logger = get_logger("config")

CONFIG_ENV_VAR = "LEDGER_CONFIG"
DATABASE_URL_ENV_VAR = "LEDGER_DATABASE_URL"
DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

_FIELD_DEFAULTS: dict[str, Any] = {
    f.name: f.default for f in dataclasses.fields(LedgerSettings)
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigurationError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top-level YAML value must be a mapping")
    return data


def _coerce(key: str, value: Any) -> Any:
    default = _FIELD_DEFAULTS[key]
    try:
        if isinstance(default, bool):
            if not isinstance(value, bool):
                raise TypeError
            return value
        if isinstance(default, int):
            if isinstance(value, bool):
                raise TypeError
            return int(value)
        if isinstance(default, Decimal):
            if isinstance(value, bool):
                raise TypeError
            return Decimal(str(value))
        if not isinstance(value, str):
            raise TypeError
        return value
    except (TypeError, ValueError, InvalidOperation):
        raise ConfigurationError(
            f"Invalid value for {key!r}: {value!r} "
            f"(expected {type(default).__name__})"
        ) from None


def _check_ranges(settings: LedgerSettings) -> None:
    if not 1 <= settings.fiscal_year_start_month <= 12:
        raise ConfigurationError("fiscal_year_start_month must be between 1 and 12")
    if settings.batch_max_workers < 1:
        raise ConfigurationError("batch_max_workers must be at least 1")
    if settings.reconciliation_window_days < 0:
        raise ConfigurationError("reconciliation_window_days must not be negative")
    if not 1 <= settings.default_page_size <= settings.max_page_size:
        raise ConfigurationError(
            "default_page_size must be between 1 and max_page_size"
        )
    if not Decimal("0") <= settings.match_confidence <= Decimal("1"):
        raise ConfigurationError("match_confidence must be between 0 and 1")


def parse_settings(data: dict[str, Any]) -> LedgerSettings:
    """Build LedgerSettings from a parsed mapping; missing keys keep defaults."""
    unknown = sorted(set(data) - set(_FIELD_DEFAULTS))
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")

    settings = LedgerSettings(**{k: _coerce(k, v) for k, v in data.items()})
    _check_ranges(settings)
    return settings


def compute_checksum(settings: LedgerSettings) -> str:
    """SHA-256 of the canonical JSON form, for change detection in logs."""
    canonical = json.dumps(dataclasses.asdict(settings), sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def load_settings(path: str | Path | None = None) -> LedgerSettings:
    """Load settings from ``path``, ``$LEDGER_CONFIG`` or the packaged defaults."""
    source = Path(path or os.environ.get(CONFIG_ENV_VAR) or DEFAULTS_PATH)
    data = load_yaml_file(source)

    url_override = os.environ.get(DATABASE_URL_ENV_VAR)
    if url_override:
        data["database_url"] = url_override

    settings = parse_settings(data)
    logger.info(
        "settings_loaded",
        extra={
            "source": str(source),
            "checksum": compute_checksum(settings),
            "database_url_overridden": bool(url_override),
        },
    )
    return settings
