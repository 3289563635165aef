"""
Conversion of DTOs into JSON-ready primitives for API response bodies.

Decimals become strings so no precision is lost on the wire; UUIDs become
strings; dates and datetimes become ISO 8601; enums become their values.
Selected derived properties are included alongside dataclass fields.
"""

from __future__ import annotations

import dataclasses
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from ledger_kernel.domain.dtos import (
    TransactionDTO,
    TransactionPage,
    TrialBalance,
    ValidationResult,
)

_DERIVED_PROPERTIES: dict[type, tuple[str, ...]] = {
    TransactionDTO: ("total_debits", "total_credits"),
    TransactionPage: ("pages",),
    TrialBalance: ("total_debits", "total_credits", "is_balanced"),
    ValidationResult: ("is_valid",),
}


def to_primitive(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        body = {
            f.name: to_primitive(getattr(value, f.name))
            for f in dataclasses.fields(value)
        }
        for name in _DERIVED_PROPERTIES.get(type(value), ()):
            body[name] = to_primitive(getattr(value, name))
        return body
    if isinstance(value, dict):
        return {str(k): to_primitive(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_primitive(v) for v in value]
    raise TypeError(f"Cannot serialize {type(value).__name__}")
