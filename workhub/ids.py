"""
Identifier resolution.

Callers pass through whatever id arrived over the wire: an int, a string of
digits, or an opaque document key (24 hex characters). Each backend owns a
resolver that turns that value into lookups in its own key space. A value a
backend cannot interpret resolves to nothing; it never raises.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional

from bson import ObjectId

_INTEGER_PATTERN = re.compile(r"^\s*\d+\s*$")

# Signed 64-bit, the widest integer BSON and BIGINT columns hold.
MAX_NUMERIC_ID = 2**63 - 1


def parse_numeric_id(value: Any) -> Optional[int]:
    """Return ``value`` as an int when it is one or spells one exactly."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and _INTEGER_PATTERN.match(value):
        number = int(value)
    else:
        return None
    return number if 0 <= number <= MAX_NUMERIC_ID else None


def normalize_reference(value: Any) -> Any:
    """Canonical form for a stored foreign-key value (int when numeric)."""
    numeric = parse_numeric_id(value)
    if numeric is not None:
        return numeric
    if isinstance(value, (ObjectId, int)) and not isinstance(value, bool):
        return str(value)
    return value


@dataclass(frozen=True)
class NumericKeyResolver:
    """
    Key space of integer primary keys (in-memory maps, SQL tables).

    Numbers above ``max_value`` cannot be stored as keys, so they resolve to
    nothing instead of reaching the driver.
    """

    max_value: int = MAX_NUMERIC_ID

    def resolve(self, value: Any) -> Optional[int]:
        number = parse_numeric_id(value)
        if number is None or number > self.max_value:
            return None
        return number


@dataclass(frozen=True)
class DocumentKeyResolver:
    """
    Key space of a document collection.

    Documents are keyed by an ObjectId ``_id`` and may also carry a shadow
    numeric ``id`` field, kept for records that were created under an integer
    key space (seeded or migrated data). Lookups try the native key first and
    the shadow field second.
    """

    native_field: str = "_id"
    shadow_field: str = "id"

    def resolve(self, value: Any) -> list[dict]:
        candidates: list[dict] = []
        if isinstance(value, ObjectId):
            return [{self.native_field: value}]
        if isinstance(value, str) and ObjectId.is_valid(value):
            candidates.append({self.native_field: ObjectId(value)})
        numeric = parse_numeric_id(value)
        if numeric is not None:
            candidates.append({self.shadow_field: numeric})
        return candidates
