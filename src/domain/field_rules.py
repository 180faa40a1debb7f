"""
Declarative field classification for update payloads.

Each updatable entity gets a read-only table mapping field name to
``FieldClass``, plus a table of the value types each allowed field takes.
Both tables are handed to the service explicitly, so there is no shared
mutable allow-list.
"""

from __future__ import annotations

import enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from .errors import InvalidField


class FieldClass(str, enum.Enum):
    ALLOWED = "allowed"
    IMMUTABLE = "immutable"
    UNKNOWN = "unknown"


TRIP_UPDATE_FIELDS: Mapping[str, FieldClass] = MappingProxyType(
    {
        "price_per_seat": FieldClass.ALLOWED,
        "total_seats": FieldClass.ALLOWED,
        "notes": FieldClass.ALLOWED,
        "id": FieldClass.IMMUTABLE,
        "driver_id": FieldClass.IMMUTABLE,
        "vehicle_id": FieldClass.IMMUTABLE,
        "origin": FieldClass.IMMUTABLE,
        "destination": FieldClass.IMMUTABLE,
        "departure_at": FieldClass.IMMUTABLE,
        "estimated_arrival_at": FieldClass.IMMUTABLE,
        "status": FieldClass.IMMUTABLE,
        "created_at": FieldClass.IMMUTABLE,
        "updated_at": FieldClass.IMMUTABLE,
    }
)

# Accepted JSON value types per allowed field; bool is never a number here
TRIP_UPDATE_TYPES: Mapping[str, tuple[type, ...]] = MappingProxyType(
    {
        "price_per_seat": (int, float),
        "total_seats": (int,),
        "notes": (str,),
    }
)

# Canceled / completed trips keep only these editable
TERMINAL_TRIP_EDITABLE: frozenset[str] = frozenset({"notes"})


def classify(field: str, table: Mapping[str, FieldClass]) -> FieldClass:
    return table.get(field, FieldClass.UNKNOWN)


def _check_type(name: str, value: Any, expected: tuple[type, ...]) -> None:
    if isinstance(value, bool) or not isinstance(value, expected):
        names = " or ".join(t.__name__ for t in expected)
        raise InvalidField(name, f"Field '{name}' must be of type {names}")


def validate_update(
    changes: Mapping[str, Any],
    table: Mapping[str, FieldClass],
    types: Optional[Mapping[str, tuple[type, ...]]] = None,
) -> dict[str, Any]:
    """Return *changes* as a dict, or raise on the first bad field or value."""
    if not changes:
        raise InvalidField("*", "No fields to update")
    for name, value in changes.items():
        cls = classify(name, table)
        if cls is FieldClass.IMMUTABLE:
            raise InvalidField(name, f"Field '{name}' cannot be modified")
        if cls is FieldClass.UNKNOWN:
            raise InvalidField(name, f"Field '{name}' is not recognised")
        if types and name in types:
            _check_type(name, value, types[name])
    return dict(changes)
