"""Coercion between Python values and the wire value model.

Pure functions, no I/O. Every Python value maps to exactly one ``Value``
variant; anything that cannot be represented raises a ``LibsqlError`` with
code ``COERCION_ERROR`` instead of being approximated.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Final

from libsql_client.errors import ErrorCode, LibsqlError

MIN_INTEGER: Final = -(2**63)
MAX_INTEGER: Final = 2**63 - 1

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class _Unset:
    """Type of the ``UNSET`` sentinel."""

    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Final = _Unset()
"""An explicitly absent argument, as opposed to SQL ``NULL`` (``None``)."""


class ValueType(StrEnum):
    """Wire value variants."""

    NULL = "null"
    INTEGER = "integer"
    FLOAT = "float"
    TEXT = "text"
    BLOB = "blob"
    BIGINT = "bigint"


@dataclass(frozen=True, slots=True)
class Value:
    """A transport-neutral SQL value.

    ``BIGINT`` holds the decimal string of an integer outside the signed
    64-bit range; SQLite cannot store it as an integer, so it travels as text.
    """

    type: ValueType
    value: None | int | float | str | bytes = None


NULL: Final = Value(ValueType.NULL)


def _coercion_error(message: str) -> LibsqlError:
    return LibsqlError(message, ErrorCode.COERCION_ERROR)


def to_wire(value: Any) -> Value:
    """Convert a Python value into a wire ``Value``.

    Raises ``TypeError`` for ``UNSET`` and ``LibsqlError`` (``COERCION_ERROR``)
    for values with no wire representation.
    """
    if value is None:
        return NULL
    if value is UNSET:
        raise TypeError("UNSET is not a valid SQL value; use None for NULL")
    # bool is a subclass of int, so it must be checked first
    if isinstance(value, bool):
        return Value(ValueType.INTEGER, int(value))
    if isinstance(value, int):
        if MIN_INTEGER <= value <= MAX_INTEGER:
            return Value(ValueType.INTEGER, int(value))
        return Value(ValueType.BIGINT, str(int(value)))
    if isinstance(value, float):
        if not math.isfinite(value):
            raise _coercion_error(f"Float value {value!r} cannot be represented as a SQL value")
        return Value(ValueType.FLOAT, float(value))
    if isinstance(value, str):
        return Value(ValueType.TEXT, value)
    if isinstance(value, bytes | bytearray | memoryview):
        return Value(ValueType.BLOB, bytes(value))
    if isinstance(value, datetime):
        return Value(ValueType.INTEGER, datetime_to_millis(value))
    raise _coercion_error(f"Unsupported type of value: {type(value).__name__}")


def from_wire(value: Value) -> Any:
    """Convert a wire ``Value`` back into a Python value.

    Blobs come back as ``bytes``, big integers as their decimal string.
    """
    if value.type is ValueType.NULL:
        return None
    if value.type is ValueType.INTEGER:
        return int(value.value)  # type: ignore[arg-type]
    if value.type is ValueType.FLOAT:
        return float(value.value)  # type: ignore[arg-type]
    if value.type is ValueType.BLOB:
        return bytes(value.value)  # type: ignore[arg-type]
    return value.value


def datetime_to_millis(value: datetime) -> int:
    """Milliseconds since the Unix epoch. Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    delta = value - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def to_sqlite(value: Any) -> None | int | float | str | bytes:
    """Convert a Python value into a parameter accepted by the sqlite3 driver."""
    return to_wire(value).value


def from_sqlite(value: Any) -> Value:
    """Wrap a value returned by the sqlite3 driver as a wire ``Value``."""
    if value is None:
        return NULL
    if isinstance(value, int):
        return Value(ValueType.INTEGER, value)
    if isinstance(value, float):
        return Value(ValueType.FLOAT, value)
    if isinstance(value, str):
        return Value(ValueType.TEXT, value)
    if isinstance(value, bytes):
        return Value(ValueType.BLOB, value)
    raise _coercion_error(f"Unsupported type of value from SQLite: {type(value).__name__}")
