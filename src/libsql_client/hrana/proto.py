"""JSON encoding of Hrana protocol messages.

Covers the shapes shared by the HTTP and WebSocket transports: values,
statements, batches with their conditions, statement and batch results,
and errors. Decoding failures raise ``ProtoError``.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

from libsql_client.batch import (
    AndCond,
    Batch,
    BatchCond,
    BatchResult,
    ErrorCond,
    NotCond,
    OkCond,
    OrCond,
)
from libsql_client.errors import ErrorCode, LibsqlError, ProtoError
from libsql_client.result import ResultSet
from libsql_client.statements import Statement
from libsql_client.values import Value, ValueType, from_wire, to_wire

# -- Values --


def value_to_proto(value: Value) -> dict[str, Any]:
    """Encode a wire value."""
    if value.type is ValueType.NULL:
        return {"type": "null"}
    if value.type is ValueType.INTEGER:
        # i64 travels as a decimal string to survive JSON number precision
        return {"type": "integer", "value": str(value.value)}
    if value.type is ValueType.FLOAT:
        return {"type": "float", "value": value.value}
    if value.type is ValueType.BLOB:
        data: bytes = value.value  # type: ignore[assignment]
        return {"type": "blob", "base64": base64.b64encode(data).decode("ascii")}
    # TEXT and BIGINT both travel as text
    return {"type": "text", "value": value.value}


def value_from_proto(obj: Any) -> Value:
    """Decode a wire value."""
    try:
        kind = obj["type"]
        if kind == "null":
            return Value(ValueType.NULL)
        if kind == "integer":
            return Value(ValueType.INTEGER, int(obj["value"]))
        if kind == "float":
            return Value(ValueType.FLOAT, float(obj["value"]))
        if kind == "text":
            return Value(ValueType.TEXT, str(obj["value"]))
        if kind == "blob":
            return Value(ValueType.BLOB, base64.b64decode(obj.get("base64") or "", validate=True))
    except (KeyError, TypeError, ValueError, binascii.Error) as e:
        raise ProtoError(f"invalid value {obj!r}") from e
    raise ProtoError(f"unknown value type {kind!r}")


# -- Statements and batches --


def stmt_to_proto(stmt: Statement, *, want_rows: bool = True) -> dict[str, Any]:
    """Encode a statement, coercing every argument."""
    proto: dict[str, Any] = {"sql": stmt.sql, "want_rows": want_rows}
    if isinstance(stmt.args, dict):
        proto["named_args"] = [
            {"name": name, "value": value_to_proto(to_wire(value))}
            for name, value in stmt.args.items()
        ]
    else:
        proto["args"] = [value_to_proto(to_wire(value)) for value in stmt.args]
    return proto


def cond_to_proto(cond: BatchCond) -> dict[str, Any]:
    """Encode a batch condition."""
    if isinstance(cond, OkCond):
        return {"type": "ok", "step": cond.step}
    if isinstance(cond, ErrorCond):
        return {"type": "error", "step": cond.step}
    if isinstance(cond, NotCond):
        return {"type": "not", "cond": cond_to_proto(cond.cond)}
    if isinstance(cond, AndCond):
        return {"type": "and", "conds": [cond_to_proto(c) for c in cond.conds]}
    if isinstance(cond, OrCond):
        return {"type": "or", "conds": [cond_to_proto(c) for c in cond.conds]}
    raise TypeError(f"Unknown batch condition {type(cond).__name__}")


def batch_to_proto(batch: Batch) -> dict[str, Any]:
    """Encode a batch as a list of steps."""
    steps = []
    for step in batch.steps:
        proto: dict[str, Any] = {"stmt": stmt_to_proto(step.stmt, want_rows=step.want_rows)}
        if step.condition is not None:
            proto["condition"] = cond_to_proto(step.condition)
        steps.append(proto)
    return {"steps": steps}


# -- Results and errors --


def error_from_proto(obj: Any) -> LibsqlError:
    """Decode an error reported by the server."""
    if not isinstance(obj, dict) or "message" not in obj:
        raise ProtoError(f"invalid error {obj!r}")
    return LibsqlError(str(obj["message"]), obj.get("code") or ErrorCode.UNKNOWN)


def result_set_from_proto(obj: Any) -> ResultSet:
    """Decode a statement result into a ``ResultSet``."""
    try:
        columns = [col.get("name") or "" for col in obj["cols"]]
        rows = [[from_wire(value_from_proto(v)) for v in row] for row in obj["rows"]]
        rowid = obj.get("last_insert_rowid")
        return ResultSet.from_values(
            columns,
            rows,
            rows_affected=int(obj.get("affected_row_count") or 0),
            last_insert_rowid=int(rowid) if rowid is not None else None,
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ProtoError(f"invalid statement result: {e}") from e


def batch_result_from_proto(obj: Any) -> BatchResult:
    """Decode a batch result."""
    try:
        step_results = obj["step_results"]
        step_errors = obj["step_errors"]
    except (KeyError, TypeError) as e:
        raise ProtoError(f"invalid batch result: {e}") from e
    return BatchResult(
        step_results=[result_set_from_proto(r) if r is not None else None for r in step_results],
        step_errors=[error_from_proto(e) if e is not None else None for e in step_errors],
    )
