"""Statement model and the builder that normalizes the accepted input shapes."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

SIGILS = (":", "@", "$")


def strip_sigil(name: str) -> str:
    """Return a parameter name without its leading ``:``, ``@`` or ``$``."""
    if name and name[0] in SIGILS:
        return name[1:]
    return name


class Statement(BaseModel):
    """A SQL text with either positional or named arguments.

    Positional arguments bind to ``?`` and ``?N`` placeholders. Named
    arguments bind to ``:name``, ``@name`` and ``$name``; keys are stored
    without the sigil so any of the three spellings reaches the same value.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    sql: str
    args: tuple[Any, ...] | dict[str, Any] = Field(default_factory=tuple)

    @field_validator("args", mode="before")
    @classmethod
    def _normalize_args(cls, args: Any) -> Any:
        if isinstance(args, Mapping):
            return normalize_named_args(args)
        return args

    @property
    def is_named(self) -> bool:
        """True if the arguments are a name -> value mapping."""
        return isinstance(self.args, dict)


def normalize_named_args(args: Mapping[str, Any]) -> dict[str, Any]:
    """Strip sigils from named argument keys.

    Raises ``ValueError`` if two keys name the same parameter.
    """
    named: dict[str, Any] = {}
    for key, value in args.items():
        if not isinstance(key, str):
            raise TypeError(f"Named argument keys must be strings, got {type(key).__name__}")
        name = strip_sigil(key)
        if name in named:
            raise ValueError(f"Named argument {name!r} is given more than once")
        named[name] = value
    return named


def _check_args(args: Any) -> tuple[Any, ...] | dict[str, Any]:
    if args is None:
        return ()
    if isinstance(args, Mapping):
        return normalize_named_args(args)
    if isinstance(args, str | bytes | bytearray) or not isinstance(args, Sequence):
        raise TypeError(
            "Statement arguments must be a sequence or a mapping, "
            f"got {type(args).__name__}"
        )
    return tuple(args)


def to_statement(stmt: Any) -> Statement:
    """Build a ``Statement`` from any accepted input shape.

    Accepts a bare SQL string, a ``Statement``, a ``(sql, args)`` tuple or a
    ``{"sql": ..., "args": ...}`` mapping. Only the structure is validated;
    SQL errors are reported by the database.
    """
    if isinstance(stmt, Statement):
        return stmt
    if isinstance(stmt, str):
        return Statement(sql=stmt)
    if isinstance(stmt, tuple) and len(stmt) == 2 and isinstance(stmt[0], str):
        return Statement(sql=stmt[0], args=_check_args(stmt[1]))
    if isinstance(stmt, Mapping) and isinstance(stmt.get("sql"), str):
        return Statement(sql=stmt["sql"], args=_check_args(stmt.get("args")))
    raise TypeError(
        "A statement must be a SQL string, a Statement, an (sql, args) tuple "
        f"or a mapping with 'sql' and 'args', got {type(stmt).__name__}"
    )
