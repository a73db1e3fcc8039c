"""Uniform error type and the mapping from transport and driver failures into it."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from enum import StrEnum

import aiohttp
import httpx

logger = logging.getLogger(__name__)


class ErrorCode(StrEnum):
    """Canonical error codes raised by the client itself.

    Codes reported by a server or by SQLite are passed through verbatim,
    so ``LibsqlError.code`` is typed as ``str`` rather than ``ErrorCode``.
    """

    URL_INVALID = "URL_INVALID"
    URL_SCHEME_NOT_SUPPORTED = "URL_SCHEME_NOT_SUPPORTED"
    URL_PARAM_NOT_SUPPORTED = "URL_PARAM_NOT_SUPPORTED"
    CLIENT_CLOSED = "CLIENT_CLOSED"
    TRANSACTION_CLOSED = "TRANSACTION_CLOSED"
    TRANSACTIONS_NOT_SUPPORTED = "TRANSACTIONS_NOT_SUPPORTED"
    SERVER_ERROR = "SERVER_ERROR"
    UNKNOWN = "UNKNOWN"
    COERCION_ERROR = "COERCION_ERROR"
    HRANA_PROTOCOL_ERROR = "HRANA_PROTOCOL_ERROR"
    HRANA_HTTP_ERROR = "HRANA_HTTP_ERROR"
    HRANA_WEBSOCKET_ERROR = "HRANA_WEBSOCKET_ERROR"
    HRANA_CLOSED_ERROR = "HRANA_CLOSED_ERROR"


# Set by the interpreter while raising, chaining and annotating.
_EXCEPTION_SLOTS = frozenset(
    {"__traceback__", "__cause__", "__context__", "__suppress_context__", "__notes__"}
)


class LibsqlError(Exception):
    """Error raised by every public client operation.

    Carries a human readable message and exactly one code. Instances are
    immutable once constructed.
    """

    __slots__ = ("_message", "_code")

    def __init__(self, message: str, code: str) -> None:
        """Initialize with a message and an error code."""
        super().__init__(f"{code}: {message}")
        object.__setattr__(self, "_message", message)
        object.__setattr__(self, "_code", str(code))

    @property
    def message(self) -> str:
        """Human readable description of the failure."""
        return self._message

    @property
    def code(self) -> str:
        """Taxonomy key, either an ``ErrorCode`` or a server-reported code."""
        return self._code

    def __setattr__(self, name: str, value: object) -> None:
        if name in _EXCEPTION_SLOTS:
            object.__setattr__(self, name, value)
            return
        raise AttributeError(f"LibsqlError is immutable, cannot set {name!r}")

    def __reduce__(self) -> tuple[type[LibsqlError], tuple[str, str]]:
        return (type(self), (self._message, self._code))


class ProtoError(Exception):
    """A message received from the server did not have the expected shape."""


def map_error(exc: BaseException) -> BaseException:
    """Translate any failure into a ``LibsqlError``.

    Already-uniform errors are returned unchanged, so mapping twice is a
    no-op. ``TypeError`` is a programmer error (a bad argument container or
    an explicitly unset value) and is also returned unchanged. Argument
    validation runs before any mapped block, so its ``ValueError`` never
    reaches this function.
    """
    if isinstance(exc, LibsqlError | TypeError):
        return exc
    if isinstance(exc, ProtoError):
        return LibsqlError(
            f"Unexpected message from the server: {exc}", ErrorCode.HRANA_PROTOCOL_ERROR
        )
    if isinstance(exc, httpx.TransportError):
        return LibsqlError(f"HTTP request failed: {exc}", ErrorCode.HRANA_HTTP_ERROR)
    if isinstance(exc, httpx.HTTPError):
        return LibsqlError(str(exc), ErrorCode.HRANA_HTTP_ERROR)
    if isinstance(exc, aiohttp.ClientError):
        return LibsqlError(f"WebSocket error: {exc}", ErrorCode.HRANA_WEBSOCKET_ERROR)
    if isinstance(exc, sqlite3.Error):
        code = getattr(exc, "sqlite_errorname", None) or "SQLITE_ERROR"
        return LibsqlError(str(exc), code)
    logger.debug("Mapping unexpected %s to UNKNOWN", type(exc).__name__)
    return LibsqlError(str(exc) or type(exc).__name__, ErrorCode.UNKNOWN)


@contextmanager
def mapped_errors() -> Iterator[None]:
    """Re-raise anything escaping the block as a ``LibsqlError``."""
    try:
        yield
    except Exception as e:
        mapped = map_error(e)
        if mapped is e:
            raise
        raise mapped from e
