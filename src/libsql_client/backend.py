"""Client protocol: one capability interface over every transport.

Application code programs against these protocols. Each transport (Hrana
over HTTP, Hrana over WebSocket, a local SQLite file) provides a concrete
implementation selected once by ``create_client``. Transport differences
stay inside the implementation; the only one visible to callers is that
the HTTP client raises ``TRANSACTIONS_NOT_SUPPORTED`` from ``transaction()``.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from libsql_client.result import ResultSet


@runtime_checkable
class Transaction(Protocol):
    """An interactive transaction held open on the server."""

    @property
    def closed(self) -> bool:
        """True once the transaction was committed, rolled back or closed."""
        ...

    async def execute(self, stmt: Any) -> ResultSet:
        """Execute a statement inside the transaction."""
        ...

    async def batch(self, stmts: Sequence[Any]) -> list[ResultSet]:
        """Execute statements in order inside the transaction."""
        ...

    async def commit(self) -> None:
        """Commit and close the transaction."""
        ...

    async def rollback(self) -> None:
        """Roll back and close the transaction."""
        ...

    async def close(self) -> None:
        """Close the transaction, discarding uncommitted changes."""
        ...


@runtime_checkable
class Client(Protocol):
    """Async database client.

    Statements may be a SQL string, a ``Statement``, an ``(sql, args)``
    tuple or a ``{"sql": ..., "args": ...}`` mapping.
    """

    @property
    def closed(self) -> bool:
        """True once ``close()`` was called."""
        ...

    async def execute(self, stmt: Any) -> ResultSet:
        """Execute a single statement and return its result set."""
        ...

    async def batch(self, stmts: Sequence[Any]) -> list[ResultSet]:
        """Execute statements atomically, one result set per statement."""
        ...

    async def transaction(self) -> Transaction:
        """Start an interactive transaction."""
        ...

    async def close(self) -> None:
        """Close the client and release its connection."""
        ...
