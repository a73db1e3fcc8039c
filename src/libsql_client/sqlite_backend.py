"""Local client for ``file:`` URLs, backed by aiosqlite.

Connections run in autocommit mode so BEGIN/COMMIT/ROLLBACK issued by
batches and transactions are the only transaction control. Batches run the
same compiled step graph as the remote transports, evaluated locally.

Each interactive transaction gets its own connection to the database file,
the way a WebSocket transaction gets its own stream, so calls on the client
never run inside someone else's transaction.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Sequence
from pathlib import Path
from types import TracebackType
from typing import Any

import aiosqlite

from libsql_client.batch import (
    Batch,
    BatchStep,
    compile_atomic_batch,
    compile_sequential_batch,
    evaluate_batch,
    sequential_results,
)
from libsql_client.errors import ErrorCode, LibsqlError, map_error, mapped_errors
from libsql_client.result import ResultSet
from libsql_client.statements import Statement, to_statement
from libsql_client.values import from_sqlite, from_wire, to_sqlite

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

_transaction_ids = itertools.count(1)


def _params(stmt: Statement) -> tuple[Any, ...] | dict[str, Any]:
    if isinstance(stmt.args, dict):
        # sqlite3 looks up named parameters without their sigil
        return {name: to_sqlite(value) for name, value in stmt.args.items()}
    return tuple(to_sqlite(value) for value in stmt.args)


def _check_params(batch: Batch) -> None:
    # coercion errors must surface before BEGIN, not halfway through a batch
    for step in batch.steps:
        _params(step.stmt)


async def open_connection(path: str) -> aiosqlite.Connection:
    """Open an autocommit connection, creating the parent directory."""
    if path != MEMORY:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(path, isolation_level=None)
    if path != MEMORY:
        # WAL lets the client read while a transaction connection writes
        await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA foreign_keys=ON")
    return conn


async def execute_stmt(conn: aiosqlite.Connection, stmt: Statement) -> ResultSet:
    """Execute one statement on an aiosqlite connection."""
    params = _params(stmt)
    cursor = await conn.execute(stmt.sql, params)
    try:
        rows = await cursor.fetchall()
        columns = [d[0] for d in cursor.description] if cursor.description else []
        rowcount = cursor.rowcount
        return ResultSet.from_values(
            columns,
            [[from_wire(from_sqlite(v)) for v in row] for row in rows],
            rows_affected=rowcount if rowcount > 0 else 0,
            last_insert_rowid=cursor.lastrowid if rowcount > 0 else None,
        )
    finally:
        await cursor.close()


async def _run_step(conn: aiosqlite.Connection, step: BatchStep) -> ResultSet:
    try:
        return await execute_stmt(conn, step.stmt)
    except Exception as e:
        mapped = map_error(e)
        if isinstance(mapped, LibsqlError):
            raise mapped from e
        raise


class SqliteClient:
    """Client for a local SQLite database file.

    The aiosqlite connection opens lazily on first use. Calls are
    serialized with a lock so batches on the shared connection never
    interleave. A call still running when the client is closed fails with
    ``CLIENT_CLOSED``.
    """

    def __init__(self, path: str) -> None:
        """Initialize with a database path or ``:memory:``."""
        self._path = path
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._transactions: set[SqliteTransaction] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        """True once ``close()`` was called."""
        return self._closed

    async def execute(self, stmt: Any) -> ResultSet:
        """Execute a single statement."""
        statement = to_statement(stmt)
        with mapped_errors():
            conn = await self._connection()
            async with self._lock:
                try:
                    return await execute_stmt(conn, statement)
                finally:
                    self._check_open()

    async def batch(self, stmts: Sequence[Any]) -> list[ResultSet]:
        """Execute statements atomically via the compiled step graph."""
        batch, plan = compile_atomic_batch(stmts)
        with mapped_errors():
            _check_params(batch)
            conn = await self._connection()
            async with self._lock:
                try:
                    result = await evaluate_batch(batch, lambda step: _run_step(conn, step))
                finally:
                    self._check_open()
            return plan.results(result)

    async def transaction(self) -> SqliteTransaction:
        """Open a dedicated connection, run BEGIN on it and return the handle.

        An in-memory database lives in a single connection, so it has no
        room for a transaction isolated from the client.
        """
        self._check_open()
        if self._path == MEMORY:
            raise LibsqlError(
                "Interactive transactions need a database file, "
                "an in-memory database has only one connection",
                ErrorCode.TRANSACTIONS_NOT_SUPPORTED,
            )
        with mapped_errors():
            conn = await open_connection(self._path)
            try:
                self._check_open()
                await conn.execute("BEGIN")
            except BaseException:
                await conn.close()
                raise
            txn = SqliteTransaction(self, conn)
            self._transactions.add(txn)
            return txn

    async def close(self) -> None:
        """Close the database connection and every open transaction."""
        self._closed = True
        for txn in list(self._transactions):
            await txn._release()
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await conn.close()

    async def __aenter__(self) -> SqliteClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise LibsqlError("The client is closed", ErrorCode.CLIENT_CLOSED)

    async def _connection(self) -> aiosqlite.Connection:
        self._check_open()
        async with self._lock:
            self._check_open()
            if self._conn is None:
                logger.info("Opening SQLite database at %s", self._path)
                self._conn = await open_connection(self._path)
            return self._conn


class SqliteTransaction:
    """Interactive transaction on its own connection to the database file."""

    def __init__(self, client: SqliteClient, conn: aiosqlite.Connection) -> None:
        """Initialize after BEGIN succeeded on ``conn``."""
        self._client = client
        self._conn = conn
        self._lock = asyncio.Lock()
        self._id = next(_transaction_ids)
        self._closed = False

    @property
    def id(self) -> int:
        """Opaque identifier of this transaction."""
        return self._id

    @property
    def closed(self) -> bool:
        """True once the transaction was committed, rolled back or closed."""
        return self._closed

    async def execute(self, stmt: Any) -> ResultSet:
        """Execute a statement inside the transaction.

        A failing statement does not end the transaction.
        """
        self._check_open()
        statement = to_statement(stmt)
        with mapped_errors():
            async with self._lock:
                self._check_open()
                try:
                    return await execute_stmt(self._conn, statement)
                finally:
                    self._check_open()

    async def batch(self, stmts: Sequence[Any]) -> list[ResultSet]:
        """Execute statements in order; a failing one stops the rest."""
        self._check_open()
        batch, stmt_steps = compile_sequential_batch(stmts)
        with mapped_errors():
            _check_params(batch)
            async with self._lock:
                self._check_open()
                try:
                    result = await evaluate_batch(
                        batch, lambda step: _run_step(self._conn, step)
                    )
                finally:
                    self._check_open()
            return sequential_results(stmt_steps, result)

    async def commit(self) -> None:
        """Commit and close. The transaction is closed even if COMMIT fails."""
        await self._finish("COMMIT")

    async def rollback(self) -> None:
        """Roll back and close."""
        await self._finish("ROLLBACK")

    async def close(self) -> None:
        """Roll back unless already committed or rolled back."""
        if self._closed:
            return
        if self._client.closed:
            # closing the client already discarded the transaction
            await self._release()
            return
        await self._finish("ROLLBACK")

    async def __aenter__(self) -> SqliteTransaction:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _check_open(self) -> None:
        self._client._check_open()
        if self._closed:
            raise LibsqlError("The transaction is closed", ErrorCode.TRANSACTION_CLOSED)

    async def _finish(self, sql: str) -> None:
        with mapped_errors():
            self._check_open()
            self._closed = True
            try:
                async with self._lock:
                    await self._conn.execute(sql)
            finally:
                await self._release()
                self._client._check_open()

    async def _release(self) -> None:
        # closing the connection rolls back anything still uncommitted
        self._closed = True
        self._client._transactions.discard(self)
        await self._conn.close()
