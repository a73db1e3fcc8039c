"""Stateful client speaking Hrana over a WebSocket.

One socket carries many streams. Each stream is a server-side SQL
connection, so a transaction opened on a stream stays open across
requests until the stream executes COMMIT/ROLLBACK or is closed. Requests
are matched to responses by ``request_id``, which lets concurrent calls
share the socket.

If the socket drops, every in-flight request fails with
``HRANA_WEBSOCKET_ERROR`` and streams of that socket are dead
(``HRANA_CLOSED_ERROR``). The client opens a fresh socket for the next
call; nothing is retried.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from types import TracebackType
from typing import Any

import aiohttp

from libsql_client.batch import compile_atomic_batch, compile_sequential_batch, sequential_results
from libsql_client.config import get_timeout
from libsql_client.errors import ErrorCode, LibsqlError, ProtoError, mapped_errors
from libsql_client.hrana.proto import (
    batch_result_from_proto,
    batch_to_proto,
    error_from_proto,
    result_set_from_proto,
    stmt_to_proto,
)
from libsql_client.result import ResultSet
from libsql_client.statements import Statement, to_statement

logger = logging.getLogger(__name__)

SUBPROTOCOL = "hrana1"


class _IdAlloc:
    """Hands out the smallest unused non-negative integer."""

    def __init__(self) -> None:
        self._used: set[int] = set()
        self._free: list[int] = []

    def alloc(self) -> int:
        if self._free:
            self._free.sort()
            id_ = self._free.pop(0)
        else:
            id_ = len(self._used)
        self._used.add(id_)
        return id_

    def free(self, id_: int) -> None:
        if id_ in self._used:
            self._used.remove(id_)
            self._free.append(id_)


class WsConnection:
    """A single open WebSocket and the requests waiting on it."""

    def __init__(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """Wrap an already greeted socket and start reading from it."""
        self._ws = ws
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._request_ids = _IdAlloc()
        self._abandoned: set[int] = set()
        self._stream_ids = _IdAlloc()
        self._close_reason: LibsqlError | None = None
        self._reader = asyncio.create_task(self._read_loop())

    @classmethod
    async def open(
        cls,
        session: aiohttp.ClientSession,
        url: str,
        jwt: str | None,
        *,
        timeout: float,
    ) -> WsConnection:
        """Connect, send ``hello`` and wait for the server to accept it."""
        logger.info("Opening WebSocket connection to %s", url)
        ws = await session.ws_connect(url, protocols=(SUBPROTOCOL,))
        try:
            await ws.send_json({"type": "hello", "jwt": jwt})
            msg = await ws.receive(timeout=timeout)
            if msg.type is not aiohttp.WSMsgType.TEXT:
                raise LibsqlError(
                    "WebSocket closed before the server answered hello",
                    ErrorCode.HRANA_WEBSOCKET_ERROR,
                )
            try:
                reply = json.loads(msg.data)
            except ValueError as e:
                raise ProtoError(f"hello reply is not JSON: {e}") from e
            if not isinstance(reply, dict):
                raise ProtoError("hello reply is not a JSON object")
            if reply.get("type") == "hello_error":
                raise error_from_proto(reply.get("error"))
            if reply.get("type") != "hello_ok":
                raise ProtoError(f"expected hello_ok, got {reply.get('type')!r}")
        except BaseException:
            await ws.close()
            raise
        return cls(ws)

    @property
    def closed(self) -> bool:
        """True once the socket is gone, for whatever reason."""
        return self._close_reason is not None

    def alloc_stream_id(self) -> int:
        """Reserve a stream id on this connection."""
        return self._stream_ids.alloc()

    def free_stream_id(self, stream_id: int) -> None:
        """Release a stream id after the stream is closed."""
        self._stream_ids.free(stream_id)

    async def request(self, request: dict[str, Any]) -> Any:
        """Send one request and wait for its response."""
        if self._close_reason is not None:
            if self._close_reason.code == ErrorCode.CLIENT_CLOSED:
                raise self._close_reason
            raise LibsqlError("The WebSocket connection is closed", ErrorCode.HRANA_CLOSED_ERROR)

        request_id = self._request_ids.alloc()
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            logger.debug("Sending %s request %d", request.get("type"), request_id)
            try:
                await self._ws.send_json(
                    {"type": "request", "request_id": request_id, "request": request}
                )
            except (ConnectionError, aiohttp.ClientError) as e:
                raise LibsqlError(
                    f"Could not send request: {e}", ErrorCode.HRANA_WEBSOCKET_ERROR
                ) from e
            return await future
        finally:
            del self._pending[request_id]
            if future.cancelled() and self._close_reason is None:
                # the caller gave up after sending; the response may still
                # arrive, so the id stays reserved until it does
                self._abandoned.add(request_id)
            else:
                self._request_ids.free(request_id)

    async def close(self, reason: LibsqlError) -> None:
        """Close the socket, failing every request still in flight."""
        self._fail(reason)
        await self._ws.close()
        await self._reader

    async def _read_loop(self) -> None:
        reason = LibsqlError("The WebSocket was closed", ErrorCode.HRANA_WEBSOCKET_ERROR)
        try:
            async for msg in self._ws:
                if msg.type is aiohttp.WSMsgType.TEXT:
                    self._handle(json.loads(msg.data))
                elif msg.type is aiohttp.WSMsgType.ERROR:
                    reason = LibsqlError(
                        f"WebSocket error: {self._ws.exception()}",
                        ErrorCode.HRANA_WEBSOCKET_ERROR,
                    )
                    break
                else:
                    raise ProtoError(f"unexpected WebSocket message of type {msg.type!r}")
        except (ProtoError, ValueError) as e:
            reason = LibsqlError(
                f"Unexpected message from the server: {e}", ErrorCode.HRANA_PROTOCOL_ERROR
            )
        if self._close_reason is None:
            logger.warning("WebSocket connection lost: %s", reason.message)
        self._fail(reason)
        await self._ws.close()

    def _handle(self, msg: Any) -> None:
        kind = msg.get("type") if isinstance(msg, dict) else None
        if kind not in ("response_ok", "response_error"):
            raise ProtoError(f"unexpected message type {kind!r}")
        request_id = msg.get("request_id")
        if request_id in self._abandoned:
            self._abandoned.discard(request_id)
            self._request_ids.free(request_id)
            return
        future = self._pending.get(request_id)
        if future is None:
            raise ProtoError(f"response to unknown request {request_id!r}")
        if future.done():
            return
        if kind == "response_ok":
            future.set_result(msg.get("response"))
        else:
            future.set_exception(error_from_proto(msg.get("error")))

    def _fail(self, reason: LibsqlError) -> None:
        if self._close_reason is None:
            self._close_reason = reason
        for future in self._pending.values():
            if not future.done():
                future.set_exception(reason)


class WsStream:
    """A server-side SQL connection multiplexed over a ``WsConnection``."""

    def __init__(self, conn: WsConnection, stream_id: int) -> None:
        """Initialize for a stream that the server has already opened."""
        self._conn = conn
        self.stream_id = stream_id
        self._closed = False

    @classmethod
    async def open(cls, conn: WsConnection) -> WsStream:
        """Open a new stream on the connection."""
        stream_id = conn.alloc_stream_id()
        try:
            await conn.request({"type": "open_stream", "stream_id": stream_id})
        except BaseException:
            conn.free_stream_id(stream_id)
            raise
        return cls(conn, stream_id)

    async def execute(self, stmt: dict[str, Any]) -> Any:
        """Execute an encoded statement and return the encoded result."""
        response = await self._conn.request(
            {"type": "execute", "stream_id": self.stream_id, "stmt": stmt}
        )
        return _field(response, "result")

    async def batch(self, batch: dict[str, Any]) -> Any:
        """Execute an encoded batch and return the encoded batch result."""
        response = await self._conn.request(
            {"type": "batch", "stream_id": self.stream_id, "batch": batch}
        )
        return _field(response, "result")

    async def close(self) -> None:
        """Close the stream; a stream of a dead connection is already gone."""
        if self._closed:
            return
        self._closed = True
        try:
            if not self._conn.closed:
                await self._conn.request({"type": "close_stream", "stream_id": self.stream_id})
        except LibsqlError as e:
            logger.warning("Could not close stream %d: %s", self.stream_id, e.message)
            raise
        finally:
            self._conn.free_stream_id(self.stream_id)


def _field(response: Any, name: str) -> Any:
    if not isinstance(response, dict) or name not in response:
        raise ProtoError(f"response has no {name!r} field")
    return response[name]


_BEGIN = Statement(sql="BEGIN")
_COMMIT = Statement(sql="COMMIT")
_ROLLBACK = Statement(sql="ROLLBACK")


class WsClient:
    """Client for a libSQL server reached over ``ws:``, ``wss:`` or ``libsql:``."""

    def __init__(
        self,
        url: str,
        auth_token: str | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize without connecting; the socket opens on first use."""
        self._url = url
        self._auth_token = auth_token
        self._session = session
        self._owns_session = session is None
        self._timeout = timeout if timeout is not None else get_timeout()
        self._conn: WsConnection | None = None
        self._connect_lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        """True once ``close()`` was called."""
        return self._closed

    async def execute(self, stmt: Any) -> ResultSet:
        """Execute a single statement on a short-lived stream."""
        statement = to_statement(stmt)
        with mapped_errors():
            proto = stmt_to_proto(statement)
            stream = await self._open_stream()
            try:
                result = await stream.execute(proto)
            finally:
                await stream.close()
            return result_set_from_proto(result)

    async def batch(self, stmts: Sequence[Any]) -> list[ResultSet]:
        """Execute statements atomically as one compiled step graph."""
        batch, plan = compile_atomic_batch(stmts)
        with mapped_errors():
            proto = batch_to_proto(batch)
            stream = await self._open_stream()
            try:
                result = await stream.batch(proto)
            finally:
                await stream.close()
            return plan.results(batch_result_from_proto(result))

    async def transaction(self) -> WsTransaction:
        """Open a stream, run BEGIN on it and hand it out as a transaction."""
        with mapped_errors():
            stream = await self._open_stream()
            try:
                await stream.execute(stmt_to_proto(_BEGIN, want_rows=False))
            except BaseException:
                await stream.close()
                raise
            return WsTransaction(stream)

    async def close(self) -> None:
        """Close the socket. Calls still in flight fail with ``CLIENT_CLOSED``."""
        self._closed = True
        if self._conn is not None:
            await self._conn.close(LibsqlError("The client is closed", ErrorCode.CLIENT_CLOSED))
            self._conn = None
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> WsClient:
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

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout)
            )
        return self._session

    async def _connection(self) -> WsConnection:
        self._check_open()
        async with self._connect_lock:
            self._check_open()
            if self._conn is None or self._conn.closed:
                self._conn = await WsConnection.open(
                    self._get_session(), self._url, self._auth_token, timeout=self._timeout
                )
            return self._conn

    async def _open_stream(self) -> WsStream:
        return await WsStream.open(await self._connection())


class WsTransaction:
    """Interactive transaction bound to one stream."""

    def __init__(self, stream: WsStream) -> None:
        """Initialize with a stream on which BEGIN already succeeded."""
        self._stream = stream
        self._closed = False

    @property
    def id(self) -> int:
        """Opaque identifier, the id of the underlying stream."""
        return self._stream.stream_id

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
            proto = stmt_to_proto(statement)
            result = await self._stream.execute(proto)
            self._check_open()
            return result_set_from_proto(result)

    async def batch(self, stmts: Sequence[Any]) -> list[ResultSet]:
        """Execute statements in order; a failing one stops the rest."""
        self._check_open()
        batch, stmt_steps = compile_sequential_batch(stmts)
        with mapped_errors():
            result = await self._stream.batch(batch_to_proto(batch))
            self._check_open()
            return sequential_results(stmt_steps, batch_result_from_proto(result))

    async def commit(self) -> None:
        """Commit and close. The transaction is closed even if COMMIT fails."""
        await self._finish(_COMMIT)

    async def rollback(self) -> None:
        """Roll back and close."""
        await self._finish(_ROLLBACK)

    async def close(self) -> None:
        """Close the stream; the server discards the open transaction."""
        if self._closed:
            return
        self._closed = True
        with mapped_errors():
            await self._stream.close()

    async def __aenter__(self) -> WsTransaction:
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
            raise LibsqlError("The transaction is closed", ErrorCode.TRANSACTION_CLOSED)

    async def _finish(self, stmt: Statement) -> None:
        with mapped_errors():
            self._check_open()
            self._closed = True
            try:
                await self._stream.execute(stmt_to_proto(stmt, want_rows=False))
            finally:
                await self._stream.close()
