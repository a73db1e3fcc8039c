"""Stateless client speaking Hrana over HTTP.

Each ``execute`` or ``batch`` call is one POST request. The server keeps
no state between requests, so interactive transactions are not available
and atomic batches are compiled into a single conditional step graph.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from types import TracebackType
from typing import Any, NoReturn

import httpx

from libsql_client.batch import compile_atomic_batch
from libsql_client.config import get_timeout
from libsql_client.errors import ErrorCode, LibsqlError, ProtoError, mapped_errors
from libsql_client.hrana.proto import (
    batch_result_from_proto,
    batch_to_proto,
    result_set_from_proto,
    stmt_to_proto,
)
from libsql_client.result import ResultSet
from libsql_client.statements import to_statement

logger = logging.getLogger(__name__)


class HttpClient:
    """Client for a libSQL server reached over ``http:`` or ``https:``."""

    def __init__(
        self,
        url: str,
        auth_token: str | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize with a base URL and an optional HTTP client."""
        self._url = url.rstrip("/")
        self._auth_token = auth_token
        self._http = http_client
        self._owns_http = http_client is None
        self._timeout = timeout if timeout is not None else get_timeout()
        self._closed = False

    @property
    def closed(self) -> bool:
        """True once ``close()`` was called."""
        return self._closed

    async def execute(self, stmt: Any) -> ResultSet:
        """Execute a single statement in its own request."""
        statement = to_statement(stmt)
        with mapped_errors():
            request = {"stmt": stmt_to_proto(statement)}
            response = await self._send("v1/execute", request)
            return result_set_from_proto(_field(response, "result"))

    async def batch(self, stmts: Sequence[Any]) -> list[ResultSet]:
        """Execute statements atomically in a single request."""
        batch, plan = compile_atomic_batch(stmts)
        with mapped_errors():
            request = {"batch": batch_to_proto(batch)}
            response = await self._send("v1/batch", request)
            return plan.results(batch_result_from_proto(_field(response, "result")))

    async def transaction(self) -> NoReturn:
        """Interactive transactions need a stateful connection."""
        self._check_open()
        raise LibsqlError(
            "The HTTP client does not support interactive transactions. "
            'Use a "libsql:", "ws:" or "wss:" URL to connect over a WebSocket.',
            ErrorCode.TRANSACTIONS_NOT_SUPPORTED,
        )

    async def close(self) -> None:
        """Close the client. The HTTP client is closed only if we created it."""
        self._closed = True
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> HttpClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
        return self._http

    def _check_open(self) -> None:
        if self._closed:
            raise LibsqlError("The client is closed", ErrorCode.CLIENT_CLOSED)

    async def _send(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        self._check_open()
        headers = {}
        if self._auth_token is not None:
            headers["Authorization"] = f"Bearer {self._auth_token}"

        logger.debug("POST %s/%s", self._url, path)
        resp = await self._get_client().post(
            f"{self._url}/{path}", json=body, headers=headers, timeout=self._timeout
        )
        # The client may have been closed while the request was in flight
        self._check_open()
        if resp.is_error:
            raise _error_from_response(resp)
        try:
            data = resp.json()
        except ValueError as e:
            raise ProtoError(f"response body is not JSON: {e}") from e
        if not isinstance(data, dict):
            raise ProtoError("response body is not a JSON object")
        return data


def _field(response: dict[str, Any], name: str) -> Any:
    try:
        return response[name]
    except KeyError:
        raise ProtoError(f"response has no {name!r} field") from None


def _error_from_response(resp: httpx.Response) -> LibsqlError:
    """Map a non-success response to a ``LibsqlError``.

    A JSON body with a ``message`` keeps the server's code; a plain-text
    body is quoted in a ``SERVER_ERROR``; anything else reports the status.
    """
    content_type = resp.headers.get("content-type", "text/plain").split(";")[0].strip()
    if content_type == "application/json":
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and "message" in body:
            return LibsqlError(str(body["message"]), body.get("code") or ErrorCode.UNKNOWN)
    elif content_type == "text/plain":
        text = resp.text.strip()
        if text:
            return LibsqlError(
                f"Server returned HTTP status {resp.status_code} and error: {text}",
                ErrorCode.SERVER_ERROR,
            )
    return LibsqlError(f"Server returned HTTP status {resp.status_code}", ErrorCode.SERVER_ERROR)
