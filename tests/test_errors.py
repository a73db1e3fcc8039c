"""Tests for the error type and mapper."""

import pickle
import sqlite3

import aiohttp
import httpx
import pytest

from libsql_client.errors import ErrorCode, LibsqlError, ProtoError, map_error, mapped_errors


class TestLibsqlError:
    def test_message_and_code(self):
        e = LibsqlError("boom", ErrorCode.SERVER_ERROR)
        assert e.message == "boom"
        assert e.code == "SERVER_ERROR"
        assert str(e) == "SERVER_ERROR: boom"

    def test_server_code_passes_through(self):
        assert LibsqlError("constraint failed", "SQLITE_CONSTRAINT").code == "SQLITE_CONSTRAINT"

    def test_immutable(self):
        e = LibsqlError("boom", ErrorCode.UNKNOWN)
        with pytest.raises(AttributeError):
            e.code = "OTHER"  # type: ignore[misc]
        with pytest.raises(AttributeError):
            e.extra = 1

    def test_can_be_raised_and_chained(self):
        with pytest.raises(LibsqlError) as exc_info:
            try:
                raise ValueError("inner")
            except ValueError as inner:
                raise LibsqlError("outer", ErrorCode.UNKNOWN) from inner
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_pickle(self):
        e = pickle.loads(pickle.dumps(LibsqlError("boom", "SQLITE_BUSY")))
        assert e.message == "boom"
        assert e.code == "SQLITE_BUSY"


class TestMapError:
    def test_libsql_error_is_unchanged(self):
        e = LibsqlError("boom", ErrorCode.CLIENT_CLOSED)
        assert map_error(e) is e

    def test_idempotent(self):
        mapped = map_error(RuntimeError("boom"))
        assert map_error(mapped) is mapped

    def test_type_error_is_unchanged(self):
        exc = TypeError("bad args")
        assert map_error(exc) is exc

    def test_value_error_from_a_driver_is_mapped(self):
        mapped = map_error(ValueError("Connection closed"))
        assert isinstance(mapped, LibsqlError)
        assert mapped.code == ErrorCode.UNKNOWN

    def test_proto_error(self):
        mapped = map_error(ProtoError("missing field"))
        assert mapped.code == ErrorCode.HRANA_PROTOCOL_ERROR

    def test_httpx_error(self):
        mapped = map_error(httpx.ConnectError("refused"))
        assert mapped.code == ErrorCode.HRANA_HTTP_ERROR

    def test_aiohttp_error(self):
        mapped = map_error(aiohttp.ClientConnectionError("reset"))
        assert mapped.code == ErrorCode.HRANA_WEBSOCKET_ERROR

    def test_aiohttp_invalid_url_is_not_a_programmer_error(self):
        mapped = map_error(aiohttp.InvalidURL("ws://"))
        assert mapped.code == ErrorCode.HRANA_WEBSOCKET_ERROR

    def test_sqlite_error_keeps_its_name(self):
        conn = sqlite3.connect(":memory:")
        try:
            with pytest.raises(sqlite3.Error) as exc_info:
                conn.execute("SELECT foobar")
        finally:
            conn.close()
        mapped = map_error(exc_info.value)
        assert mapped.code == "SQLITE_ERROR"
        assert "foobar" in mapped.message

    def test_anything_else_is_unknown(self):
        mapped = map_error(RuntimeError("boom"))
        assert mapped.code == ErrorCode.UNKNOWN
        assert mapped.message == "boom"


class TestMappedErrors:
    def test_chains_original(self):
        with pytest.raises(LibsqlError) as exc_info:
            with mapped_errors():
                raise ProtoError("bad")
        assert isinstance(exc_info.value.__cause__, ProtoError)

    def test_reraises_uniform_error_unchanged(self):
        original = LibsqlError("closed", ErrorCode.CLIENT_CLOSED)
        with pytest.raises(LibsqlError) as exc_info:
            with mapped_errors():
                raise original
        assert exc_info.value is original
        assert exc_info.value.__cause__ is None
