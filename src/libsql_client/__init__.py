"""Async client for libSQL servers and local SQLite databases."""

from libsql_client.backend import Client, Transaction
from libsql_client.batch import Batch, BatchCond, compile_atomic_batch
from libsql_client.connection import create_client
from libsql_client.errors import ErrorCode, LibsqlError
from libsql_client.hrana.http import HttpClient
from libsql_client.hrana.ws import WsClient
from libsql_client.result import ResultSet, Row
from libsql_client.sqlite_backend import SqliteClient
from libsql_client.statements import Statement
from libsql_client.values import UNSET

__all__ = [
    "UNSET",
    "Batch",
    "BatchCond",
    "Client",
    "ErrorCode",
    "HttpClient",
    "LibsqlError",
    "ResultSet",
    "Row",
    "SqliteClient",
    "Statement",
    "Transaction",
    "WsClient",
    "compile_atomic_batch",
    "create_client",
]
