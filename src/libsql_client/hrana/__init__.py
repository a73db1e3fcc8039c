"""Hrana protocol transports."""

from libsql_client.hrana.http import HttpClient
from libsql_client.hrana.ws import WsClient, WsTransaction

__all__ = ["HttpClient", "WsClient", "WsTransaction"]
