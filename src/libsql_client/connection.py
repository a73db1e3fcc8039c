"""Client facade: pick the transport once, from the URL scheme."""

import logging

from libsql_client.backend import Client
from libsql_client.config import ExpandedConfig, expand_config, get_auth_token, get_url
from libsql_client.errors import ErrorCode, LibsqlError
from libsql_client.hrana.http import HttpClient
from libsql_client.hrana.ws import WsClient
from libsql_client.sqlite_backend import SqliteClient

logger = logging.getLogger(__name__)


def create_client(url: str | None = None, *, auth_token: str | None = None) -> Client:
    """Create a client for the given URL.

    Dispatches on the scheme: ``ws:``, ``wss:`` and ``libsql:`` connect over
    a WebSocket, ``http:`` and ``https:`` use stateless HTTP requests, and
    ``file:`` opens a local SQLite database. Falls back to LIBSQL_URL and
    LIBSQL_AUTH_TOKEN. Performs no network activity; configuration errors
    are raised here, before any request.
    """
    url = url if url is not None else get_url()
    if not url:
        raise LibsqlError("No database URL given and LIBSQL_URL is not set", ErrorCode.URL_INVALID)
    config = expand_config(url, auth_token if auth_token is not None else get_auth_token())
    return _create_client(config)


def _create_client(config: ExpandedConfig) -> Client:
    scheme = config.scheme
    if scheme == "libsql":
        scheme = "wss"

    if scheme in ("ws", "wss"):
        logger.debug("Using WebSocket transport for %s", config.authority)
        return WsClient(_base_url(scheme, config), config.auth_token)
    if scheme in ("http", "https"):
        logger.debug("Using HTTP transport for %s", config.authority)
        return HttpClient(_base_url(scheme, config), config.auth_token)
    if scheme == "file":
        return SqliteClient(_file_path(config))

    raise LibsqlError(
        'The client supports only "libsql:", "wss:", "ws:", "https:", "http:" and "file:" '
        f'URLs, got "{config.scheme}:"',
        ErrorCode.URL_SCHEME_NOT_SUPPORTED,
    )


def _base_url(scheme: str, config: ExpandedConfig) -> str:
    return f"{scheme}://{config.authority}{config.path}"


def _file_path(config: ExpandedConfig) -> str:
    if config.authority not in ("", "localhost"):
        raise LibsqlError(
            f'A "file:" URL cannot have a host, got "{config.authority}"',
            ErrorCode.URL_INVALID,
        )
    if not config.path:
        raise LibsqlError('A "file:" URL needs a path', ErrorCode.URL_INVALID)
    return config.path
