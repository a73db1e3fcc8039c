"""Environment-variable-based configuration and URL expansion."""

import os
from urllib.parse import parse_qsl, urlsplit

from pydantic import BaseModel

from libsql_client.errors import ErrorCode, LibsqlError

SUPPORTED_URL_PARAMS = frozenset({"authToken"})


def get_url() -> str | None:
    """Return the database URL from LIBSQL_URL."""
    return os.environ.get("LIBSQL_URL")


def get_auth_token() -> str | None:
    """Return the bearer token from LIBSQL_AUTH_TOKEN."""
    return os.environ.get("LIBSQL_AUTH_TOKEN") or None


def get_timeout() -> float:
    """Return the network timeout in seconds from LIBSQL_TIMEOUT."""
    return float(os.environ.get("LIBSQL_TIMEOUT", "30.0"))


class ExpandedConfig(BaseModel):
    """A parsed and validated client URL."""

    scheme: str
    authority: str
    path: str
    auth_token: str | None = None


def expand_config(url: str, auth_token: str | None = None) -> ExpandedConfig:
    """Parse a client URL and validate its query parameters.

    ``authToken`` in the query string is used only when ``auth_token`` is
    not given. Any other query parameter is rejected.
    """
    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise LibsqlError(f"The URL {url!r} is not valid: {e}", ErrorCode.URL_INVALID) from e
    if not parts.scheme:
        raise LibsqlError(f"The URL {url!r} has no scheme", ErrorCode.URL_INVALID)

    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        if key not in SUPPORTED_URL_PARAMS:
            raise LibsqlError(
                f'Unsupported URL query parameter "{key}"', ErrorCode.URL_PARAM_NOT_SUPPORTED
            )
        if key == "authToken" and auth_token is None:
            auth_token = value or None

    return ExpandedConfig(
        scheme=parts.scheme.lower(),
        authority=parts.netloc,
        path=parts.path,
        auth_token=auth_token,
    )
