"""
PostgreSQL connection-string handling.

Direct connections are dialed with discrete parameters and an IPv4
address, since some hosting providers publish AAAA records their
network cannot route. Pooled hosts (``*.pooler.supabase.com``) encode the
project in the user name and are passed through with
``sslmode=require`` forced.
"""

import asyncio
import ipaddress
import logging
import socket
import ssl
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, unquote, urlencode, urlsplit, urlunsplit

from ..constants import DEFAULT_PG_PORT, POOLER_HOST_MARKER
from ..exceptions import ConfigurationError
from ..observability.logging import mask_uri

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionParameters:
    """Discrete connection parameters extracted from a DSN."""

    host: str
    port: int
    user: str | None
    password: str | None
    database: str | None


def parse_dsn(dsn: str) -> ConnectionParameters | None:
    """
    Split a ``postgresql://`` URL into discrete parameters.

    Returns:
        The parameters, or None when the string has no host to extract

    Raises:
        ConfigurationError: If the port is not a valid number
    """
    parts = urlsplit(dsn)
    if parts.scheme not in ("postgresql", "postgres") or not parts.hostname:
        return None
    try:
        port = parts.port or DEFAULT_PG_PORT
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid port in database URL: {e}", config_key="DATABASE_URL", config_value=mask_uri(dsn)
        ) from e

    database = parts.path.lstrip("/") or None
    return ConnectionParameters(
        host=parts.hostname,
        port=port,
        user=unquote(parts.username) if parts.username else None,
        password=unquote(parts.password) if parts.password else None,
        database=unquote(database) if database else None,
    )


def is_pooler_host(dsn: str) -> bool:
    return POOLER_HOST_MARKER in dsn


def with_sslmode_require(dsn: str) -> str:
    """Force ``sslmode=require``, replacing any sslmode the DSN already sets."""
    parts = urlsplit(dsn)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "sslmode"]
    query.append(("sslmode", "require"))
    return urlunsplit(parts._replace(query=urlencode(query)))


def insecure_ssl_context() -> ssl.SSLContext:
    """TLS without certificate verification (managed hosts use private CAs)."""
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


async def resolve_ipv4(host: str) -> str:
    """
    Resolve a host name to its first IPv4 address.

    IP literals are returned unchanged; if there is no A record the host
    name itself is returned and the driver resolves it.
    """
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        pass

    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, None, family=socket.AF_INET, type=socket.SOCK_STREAM)
    except OSError as e:
        logger.warning(f"IPv4 resolution failed for {host}: {e}; using host name")
        return host
    if not infos:
        return host
    address = infos[0][4][0]
    logger.debug(f"Resolved {host} to {address}")
    return address


async def connection_options(dsn: str, ssl_mode: str = "require") -> dict[str, Any]:
    """
    asyncpg connect keyword arguments for a DSN.

    Args:
        dsn: PostgreSQL connection URL
        ssl_mode: "require" (TLS, no verification) or "disable"
    """
    if is_pooler_host(dsn):
        logger.info("Using pooled PostgreSQL connection")
        # Transaction-mode poolers cannot keep prepared statements across clients
        return {"dsn": with_sslmode_require(dsn), "statement_cache_size": 0}

    ssl_option: Any = insecure_ssl_context() if ssl_mode == "require" else False
    params = parse_dsn(dsn)
    if params is None:
        logger.warning("Could not parse connection string, using as-is")
        return {"dsn": dsn, "ssl": ssl_option}

    logger.info(
        f"Parsed connection - User: {params.user}, Host: {params.host}, Port: {params.port}"
    )
    return {
        "host": await resolve_ipv4(params.host),
        "port": params.port,
        "user": params.user,
        "password": params.password,
        "database": params.database,
        "ssl": ssl_option,
    }
