"""Pool construction through the AlloyDB connector."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Protocol, runtime_checkable
from urllib.parse import parse_qs, quote, unquote, urlsplit

import asyncpg
from google.cloud.alloydb.connector import AsyncConnector, IPTypes

from .config import EngineConfig
from .errors import ConnectivityError
from .models import IPType, ResolvedIdentity

LOG = logging.getLogger(__name__)

DRIVER = "asyncpg"

_CONNECTOR_IP_TYPES = {
    IPType.PUBLIC: IPTypes.PUBLIC,
    IPType.PRIVATE: IPTypes.PRIVATE,
}


@runtime_checkable
class ConnectionPool(Protocol):
    """Subset of the asyncpg pool API the engine relies on."""

    async def execute(self, query: str, *args: Any) -> str: ...

    async def close(self) -> None: ...


@dataclass(frozen=True, slots=True)
class PoolHandle:
    """A pool plus the connector its connections were dialed through."""

    pool: ConnectionPool
    connector: AsyncConnector | None = None


def instance_uri(project_id: str, region: str, cluster: str, instance: str) -> str:
    """Fully-qualified AlloyDB instance resource name."""

    return f"projects/{project_id}/locations/{region}/clusters/{cluster}/instances/{instance}"


def build_descriptor(user: str, database: str, password: str | None = None) -> str:
    """Connection descriptor for the pool; IAM logins carry no password."""

    credentials = quote(user, safe="")
    if password:
        credentials += ":" + quote(password, safe="")
    return f"postgresql://{credentials}@/{quote(database, safe='')}?sslmode=disable"


def parse_descriptor(descriptor: str) -> dict[str, str]:
    """Turn a descriptor into connector keyword arguments (user, password, db)."""

    try:
        parts = urlsplit(descriptor)
    except ValueError as exc:
        raise ConnectivityError(f"failed to parse connection config: {exc}") from exc
    if parts.scheme not in ("postgres", "postgresql"):
        raise ConnectivityError(
            f"failed to parse connection config: unsupported scheme {parts.scheme!r}"
        )
    if not parts.username:
        raise ConnectivityError("failed to parse connection config: missing user")
    database = unquote(parts.path.lstrip("/"))
    if not database:
        raise ConnectivityError("failed to parse connection config: missing database")
    sslmode = parse_qs(parts.query).get("sslmode", ["disable"])[-1]
    if sslmode != "disable":
        # The connector terminates TLS itself.
        raise ConnectivityError(
            f"failed to parse connection config: unsupported sslmode {sslmode!r}"
        )
    kwargs = {"user": unquote(parts.username), "db": database}
    if parts.password:
        kwargs["password"] = unquote(parts.password)
    return kwargs


async def create_pool(config: EngineConfig, identity: ResolvedIdentity) -> PoolHandle:
    """Return the configured pool, or build one that dials through the connector."""

    if config.pool is not None:
        LOG.debug("Using pre-supplied connection pool")
        return PoolHandle(pool=config.pool)

    password = None if identity.uses_iam else config.password
    descriptor = build_descriptor(identity.username, config.database, password)

    try:
        connector = AsyncConnector(enable_iam_auth=identity.uses_iam)
    except Exception as exc:
        raise ConnectivityError(f"failed to initialize connection: {exc}") from exc

    try:
        connect_kwargs: dict[str, Any] = dict(parse_descriptor(descriptor))
        settings = config.pool_settings
        if settings.command_timeout is not None:
            connect_kwargs["command_timeout"] = settings.command_timeout
        uri = instance_uri(config.project_id, config.region, config.cluster, config.instance)
        dial = _make_dial(connector, uri, config.ip_type, identity.uses_iam, connect_kwargs)
        try:
            pool = await asyncpg.create_pool(
                descriptor,
                connect=dial,
                min_size=settings.min_size,
                max_size=settings.max_size,
                max_inactive_connection_lifetime=settings.max_inactive_connection_lifetime,
            )
        except Exception as exc:
            raise ConnectivityError(f"unable to create connection pool: {exc}") from exc
    except BaseException:
        # Includes cancellation while the pool is still being created.
        await _close_connector(connector)
        raise

    LOG.info(
        "Created connection pool",
        extra={"instance": uri, "user": identity.username, "iam": identity.uses_iam},
    )
    return PoolHandle(pool=pool, connector=connector)


def _make_dial(
    connector: AsyncConnector,
    uri: str,
    ip_type: IPType,
    uses_iam: bool,
    connect_kwargs: dict[str, Any],
):
    connector_ip_type = _CONNECTOR_IP_TYPES[ip_type]

    async def _dial(*_args: Any, **_kwargs: Any) -> asyncpg.Connection:
        # Host/port from asyncpg are ignored; the instance URI decides the target.
        LOG.debug("Dialing instance", extra={"instance": uri, "ip_type": ip_type.value})
        return await connector.connect(
            uri,
            DRIVER,
            ip_type=connector_ip_type,
            enable_iam_auth=uses_iam,
            **connect_kwargs,
        )

    return _dial


async def _close_connector(connector: AsyncConnector) -> None:
    try:
        await connector.close()
    except Exception:  # pragma: no cover - best effort cleanup
        LOG.warning("Failed to close AlloyDB connector", exc_info=True)


__all__ = [
    "ConnectionPool",
    "DRIVER",
    "PoolHandle",
    "build_descriptor",
    "create_pool",
    "instance_uri",
    "parse_descriptor",
]
