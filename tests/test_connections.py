"""Tests for pool construction through the AlloyDB connector."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from google.cloud.alloydb.connector import IPTypes

from alloyengine import connections as connections_module
from alloyengine.config import EngineConfig, with_pool_settings
from alloyengine.connections import (
    PoolHandle,
    build_descriptor,
    create_pool,
    instance_uri,
    parse_descriptor,
)
from alloyengine.errors import ConnectivityError
from alloyengine.models import IPType, ResolvedIdentity

URI = "projects/proj/locations/us-central1/clusters/cluster/instances/primary"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _config(**updates: Any) -> EngineConfig:
    values: dict[str, Any] = {
        "user": "alice",
        "password": "s3cret",
        "database": "vectors",
        "project_id": "proj",
        "region": "us-central1",
        "cluster": "cluster",
        "instance": "primary",
    }
    values.update(updates)
    return EngineConfig(**values)


class _FakeConnector:
    instances: list["_FakeConnector"] = []

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.dials: list[tuple[str, str, dict[str, Any]]] = []
        self.closed = False
        _FakeConnector.instances.append(self)

    async def connect(self, uri: str, driver: str, **kwargs: Any) -> str:
        self.dials.append((uri, driver, kwargs))
        return "connection"

    async def close(self) -> None:
        self.closed = True


class _FakePool:
    async def execute(self, query: str, *args: Any) -> str:
        return "SELECT 1"

    async def close(self) -> None:
        return None


@pytest.fixture
def fake_connector(monkeypatch: pytest.MonkeyPatch) -> type[_FakeConnector]:
    _FakeConnector.instances = []
    monkeypatch.setattr(connections_module, "AsyncConnector", _FakeConnector)
    return _FakeConnector


@pytest.fixture
def pool_calls(monkeypatch: pytest.MonkeyPatch) -> list[tuple[tuple[Any, ...], dict[str, Any]]]:
    calls: list[tuple[tuple[Any, ...], dict[str, Any]]] = []

    async def _create_pool(*args: Any, **kwargs: Any) -> _FakePool:
        calls.append((args, kwargs))
        return _FakePool()

    monkeypatch.setattr("alloyengine.connections.asyncpg.create_pool", _create_pool)
    return calls


def test_instance_uri() -> None:
    assert instance_uri("proj", "us-central1", "cluster", "primary") == URI


def test_build_descriptor_includes_password_for_static_credentials() -> None:
    descriptor = build_descriptor("alice", "vectors", "s3cret")

    assert descriptor == "postgresql://alice:s3cret@/vectors?sslmode=disable"


def test_build_descriptor_omits_password_for_iam() -> None:
    descriptor = build_descriptor("sa@proj.iam", "vectors")

    assert "s3cret" not in descriptor
    assert ":" not in descriptor.split("//", 1)[1].split("@", 1)[0]
    assert parse_descriptor(descriptor) == {"user": "sa@proj.iam", "db": "vectors"}


def test_parse_descriptor_unquotes_special_characters() -> None:
    descriptor = build_descriptor("alice", "vectors", "p@ss:word/1")

    assert parse_descriptor(descriptor) == {"user": "alice", "password": "p@ss:word/1", "db": "vectors"}


@pytest.mark.parametrize(
    ("descriptor", "message"),
    [
        ("mysql://alice@/vectors", "unsupported scheme"),
        ("postgresql://@/vectors", "missing user"),
        ("postgresql://alice@/", "missing database"),
        ("postgresql://alice@/vectors?sslmode=require", "unsupported sslmode"),
    ],
)
def test_parse_descriptor_rejects_malformed_input(descriptor: str, message: str) -> None:
    with pytest.raises(ConnectivityError, match=f"failed to parse connection config: {message}"):
        parse_descriptor(descriptor)


@pytest.mark.anyio
async def test_create_pool_returns_supplied_pool_without_dialing(fake_connector, pool_calls) -> None:
    pool = _FakePool()

    handle = await create_pool(EngineConfig(pool=pool), ResolvedIdentity("alice", False))

    assert handle == PoolHandle(pool=pool)
    assert fake_connector.instances == []
    assert pool_calls == []


@pytest.mark.anyio
async def test_create_pool_dials_every_connection_through_connector(fake_connector, pool_calls) -> None:
    config = _config().with_options(with_pool_settings(min_size=2, max_size=5))

    handle = await create_pool(config, ResolvedIdentity("alice", False))

    connector = fake_connector.instances[0]
    assert handle.connector is connector
    assert connector.kwargs == {"enable_iam_auth": False}
    args, kwargs = pool_calls[0]
    assert args == ("postgresql://alice:s3cret@/vectors?sslmode=disable",)
    assert kwargs["min_size"] == 2
    assert kwargs["max_size"] == 5

    dial = kwargs["connect"]
    # asyncpg passes its own dsn/host arguments; they must not change the target.
    result = await dial("postgresql://elsewhere:5432/db", host="10.0.0.1", port=5432)

    assert result == "connection"
    assert connector.dials == [
        (
            URI,
            "asyncpg",
            {
                "ip_type": IPTypes.PUBLIC,
                "enable_iam_auth": False,
                "user": "alice",
                "password": "s3cret",
                "db": "vectors",
            },
        )
    ]


@pytest.mark.anyio
async def test_create_pool_uses_iam_and_private_ip(fake_connector, pool_calls) -> None:
    config = _config(user="", password="ignored", ip_type=IPType.PRIVATE)

    await create_pool(config, ResolvedIdentity("sa@proj.iam", True))

    connector = fake_connector.instances[0]
    assert connector.kwargs == {"enable_iam_auth": True}
    args, kwargs = pool_calls[0]
    assert args == ("postgresql://sa%40proj.iam@/vectors?sslmode=disable",)
    await kwargs["connect"]()
    _, _, dial_kwargs = connector.dials[0]
    assert dial_kwargs["ip_type"] == IPTypes.PRIVATE
    assert dial_kwargs["enable_iam_auth"] is True
    assert dial_kwargs["user"] == "sa@proj.iam"
    assert "password" not in dial_kwargs


@pytest.mark.anyio
async def test_create_pool_passes_command_timeout_to_each_connection(fake_connector, pool_calls) -> None:
    config = _config().with_options(with_pool_settings(command_timeout=30))

    await create_pool(config, ResolvedIdentity("alice", False))

    _, kwargs = pool_calls[0]
    assert "command_timeout" not in kwargs
    await kwargs["connect"]()
    _, _, dial_kwargs = fake_connector.instances[0].dials[0]
    assert dial_kwargs["command_timeout"] == 30


@pytest.mark.anyio
async def test_create_pool_wraps_connector_failures(monkeypatch: pytest.MonkeyPatch, pool_calls) -> None:
    def _broken_connector(**kwargs: Any) -> None:
        raise RuntimeError("no credentials")

    monkeypatch.setattr(connections_module, "AsyncConnector", _broken_connector)

    with pytest.raises(ConnectivityError, match="failed to initialize connection: no credentials"):
        await create_pool(_config(), ResolvedIdentity("alice", False))
    assert pool_calls == []


@pytest.mark.anyio
async def test_create_pool_wraps_pool_failures_and_closes_connector(
    monkeypatch: pytest.MonkeyPatch, fake_connector
) -> None:
    async def _broken_pool(*args: Any, **kwargs: Any) -> None:
        raise OSError("connection refused")

    monkeypatch.setattr("alloyengine.connections.asyncpg.create_pool", _broken_pool)

    with pytest.raises(ConnectivityError, match="unable to create connection pool: connection refused"):
        await create_pool(_config(), ResolvedIdentity("alice", False))
    assert fake_connector.instances[0].closed is True


@pytest.mark.anyio
async def test_create_pool_wraps_descriptor_failures(fake_connector, pool_calls) -> None:
    config = _config(database="")

    with pytest.raises(ConnectivityError, match="failed to parse connection config"):
        await create_pool(config, ResolvedIdentity("alice", False))
    assert pool_calls == []
    assert fake_connector.instances[0].closed is True


@pytest.mark.anyio
async def test_create_pool_closes_connector_when_cancelled(
    monkeypatch: pytest.MonkeyPatch, fake_connector
) -> None:
    async def _cancelled_pool(*args: Any, **kwargs: Any) -> None:
        raise asyncio.CancelledError()

    monkeypatch.setattr("alloyengine.connections.asyncpg.create_pool", _cancelled_pool)

    with pytest.raises(asyncio.CancelledError):
        await create_pool(_config(), ResolvedIdentity("alice", False))
    assert fake_connector.instances[0].closed is True
