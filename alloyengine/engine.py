"""Engine owning the pooled connection and provisioning tables."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Awaitable, Callable, Coroutine, Sequence, TypeVar

from .config import EngineConfig, Option, apply_options
from .connections import ConnectionPool, PoolHandle, create_pool
from .ddl import (
    VectorstoreTableOptions,
    create_chat_history_table_statement,
    create_vector_extension_statement,
    create_vectorstore_table_statement,
    drop_table_statement,
)
from .errors import ConnectivityError, EngineError, IdentityError, SchemaError
from .identity import resolve_identity
from .models import Column

LOG = logging.getLogger(__name__)

T = TypeVar("T")


class PostgresEngine:
    """Holds an AlloyDB connection pool for downstream stores."""

    def __init__(self, handle: PoolHandle) -> None:
        self._pool: ConnectionPool | None = handle.pool
        self._connector = handle.connector

    @classmethod
    async def create(cls, *options: Option, config: EngineConfig | None = None) -> PostgresEngine:
        """Resolve the identity, build the pool and return a ready engine."""

        cfg = apply_options(*options, base=config)
        try:
            # The IAM email lookup blocks on HTTP.
            identity = await asyncio.to_thread(resolve_identity, cfg)
        except IdentityError as exc:
            raise IdentityError(f"error assigning user: {exc}") from exc
        handle = await create_pool(cfg, identity)
        LOG.info("Engine ready", extra={"user": identity.username, "iam": identity.uses_iam})
        return cls(handle)

    @property
    def pool(self) -> ConnectionPool:
        """The live pool; raises once the engine is closed."""

        if self._pool is None:
            raise ConnectivityError("engine is closed")
        return self._pool

    @property
    def closed(self) -> bool:
        return self._pool is None

    async def close(self) -> None:
        """Release the pool and connector. Safe to call repeatedly."""

        pool, self._pool = self._pool, None
        connector, self._connector = self._connector, None
        if pool is not None:
            try:
                await pool.close()
            except Exception:
                LOG.warning("Failed to close connection pool", exc_info=True)
        if connector is not None:
            try:
                await connector.close()
            except Exception:
                LOG.warning("Failed to close AlloyDB connector", exc_info=True)
        if pool is not None:
            LOG.info("Engine closed")

    async def ping(self) -> None:
        """Run a trivial query to prove the pool can reach the database."""

        try:
            await self.pool.execute("SELECT 1")
        except EngineError:
            raise
        except Exception as exc:
            raise ConnectivityError(f"failed to ping database: {exc}") from exc

    async def init_vectorstore_table(
        self,
        options: VectorstoreTableOptions,
        metadata_columns: Sequence[Column] = (),
        id_column: Column | None = None,
        overwrite_existing: bool = False,
        store_metadata: bool = True,
    ) -> None:
        """Create a table for embeddings, content and metadata."""

        await self._execute(create_vector_extension_statement(), "failed to create extension")
        if overwrite_existing:
            await self._execute(
                drop_table_statement(options.schema_name, options.table_name),
                "failed to drop table",
            )
        query = create_vectorstore_table_statement(
            options,
            metadata_columns,
            id_column=id_column,
            store_metadata=store_metadata,
        )
        await self._execute(query, "failed to create table")
        LOG.info(
            "Created vector store table",
            extra={"schema": options.schema_name, "table": options.table_name},
        )

    async def init_chat_history_table(self, table_name: str, schema_name: str = "public") -> None:
        """Create the chat history table if it does not exist yet."""

        query = create_chat_history_table_statement(table_name, schema_name)
        await self._execute(query, "failed to execute query")

    async def _execute(self, query: str, failure: str) -> None:
        pool = self.pool
        LOG.debug("Executing statement", extra={"sql": query})
        try:
            await pool.execute(query)
        except Exception as exc:
            raise SchemaError(f"{failure}: {exc}") from exc

    async def __aenter__(self) -> PostgresEngine:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


class BlockingPostgresEngine:
    """Synchronous facade running a `PostgresEngine` on a private event loop."""

    def __init__(self, engine: PostgresEngine, loop: asyncio.AbstractEventLoop, thread: threading.Thread) -> None:
        self._engine = engine
        self._loop = loop
        self._loop_thread = thread
        self._closed = False

    @classmethod
    def create(
        cls,
        *options: Option,
        config: EngineConfig | None = None,
        timeout: float | None = None,
    ) -> BlockingPostgresEngine:
        loop, thread = _start_loop()
        try:
            engine = _run(loop, PostgresEngine.create(*options, config=config), timeout)
        except BaseException:
            _stop_loop(loop, thread)
            raise
        return cls(engine, loop, thread)

    @property
    def engine(self) -> PostgresEngine:
        """Underlying async engine; its coroutines must run via `run`."""

        return self._engine

    @property
    def closed(self) -> bool:
        return self._closed

    def run(self, work: Callable[[ConnectionPool], Awaitable[T]], *, timeout: float | None = None) -> T:
        """Run ``work(pool)`` on the engine loop and wait for its result."""

        async def _call() -> T:
            return await work(self._engine.pool)

        return self._submit(_call(), timeout)

    def ping(self, *, timeout: float | None = None) -> None:
        self._submit(self._engine.ping(), timeout)

    def init_vectorstore_table(
        self,
        options: VectorstoreTableOptions,
        metadata_columns: Sequence[Column] = (),
        id_column: Column | None = None,
        overwrite_existing: bool = False,
        store_metadata: bool = True,
        *,
        timeout: float | None = None,
    ) -> None:
        self._submit(
            self._engine.init_vectorstore_table(
                options,
                metadata_columns,
                id_column=id_column,
                overwrite_existing=overwrite_existing,
                store_metadata=store_metadata,
            ),
            timeout,
        )

    def init_chat_history_table(
        self,
        table_name: str,
        schema_name: str = "public",
        *,
        timeout: float | None = None,
    ) -> None:
        self._submit(self._engine.init_chat_history_table(table_name, schema_name), timeout)

    def close(self) -> None:
        """Close the engine and stop the loop thread. Never raises."""

        if self._closed:
            return
        self._closed = True
        try:
            _run(self._loop, self._engine.close(), None)
        except Exception:  # pragma: no cover - PostgresEngine.close swallows errors
            LOG.warning("Failed to close engine", exc_info=True)
        _stop_loop(self._loop, self._loop_thread)

    def _submit(self, coro: Coroutine[Any, Any, T], timeout: float | None) -> T:
        if self._closed:
            coro.close()
            raise ConnectivityError("engine is closed")
        return _run(self._loop, coro, timeout)

    def __enter__(self) -> BlockingPostgresEngine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _start_loop() -> tuple[asyncio.AbstractEventLoop, threading.Thread]:
    loop = asyncio.new_event_loop()
    thread = threading.Thread(
        target=loop.run_forever,
        name="alloyengine-loop",
        daemon=True,
    )
    thread.start()
    return loop, thread


def _stop_loop(loop: asyncio.AbstractEventLoop, thread: threading.Thread) -> None:
    if loop.is_running():
        loop.call_soon_threadsafe(loop.stop)
    thread.join(timeout=1)
    if not thread.is_alive():
        loop.close()


def _run(loop: asyncio.AbstractEventLoop, coro: Coroutine[Any, Any, T], timeout: float | None) -> T:
    future = asyncio.run_coroutine_threadsafe(coro, loop)
    try:
        return future.result(timeout)
    except TimeoutError:
        future.cancel()
        raise


__all__ = ["BlockingPostgresEngine", "PostgresEngine"]
