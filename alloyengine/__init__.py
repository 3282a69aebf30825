"""Connection engine and table provisioning for AlloyDB."""

from __future__ import annotations

from .config import (
    EngineConfig,
    PoolSettings,
    apply_options,
    load_config,
    with_alloydb_instance,
    with_database,
    with_email_retriever,
    with_iam_account_email,
    with_ip_type,
    with_password,
    with_pool,
    with_pool_settings,
    with_user,
)
from .ddl import VectorstoreTableOptions, new_vectorstore_table_options
from .engine import BlockingPostgresEngine, PostgresEngine
from .errors import ConfigurationError, ConnectivityError, EngineError, IdentityError, SchemaError
from .identity import EmailRetriever, get_service_account_email, resolve_identity
from .models import Column, IPType, ResolvedIdentity

__version__ = "0.1.0"

__all__ = [
    "BlockingPostgresEngine",
    "Column",
    "ConfigurationError",
    "ConnectivityError",
    "EmailRetriever",
    "EngineConfig",
    "EngineError",
    "IPType",
    "IdentityError",
    "PoolSettings",
    "PostgresEngine",
    "ResolvedIdentity",
    "SchemaError",
    "VectorstoreTableOptions",
    "__version__",
    "apply_options",
    "get_service_account_email",
    "load_config",
    "new_vectorstore_table_options",
    "resolve_identity",
    "with_alloydb_instance",
    "with_database",
    "with_email_retriever",
    "with_iam_account_email",
    "with_ip_type",
    "with_password",
    "with_pool",
    "with_pool_settings",
    "with_user",
]
