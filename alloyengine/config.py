"""Engine configuration and option helpers."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import tomllib

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError
from .models import IPType

CONFIG_FILE = Path.home() / ".config" / "alloyengine" / "config.toml"

DEFAULT_DATABASE = "postgres"


class PoolSettings(BaseModel):
    """Sizing and timeout knobs handed to the asyncpg pool."""

    model_config = ConfigDict(frozen=True)

    min_size: int = Field(default=1, ge=0)
    max_size: int = Field(default=10, ge=1)
    max_inactive_connection_lifetime: float = Field(default=300.0, ge=0)
    command_timeout: float | None = None


class EngineConfig(BaseModel):
    """Everything needed to resolve an identity and open a pool."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    user: str = ""
    password: str = ""
    database: str = DEFAULT_DATABASE
    iam_account_email: str = ""
    project_id: str = ""
    region: str = ""
    cluster: str = ""
    instance: str = ""
    ip_type: IPType = IPType.PUBLIC
    pool: Any | None = None
    email_retriever: Callable[[], str] | None = None
    pool_settings: PoolSettings = Field(default_factory=PoolSettings)

    def has_instance(self) -> bool:
        """True when every instance coordinate is set."""

        return all((self.project_id, self.region, self.cluster, self.instance))

    def with_options(self, *options: Option) -> EngineConfig:
        """Return a copy with the given options applied in order."""

        config = self
        for option in options:
            config = option(config)
        return config


Option = Callable[[EngineConfig], EngineConfig]


def with_user(user: str) -> Option:
    """Static database user (used together with `with_password`)."""

    return lambda config: config.model_copy(update={"user": user})


def with_password(password: str) -> Option:
    return lambda config: config.model_copy(update={"password": password})


def with_database(database: str) -> Option:
    return lambda config: config.model_copy(update={"database": database})


def with_alloydb_instance(project_id: str, region: str, cluster: str, instance: str) -> Option:
    """Instance coordinates the dialer connects to."""

    return lambda config: config.model_copy(
        update={
            "project_id": project_id,
            "region": region,
            "cluster": cluster,
            "instance": instance,
        }
    )


def with_iam_account_email(email: str) -> Option:
    """Connect as this IAM principal instead of looking one up."""

    return lambda config: config.model_copy(update={"iam_account_email": email})


def with_ip_type(ip_type: IPType | str) -> Option:
    """Select the public or private network path."""

    try:
        resolved = ip_type if isinstance(ip_type, IPType) else IPType(str(ip_type).upper())
    except ValueError as exc:
        raise ConfigurationError(f"invalid ip type: {ip_type!r}") from exc
    return lambda config: config.model_copy(update={"ip_type": resolved})


def with_pool(pool: Any) -> Option:
    """Use an existing pool handle; no dialer is created."""

    return lambda config: config.model_copy(update={"pool": pool})


def with_email_retriever(retriever: Callable[[], str]) -> Option:
    """Replace the IAM email lookup used when no credentials are given."""

    return lambda config: config.model_copy(update={"email_retriever": retriever})


def with_pool_settings(**updates: object) -> Option:
    """Override pool sizing, e.g. ``with_pool_settings(max_size=4)``."""

    def _apply(config: EngineConfig) -> EngineConfig:
        try:
            settings = PoolSettings.model_validate(config.pool_settings.model_dump() | updates)
        except ValidationError as exc:
            raise ConfigurationError(f"invalid pool settings: {exc}") from exc
        return config.model_copy(update={"pool_settings": settings})

    return _apply


def apply_options(*options: Option, base: EngineConfig | None = None) -> EngineConfig:
    """Fold options into a config and validate the result."""

    config = (base or EngineConfig()).with_options(*options)
    if config.pool is None and not config.has_instance():
        raise ConfigurationError(
            "missing connection: provide a connection pool or db instance fields"
        )
    return config


def load_config(path: Path | None = None) -> EngineConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    config_path = path or CONFIG_FILE
    try:
        data = _read_config_file(config_path)
    except FileNotFoundError:
        return EngineConfig()
    except (tomllib.TOMLDecodeError, OSError) as exc:
        raise ConfigurationError(f"failed to read config file {config_path}: {exc}") from exc

    try:
        return EngineConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid config file {config_path}: {exc}") from exc


def _read_config_file(path: Path) -> dict[str, object]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    # Values are passed through as-is so pydantic reports wrong types.
    data: dict[str, object] = {}
    for key in ("user", "password", "database", "iam_account_email"):
        if key in raw:
            data[key] = raw[key]
    if "ip_type" in raw:
        ip_type = raw["ip_type"]
        data["ip_type"] = ip_type.upper() if isinstance(ip_type, str) else ip_type
    instance = _table(raw, "instance", path)
    for key in ("project_id", "region", "cluster", "instance"):
        if key in instance:
            data[key] = instance[key]
    pool = _table(raw, "pool", path)
    if pool:
        data["pool_settings"] = {
            key: value
            for key, value in pool.items()
            if key in PoolSettings.model_fields
        }
    return data


def _table(raw: dict[str, object], key: str, path: Path) -> dict[str, object]:
    value = raw.get(key, {})
    if not isinstance(value, dict):
        raise ConfigurationError(f"invalid config file {path}: [{key}] must be a table")
    return value


__all__ = [
    "CONFIG_FILE",
    "DEFAULT_DATABASE",
    "EngineConfig",
    "Option",
    "PoolSettings",
    "apply_options",
    "load_config",
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
