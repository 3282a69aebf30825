"""Error taxonomy raised by the engine and its helpers."""

from __future__ import annotations


class EngineError(RuntimeError):
    """Base class for every error raised by alloyengine."""


class ConfigurationError(EngineError):
    """Raised when required fields are missing or a config file is invalid."""


class IdentityError(EngineError):
    """Raised when no database identity can be determined."""


class ConnectivityError(EngineError):
    """Raised when the dialer or the connection pool cannot be set up."""


class SchemaError(EngineError):
    """Raised when a provisioning statement fails to execute."""


__all__ = [
    "ConfigurationError",
    "ConnectivityError",
    "EngineError",
    "IdentityError",
    "SchemaError",
]
