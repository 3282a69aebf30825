"""Shared dataclasses used across identity/connection/engine modules."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class IPType(str, Enum):
    """Network path used to reach the AlloyDB instance."""

    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"


@dataclass(frozen=True, slots=True)
class ResolvedIdentity:
    """Database user the engine connects as."""

    username: str
    uses_iam: bool


@dataclass(frozen=True, slots=True)
class Column:
    """Column declaration for provisioned tables."""

    name: str
    data_type: str
    nullable: bool = True


__all__ = ["Column", "IPType", "ResolvedIdentity"]
