"""Shared domain models for pgsandbox."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pgsandbox.constants import (
    DEFAULT_DATABASE_NAME,
    DEFAULT_POSTGRES_IMAGE,
    POSTGRES_PORT,
    POSTGRES_PROVIDER,
)


class Scope(str, Enum):
    """Network vantage point a connection string is valid from."""

    NATIVE = "native"
    CONTAINER = "container"
    PUBLIC = "public"


class LifecycleState(str, Enum):
    UNLOADED = "unloaded"
    LOADED = "loaded"
    INITIALIZED = "initialized"
    RUNNING = "running"
    STOPPED = "stopped"
    DESTROYED = "destroyed"


@dataclass(frozen=True)
class Credentials:
    user: str
    password: str


@dataclass(frozen=True)
class ServiceIdentity:
    """Identifies one service and where its files live."""

    name: str
    module: str
    workspace: str
    location: str

    @property
    def unique(self) -> str:
        return f"{self.workspace}/{self.module}/{self.name}"

    @property
    def container_name(self) -> str:
        raw = f"pgsandbox-{self.workspace}-{self.module}-{self.name}"
        return re.sub(r"[^a-zA-Z0-9_.-]", "-", raw).lower()

    @property
    def helper_container_name(self) -> str:
        return f"{self.container_name}-alembic"


@dataclass(frozen=True)
class Endpoint:
    name: str
    port: int = POSTGRES_PORT
    protocol: str = "tcp"


@dataclass(frozen=True)
class NetworkInstance:
    """One reachable address of the database for a given scope."""

    hostname: str
    port: int
    scope: Scope

    @property
    def address(self) -> str:
        return f"{self.hostname}:{self.port}"


@dataclass(frozen=True)
class ConfigurationValue:
    key: str
    value: str
    secret: bool = False


@dataclass(frozen=True)
class ConnectionConfiguration:
    """Configuration bundle exported to dependency consumers."""

    origin: str
    scope: Scope
    values: List[ConfigurationValue] = field(default_factory=list)
    provider: str = POSTGRES_PROVIDER

    def get(self, key: str) -> Optional[str]:
        for item in self.values:
            if item.key == key:
                return item.value
        return None


@dataclass(frozen=True)
class MigrationConfig:
    """Static migration settings, fixed at load time."""

    database_name: str
    migration_dir: str
    version_dir_override: Optional[str] = None
    image_override: Optional[str] = None


@dataclass(frozen=True)
class ChangeEvent:
    path: str


@dataclass
class ServiceSettings:
    database_name: str = DEFAULT_DATABASE_NAME
    without_ssl: bool = False
    watch: bool = False
    silent: bool = False
    persist: bool = False
    no_migration: bool = False
    migration_format: str = "sql"
    migration_version_dir: Optional[str] = None
    alembic_image: Optional[str] = None
    postgres_image: str = DEFAULT_POSTGRES_IMAGE
    host_port: Optional[int] = None
    ready_retries: int = 20
    ready_interval_seconds: float = 3.0
