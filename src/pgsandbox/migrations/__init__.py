"""Migration managers: one capability, two backends chosen by format."""

from typing import List, Protocol

from pgsandbox.errors import ConfigurationError
from pgsandbox.models import ConnectionConfiguration, MigrationConfig

from .containerized import ContainerizedMigrator
from .embedded import EmbeddedMigrator


class MigrationManager(Protocol):
    def init(self, configurations: List[ConnectionConfiguration]): ...

    def apply(self): ...

    def update(self, migration_file: str): ...

    def accepts(self, path: str) -> bool: ...


def create_manager(
    migration_format: str,
    config: MigrationConfig,
    logger,
    console,
    command_runner,
    database,
    helper_name: str,
) -> MigrationManager:
    """Builds the manager for ``migration_format`` (``sql``/``gomigrate`` or ``alembic``)."""
    if migration_format in ("sql", "gomigrate"):
        return EmbeddedMigrator(config, logger=logger, connect=database.connect)
    if migration_format == "alembic":
        return ContainerizedMigrator(
            config,
            logger=logger,
            console=console,
            command_runner=command_runner,
            database=database,
            helper_name=helper_name,
        )
    raise ConfigurationError(f"Unsupported migration format: {migration_format}")


__all__ = ["ContainerizedMigrator", "EmbeddedMigrator", "MigrationManager", "create_manager"]
