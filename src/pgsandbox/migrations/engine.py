"""Versioned SQL migrations, recorded the way golang-migrate records them.

Files are named ``<version>_<name>.up.sql`` and ``<version>_<name>.down.sql``;
a bare ``<version>_<name>.sql`` is an up migration without a down. The
database keeps one row in ``schema_migrations(version, dirty)``. ``dirty``
is set while a migration runs, so a failure leaves it behind and blocks
further migrations until the version is forced.
"""

import os
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote, urlsplit

from psycopg import sql

from pgsandbox.constants import SQL_VERSION_TABLE
from pgsandbox.errors import DirtyMigrationError, MigrationError
from pgsandbox.errors_catalog import actionable_error

MIGRATION_FILE = re.compile(r"^(?P<version>\d+)_(?P<name>.+?)(?:\.(?P<direction>up|down))?\.sql$")


class NoChange(Exception):
    """There was nothing to migrate."""


@dataclass
class Migration:
    version: int
    name: str
    up_path: Optional[str] = None
    down_path: Optional[str] = None


class MigrationSource:
    """Migration files of one directory, indexed by version."""

    def __init__(self, migrations: Dict[int, Migration]):
        self.migrations = migrations

    @classmethod
    def from_uri(cls, uri: str) -> "MigrationSource":
        parts = urlsplit(uri)
        if parts.scheme != "file":
            raise MigrationError(f"Unsupported migration source: {uri}")
        return cls.from_directory(unquote(parts.path))

    @classmethod
    def from_directory(cls, directory: str) -> "MigrationSource":
        migrations: Dict[int, Migration] = {}
        for file_name in sorted(os.listdir(directory)):
            match = MIGRATION_FILE.match(file_name)
            if not match:
                continue

            version = int(match.group("version"))
            direction = match.group("direction") or "up"
            path = os.path.join(directory, file_name)
            migration = migrations.setdefault(version, Migration(version, match.group("name")))

            attribute = "down_path" if direction == "down" else "up_path"
            if getattr(migration, attribute) is not None:
                raise MigrationError(
                    f"Duplicate {direction} migration for version {version}: {file_name}"
                )
            setattr(migration, attribute, path)
        return cls(migrations)

    def versions(self) -> List[int]:
        return sorted(self.migrations)

    def __contains__(self, version: int) -> bool:
        return version in self.migrations

    def previous(self, version: int) -> Optional[int]:
        earlier = [item for item in self.versions() if item < version]
        return earlier[-1] if earlier else None

    def next(self, version: Optional[int]) -> Optional[int]:
        later = [item for item in self.versions() if version is None or item > version]
        return later[0] if later else None

    def read(self, version: int, direction: str) -> Optional[str]:
        migration = self.migrations[version]
        path = migration.up_path if direction == "up" else migration.down_path
        if path is None:
            return None
        with open(path, "r", encoding="utf-8") as file_obj:
            return file_obj.read()


class PostgresDriver:
    """Version bookkeeping and script execution over one psycopg connection."""

    def __init__(self, conn, table: str = SQL_VERSION_TABLE):
        self.conn = conn
        self.table = sql.Identifier(table)

    def ensure_version_table(self):
        self.conn.execute(
            sql.SQL(
                "CREATE TABLE IF NOT EXISTS {} (version bigint NOT NULL PRIMARY KEY, dirty boolean NOT NULL)"
            ).format(self.table)
        )

    def version(self) -> Tuple[Optional[int], bool]:
        row = self.conn.execute(
            sql.SQL("SELECT version, dirty FROM {} LIMIT 1").format(self.table)
        ).fetchone()
        if row is None:
            return None, False
        return int(row[0]), bool(row[1])

    def set_version(self, version: Optional[int], dirty: bool):
        with self.conn.transaction():
            self.conn.execute(sql.SQL("TRUNCATE {}").format(self.table))
            if version is not None:
                self.conn.execute(
                    sql.SQL("INSERT INTO {} (version, dirty) VALUES (%s, %s)").format(self.table),
                    (version, dirty),
                )

    def run(self, script: str):
        self.conn.execute(script)


class Migrate:
    """Moves the recorded schema version along a ``MigrationSource``."""

    def __init__(self, source: MigrationSource, driver, logger):
        self.source = source
        self.driver = driver
        self.logger = logger
        self.driver.ensure_version_table()

    def _current(self) -> Optional[int]:
        version, dirty = self.driver.version()
        if dirty:
            raise DirtyMigrationError(
                actionable_error(
                    "dirty_schema", version=str(version), detail="a previous migration did not finish"
                ),
                version=version,
            )
        return version

    def _execute(self, version: int, direction: str, target: Optional[int]):
        migration = self.source.migrations[version]
        self.logger.info("Migrating %s: %s_%s", direction, version, migration.name)
        self.driver.set_version(version, True)
        script = self.source.read(version, direction)
        try:
            if script is not None:
                self.driver.run(script)
            else:
                self.logger.debug("No %s script for version %s", direction, version)
        except Exception as exc:
            raise DirtyMigrationError(
                actionable_error("dirty_schema", version=str(version), detail=str(exc)),
                version=version,
            ) from exc
        self.driver.set_version(target, False)

    def version(self) -> Optional[int]:
        return self.driver.version()[0]

    def up(self) -> int:
        """Applies every pending migration. Raises ``NoChange`` when there is none."""
        current = self._current()
        pending = [item for item in self.source.versions() if current is None or item > current]
        if not pending:
            raise NoChange()
        for version in pending:
            self._execute(version, "up", version)
        return len(pending)

    def steps(self, count: int):
        """Migrates ``count`` versions up (positive) or down (negative)."""
        current = self._current()
        if count == 0:
            raise NoChange()

        for _ in range(abs(count)):
            if count > 0:
                target = self.source.next(current)
                if target is None:
                    raise NoChange()
                self._execute(target, "up", target)
                current = target
            else:
                if current is None:
                    raise NoChange()
                if current not in self.source:
                    raise MigrationError(f"No migration file for recorded version {current}")
                previous = self.source.previous(current)
                self._execute(current, "down", previous)
                current = previous

    def force(self, version: Optional[int]):
        """Records ``version`` as clean without running anything."""
        if version is not None and version not in self.source:
            self.logger.warning("Forcing version %s which has no migration file", version)
        self.driver.set_version(version, False)
