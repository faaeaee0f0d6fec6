"""End-to-end runs against a real docker daemon. Enable with PGSANDBOX_E2E=1."""

import logging
import os
import shutil
import textwrap

import psycopg
import pytest

from pgsandbox.core import PostgresService
from pgsandbox.models import LifecycleState, ServiceIdentity
from pgsandbox.services.configuration_store import ConfigurationStore
from pgsandbox.services.network import NetworkMapper

pytestmark = [
    pytest.mark.e2e,
    pytest.mark.skipif(
        os.environ.get("PGSANDBOX_E2E") != "1" or shutil.which("docker") is None,
        reason="set PGSANDBOX_E2E=1 with a docker daemon available",
    ),
]

ALEMBIC_ENV = '''
import os

from alembic import context
from sqlalchemy import create_engine

connectable = create_engine(os.environ["DATABASE_URL"].replace("postgresql://", "postgresql+psycopg2://", 1))
with connectable.connect() as connection:
    context.configure(connection=connection, target_metadata=None)
    with context.begin_transaction():
        context.run_migrations()
'''

ALEMBIC_REVISION = '''
from alembic import op

revision = "a1b2c3d4e5f6"
down_revision = None


def upgrade():
    op.execute("CREATE TABLE customers (id serial PRIMARY KEY, email text NOT NULL)")


def downgrade():
    op.execute("DROP TABLE customers")
'''


def _store():
    return ConfigurationStore(
        {"postgres": {"POSTGRES_USER": "postgres", "POSTGRES_PASSWORD": "password"}}, environ={}
    )


def _tables(connection):
    with psycopg.connect(connection) as conn:
        rows = conn.execute(
            "SELECT tablename FROM pg_catalog.pg_tables WHERE schemaname = 'public' ORDER BY tablename"
        ).fetchall()
    return [row[0] for row in rows]


def _identity(tmp_path, name):
    service_dir = tmp_path / name
    (service_dir / "migrations").mkdir(parents=True)
    return ServiceIdentity(name=name, module="e2e", workspace="test", location=str(service_dir))


def test_sql_migrations_are_applied_on_start(tmp_path):
    identity = _identity(tmp_path, "users")
    migrations = tmp_path / "users" / "migrations"
    (migrations / "1_create_users.up.sql").write_text(
        "CREATE TABLE users (id serial PRIMARY KEY, name text NOT NULL);", encoding="utf-8"
    )
    (migrations / "1_create_users.down.sql").write_text("DROP TABLE users;", encoding="utf-8")

    service = PostgresService()
    seen = {}

    def inspect():
        seen["state"] = service.state
        seen["tables"] = _tables(service.native_connection)

    exit_code = service.run(
        identity, _store(), wait=inspect, mapper=NetworkMapper(logging.getLogger("pgsandbox"))
    )

    assert exit_code == 0
    assert seen["state"] == LifecycleState.RUNNING
    assert seen["tables"] == ["schema_migrations", "users"]


def test_alembic_migrations_run_in_helper_container(tmp_path):
    identity = _identity(tmp_path, "customers")
    migrations = tmp_path / "customers" / "migrations"
    (migrations / "versions").mkdir()
    (migrations / "alembic.ini").write_text(
        "[alembic]\nscript_location = /workspace\n", encoding="utf-8"
    )
    (migrations / "env.py").write_text(textwrap.dedent(ALEMBIC_ENV), encoding="utf-8")
    (migrations / "versions" / "a1b2c3d4e5f6_customers.py").write_text(
        textwrap.dedent(ALEMBIC_REVISION), encoding="utf-8"
    )

    service = PostgresService(overrides={"migration_format": "alembic"})
    seen = {}

    def inspect():
        seen["tables"] = _tables(service.native_connection)
        with psycopg.connect(service.native_connection) as conn:
            seen["versions"] = [row[0] for row in conn.execute("SELECT version_num FROM alembic_version")]

    exit_code = service.run(
        identity, _store(), wait=inspect, mapper=NetworkMapper(logging.getLogger("pgsandbox"))
    )

    assert exit_code == 0
    assert seen["tables"] == ["alembic_version", "customers"]
    assert seen["versions"] == ["a1b2c3d4e5f6"]
