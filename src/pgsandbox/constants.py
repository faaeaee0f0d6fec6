"""Shared constants for pgsandbox."""

POSTGRES_PROVIDER = "postgres"
POSTGRES_PORT = 5432
DEFAULT_POSTGRES_IMAGE = "postgres:16.1"
DEFAULT_ALEMBIC_IMAGE = "codeflydev/alembic:latest"
DEFAULT_DATABASE_NAME = "postgres"

POSTGRES_USER_KEY = "POSTGRES_USER"
POSTGRES_PASSWORD_KEY = "POSTGRES_PASSWORD"
CONNECTION_KEY = "connection"

CONTAINER_HOST_ALIAS = "host.docker.internal"
LOCAL_ADDRESS_MARKERS = ("localhost", CONTAINER_HOST_ALIAS)

POSTGRES_DATA_PATH = "/var/lib/postgresql/data"
ALEMBIC_WORKDIR = "/workspace"
ALEMBIC_CONFIG = "/workspace/alembic.ini"
ALEMBIC_VERSION_TABLE = "alembic_version"
SQL_VERSION_TABLE = "schema_migrations"

SERVICE_CONFIG_FILE = "service.pgsandbox.yml"
MIGRATIONS_DIR = "migrations"
DATA_DIR = "data"

DATA_DIR_MODE = 0o700

DOCKER_COMMAND_TIMEOUT_SECONDS = 120
DOCKER_PULL_TIMEOUT_SECONDS = 900

DEFAULT_POSTGRES_USER = "postgres"
DEFAULT_POSTGRES_PASSWORD = "password"
