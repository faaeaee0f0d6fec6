import logging
import os

import click
from rich.logging import RichHandler

from .constants import (
    DEFAULT_POSTGRES_PASSWORD,
    DEFAULT_POSTGRES_USER,
    POSTGRES_PASSWORD_KEY,
    POSTGRES_PROVIDER,
    POSTGRES_USER_KEY,
    SERVICE_CONFIG_FILE,
)
from .core import PostgresService, SandboxError, console
from .models import Scope, ServiceIdentity
from .services.config_loader import MIGRATION_FORMATS, ConfigLoader
from .services.configuration_store import ConfigurationStore
from .services.network import NetworkMapper


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


def _configure_logging(verbose: bool, log_file):
    logger = logging.getLogger("pgsandbox")
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)


class Session:
    """Everything a command needs, resolved from options and config files."""

    def __init__(self, service_dir, config_path, name, module, workspace, verbose, log_file):
        self.service_dir = os.path.abspath(service_dir)
        loader = ConfigLoader()

        # An explicit --config file also overrides the service settings.
        self.config = loader.load(config_path) if config_path else {}
        if config_path:
            file_config = self.config
        else:
            default_config_path = os.path.join(self.service_dir, SERVICE_CONFIG_FILE)
            file_config = loader.load(default_config_path if os.path.exists(default_config_path) else None)

        self.verbose = bool(_resolve_option(verbose, file_config, "verbose", default=False))
        _configure_logging(self.verbose, _resolve_option(log_file, file_config, "log_file"))

        self.identity = ServiceIdentity(
            name=_resolve_option(name, file_config, "name", default=os.path.basename(self.service_dir)),
            module=_resolve_option(module, file_config, "module", default="default"),
            workspace=_resolve_option(workspace, file_config, "workspace", default="local"),
            location=self.service_dir,
        )
        self.file_config = file_config

    def store(self, user=None, password=None) -> ConfigurationStore:
        return ConfigurationStore(
            {
                POSTGRES_PROVIDER: {
                    POSTGRES_USER_KEY: _resolve_option(
                        user, self.file_config, "postgres_user", default=DEFAULT_POSTGRES_USER
                    ),
                    POSTGRES_PASSWORD_KEY: _resolve_option(
                        password, self.file_config, "postgres_password", default=DEFAULT_POSTGRES_PASSWORD
                    ),
                }
            }
        )

    def service(self, **overrides) -> PostgresService:
        values = {
            key: value for key, value in self.config.items() if key in ConfigLoader.SETTINGS_KEYS
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return PostgresService(overrides=values)

    def load(self, service: PostgresService):
        try:
            return service.load(self.identity)
        except SandboxError as exc:
            raise click.ClickException(str(exc)) from exc

    def running_instances(self, service: PostgresService):
        endpoint = self.load(service)
        port = service.published_port() or service.settings.host_port
        if port is None:
            raise click.ClickException(
                f"No running container for {self.identity.unique}. Start it with `pgsandbox run`."
            )
        return NetworkMapper(logging.getLogger("pgsandbox"), host_port=port).generate(endpoint)


def _common_options(func):
    func = click.option("--log-file", type=click.Path(), help="Path to log file")(func)
    func = click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")(func)
    func = click.option("--workspace", required=False, help="Workspace name (default: local)")(func)
    func = click.option("--module", required=False, help="Module name (default: default)")(func)
    func = click.option("--name", required=False, help="Service name (default: directory name)")(func)
    func = click.option(
        "--config",
        required=False,
        type=click.Path(),
        help=f"Path to a YAML configuration file. Defaults to {SERVICE_CONFIG_FILE} in the service directory.",
    )(func)
    func = click.argument("service_dir", required=False, default=".", type=click.Path(file_okay=False))(func)
    return func


def _session(service_dir, config, name, module, workspace, verbose, log_file) -> Session:
    try:
        return Session(service_dir, config, name, module, workspace, verbose, log_file)
    except SandboxError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
def main():
    """Run a disposable PostgreSQL container with migrations and hot-reload."""


@main.command()
@_common_options
@click.option("--database-name", required=False, help="Database to create (default: postgres)")
@click.option("--port", "host_port", type=int, required=False, help="Host port (default: a free port)")
@click.option("--user", required=False, help="Database user (default: postgres)")
@click.option("--password", required=False, help="Database password (default: password)")
@click.option("--watch/--no-watch", default=None, help="Re-apply migrations when their files change.")
@click.option("--persist/--no-persist", default=None, help="Keep data in <service>/data.")
@click.option("--without-ssl", is_flag=True, default=None, help="Disable SSL in exported connections.")
@click.option("--no-migration", is_flag=True, default=None, help="Skip migrations on start.")
@click.option("--migration-format", type=click.Choice(MIGRATION_FORMATS), required=False)
@click.option("--keep", is_flag=True, default=False, help="Do not remove the container on exit.")
def run(
    service_dir,
    config,
    name,
    module,
    workspace,
    verbose,
    log_file,
    database_name,
    host_port,
    user,
    password,
    watch,
    persist,
    without_ssl,
    no_migration,
    migration_format,
    keep,
):
    """Start the database, apply migrations and serve until Ctrl+C."""
    session = _session(service_dir, config, name, module, workspace, verbose, log_file)
    service = session.service(
        database_name=database_name,
        host_port=host_port,
        watch=watch,
        persist=persist,
        without_ssl=without_ssl,
        no_migration=no_migration,
        migration_format=migration_format,
    )
    raise SystemExit(service.run(session.identity, session.store(user, password), keep=keep))


@main.command()
@_common_options
@click.option(
    "--scope",
    type=click.Choice([scope.value for scope in Scope]),
    default=Scope.NATIVE.value,
    show_default=True,
)
@click.option("--user", required=False, help="Database user (default: postgres)")
@click.option("--password", required=False, help="Database password (default: password)")
def connection(service_dir, config, name, module, workspace, verbose, log_file, scope, user, password):
    """Print the connection string of a running database."""
    session = _session(service_dir, config, name, module, workspace, verbose, log_file)
    service = session.service()
    instances = session.running_instances(service)
    try:
        configurations = service.resolve_configurations(instances, session.store(user, password))
    except SandboxError as exc:
        raise click.ClickException(str(exc)) from exc

    for configuration in configurations:
        if configuration.scope.value == scope:
            click.echo(configuration.get("connection"))
            return
    raise click.ClickException(f"No {scope} connection available.")


@main.command()
@_common_options
@click.option("--user", required=False, help="Database user (default: postgres)")
@click.option("--password", required=False, help="Database password (default: password)")
def migrate(service_dir, config, name, module, workspace, verbose, log_file, user, password):
    """Apply pending migrations to a running database."""
    session = _session(service_dir, config, name, module, workspace, verbose, log_file)
    service = session.service()
    instances = session.running_instances(service)
    try:
        service.resolve_configurations(instances, session.store(user, password))
        service.migrate()
    except SandboxError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        service.close_background()


@main.command()
@_common_options
def destroy(service_dir, config, name, module, workspace, verbose, log_file):
    """Remove the service containers, even if no run is active."""
    session = _session(service_dir, config, name, module, workspace, verbose, log_file)
    service = session.service()
    try:
        service.destroy(session.identity)
    except SandboxError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Removed containers for {session.identity.unique}.[/green]")


if __name__ == "__main__":
    main()
