import logging
import os
import time
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from rich.console import Console

from .constants import (
    DATA_DIR,
    DATA_DIR_MODE,
    DOCKER_COMMAND_TIMEOUT_SECONDS,
    MIGRATIONS_DIR,
    POSTGRES_DATA_PATH,
    POSTGRES_PORT,
    SERVICE_CONFIG_FILE,
)
from .errors import (
    CommandError,
    ConfigurationError,
    DatabaseNotReadyError,
    LifecycleError,
    SandboxError,
)
from .migrations import create_manager
from .models import (
    ChangeEvent,
    ConnectionConfiguration,
    Endpoint,
    LifecycleState,
    MigrationConfig,
    NetworkInstance,
    Scope,
    ServiceIdentity,
    ServiceSettings,
)
from .services.command_runner import CommandRunner
from .services.config_loader import ConfigLoader
from .services.connection import ConnectionResolver, find_connection, mask_password
from .services.database import DatabaseService
from .services.docker_runtime import DockerRunner
from .services.filesystem import FileSystemService, is_under
from .services.network import NetworkMapper, find_instance
from .services.watcher import ChangeWatcher, MigrationWorker

console = Console()
logger = logging.getLogger("pgsandbox")


class PostgresService:
    """Lifecycle of one disposable PostgreSQL container.

    ``load -> init -> start -> stop``, with ``destroy`` allowed at any point.
    A stopped service is not restarted; run ``init``/``start`` on a fresh
    instance instead.
    """

    def __init__(
        self,
        overrides: Optional[Dict[str, Any]] = None,
        command_runner: Optional[CommandRunner] = None,
        database_service: Optional[DatabaseService] = None,
        filesystem_service: Optional[FileSystemService] = None,
        config_loader: Optional[ConfigLoader] = None,
        runner_factory=DockerRunner,
        manager_factory=create_manager,
        watcher_factory=ChangeWatcher,
    ):
        self.overrides = dict(overrides or {})
        self.command_runner = command_runner or CommandRunner(
            logger=logger, default_timeout=DOCKER_COMMAND_TIMEOUT_SECONDS
        )
        self.database_service = database_service or DatabaseService(logger=logger, console=console)
        self.filesystem_service = filesystem_service or FileSystemService(logger=logger, console=console)
        self.config_loader = config_loader or ConfigLoader()
        self.runner_factory = runner_factory
        self.manager_factory = manager_factory
        self.watcher_factory = watcher_factory

        self.state = LifecycleState.UNLOADED
        self.identity: Optional[ServiceIdentity] = None
        self.settings: Optional[ServiceSettings] = None
        self.endpoint: Optional[Endpoint] = None
        self.migration_config: Optional[MigrationConfig] = None

        self.resolver: Optional[ConnectionResolver] = None
        self.configurations: List[ConnectionConfiguration] = []
        self.native_connection: Optional[str] = None
        self.runner: Optional[DockerRunner] = None
        self.worker: Optional[MigrationWorker] = None
        self.watcher: Optional[ChangeWatcher] = None

    def _require(self, verb: str, *states: LifecycleState):
        if self.state not in states:
            allowed = ", ".join(state.value for state in states)
            raise LifecycleError(
                f"Cannot {verb} a service in state '{self.state.value}' (expected: {allowed})."
            )

    def local(self, *parts: str) -> str:
        return os.path.join(self.identity.location, *parts)

    def load(self, identity: ServiceIdentity) -> Endpoint:
        """Reads settings and declares the TCP endpoint. Touches no container."""
        self._require("load", LifecycleState.UNLOADED)

        if not os.path.isdir(identity.location):
            raise ConfigurationError(f"Service directory not found: {identity.location}")
        self.identity = identity

        values = {}
        service_config = self.local(SERVICE_CONFIG_FILE)
        if os.path.exists(service_config):
            values.update(self.config_loader.load(service_config))
        values.update(self.overrides)
        self.settings = self.config_loader.build_settings(values)

        self.endpoint = Endpoint(name="tcp", port=POSTGRES_PORT)
        self.migration_config = MigrationConfig(
            database_name=self.settings.database_name,
            migration_dir=self.local(MIGRATIONS_DIR),
            version_dir_override=self.settings.migration_version_dir,
            image_override=self.settings.alembic_image,
        )

        logger.debug("Loaded %s with settings %s", identity.unique, asdict(self.settings))
        self.state = LifecycleState.LOADED
        return self.endpoint

    def resolve_configurations(
        self, network_instances: List[NetworkInstance], store
    ) -> List[ConnectionConfiguration]:
        """One connection configuration per network instance, for dependency consumers."""
        if self.identity is None:
            raise LifecycleError("Load the service before resolving connections.")

        native = find_instance(network_instances, Scope.NATIVE)
        logger.info("Database will run on %s", native.address)

        self.resolver = ConnectionResolver(
            logger=logger,
            store=store,
            origin=self.identity.unique,
            database_name=self.settings.database_name,
        )
        require_ssl = not self.settings.without_ssl
        self.configurations = [
            self.resolver.create_connection_configuration(instance, require_ssl)
            for instance in network_instances
        ]
        self.native_connection = find_connection(self.configurations, Scope.NATIVE)
        return self.configurations

    def init(self, network_instances: List[NetworkInstance], store) -> List[ConnectionConfiguration]:
        self._require("init", LifecycleState.LOADED)

        configurations = self.resolve_configurations(network_instances, store)
        native = find_instance(network_instances, Scope.NATIVE)
        credentials = self.resolver.credentials(Scope.NATIVE)

        runner = self.runner_factory(self.identity.container_name, self.command_runner, logger, console)
        runner.with_port(POSTGRES_PORT, native.port)
        runner.with_environment_variables(
            f"POSTGRES_USER={credentials.user}",
            f"POSTGRES_PASSWORD={credentials.password}",
            f"POSTGRES_DB={self.settings.database_name}",
        )

        if self.settings.persist:
            data_dir = self.local(DATA_DIR)
            existed = self.filesystem_service.ensure_dir(data_dir, DATA_DIR_MODE)
            if not existed:
                logger.info("Created data directory %s", data_dir)
            runner.with_mount(data_dir, POSTGRES_DATA_PATH)

        if self.settings.silent:
            runner.silence()

        runner.init(self.settings.postgres_image)
        self.runner = runner
        self.state = LifecycleState.INITIALIZED
        return configurations

    def start(self):
        if self.state == LifecycleState.STOPPED:
            raise LifecycleError("A stopped service cannot be restarted. Run init/start on a new service.")
        self._require("start", LifecycleState.INITIALIZED)

        self.runner.start()

        try:
            self.database_service.wait_for_ready(
                self.native_connection,
                max_retries=self.settings.ready_retries,
                interval_seconds=self.settings.ready_interval_seconds,
                container_name=self.runner.name,
            )
        except DatabaseNotReadyError:
            if not self.runner.silent:
                console.print(f"[dim]{self.runner.logs()}[/dim]")
            raise

        if self.settings.no_migration:
            logger.info("Migrations disabled.")
        else:
            self.migrate()

        if self.settings.watch:
            self._start_watcher()

        self.state = LifecycleState.RUNNING
        console.print(f"[bold green]{self.identity.name} is running.[/bold green]")

    def migrate(self):
        """Brings the schema to the latest version through the migration worker."""
        if not self.configurations:
            raise LifecycleError("Resolve connection configurations before migrating.")

        if self.worker is None:
            manager = self.manager_factory(
                self.settings.migration_format,
                self.migration_config,
                logger,
                console,
                self.command_runner,
                self.database_service,
                self.identity.helper_container_name,
            )
            self.worker = MigrationWorker(manager, logger)

        console.print("[blue]Applying migrations...[/blue]")
        self.worker.init(self.configurations)
        self.worker.apply()
        console.print("[green]Migrations applied.[/green]")

    def _start_watcher(self):
        if self.worker is None:
            logger.warning("Hot-reload needs migrations enabled; not watching.")
            return
        try:
            watcher = self.watcher_factory(logger, *self._watched_dirs())
            watcher.register(self.handle_change)
            watcher.start()
        except Exception as exc:
            logger.warning("Error in watcher, hot-reload disabled: %s", exc)
            return
        self.watcher = watcher

    def _watched_dirs(self) -> List[str]:
        directories = [self.migration_config.migration_dir]
        override = self.migration_config.version_dir_override
        if override and not is_under(override, self.migration_config.migration_dir):
            directories.append(override)
        return directories

    def handle_change(self, event: ChangeEvent):
        """Queues a re-apply for a changed migration file. Never raises."""
        if self.worker is None:
            return
        try:
            self.worker.handle_change(event)
        except RuntimeError as exc:
            logger.warning("Cannot queue migration update for %s: %s", event.path, exc)

    def close_background(self):
        if self.watcher is not None:
            self.watcher.stop()
            self.watcher = None
        if self.worker is not None:
            self.worker.close()
            self.worker = None

    def stop(self):
        self._require("stop", LifecycleState.INITIALIZED, LifecycleState.RUNNING)
        self.close_background()

        if self.settings.persist:
            logger.info("Persistent instance: leaving container %s and its data alone.", self.runner.name)
        else:
            self.runner.stop()
        self.state = LifecycleState.STOPPED

    def destroy(self, identity: Optional[ServiceIdentity] = None):
        """Removes the service containers by name, whatever the in-memory state."""
        identity = identity or self.identity
        if identity is None:
            raise LifecycleError("Destroy needs a service identity.")

        self.close_background()
        for name in (identity.container_name, identity.helper_container_name):
            runner = self.runner_factory(name, self.command_runner, logger, console)
            try:
                runner.shutdown()
            except CommandError as exc:
                logger.warning("Cannot remove container %s: %s", name, exc)

        self.runner = None
        self.state = LifecycleState.DESTROYED

    def published_port(self) -> Optional[int]:
        if self.identity is None:
            raise LifecycleError("Load the service before looking up its port.")
        runner = self.runner_factory(self.identity.container_name, self.command_runner, logger, console)
        return runner.published_port(POSTGRES_PORT)

    def describe(self) -> List[str]:
        return [
            f"{configuration.scope.value}: {mask_password(configuration.get('connection') or '')}"
            for configuration in self.configurations
        ]

    def run(self, identity: ServiceIdentity, store, keep: bool = False, wait=None, mapper=None) -> int:
        """Loads, starts and serves the database until interrupted. Returns an exit code."""
        exit_code = 1
        wait = wait or _wait_forever

        try:
            logger.info("Starting pgsandbox for %s...", identity.unique)
            endpoint = self.load(identity)
            mapper = mapper or NetworkMapper(logger, host_port=self.settings.host_port)
            self.init(mapper.generate(endpoint), store)
            self.start()

            for line in self.describe():
                console.print(f"[bold blue]{line}[/bold blue]")
            console.print("[dim]Press Ctrl+C to stop.[/dim]")
            wait()
            exit_code = 0
            return exit_code

        except KeyboardInterrupt:
            console.print("[yellow]Stopping on user request.[/yellow]")
            logger.info("Operation cancelled by user")
            exit_code = 0
            return exit_code
        except SandboxError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            exit_code = 1
            return exit_code
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            exit_code = 1
            return exit_code
        finally:
            self._shutdown_after_run(identity, keep)

    def _shutdown_after_run(self, identity: ServiceIdentity, keep: bool):
        if self.state in (LifecycleState.INITIALIZED, LifecycleState.RUNNING):
            try:
                self.stop()
            except SandboxError as exc:
                logger.warning("Could not stop %s: %s", identity.unique, exc)

        persistent = self.settings is not None and self.settings.persist
        if keep or persistent:
            logger.warning("Keeping container %s. Run `pgsandbox destroy` to remove it.", identity.container_name)
            return
        self.destroy(identity)


def _wait_forever():
    while True:
        time.sleep(1)


__all__ = ["PostgresService", "SandboxError"]
