"""Domain errors for pgsandbox."""

from typing import List, Optional


class SandboxError(RuntimeError):
    """Raised when the sandbox cannot continue safely."""


class ConfigurationError(SandboxError):
    """Missing credentials, network scopes or invalid settings."""


class CommandError(SandboxError):
    """An external command failed or could not be executed."""


class LifecycleError(SandboxError):
    """A lifecycle verb was called from a state that does not allow it."""


class DatabaseNotReadyError(SandboxError):
    """The database did not accept queries within the readiness budget."""


class MigrationError(SandboxError):
    """A migration backend failed to bring the schema up to date."""


class DirtyMigrationError(MigrationError):
    """The schema is left in a partially applied state."""

    def __init__(self, message: str, version: Optional[int] = None):
        super().__init__(message)
        self.version = version


class UncommittedTransactionError(MigrationError):
    """Migrations were recorded but their tables are not visible."""

    def __init__(self, message: str, versions: Optional[List[str]] = None):
        super().__init__(message)
        self.versions = list(versions or [])
