"""Credential and configuration lookup for pgsandbox."""

import os
from typing import Dict, Mapping, Optional

from pgsandbox.errors import ConfigurationError
from pgsandbox.models import Scope


class ConfigurationStore:
    """In-memory provider values, optionally scoped, with environment overrides.

    Values are keyed by provider then key. A scoped value wins over the
    unscoped one, and an environment variable ``PGSANDBOX_<PROVIDER>_<KEY>``
    wins over both.
    """

    ENV_PREFIX = "PGSANDBOX"

    def __init__(
        self,
        values: Optional[Mapping[str, Mapping[str, str]]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self._values: Dict[str, Dict[str, str]] = {
            provider: dict(entries) for provider, entries in (values or {}).items()
        }
        self._scoped: Dict[Scope, Dict[str, Dict[str, str]]] = {}
        self.environ = os.environ if environ is None else environ

    def set_value(self, provider: str, key: str, value: str, scope: Optional[Scope] = None):
        target = self._values if scope is None else self._scoped.setdefault(scope, {})
        target.setdefault(provider, {})[key] = value

    def get_value(self, scope: Scope, provider: str, key: str) -> str:
        env_name = f"{self.ENV_PREFIX}_{provider}_{key}".upper()
        if env_name in self.environ:
            return self.environ[env_name]

        scoped = self._scoped.get(scope, {}).get(provider, {})
        if key in scoped:
            return scoped[key]

        unscoped = self._values.get(provider, {})
        if key in unscoped:
            return unscoped[key]

        raise ConfigurationError(
            f"Missing configuration value '{key}' for provider '{provider}' ({scope.value} scope)."
        )
