import pytest

from pgsandbox.errors import ConfigurationError
from pgsandbox.models import Scope
from pgsandbox.services.configuration_store import ConfigurationStore


def test_get_value_reads_unscoped_value():
    store = ConfigurationStore({"postgres": {"POSTGRES_USER": "postgres"}}, environ={})

    assert store.get_value(Scope.NATIVE, "postgres", "POSTGRES_USER") == "postgres"


def test_scoped_value_wins_over_unscoped():
    store = ConfigurationStore({"postgres": {"POSTGRES_USER": "postgres"}}, environ={})
    store.set_value("postgres", "POSTGRES_USER", "reader", scope=Scope.PUBLIC)

    assert store.get_value(Scope.PUBLIC, "postgres", "POSTGRES_USER") == "reader"
    assert store.get_value(Scope.NATIVE, "postgres", "POSTGRES_USER") == "postgres"


def test_environment_wins_over_stored_values():
    store = ConfigurationStore(
        {"postgres": {"POSTGRES_PASSWORD": "password"}},
        environ={"PGSANDBOX_POSTGRES_POSTGRES_PASSWORD": "from-env"},
    )

    assert store.get_value(Scope.NATIVE, "postgres", "POSTGRES_PASSWORD") == "from-env"


def test_missing_value_raises_configuration_error():
    store = ConfigurationStore(environ={})

    with pytest.raises(ConfigurationError, match="Missing configuration value 'POSTGRES_USER'"):
        store.get_value(Scope.NATIVE, "postgres", "POSTGRES_USER")
