import pytest

from pgsandbox.errors import ConfigurationError
from pgsandbox.models import Endpoint, Scope
from pgsandbox.services.network import NetworkMapper, find_instance


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None


def test_generate_returns_one_instance_per_scope():
    instances = NetworkMapper(DummyLogger(), host_port=15432).generate(Endpoint(name="tcp"))

    by_scope = {instance.scope: instance for instance in instances}
    assert by_scope[Scope.NATIVE].address == "localhost:15432"
    assert by_scope[Scope.CONTAINER].address == "host.docker.internal:15432"
    assert by_scope[Scope.PUBLIC].address == "localhost:15432"


def test_generate_picks_free_port_when_unset():
    instances = NetworkMapper(DummyLogger()).generate(Endpoint(name="tcp"))

    ports = {instance.port for instance in instances}
    assert len(ports) == 1
    assert ports.pop() > 0


def test_find_instance_missing_scope_raises():
    instances = NetworkMapper(DummyLogger(), host_port=15432).generate(Endpoint(name="tcp"))
    natives = [instance for instance in instances if instance.scope == Scope.NATIVE]

    with pytest.raises(ConfigurationError, match="container scope"):
        find_instance(natives, Scope.CONTAINER)
