"""Network mapping of service endpoints for pgsandbox."""

import socket
from typing import List, Optional

from pgsandbox.constants import CONTAINER_HOST_ALIAS
from pgsandbox.errors import ConfigurationError
from pgsandbox.errors_catalog import actionable_error
from pgsandbox.models import Endpoint, NetworkInstance, Scope


def find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def find_instance(instances: List[NetworkInstance], scope: Scope) -> NetworkInstance:
    matches = [instance for instance in instances if instance.scope == scope]
    if not matches:
        raise ConfigurationError(actionable_error("missing_scope", scope=scope.value))
    return matches[0]


class NetworkMapper:
    """Publishes an endpoint on a host port and names it for every scope."""

    def __init__(self, logger, host_port: Optional[int] = None, public_hostname: str = "localhost"):
        self.logger = logger
        self.host_port = host_port
        self.public_hostname = public_hostname

    def generate(self, endpoint: Endpoint) -> List[NetworkInstance]:
        port = self.host_port or find_free_port()
        self.logger.debug("Endpoint %s/%s mapped to host port %s", endpoint.name, endpoint.protocol, port)
        return [
            NetworkInstance(hostname="localhost", port=port, scope=Scope.NATIVE),
            NetworkInstance(hostname=CONTAINER_HOST_ALIAS, port=port, scope=Scope.CONTAINER),
            NetworkInstance(hostname=self.public_hostname, port=port, scope=Scope.PUBLIC),
        ]
