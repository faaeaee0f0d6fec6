"""Docker runtime services for pgsandbox."""

import re
from typing import Callable, List, Optional, Tuple

from pgsandbox.constants import CONTAINER_HOST_ALIAS, DOCKER_PULL_TIMEOUT_SECONDS
from pgsandbox.errors import CommandError, ConfigurationError

_IMAGE_PATTERN = re.compile(
    r"^(?P<name>[a-z0-9]+(?:[._/-][a-z0-9]+)*(?::[0-9]+/[a-z0-9._/-]+)?)"
    r"(?::(?P<tag>[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}))?$"
)


def parse_image(reference: str) -> Tuple[str, str]:
    """Splits ``name[:tag]`` into name and tag, defaulting the tag to ``latest``."""
    match = _IMAGE_PATTERN.match(reference.strip())
    if not match:
        raise ConfigurationError(f"Invalid docker image reference: '{reference}'")
    return match.group("name"), match.group("tag") or "latest"


class DockerProcess:
    """A command executed inside a running container."""

    def __init__(self, runner: "DockerRunner", cmd: str, args: List[str]):
        self.runner = runner
        self.cmd = cmd
        self.args = list(args)
        self.output: Optional[Callable[[str], None]] = None

    def with_output(self, sink: Callable[[str], None]) -> "DockerProcess":
        self.output = sink
        return self

    def command(self) -> List[str]:
        exec_cmd = ["docker", "exec"]
        if self.runner.workdir:
            exec_cmd += ["-w", self.runner.workdir]
        return exec_cmd + [self.runner.name, self.cmd] + self.args

    def run(self):
        sink = self.output or self.runner.logger.debug
        exit_code = self.runner.command_runner.stream(self.command(), sink)
        if exit_code != 0:
            raise CommandError(
                f"'{self.cmd} {' '.join(self.args)}' exited with code {exit_code} in {self.runner.name}"
            )


class DockerRunner:
    """Drives one named container through the docker CLI.

    The container name is the only state needed to stop or remove it, so a
    runner built from a name can clean up containers left by another process.
    """

    def __init__(self, name: str, command_runner, logger, console):
        self.name = name
        self.command_runner = command_runner
        self.logger = logger
        self.console = console

        self.ports: List[Tuple[int, int]] = []
        self.environment: List[str] = []
        self.mounts: List[Tuple[str, str]] = []
        self.workdir: Optional[str] = None
        self.paused = False
        self.silent = False
        self.host_alias = False

    def with_port(self, container: int, host: int) -> "DockerRunner":
        self.ports.append((container, host))
        return self

    def with_environment_variables(self, *variables: str) -> "DockerRunner":
        self.environment.extend(variables)
        return self

    def with_mount(self, source: str, target: str) -> "DockerRunner":
        self.mounts.append((source, target))
        return self

    def with_workdir(self, workdir: str) -> "DockerRunner":
        self.workdir = workdir
        return self

    def with_pause(self) -> "DockerRunner":
        """Keeps the container idle so commands can be exec'd into it."""
        self.paused = True
        return self

    def with_host_alias(self) -> "DockerRunner":
        self.host_alias = True
        return self

    def silence(self) -> "DockerRunner":
        self.silent = True
        return self

    def _ensure_image(self, image: str):
        result = self.command_runner.run(
            ["docker", "image", "inspect", image], check=False, capture_output=True
        )
        if result.returncode == 0:
            return
        self.console.print(f"[blue]Pulling image {image}...[/blue]")
        self.command_runner.run(
            ["docker", "pull", image],
            capture_output=True,
            timeout=DOCKER_PULL_TIMEOUT_SECONDS,
            retry_count=2,
            retry_backoff_seconds=2.0,
        )

    def create_command(self, image: str) -> List[str]:
        cmd = ["docker", "create", "--name", self.name]
        for container_port, host_port in self.ports:
            cmd += ["-p", f"{host_port}:{container_port}"]
        for variable in self.environment:
            cmd += ["-e", variable]
        for source, target in self.mounts:
            cmd += ["-v", f"{source}:{target}"]
        if self.workdir:
            cmd += ["-w", self.workdir]
        if self.host_alias:
            cmd += ["--add-host", f"{CONTAINER_HOST_ALIAS}:host-gateway"]
        if self.paused:
            cmd += ["--entrypoint", "sleep", image, "infinity"]
        else:
            cmd.append(image)
        return cmd

    def init(self, image: str):
        """Pulls the image if needed and creates (but does not start) the container."""
        self.logger.info("Initializing container %s from %s", self.name, image)
        self._ensure_image(image)
        self.remove()
        self.command_runner.run(self.create_command(image), capture_output=True)

    def start(self):
        self.logger.info("Starting container %s", self.name)
        self.command_runner.run(["docker", "start", self.name], capture_output=True)

    def init_and_start(self, image: str):
        self.init(image)
        self.start()

    def stop(self):
        self.logger.info("Stopping container %s", self.name)
        self.command_runner.run(["docker", "stop", self.name], capture_output=True)

    def remove(self) -> bool:
        """Removes the container if it exists. Returns True when one was removed."""
        result = self.command_runner.run(
            ["docker", "rm", "-f", self.name], check=False, capture_output=True
        )
        if result.returncode == 0:
            return True
        stderr = (result.stderr or "").strip()
        if "no such container" not in stderr.lower():
            self.logger.warning("Could not remove container %s: %s", self.name, stderr)
        return False

    def shutdown(self):
        if self.remove():
            self.logger.debug("Removed container %s", self.name)

    def logs(self, tail: int = 50) -> str:
        result = self.command_runner.run(
            ["docker", "logs", "--tail", str(tail), self.name], check=False, capture_output=True
        )
        return f"{result.stdout or ''}{result.stderr or ''}".strip()

    def new_process(self, cmd: str, *args: str) -> DockerProcess:
        return DockerProcess(self, cmd, list(args))

    def published_port(self, container_port: int) -> Optional[int]:
        """Host port bound to ``container_port``, or None when the container is not running."""
        result = self.command_runner.run(
            ["docker", "port", self.name, f"{container_port}/tcp"], check=False, capture_output=True
        )
        if result.returncode != 0:
            return None
        for line in (result.stdout or "").splitlines():
            _, _, port = line.strip().rpartition(":")
            if port.isdigit():
                return int(port)
        return None
