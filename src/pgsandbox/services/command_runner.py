"""Subprocess execution service for pgsandbox."""

import subprocess
import time
from typing import Callable, List, Optional

from pgsandbox.errors import CommandError


def _launch_error(cmd: List[str], exc: OSError) -> CommandError:
    if isinstance(exc, FileNotFoundError):
        return CommandError(f"Required command not found: {cmd[0]}. Is it installed and on PATH?")
    return CommandError(f"Cannot launch '{' '.join(cmd)}': {exc}")


class CommandRunner:
    """Runs docker (and other) commands, with optional retries.

    Every failure surfaces as ``CommandError``; callers that expect a
    non-zero exit pass ``check=False`` and inspect the result themselves.
    """

    def __init__(self, logger, default_timeout: Optional[float] = None, subprocess_module=subprocess):
        self.logger = logger
        self.default_timeout = default_timeout
        self.subprocess = subprocess_module

    def _pause(self, attempt: int, attempts: int, delay: float, reason: str):
        self.logger.warning("Attempt %s/%s failed, retrying in %.1fs: %s", attempt, attempts, delay, reason)
        time.sleep(delay)

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
        retry_count: int = 0,
        retry_backoff_seconds: float = 0.0,
    ) -> subprocess.CompletedProcess:
        """Runs ``cmd`` to completion.

        A timeout is retried like a failing exit code. Without an explicit
        ``timeout`` the runner's ``default_timeout`` applies.
        """
        cmd_str = " ".join(cmd)
        limit = timeout if timeout is not None else self.default_timeout
        attempts = max(1, retry_count + 1)

        attempt = 0
        while True:
            attempt += 1
            self.logger.debug("Executing (%s/%s): %s", attempt, attempts, cmd_str)
            try:
                result = self.subprocess.run(cmd, text=True, capture_output=capture_output, timeout=limit)
            except subprocess.TimeoutExpired as exc:
                if attempt < attempts:
                    self._pause(attempt, attempts, retry_backoff_seconds, f"timed out: {cmd_str}")
                    continue
                raise CommandError(f"Command timed out after {limit}s: {cmd_str}") from exc
            except OSError as exc:
                raise _launch_error(cmd, exc) from exc

            if result.returncode == 0:
                if capture_output and result.stdout:
                    self.logger.debug("Output of %s: %s", cmd[0], result.stdout.strip())
                return result

            detail = f"Command failed ({result.returncode}): {cmd_str}"
            stderr = (result.stderr or "").strip() if capture_output else ""
            if stderr:
                detail = f"{detail}\n{stderr}"

            if attempt < attempts:
                self._pause(attempt, attempts, retry_backoff_seconds, detail)
                continue
            if check:
                raise CommandError(detail)
            self.logger.debug(detail)
            return result

    def stream(self, cmd: List[str], on_line: Callable[[str], None]) -> int:
        """Runs a command and hands each non-empty output line to ``on_line``.

        Stdout and stderr are merged. Returns the exit code.
        """
        self.logger.debug("Streaming: %s", " ".join(cmd))
        try:
            process = self.subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except OSError as exc:
            raise _launch_error(cmd, exc) from exc

        with process:
            for line in process.stdout:
                cleaned = line.rstrip()
                if cleaned:
                    on_line(cleaned)
            return process.wait()
