"""Filesystem helpers for pgsandbox."""

import logging
import os
import sys

from rich.console import Console


def is_under(path: str, directory: str) -> bool:
    path = os.path.abspath(path)
    directory = os.path.abspath(directory)
    return os.path.commonpath([path, directory]) == directory and path != directory


class FileSystemService:
    """Encapsulates file and directory side effects."""

    def __init__(self, logger: logging.Logger, console: Console):
        self.logger = logger
        self.console = console

    def set_permissions(self, path: str, mode: int):
        if sys.platform == "win32":
            return

        try:
            os.chmod(path, mode)
        except OSError as exc:
            self.logger.warning("Could not set permissions on %s: %s", path, exc)

    def ensure_dir(self, path: str, mode: int) -> bool:
        """Creates ``path`` when missing. Returns True if it already existed."""
        if os.path.isdir(path):
            return True

        os.makedirs(path, exist_ok=True)
        self.set_permissions(path, mode)
        self.logger.debug("Created directory: %s", path)
        return False

