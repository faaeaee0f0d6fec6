import os
import stat
import sys

import pytest

from pgsandbox.services.filesystem import FileSystemService, is_under


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


def test_ensure_dir_creates_missing_directory(tmp_path):
    service = FileSystemService(logger=DummyLogger(), console=DummyConsole())
    data_dir = tmp_path / "orders" / "data"

    existed = service.ensure_dir(str(data_dir), 0o700)

    assert existed is False
    assert data_dir.is_dir()


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
def test_ensure_dir_restricts_new_directory_permissions(tmp_path):
    service = FileSystemService(logger=DummyLogger(), console=DummyConsole())
    data_dir = tmp_path / "data"

    service.ensure_dir(str(data_dir), 0o700)

    assert stat.S_IMODE(os.stat(data_dir).st_mode) == 0o700


def test_ensure_dir_reports_existing_directory(tmp_path):
    service = FileSystemService(logger=DummyLogger(), console=DummyConsole())

    assert service.ensure_dir(str(tmp_path), 0o700) is True


def test_is_under():
    assert is_under("/srv/orders/migrations/1_init.up.sql", "/srv/orders/migrations")
    assert is_under("/srv/orders/migrations/versions/a1_add.py", "/srv/orders/migrations")
    assert not is_under("/srv/orders/service.pgsandbox.yml", "/srv/orders/migrations")
    assert not is_under("/srv/orders/migrations-old/1_init.up.sql", "/srv/orders/migrations")
    assert not is_under("/srv/orders/migrations", "/srv/orders/migrations")
