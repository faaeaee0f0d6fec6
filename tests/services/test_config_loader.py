import pytest

from pgsandbox.errors import ConfigurationError
from pgsandbox.services.config_loader import ConfigLoader


def test_config_loader_loads_yaml_mapping(tmp_path):
    config_file = tmp_path / "service.pgsandbox.yml"
    config_file.write_text(
        "database-name: orders\nwatch: true\nready_retries: 5\n",
        encoding="utf-8",
    )

    loader = ConfigLoader()
    loaded = loader.load(str(config_file))

    assert loaded["database_name"] == "orders"
    assert loaded["watch"] is True
    assert loaded["ready_retries"] == 5


def test_config_loader_rejects_unknown_keys(tmp_path):
    config_file = tmp_path / "service.pgsandbox.yml"
    config_file.write_text("unknown_key: true\n", encoding="utf-8")

    loader = ConfigLoader()

    with pytest.raises(ConfigurationError, match="Unknown configuration keys"):
        loader.load(str(config_file))


def test_config_loader_rejects_non_mapping(tmp_path):
    config_file = tmp_path / "service.pgsandbox.yml"
    config_file.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="YAML mapping"):
        ConfigLoader().load(str(config_file))


def test_config_loader_missing_file_raises():
    with pytest.raises(ConfigurationError, match="Config file not found"):
        ConfigLoader().load("/does/not/exist.yml")


def test_build_settings_ignores_non_setting_keys():
    settings = ConfigLoader().build_settings(
        {"database_name": "orders", "persist": True, "postgres_user": "me", "name": "svc"}
    )

    assert settings.database_name == "orders"
    assert settings.persist is True
    assert settings.migration_format == "sql"


def test_build_settings_rejects_unknown_migration_format():
    with pytest.raises(ConfigurationError, match="Unsupported migration format"):
        ConfigLoader().build_settings({"migration_format": "flyway"})


def test_build_settings_rejects_empty_version_dir_override():
    with pytest.raises(ConfigurationError, match="migration_version_dir"):
        ConfigLoader().build_settings({"migration_version_dir": "  "})
