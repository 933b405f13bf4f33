"""Tests for configuration loading."""

import pytest

from duckdb_featureserv.config import (
    Config,
    ConfigError,
    env_var_name,
    load_config,
)


@pytest.fixture
def config_file(tmp_path):
    def write(text):
        path = tmp_path / "featureserv.yml"
        path.write_text(text)
        return str(path)

    return write


class TestLoadConfig:
    def test_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = load_config(environ={})
        assert config == Config()
        assert config.server.http_port == 9000
        assert config.paging.limit_default == 10
        assert config.paging.limit_max == 10000
        assert config.features.default_crs == 4326

    def test_file_values(self, config_file):
        path = config_file(
            """
server:
  http_port: 8080
database:
  path: /data/parks.duckdb
  table_excludes: [private]
"""
        )
        config = load_config(path, environ={})
        assert config.server.http_port == 8080
        assert config.database.path == "/data/parks.duckdb"
        assert config.database.table_excludes == ("private",)

    def test_env_interpolation_in_file(self, config_file):
        path = config_file("database:\n  path: ${DATA_DIR}/parks.duckdb\n")
        config = load_config(path, environ={"DATA_DIR": "/srv"})
        assert config.database.path == "/srv/parks.duckdb"

    def test_environment_overrides_file(self, config_file):
        path = config_file("server:\n  http_port: 8080\n")
        config = load_config(path, environ={"DUCKDBFS_SERVER_HTTPPORT": "7000"})
        assert config.server.http_port == 7000

    def test_environment_lists_are_trimmed(self, config_file):
        path = config_file("")
        config = load_config(
            path, environ={"DUCKDBFS_DATABASE_TABLEINCLUDES": " public , sales.orders ,,"}
        )
        assert config.database.table_includes == ("public", "sales.orders")

    def test_empty_list_variable(self, config_file):
        path = config_file("database:\n  table_excludes: [private]\n")
        config = load_config(path, environ={"DUCKDBFS_DATABASE_TABLEEXCLUDES": ""})
        assert config.database.table_excludes == ()

    def test_config_path_from_environment(self, config_file):
        path = config_file("paging:\n  limit_default: 25\n")
        config = load_config(environ={"DUCKDBFS_CONFIG": path})
        assert config.paging.limit_default == 25

    def test_legacy_database_path(self, config_file):
        path = config_file("")
        config = load_config(path, environ={"DUCKDB_PATH": "/old.duckdb"})
        assert config.database.path == "/old.duckdb"

    def test_new_path_variable_wins_over_legacy(self, config_file):
        path = config_file("")
        config = load_config(
            path,
            environ={"DUCKDB_PATH": "/old.duckdb", "DUCKDBFS_DATABASE_PATH": "/new.duckdb"},
        )
        assert config.database.path == "/new.duckdb"


class TestInvalidConfig:
    def test_bad_port(self, config_file):
        with pytest.raises(ConfigError):
            load_config(config_file(""), environ={"DUCKDBFS_SERVER_HTTPPORT": "http"})

    def test_limit_max_must_be_positive(self, config_file):
        with pytest.raises(ConfigError):
            load_config(config_file("paging:\n  limit_max: 0\n"), environ={})

    def test_default_above_max(self, config_file):
        with pytest.raises(ConfigError):
            load_config(config_file("paging:\n  limit_default: 50\n  limit_max: 20\n"), environ={})

    def test_unknown_section(self, config_file):
        with pytest.raises(ConfigError):
            load_config(config_file("nonsense:\n  a: 1\n"), environ={})

    def test_unknown_key(self, config_file):
        with pytest.raises(ConfigError):
            load_config(config_file("server:\n  colour: blue\n"), environ={})

    def test_malformed_yaml(self, config_file):
        with pytest.raises(ConfigError):
            load_config(config_file("server: [unclosed\n"), environ={})

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(str(tmp_path / "missing.yml"), environ={})


class TestOverrides:
    def test_with_overrides_returns_new_record(self):
        config = Config()
        updated = config.with_overrides("database", path="/x.duckdb")
        assert updated.database.path == "/x.duckdb"
        assert config.database.path == ""

    def test_invalid_override(self):
        with pytest.raises(ConfigError):
            Config().with_overrides("server", http_port=0)


def test_env_var_name():
    assert env_var_name("database", "table_includes") == "DUCKDBFS_DATABASE_TABLEINCLUDES"
    assert env_var_name("duckdb", "api_key") == "DUCKDBFS_DUCKDB_APIKEY"
