"""Tests for the quarry CLI.

Tests all commands: serve, sources, sample-dsns, check-query, resource.
Uses typer.testing.CliRunner for isolated CLI testing.
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from quarry.cli import app
from quarry.cli._config import CliConfig, get_config

runner = CliRunner()

CONFIG_TOML = """
[[sources]]
id = "inventory"
dsn = "sqlite://{db}"
init_script = "CREATE TABLE IF NOT EXISTS parts (id INTEGER PRIMARY KEY, sku TEXT)"

[[sources]]
id = "warehouse"
type = "postgres"
host = "db.internal"
database = "wh"
user = "reader"
password = "s3cret"
readonly = false
max_rows = 500

[[tools]]
name = "search_objects"
source = "warehouse"
"""


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    for var in (
        "QUARRY_CONFIG",
        "QUARRY_DSN",
        "QUARRY_READONLY",
        "QUARRY_MAX_ROWS",
        "QUARRY_TRANSPORT",
        "QUARRY_HOST",
        "QUARRY_PORT",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "quarry.toml"
    path.write_text(CONFIG_TOML.format(db=tmp_path / "inventory.db"))
    return path


# =============================================================================
# Help / structure
# =============================================================================


class TestHelp:
    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert "serve" in result.output
        assert "check-query" in result.output

    @pytest.mark.parametrize(
        "command", ["serve", "sources", "sample-dsns", "check-query", "resource"]
    )
    def test_command_help(self, command):
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0


# =============================================================================
# sample-dsns
# =============================================================================


class TestSampleDsns:
    def test_lists_every_connector(self):
        result = runner.invoke(app, ["sample-dsns"])
        assert result.exit_code == 0
        ids = [line.split()[0] for line in result.output.strip().splitlines()]
        assert ids == ["postgres", "mysql", "mariadb", "sqlserver", "sqlite"]
        assert "sqlite:///" in result.output


# =============================================================================
# check-query
# =============================================================================


class TestCheckQuery:
    def test_select_ok(self):
        result = runner.invoke(app, ["check-query", "SELECT * FROM users"])
        assert result.exit_code == 0
        assert result.output.strip() == "OK"

    def test_write_rejected(self):
        result = runner.invoke(app, ["check-query", "DELETE FROM users"])
        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "DELETE statements are not permitted" in result.output

    def test_no_readonly_allows_write(self):
        result = runner.invoke(app, ["check-query", "DELETE FROM users", "--no-readonly"])
        assert result.exit_code == 0

    def test_dialect_keywords(self):
        result = runner.invoke(app, ["check-query", "PRAGMA table_info(t)", "-d", "sqlite"])
        assert result.exit_code == 0
        result = runner.invoke(app, ["check-query", "PRAGMA table_info(t)", "-d", "postgres"])
        assert result.exit_code == 1

    def test_unknown_dialect(self):
        result = runner.invoke(app, ["check-query", "SELECT 1", "-d", "oracle"])
        assert result.exit_code == 1
        assert "Unknown dialect" in result.output


# =============================================================================
# sources
# =============================================================================


class TestSources:
    def test_from_config_file(self, config_file):
        result = runner.invoke(app, ["sources", "--config", str(config_file)])
        assert result.exit_code == 0, result.output
        assert f"Configuration: {config_file}" in result.output
        assert "inventory" in result.output
        assert "read-only" in result.output
        assert "writable" in result.output
        assert "s3cret" not in result.output
        assert "tools: execute_sql, search_objects" in result.output
        assert "tools: search_objects" in result.output

    def test_discovers_cwd_file(self, config_file):
        result = runner.invoke(app, ["sources"])
        assert result.exit_code == 0, result.output
        assert "warehouse" in result.output

    def test_from_dsn(self):
        result = runner.invoke(app, ["sources", "--dsn", "mysql://root:pw@localhost/shop"])
        assert result.exit_code == 0, result.output
        assert "default" in result.output
        assert "mysql" in result.output
        assert "pw@" not in result.output

    def test_no_configuration(self):
        result = runner.invoke(app, ["sources"])
        assert result.exit_code == 1
        assert "No configuration found" in result.output

    def test_missing_config_file(self, tmp_path):
        result = runner.invoke(app, ["sources", "--config", str(tmp_path / "nope.toml")])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text('[[sources]]\nid = "x"\n')
        result = runner.invoke(app, ["sources", "--config", str(path)])
        assert result.exit_code == 1
        assert "Error:" in result.output


# =============================================================================
# resource
# =============================================================================


class TestResource:
    def test_reads_tables(self, config_file):
        result = runner.invoke(
            app,
            [
                "resource",
                "db://schemas/main/tables",
                "--source",
                "inventory",
                "--config",
                str(config_file),
            ],
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {"schema": "main", "tables": ["parts"], "count": 1}

    def test_reads_with_dsn(self, tmp_path):
        dsn = f"sqlite://{tmp_path / 'one.db'}"
        result = runner.invoke(app, ["resource", "db://schemas", "--dsn", dsn])
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["source_id"] == "default"

    def test_error_payload_exits_nonzero(self, tmp_path):
        dsn = f"sqlite://{tmp_path / 'one.db'}"
        result = runner.invoke(app, ["resource", "db://schemas/nope/tables", "--dsn", dsn])
        assert result.exit_code == 1
        assert json.loads(result.output)["code"] == "SCHEMA_NOT_FOUND"


# =============================================================================
# serve
# =============================================================================


class TestServe:
    def test_unknown_transport(self):
        result = runner.invoke(app, ["serve", "--transport", "carrier-pigeon"])
        assert result.exit_code == 1
        assert "Unknown transport" in result.output

    def test_serves_with_overrides(self, config_file):
        with (
            patch("quarry.mcp.server.serve") as mock_serve,
            patch("quarry.observability.configure"),
        ):
            result = runner.invoke(
                app,
                [
                    "serve",
                    "--config",
                    str(config_file),
                    "--transport",
                    "http",
                    "--port",
                    "9000",
                    "--readonly",
                    "--max-rows",
                    "25",
                ],
            )
        assert result.exit_code == 0, result.output
        config = mock_serve.call_args.args[0]
        assert all(s.readonly is True for s in config.sources)
        assert all(s.max_rows == 25 for s in config.sources)
        assert mock_serve.call_args.kwargs == {"transport": "http", "host": "127.0.0.1", "port": 9000}

    def test_env_defaults(self, monkeypatch, tmp_path):
        monkeypatch.setenv("QUARRY_TRANSPORT", "sse")
        monkeypatch.setenv("QUARRY_HOST", "0.0.0.0")
        monkeypatch.setenv("QUARRY_DSN", f"sqlite://{tmp_path / 'x.db'}")
        with (
            patch("quarry.mcp.server.serve") as mock_serve,
            patch("quarry.observability.configure"),
        ):
            result = runner.invoke(app, ["serve"])
        assert result.exit_code == 0, result.output
        assert mock_serve.call_args.kwargs == {"transport": "sse", "host": "0.0.0.0", "port": 8080}

    def test_config_errors_reported(self):
        with patch("quarry.observability.configure"):
            result = runner.invoke(app, ["serve"])
        assert result.exit_code == 1
        assert "No configuration found" in result.output


# =============================================================================
# Environment config
# =============================================================================


class TestCliConfig:
    def test_defaults(self):
        cfg = get_config()
        assert cfg == CliConfig(transport="stdio", host="127.0.0.1", port=8080)

    def test_bad_port(self, monkeypatch, capsys):
        monkeypatch.setenv("QUARRY_PORT", "eighty")
        with pytest.raises(SystemExit):
            get_config()
        assert "QUARRY_PORT" in capsys.readouterr().err
