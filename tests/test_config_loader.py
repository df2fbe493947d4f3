"""Tests for configuration loading: file discovery, sources, tools, overrides."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from quarry.config.loader import (
    DEFAULT_SOURCE_ID,
    build_dsn_from_source,
    config_from_dsn,
    find_config_path,
    load_config,
    parse_config,
    read_config_file,
)
from quarry.config.models import QuarryConfig, SourceConfig, SSHConfig
from quarry.errors import ConfigError
from quarry.tools.models import (
    CustomToolConfig,
    ExecuteSqlToolConfig,
    GenerateCodeToolConfig,
    SearchObjectsToolConfig,
)

BASIC_TOML = """
[[sources]]
id = "pg1"
dsn = "postgres://app:secret@db:5432/app"
readonly = false
max_rows = 500

[[sources]]
id = "local"
type = "sqlite"
database = "/tmp/local.db"
"""


@pytest.fixture(autouse=True)
def _clean_env():
    """Keep QUARRY_* from the developer's shell out of every test."""
    keys = ["QUARRY_CONFIG", "QUARRY_DSN", "QUARRY_READONLY", "QUARRY_MAX_ROWS"]
    saved = {k: os.environ.pop(k) for k in keys if k in os.environ}
    yield
    for k in keys:
        os.environ.pop(k, None)
    os.environ.update(saved)


def _write(tmp_path: Path, name: str, text: str) -> Path:
    path = tmp_path / name
    path.write_text(text)
    return path


def _parse(sources: list[dict], tools: list[dict] | None = None) -> QuarryConfig:
    raw: dict = {"sources": sources}
    if tools is not None:
        raw["tools"] = tools
    return parse_config(raw, "quarry.toml")


PG = {"id": "pg1", "dsn": "postgres://u:p@h:5432/d"}
SQLITE = {"id": "lite", "dsn": "sqlite:///tmp/x.db"}
MYSQL = {"id": "my1", "dsn": "mysql://u:p@h:3306/d"}


# =============================================================================
# Discovery and priority
# =============================================================================


class TestDiscovery:
    def test_explicit_path_wins(self, tmp_path):
        path = _write(tmp_path, "custom.toml", BASIC_TOML)
        _write(tmp_path, "quarry.toml", '[[sources]]\nid = "other"\ndsn = "sqlite::memory:"\n')
        assert find_config_path(path, tmp_path) == path

    def test_env_var(self, tmp_path):
        path = _write(tmp_path, "env.toml", BASIC_TOML)
        with patch.dict(os.environ, {"QUARRY_CONFIG": str(path)}):
            assert find_config_path(None, tmp_path) == path

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="--config not found"):
            find_config_path(tmp_path / "nope.toml")

    def test_env_missing_file(self, tmp_path):
        with patch.dict(os.environ, {"QUARRY_CONFIG": str(tmp_path / "nope.toml")}):
            with pytest.raises(ConfigError, match="QUARRY_CONFIG"):
                find_config_path(None, tmp_path)

    def test_toml_before_yaml(self, tmp_path):
        _write(tmp_path, "quarry.yaml", "sources: []\n")
        toml = _write(tmp_path, "quarry.toml", BASIC_TOML)
        assert find_config_path(None, tmp_path) == toml

    def test_yml_found(self, tmp_path):
        yml = _write(tmp_path, "quarry.yml", "sources: []\n")
        assert find_config_path(None, tmp_path) == yml

    def test_nothing_found(self, tmp_path):
        assert find_config_path(None, tmp_path) is None

    def test_no_config_and_no_dsn(self, tmp_path):
        with pytest.raises(ConfigError, match="No configuration found"):
            load_config(cwd=tmp_path)

    def test_dsn_argument(self, tmp_path):
        config = load_config(dsn="sqlite::memory:", cwd=tmp_path)
        assert config.source_ids() == [DEFAULT_SOURCE_ID]
        assert config.tools is None
        assert config.origin == "--dsn"

    def test_dsn_env(self, tmp_path):
        with patch.dict(os.environ, {"QUARRY_DSN": "postgres://u:p@h/d"}):
            config = load_config(cwd=tmp_path)
        assert config.sources[0].type == "postgres"
        assert config.origin == "QUARRY_DSN"

    def test_file_beats_dsn(self, tmp_path):
        _write(tmp_path, "quarry.toml", BASIC_TOML)
        config = load_config(dsn="sqlite::memory:", cwd=tmp_path)
        assert config.source_ids() == ["pg1", "local"]


class TestReadFile:
    def test_toml(self, tmp_path):
        raw = read_config_file(_write(tmp_path, "quarry.toml", BASIC_TOML))
        assert raw["sources"][0]["id"] == "pg1"

    def test_yaml(self, tmp_path):
        text = "sources:\n  - id: pg1\n    dsn: postgres://u:p@h/d\n"
        raw = read_config_file(_write(tmp_path, "quarry.yaml", text))
        assert raw["sources"][0]["dsn"] == "postgres://u:p@h/d"

    def test_bad_toml(self, tmp_path):
        path = _write(tmp_path, "quarry.toml", "[[sources]\nid=")
        with pytest.raises(ConfigError, match="could not parse") as exc_info:
            read_config_file(path)
        assert str(path) in str(exc_info.value)

    def test_yaml_list_top_level(self, tmp_path):
        with pytest.raises(ConfigError, match="mapping"):
            read_config_file(_write(tmp_path, "quarry.yaml", "- a\n- b\n"))

    def test_empty_yaml(self, tmp_path):
        assert read_config_file(_write(tmp_path, "quarry.yaml", "")) == {}


# =============================================================================
# Sources
# =============================================================================


class TestSources:
    def test_full_file(self, tmp_path):
        config = load_config(_write(tmp_path, "q.toml", BASIC_TOML))
        pg, local = config.sources
        assert pg.readonly is False
        assert pg.max_rows == 500
        assert pg.type == "postgres"
        assert local.dsn == "sqlite:///tmp/local.db"
        assert local.readonly is None
        assert local.execute_options().readonly is True
        assert config.tools is None

    def test_missing_sources(self):
        with pytest.raises(ConfigError, match=r"\[\[sources\]\]"):
            parse_config({}, "quarry.toml")

    def test_sources_not_array(self):
        with pytest.raises(ConfigError, match="must be an array"):
            parse_config({"sources": {"id": "x"}})

    def test_empty_sources(self):
        with pytest.raises(ConfigError, match="cannot be empty"):
            _parse([])

    def test_missing_id(self):
        with pytest.raises(ConfigError, match="'id' field"):
            _parse([{"dsn": "sqlite::memory:"}])

    def test_duplicate_ids(self):
        with pytest.raises(ConfigError, match="duplicate source IDs found: pg1"):
            _parse([PG, dict(PG)])

    def test_missing_connection(self):
        with pytest.raises(ConfigError, match="must have either"):
            _parse([{"id": "x"}])

    def test_invalid_type(self):
        with pytest.raises(ConfigError, match="invalid type 'oracle'"):
            _parse([{"id": "x", "type": "oracle", "host": "h"}])

    def test_unsupported_dsn_scheme(self):
        with pytest.raises(ConfigError, match="unsupported DSN"):
            _parse([{"id": "x", "dsn": "oracle://u:secret@h/d"}])

    def test_error_message_names_file(self):
        with pytest.raises(ConfigError) as exc_info:
            _parse([])
        assert str(exc_info.value).startswith("quarry.toml: ")
        assert exc_info.value.path == "quarry.toml"

    @pytest.mark.parametrize(
        "field, value",
        [("max_rows", 0), ("max_rows", -5), ("max_rows", 1.5), ("max_rows", True), ("request_timeout", "soon")],
    )
    def test_invalid_limits(self, field, value):
        with pytest.raises(ConfigError, match=f"invalid {field}"):
            _parse([{**PG, field: value}])

    def test_invalid_readonly(self):
        with pytest.raises(ConfigError, match="invalid readonly"):
            _parse([{**PG, "readonly": "yes"}])

    def test_timeouts_and_init_script(self):
        config = _parse(
            [{**PG, "connection_timeout": 5, "request_timeout": 2.5, "init_script": "SET x = 1"}]
        )
        options = config.sources[0].execute_options()
        assert options.connection_timeout == 5
        assert options.request_timeout == 2.5
        assert config.sources[0].init_script == "SET x = 1"

    def test_repr_hides_password(self):
        source = _parse([{"id": "x", "dsn": "postgres://u:hunter2@h/d"}]).sources[0]
        assert "hunter2" not in repr(source)
        assert "hunter2" not in source.safe_dsn


class TestBuildDsn:
    def test_structured_postgres(self):
        dsn = build_dsn_from_source(
            {"id": "x", "type": "postgres", "host": "db", "user": "u", "password": "p@ss", "database": "app"}
        )
        assert dsn == "postgres://u:p%40ss@db:5432/app"

    def test_structured_default_ports(self):
        for db_type, port in (("mysql", 3306), ("mariadb", 3306), ("sqlserver", 1433)):
            dsn = build_dsn_from_source(
                {"id": "x", "type": db_type, "host": "h", "user": "u", "database": "d"}
            )
            assert dsn == f"{db_type}://u@h:{port}/d"

    def test_sqlserver_instance_and_sslmode(self):
        dsn = build_dsn_from_source(
            {
                "id": "x",
                "type": "sqlserver",
                "host": "h",
                "user": "u",
                "password": "p",
                "database": "d",
                "instance_name": "SQLEXPRESS",
                "sslmode": "require",
            }
        )
        assert dsn == "sqlserver://u:p@h:1433/d?instanceName=SQLEXPRESS&sslmode=require"

    def test_sqlite_database(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))
        assert build_dsn_from_source({"id": "x", "type": "sqlite", "database": "/a/b.db"}) == (
            "sqlite:///a/b.db"
        )
        assert build_dsn_from_source({"id": "x", "type": "sqlite", "database": "~/b.db"}) == (
            f"sqlite://{tmp_path / 'b.db'}"
        )

    def test_sqlite_dsn_home_expanded(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))
        assert build_dsn_from_source({"id": "x", "dsn": "sqlite:///~/b.db"}) == (
            f"sqlite://{tmp_path / 'b.db'}"
        )

    def test_missing_fields(self):
        with pytest.raises(ConfigError, match="Required: type, host, user, database"):
            build_dsn_from_source({"id": "x", "type": "postgres", "host": "h"})

    def test_dsn_passes_through(self):
        assert build_dsn_from_source({"id": "x", "dsn": "mysql://u:p@h/d"}) == "mysql://u:p@h/d"


class TestSSH:
    def test_ssh_block(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))
        source = _parse(
            [{**PG, "ssh_host": "bastion", "ssh_user": "ops", "ssh_key": "~/.ssh/id_ed25519"}]
        ).sources[0]
        assert source.ssh == SSHConfig(
            host="bastion", user="ops", port=22, key_path=str(tmp_path / ".ssh/id_ed25519")
        )

    def test_ssh_password_hidden_from_repr(self):
        source = _parse(
            [{**PG, "ssh_host": "b", "ssh_user": "ops", "ssh_password": "tunnelpw"}]
        ).sources[0]
        assert "tunnelpw" not in repr(source)

    @pytest.mark.parametrize("port", [0, 70000, "22"])
    def test_invalid_port(self, port):
        with pytest.raises(ConfigError, match="ssh_port"):
            _parse([{**PG, "ssh_host": "b", "ssh_user": "u", "ssh_password": "p", "ssh_port": port}])

    def test_needs_user(self):
        with pytest.raises(ConfigError, match="ssh_user"):
            _parse([{**PG, "ssh_host": "b", "ssh_password": "p"}])

    def test_needs_password_or_key(self):
        with pytest.raises(ConfigError, match="ssh_password or ssh_key"):
            _parse([{**PG, "ssh_host": "b", "ssh_user": "u"}])


# =============================================================================
# Tools
# =============================================================================


class TestTools:
    def test_missing_vs_empty(self):
        assert _parse([PG]).tools is None
        assert _parse([PG], []).tools == ()

    def test_builtin_entries(self):
        config = _parse(
            [PG],
            [
                {"name": "execute_sql", "source": "pg1", "readonly": True, "max_rows": 10},
                {"name": "search_objects", "source": "pg1"},
            ],
        )
        execute, search = config.tools
        assert execute == ExecuteSqlToolConfig(source="pg1", readonly=True, max_rows=10)
        assert search == SearchObjectsToolConfig(source="pg1")
        assert execute.is_builtin

    def test_generate_code_entry(self):
        config = _parse([PG], [{"name": "generate_code", "source": "pg1"}])
        assert config.tools == (GenerateCodeToolConfig(source="pg1"),)
        assert config.tools[0].is_builtin

    def test_builtin_on_several_sources(self):
        config = _parse(
            [PG, SQLITE],
            [{"name": "execute_sql", "source": "pg1"}, {"name": "execute_sql", "source": "lite"}],
        )
        assert len(config.tools) == 2

    def test_custom_tool(self):
        config = _parse(
            [PG],
            [
                {
                    "name": "user_by_email",
                    "source": "pg1",
                    "description": "Look up a user",
                    "statement": "SELECT * FROM users WHERE email = $1 AND status = $2",
                    "parameters": [
                        {"name": "email", "type": "string", "description": "Email address"},
                        {
                            "name": "status",
                            "type": "string",
                            "description": "Account status",
                            "default": "active",
                            "allowed_values": ["active", "banned"],
                        },
                    ],
                }
            ],
        )
        [tool] = config.tools
        assert isinstance(tool, CustomToolConfig)
        email, status = tool.parameters
        assert email.required is True
        assert status.required is False
        assert status.allowed_values == ("active", "banned")

    def test_unknown_source(self):
        with pytest.raises(ConfigError, match="unknown source 'ghost'"):
            _parse([PG], [{"name": "execute_sql", "source": "ghost"}])

    def test_missing_name_or_source(self):
        with pytest.raises(ConfigError, match="name"):
            _parse([PG], [{"source": "pg1"}])
        with pytest.raises(ConfigError, match="source"):
            _parse([PG], [{"name": "t"}])

    @pytest.mark.parametrize("name", ["execute_sql_fast", "search_objects_v2", "generate_code_ts"])
    def test_builtin_prefix_reserved(self, name):
        with pytest.raises(ConfigError, match="conflicts with built-in"):
            _parse([PG], [{"name": name, "source": "pg1", "description": "d", "statement": "SELECT 1"}])

    def test_builtin_name_with_statement_reserved(self):
        with pytest.raises(ConfigError, match="conflicts with built-in"):
            _parse(
                [PG],
                [{"name": "execute_sql", "source": "pg1", "description": "d", "statement": "SELECT 1"}],
            )

    @pytest.mark.parametrize("missing", ["description", "statement"])
    def test_custom_requires_fields(self, missing):
        tool = {"name": "t", "source": "pg1", "description": "d", "statement": "SELECT 1"}
        del tool[missing]
        with pytest.raises(ConfigError, match=f"missing required field: {missing}"):
            _parse([PG], [tool])

    def test_duplicate_custom_names(self):
        tool = {"name": "t", "source": "pg1", "description": "d", "statement": "SELECT 1"}
        with pytest.raises(ConfigError, match="duplicate tool name 't'"):
            _parse([PG, SQLITE], [tool, {**tool, "source": "lite"}])

    def test_placeholder_count_must_match(self):
        tool = {
            "name": "t",
            "source": "my1",
            "description": "d",
            "statement": "SELECT * FROM t WHERE a = ? AND b = ?",
            "parameters": [{"name": "a", "type": "integer", "description": "A"}],
        }
        with pytest.raises(ConfigError, match=r"uses 2 parameter\(s\) but 1"):
            _parse([MYSQL], [tool])

    def test_placeholder_style_follows_source_type(self):
        tool = {
            "name": "t",
            "source": "my1",
            "description": "d",
            "statement": "SELECT * FROM t WHERE a = $1",
            "parameters": [{"name": "a", "type": "integer", "description": "A"}],
        }
        with pytest.raises(ConfigError, match=r"placeholders look like \?"):
            _parse([MYSQL], [tool])

    @pytest.mark.parametrize(
        "param, message",
        [
            ({"type": "string", "description": "d"}, "missing required field: name"),
            ({"name": "a", "description": "d"}, "missing required field: type"),
            ({"name": "a", "type": "date", "description": "d"}, "invalid type 'date'"),
            ({"name": "a", "type": "string"}, "missing required field: description"),
            ({"name": "a b", "type": "string", "description": "d"}, "valid identifier"),
            ({"name": "class", "type": "string", "description": "d"}, "valid identifier"),
            ({"name": "a", "type": "string", "description": "d", "allowed_values": "x"}, "must be an array"),
            ({"name": "a", "type": "string", "description": "d", "allowed_values": []}, "cannot be empty"),
            (
                {"name": "a", "type": "string", "description": "d", "allowed_values": ["x"], "default": "y"},
                "not in allowed_values",
            ),
        ],
    )
    def test_parameter_rules(self, param, message):
        tool = {
            "name": "t",
            "source": "pg1",
            "description": "d",
            "statement": "SELECT $1",
            "parameters": [param],
        }
        with pytest.raises(ConfigError, match=message):
            _parse([PG], [tool])

    def test_duplicate_parameter_names(self):
        tool = {
            "name": "t",
            "source": "pg1",
            "description": "d",
            "statement": "SELECT $1, $2",
            "parameters": [
                {"name": "a", "type": "string", "description": "d"},
                {"name": "a", "type": "string", "description": "d"},
            ],
        }
        with pytest.raises(ConfigError, match="parameter name twice"):
            _parse([PG], [tool])


# =============================================================================
# Overrides and single-DSN mode
# =============================================================================


class TestOverrides:
    def test_cli_overrides_every_source(self, tmp_path):
        path = _write(tmp_path, "q.toml", BASIC_TOML)
        config = load_config(path, readonly=True, max_rows=20)
        assert all(s.readonly is True for s in config.sources)
        assert all(s.max_rows == 20 for s in config.sources)

    def test_partial_override_keeps_file_values(self, tmp_path):
        path = _write(tmp_path, "q.toml", BASIC_TOML)
        config = load_config(path, max_rows=20)
        assert config.sources[0].readonly is False

    def test_dsn_mode_env_policy(self):
        with patch.dict(os.environ, {"QUARRY_READONLY": "false", "QUARRY_MAX_ROWS": "25"}):
            source = config_from_dsn("sqlite::memory:").sources[0]
        assert source.readonly is False
        assert source.max_rows == 25

    def test_dsn_mode_arguments_beat_env(self):
        with patch.dict(os.environ, {"QUARRY_READONLY": "false"}):
            source = config_from_dsn("sqlite::memory:", readonly=True).sources[0]
        assert source.readonly is True

    @pytest.mark.parametrize(
        "var, value",
        [("QUARRY_READONLY", "maybe"), ("QUARRY_MAX_ROWS", "lots"), ("QUARRY_MAX_ROWS", "0")],
    )
    def test_bad_env_values(self, var, value):
        with patch.dict(os.environ, {var: value}):
            with pytest.raises(ConfigError, match=var):
                config_from_dsn("sqlite::memory:")

    def test_source_config_is_frozen(self):
        source = SourceConfig(id="x", dsn="sqlite::memory:")
        with pytest.raises(AttributeError):
            source.id = "y"  # type: ignore[misc]
