"""Tests for SSH tunnels: ssh_config alias resolution and tunnel setup.

paramiko's SSHClient is mocked; the local listener is a real socket on
127.0.0.1.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import paramiko
import pytest

from quarry.config.models import SSHConfig
from quarry.errors import ConnectionFailedError
from quarry.ssh import SSHTunnel, open_tunnel, resolve_ssh_alias

SSH_CONFIG = """
Host bastion
    HostName bastion.example.com
    User jump
    Port 2222
    IdentityFile ~/.ssh/id_bastion

Host other
    HostName other.example.com
"""


@pytest.fixture
def ssh_config_file(tmp_path):
    path = tmp_path / "ssh_config"
    path.write_text(SSH_CONFIG)
    return path


@pytest.fixture(autouse=True)
def _no_user_ssh_config(tmp_path):
    with patch("quarry.ssh.DEFAULT_SSH_CONFIG", tmp_path / "missing"):
        yield


# =============================================================================
# Alias resolution
# =============================================================================


class TestResolveAlias:
    def test_fills_from_host_block(self, ssh_config_file):
        resolved = resolve_ssh_alias(SSHConfig(host="bastion"), ssh_config_file)
        assert resolved.host == "bastion.example.com"
        assert resolved.user == "jump"
        assert resolved.port == 2222
        assert resolved.key_path.endswith("id_bastion")
        assert "~" not in resolved.key_path

    def test_explicit_values_win(self, ssh_config_file):
        config = SSHConfig(host="bastion", user="me", port=2200, key_path="/keys/mine")
        resolved = resolve_ssh_alias(config, ssh_config_file)
        assert resolved.user == "me"
        assert resolved.port == 2200
        assert resolved.key_path == "/keys/mine"

    def test_unknown_alias_unchanged(self, ssh_config_file):
        config = SSHConfig(host="db.direct", user="me", password="pw")
        assert resolve_ssh_alias(config, ssh_config_file) == config

    def test_missing_file(self, tmp_path):
        config = SSHConfig(host="bastion")
        assert resolve_ssh_alias(config, tmp_path / "nope") is config


# =============================================================================
# Tunnel lifecycle
# =============================================================================


class TestSSHTunnel:
    def test_start_binds_local_port(self):
        tunnel = SSHTunnel(SSHConfig(host="b", user="ops", password="pw"), "db.internal", 5432)
        with patch("quarry.ssh.paramiko.SSHClient") as client_cls:
            port = tunnel.start()
        try:
            assert port == tunnel.local_port
            assert tunnel.is_open
            client_cls.return_value.connect.assert_called_once_with(
                hostname="b", port=22, username="ops", password="pw"
            )
        finally:
            tunnel.close()
        assert not tunnel.is_open
        client_cls.return_value.close.assert_called_once()

    def test_key_auth_kwargs(self):
        config = SSHConfig(host="b", user="ops", key_path="/k/id", passphrase="phrase")
        tunnel = SSHTunnel(config, "db", 3306)
        with patch("quarry.ssh.paramiko.SSHClient") as client_cls:
            tunnel.start()
        tunnel.close()
        kwargs = client_cls.return_value.connect.call_args.kwargs
        assert kwargs["key_filename"] == "/k/id"
        assert kwargs["passphrase"] == "phrase"
        assert "password" not in kwargs

    def test_close_twice(self):
        tunnel = SSHTunnel(SSHConfig(host="b"), "db", 5432)
        tunnel.close()
        tunnel.close()
        assert not tunnel.is_open


class TestOpenTunnel:
    async def test_rewrites_dsn(self):
        with patch.object(SSHTunnel, "start", return_value=40123) as start:
            dsn, tunnel = await open_tunnel(
                "postgres://app:pw@db.internal/orders?sslmode=require",
                SSHConfig(host="bastion", user="ops", password="pw"),
                source_id="pg",
            )
        start.assert_called_once()
        assert dsn == "postgres://app:pw@127.0.0.1:40123/orders?sslmode=require"
        assert tunnel.remote_host == "db.internal"
        assert tunnel.remote_port == 5432

    async def test_explicit_remote_port(self):
        with patch.object(SSHTunnel, "start", return_value=40124):
            _, tunnel = await open_tunnel(
                "mysql://root:pw@db.internal:3307/shop", SSHConfig(host="bastion")
            )
        assert tunnel.remote_port == 3307

    async def test_ssh_failure_maps_to_connection_error(self):
        close = MagicMock()
        with (
            patch.object(SSHTunnel, "start", side_effect=paramiko.AuthenticationException("denied")),
            patch.object(SSHTunnel, "close", close),
        ):
            with pytest.raises(ConnectionFailedError, match="SSH tunnel via bastion failed") as exc_info:
                await open_tunnel(
                    "postgres://u:p@db/x", SSHConfig(host="bastion"), source_id="pg"
                )
        assert exc_info.value.source_id == "pg"
        close.assert_called_once()

    async def test_socket_failure(self):
        with patch.object(SSHTunnel, "start", side_effect=OSError("unreachable")):
            with pytest.raises(ConnectionFailedError, match="unreachable"):
                await open_tunnel("postgres://u:p@db/x", SSHConfig(host="bastion"))
