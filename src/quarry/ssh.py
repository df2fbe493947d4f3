"""SSH local port-forwarding for sources behind a bastion host.

A tunnel listens on 127.0.0.1 (ephemeral port) and forwards each accepted
connection over one paramiko transport to the database host as seen from
the bastion. The source DSN is rewritten to point at the local end.

Host aliases from ~/.ssh/config (HostName, User, Port, IdentityFile) are
honored for the bastion; explicit configuration wins.
"""

from __future__ import annotations

import asyncio
import select
import socket
import threading
from dataclasses import replace
from pathlib import Path

import paramiko

from quarry.config.models import DEFAULT_PORTS, SSHConfig
from quarry.connectors.dsn import database_type_from_dsn, replace_host, split_dsn
from quarry.errors import ConnectionFailedError
from quarry.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SSH_CONFIG = Path("~/.ssh/config")
_BUFFER = 32768


def resolve_ssh_alias(config: SSHConfig, ssh_config_path: Path | None = None) -> SSHConfig:
    """Fill unset fields of ``config`` from the matching ssh_config Host block."""
    path = (ssh_config_path or DEFAULT_SSH_CONFIG).expanduser()
    if not path.is_file():
        return config
    entry = paramiko.SSHConfig.from_path(str(path)).lookup(config.host)
    identity = entry.get("identityfile") or []
    return replace(
        config,
        host=entry.get("hostname", config.host),
        user=config.user or entry.get("user"),
        port=config.port if config.port != 22 else int(entry.get("port", 22)),
        key_path=config.key_path or (str(Path(identity[0]).expanduser()) if identity else None),
    )


class SSHTunnel:
    """One bastion connection forwarding a local port to ``remote_host:remote_port``."""

    def __init__(self, config: SSHConfig, remote_host: str, remote_port: int) -> None:
        self.config = config
        self.remote_host = remote_host
        self.remote_port = remote_port
        self.local_port: int | None = None
        self._client: paramiko.SSHClient | None = None
        self._listener: socket.socket | None = None
        self._closed = threading.Event()

    @property
    def is_open(self) -> bool:
        return self._listener is not None and not self._closed.is_set()

    def start(self) -> int:
        """Connect to the bastion and start forwarding. Blocking; returns the local port."""
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        connect_kwargs: dict = {
            "hostname": self.config.host,
            "port": self.config.port,
            "username": self.config.user,
        }
        if self.config.password:
            connect_kwargs["password"] = self.config.password
        if self.config.key_path:
            connect_kwargs["key_filename"] = self.config.key_path
        if self.config.passphrase:
            connect_kwargs["passphrase"] = self.config.passphrase

        client.connect(**connect_kwargs)
        self._client = client

        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.bind(("127.0.0.1", 0))
        listener.listen(16)
        self._listener = listener
        self.local_port = listener.getsockname()[1]

        threading.Thread(target=self._accept_loop, name="quarry-ssh-accept", daemon=True).start()
        logger.info(
            "ssh.tunnel_open",
            bastion=self.config.host,
            remote=f"{self.remote_host}:{self.remote_port}",
            local_port=self.local_port,
        )
        return self.local_port

    def _accept_loop(self) -> None:
        assert self._listener is not None
        while not self._closed.is_set():
            try:
                conn, peer = self._listener.accept()
            except OSError:
                break
            threading.Thread(
                target=self._forward, args=(conn, peer), name="quarry-ssh-fwd", daemon=True
            ).start()

    def _forward(self, conn: socket.socket, peer: tuple) -> None:
        transport = self._client.get_transport() if self._client else None
        if transport is None or not transport.is_active():
            conn.close()
            return
        try:
            channel = transport.open_channel(
                "direct-tcpip", (self.remote_host, self.remote_port), peer
            )
        except (paramiko.SSHException, OSError):
            logger.warning("ssh.channel_failed", remote=self.remote_host, exc_info=True)
            conn.close()
            return

        try:
            while not self._closed.is_set():
                readable, _, _ = select.select([conn, channel], [], [], 1.0)
                if conn in readable:
                    data = conn.recv(_BUFFER)
                    if not data:
                        break
                    channel.sendall(data)
                if channel in readable:
                    data = channel.recv(_BUFFER)
                    if not data:
                        break
                    conn.sendall(data)
        except OSError:
            logger.debug("ssh.forward_closed", exc_info=True)
        finally:
            channel.close()
            conn.close()

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        if self._listener is not None:
            self._listener.close()
            self._listener = None
        if self._client is not None:
            self._client.close()
            self._client = None
        logger.info("ssh.tunnel_closed", bastion=self.config.host)


async def open_tunnel(dsn: str, ssh: SSHConfig, *, source_id: str | None = None) -> tuple[str, SSHTunnel]:
    """Start a tunnel for ``dsn``; return the rewritten DSN and the tunnel."""
    try:
        parts = split_dsn(dsn)
    except ValueError as e:
        raise ConnectionFailedError(
            f"SSH tunnel requires a network DSN: {e}", source_id=source_id
        ) from e
    port = parts.port or DEFAULT_PORTS.get(database_type_from_dsn(dsn) or "", 0)
    tunnel = SSHTunnel(resolve_ssh_alias(ssh), parts.host, port)
    try:
        local_port = await asyncio.to_thread(tunnel.start)
    except (paramiko.SSHException, OSError) as e:
        tunnel.close()
        raise ConnectionFailedError(
            f"SSH tunnel via {ssh.host} failed: {e}", source_id=source_id
        ) from e
    return replace_host(dsn, "127.0.0.1", local_port), tunnel
