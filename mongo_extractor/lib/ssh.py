"""SSH tunnel for servers reachable only through a bastion host.

The tunnel is an ``ssh -N -L`` child process forwarding a local port to
the remote MongoDB server.  mongoexport then connects to
``127.0.0.1:<localPort>``.
"""

from __future__ import annotations

import logging
import os
import socket
import subprocess
import tempfile
import time
from typing import IO, List, Optional

from mongo_extractor.lib.config import SshConfig
from mongo_extractor.lib.errors import ConnectionStartError
from mongo_extractor.lib.resilience import RetryConfig, retry_operation

logger = logging.getLogger(__name__)

__all__ = ["SshTunnel"]


class SshTunnel:
    """Context manager owning the ssh process and its key file.

    Example:
        with SshTunnel(config.db.ssh, remote_host="mongo", remote_port=27017):
            run_exports()
    """

    def __init__(
        self,
        config: SshConfig,
        *,
        remote_host: Optional[str] = None,
        remote_port: Optional[int] = None,
        executable: str = "ssh",
        connect_timeout: float = 30.0,
        retry_config: Optional[RetryConfig] = None,
    ) -> None:
        self.config = config
        self.remote_host = config.remoteHost or remote_host or "127.0.0.1"
        self.remote_port = config.remotePort or remote_port or 27017
        self.executable = executable
        self.connect_timeout = connect_timeout
        self.retry_config = retry_config or RetryConfig.default()
        self._process: Optional["subprocess.Popen[bytes]"] = None
        self._stderr: Optional[IO[bytes]] = None
        self._key_path: Optional[str] = None

    def build_args(self, key_path: str) -> List[str]:
        return [
            self.executable,
            "-N",
            "-i", key_path,
            "-p", str(self.config.sshPort),
            "-L", f"{self.config.localPort}:{self.remote_host}:{self.remote_port}",
            "-o", "StrictHostKeyChecking=no",
            "-o", "ExitOnForwardFailure=yes",
            "-o", "ServerAliveInterval=15",
            f"{self.config.user}@{self.config.sshHost}",
        ]

    def _write_key(self) -> str:
        fd, path = tempfile.mkstemp(prefix="mongo-extractor-ssh-", suffix=".key")
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write((self.config.keys.private or "").rstrip("\n") + "\n")
        os.chmod(path, 0o600)
        return path

    def _port_open(self) -> bool:
        try:
            with socket.create_connection(("127.0.0.1", self.config.localPort), timeout=1.0):
                return True
        except OSError:
            return False

    def _start(self, key_path: str) -> None:
        args = self.build_args(key_path)
        stderr = tempfile.TemporaryFile()
        try:
            process = subprocess.Popen(args, stdout=subprocess.DEVNULL, stderr=stderr)
        except OSError as e:
            stderr.close()
            raise ConnectionStartError("Unable to open SSH tunnel", cause=e) from e

        deadline = time.monotonic() + self.connect_timeout
        while time.monotonic() < deadline:
            if process.poll() is not None:
                stderr.seek(0)
                message = stderr.read().decode("utf-8", errors="replace").strip()
                stderr.close()
                raise ConnectionStartError(
                    f"Unable to open SSH tunnel: {message or f'ssh exited with {process.returncode}'}",
                    suggestion="Check the SSH host, user and private key.",
                )
            if self._port_open():
                self._process = process
                self._stderr = stderr
                return
            time.sleep(0.2)

        process.kill()
        process.wait()
        stderr.close()
        raise ConnectionStartError(
            f"Unable to open SSH tunnel: local port {self.config.localPort} "
            f"not ready after {self.connect_timeout:.0f}s"
        )

    def open(self) -> "SshTunnel":
        key_path = self._key_path = self._write_key()
        try:
            retry_operation(lambda: self._start(key_path), self.retry_config, "Opening SSH tunnel")
        except Exception:
            self.close()
            raise
        logger.info(
            "SSH tunnel open: 127.0.0.1:%d -> %s:%d via %s",
            self.config.localPort,
            self.remote_host,
            self.remote_port,
            self.config.sshHost,
        )
        return self

    def close(self) -> None:
        if self._process is not None:
            if self._process.poll() is None:
                self._process.terminate()
                try:
                    self._process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    self._process.kill()
                    self._process.wait()
            self._process = None
        if self._stderr is not None:
            self._stderr.close()
            self._stderr = None
        if self._key_path is not None:
            try:
                os.unlink(self._key_path)
            except FileNotFoundError:
                pass
            self._key_path = None

    def __enter__(self) -> "SshTunnel":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()
