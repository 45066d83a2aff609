"""Tests for the SSH tunnel."""

import os
import socket
import stat
import sys
import textwrap

import pytest

from mongo_extractor.lib.config import SshConfig
from mongo_extractor.lib.errors import ConnectionStartError
from mongo_extractor.lib.resilience import RetryConfig
from mongo_extractor.lib.ssh import SshTunnel

# Listens on the forwarded local port like "ssh -N -L" would
FAKE_SSH = textwrap.dedent(
    """
    import socket
    import sys
    import time

    args = sys.argv[1:]
    local_port = int(args[args.index("-L") + 1].split(":")[0])
    server = socket.socket()
    server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    server.bind(("127.0.0.1", local_port))
    server.listen(5)
    time.sleep(60)
    """
)


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _config(local_port=33006):
    return SshConfig.model_validate(
        {
            "enabled": True,
            "sshHost": "bastion.example.com",
            "sshPort": 2222,
            "user": "tunnel",
            "keys": {"#private": "-----BEGIN KEY-----\nabc\n-----END KEY-----"},
            "localPort": local_port,
        }
    )


class TestBuildArgs:
    """Tests for the ssh command line."""

    def test_forwarding_arguments(self):
        tunnel = SshTunnel(_config(), remote_host="mongo.internal", remote_port=27017)

        args = tunnel.build_args("/tmp/key")

        assert args[:3] == ["ssh", "-N", "-i"]
        assert args[args.index("-p") + 1] == "2222"
        assert args[args.index("-L") + 1] == "33006:mongo.internal:27017"
        assert args[-1] == "tunnel@bastion.example.com"

    def test_remote_from_ssh_config_wins(self):
        config = _config().model_copy(update={"remoteHost": "10.0.0.5", "remotePort": 27018})

        args = SshTunnel(config, remote_host="mongo.internal", remote_port=27017).build_args("/tmp/key")

        assert args[args.index("-L") + 1] == "33006:10.0.0.5:27018"


class TestTunnel:
    """Tests for opening and closing the tunnel."""

    def test_failed_start_cleans_up(self):
        # The interpreter rejects ssh options and exits at once
        tunnel = SshTunnel(
            _config(_free_port()),
            remote_host="mongo.internal",
            remote_port=27017,
            executable=sys.executable,
            retry_config=RetryConfig.none(),
        )

        with pytest.raises(ConnectionStartError, match="Unable to open SSH tunnel"):
            tunnel.open()

        assert tunnel._key_path is None

    @pytest.mark.skipif(sys.platform == "win32", reason="needs an executable script")
    def test_open_and_close(self, tmp_path):
        ssh = tmp_path / "ssh"
        ssh.write_text(f"#!{sys.executable}\n{FAKE_SSH}", encoding="utf-8")
        ssh.chmod(0o755)
        tunnel = SshTunnel(
            _config(_free_port()),
            remote_host="mongo.internal",
            remote_port=27017,
            executable=str(ssh),
            connect_timeout=10,
            retry_config=RetryConfig.none(),
        )

        with tunnel:
            key_path = tunnel._key_path
            assert key_path is not None
            assert stat.S_IMODE(os.stat(key_path).st_mode) == 0o600
            with open(key_path, encoding="utf-8") as handle:
                assert handle.read().endswith("-----END KEY-----\n")
            process = tunnel._process
            assert process is not None and process.poll() is None

        assert process.poll() is not None
        assert not os.path.exists(key_path)
