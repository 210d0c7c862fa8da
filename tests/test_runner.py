"""Tests for obtaining and invoking rain-orderbook-cli."""

from __future__ import annotations

import io
import logging
import os
import tarfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from localdb_sync.errors import ConfigurationError, SyncToolError
from localdb_sync.models import OrderbookConfig
from localdb_sync.runner import (
    CliSyncRunner,
    SyncInvocation,
    download_cli_archive,
    extract_cli_binary,
    mask_args,
)


def _tarball(members: dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, payload in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(payload)
            tar.addfile(info, io.BytesIO(payload))
    return buf.getvalue()


@pytest.fixture
def invocation(tmp_path, optimism_config) -> SyncInvocation:
    return SyncInvocation(
        cli_binary=tmp_path / "bin" / "rain-orderbook-cli",
        db_path=tmp_path / "data" / "Optimism.db",
        config=optimism_config,
        repo_commit="abc123",
        api_token="secret-token",
    )


class TestSyncInvocation:
    """Command-line construction."""

    def test_required_arguments(self, invocation, tmp_path):
        assert invocation.args() == [
            "local-db", "sync",
            "--db-path", str(tmp_path / "data" / "Optimism.db"),
            "--chain-id", "10",
            "--repo-commit", "abc123",
            "--orderbook-address", "0x1234",
            "--deployment-block", "9000",
            "--api-token", "secret-token",
            "--rpc", "https://rpc.optimism.io",
            "--rpc", "https://another-rpc.optimism.io",
        ]

    def test_block_range(self, invocation):
        invocation.start_block = 9501
        invocation.end_block = 10000
        args = invocation.args()
        assert args[args.index("--start-block") + 1] == "9501"
        assert args[args.index("--end-block") + 1] == "10000"
        assert args.index("--end-block") < args.index("--rpc")

    def test_missing_token(self, invocation):
        invocation.api_token = ""
        with pytest.raises(ConfigurationError, match="No API token provided for Optimism"):
            invocation.args()

    def test_missing_rpcs(self, invocation, optimism_config):
        invocation.config = optimism_config.model_copy(update={"rpcs": []})
        with pytest.raises(ConfigurationError, match="No RPC URLs configured"):
            invocation.args()

    def test_duplicate_rpcs_passed_once(self, invocation, optimism_config):
        data = optimism_config.model_dump()
        data["rpcs"] = ["https://a.rpc", "https://b.rpc", "https://a.rpc"]
        invocation.config = OrderbookConfig.model_validate(data)
        args = invocation.args()
        rpcs = [args[i + 1] for i, arg in enumerate(args) if arg == "--rpc"]
        assert rpcs == ["https://a.rpc", "https://b.rpc"]


class TestMaskArgs:

    def test_masks_token_only(self, invocation):
        masked = mask_args(invocation.args())
        assert "secret-token" not in masked
        assert masked[masked.index("--api-token") + 1] == "***"
        assert "abc123" in masked


class TestCliSyncRunner:
    """Running the CLI as a child process."""

    def test_success(self, invocation):
        ok = MagicMock(returncode=0)
        with patch("localdb_sync.runner.subprocess.run", return_value=ok) as run:
            CliSyncRunner().run(invocation)

        command = run.call_args.args[0]
        assert command[0] == str(invocation.cli_binary)
        assert command[1:3] == ["local-db", "sync"]
        assert invocation.db_path.parent.is_dir()

    def test_logged_command_hides_token(self, invocation, caplog):
        ok = MagicMock(returncode=0)
        with patch("localdb_sync.runner.subprocess.run", return_value=ok):
            with caplog.at_level(logging.INFO, logger="localdb_sync.runner"):
                CliSyncRunner().run(invocation)

        assert "Running:" in caplog.text
        assert "secret-token" not in caplog.text

    def test_non_zero_exit(self, invocation):
        failed = MagicMock(returncode=3)
        with patch("localdb_sync.runner.subprocess.run", return_value=failed):
            with pytest.raises(SyncToolError, match=r"exit code 3") as info:
                CliSyncRunner().run(invocation)

        assert info.value.network == "Optimism"
        assert info.value.exit_code == 3

    def test_missing_binary(self, invocation):
        with pytest.raises(SyncToolError, match="Failed to start"):
            CliSyncRunner().run(invocation)

    def test_missing_token_never_spawns(self, invocation):
        invocation.api_token = None
        with patch("localdb_sync.runner.subprocess.run") as run:
            with pytest.raises(ConfigurationError):
                CliSyncRunner().run(invocation)
        run.assert_not_called()


class TestObtainBinary:
    """Download and unpack."""

    def test_download_writes_file(self, tmp_path):
        http = MagicMock()
        http.fetch_binary.return_value = b"archive-bytes"

        path = download_cli_archive(http, "https://x/cli.tar.gz", tmp_path / "cli.tar.gz")

        assert path.read_bytes() == b"archive-bytes"
        http.fetch_binary.assert_called_once_with("https://x/cli.tar.gz")

    def test_extract_finds_nested_binary(self, tmp_path):
        archive = tmp_path / "cli.tar.gz"
        archive.write_bytes(_tarball({
            "README.md": b"docs",
            "release/rain-orderbook-cli": b"#!/bin/sh\nexit 0\n",
        }))

        binary = extract_cli_binary(archive, tmp_path / "bin")

        assert binary == tmp_path / "bin" / "release" / "rain-orderbook-cli"
        assert os.access(binary, os.X_OK)

    def test_extract_without_binary(self, tmp_path):
        archive = tmp_path / "cli.tar.gz"
        archive.write_bytes(_tarball({"README.md": b"docs"}))
        with pytest.raises(SyncToolError, match="Unable to locate"):
            extract_cli_binary(archive, tmp_path / "bin")

    def test_extract_corrupt_archive(self, tmp_path):
        archive = tmp_path / "cli.tar.gz"
        archive.write_bytes(b"garbage")
        with pytest.raises(SyncToolError, match="Failed to extract CLI archive"):
            extract_cli_binary(archive, Path(tmp_path / "bin"))
