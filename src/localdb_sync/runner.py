"""
rain-orderbook-cli -- fetch the binary and run ``local-db sync``.

The CLI does the actual indexing; this module only obtains it and
builds its command line. Exit status is the only signal read back.
"""

from __future__ import annotations

import logging
import subprocess
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .constants import API_TOKEN_ENV_VARS, CLI_BINARY_NAME
from .errors import ConfigurationError, SyncToolError
from .http import HttpClient
from .models import OrderbookConfig

logger = logging.getLogger("localdb_sync.runner")


def download_cli_archive(http: HttpClient, url: str, destination: Path) -> Path:
    """Download the CLI tarball to ``destination``."""
    data = http.fetch_binary(url)
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_bytes(data)
    logger.info("Downloaded CLI archive to %s (%d bytes)", destination, len(data))
    return destination


def _find_binary(root: Path) -> Optional[Path]:
    for path in sorted(root.rglob(CLI_BINARY_NAME)):
        if path.is_file():
            return path
    return None


def extract_cli_binary(archive_path: Path, output_dir: Path) -> Path:
    """Unpack the CLI tarball and return the executable's path.

    Raises:
        SyncToolError: If the archive cannot be read or has no binary.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(archive_path, "r:gz") as tar:
            tar.extractall(path=output_dir, filter="data")
    except (tarfile.TarError, OSError) as exc:
        raise SyncToolError(f"Failed to extract CLI archive: {exc}") from exc

    binary = _find_binary(output_dir)
    if binary is None:
        raise SyncToolError(f"Unable to locate {CLI_BINARY_NAME} binary under {output_dir}")

    binary.chmod(0o755)
    logger.info("Extracted CLI binary to %s", binary)
    return binary


@dataclass
class SyncInvocation:
    """Arguments for one ``local-db sync`` run."""

    cli_binary: Path
    db_path: Path
    config: OrderbookConfig
    repo_commit: str
    api_token: Optional[str]
    start_block: Optional[int] = None
    end_block: Optional[int] = None

    def args(self) -> list[str]:
        if not self.api_token:
            raise ConfigurationError(
                f"No API token provided for {self.config.network}. "
                f"Set one of: {', '.join(API_TOKEN_ENV_VARS)}"
            )
        if not self.config.rpcs:
            raise ConfigurationError(
                f"No RPC URLs configured for {self.config.network}. "
                "Update settings.yaml or provide overrides."
            )

        args = [
            "local-db", "sync",
            "--db-path", str(self.db_path),
            "--chain-id", str(self.config.chain_id),
            "--repo-commit", self.repo_commit,
            "--orderbook-address", self.config.orderbook_address,
            "--deployment-block", str(self.config.deployment_block),
            "--api-token", self.api_token,
        ]
        if self.start_block is not None:
            args += ["--start-block", str(self.start_block)]
        if self.end_block is not None:
            args += ["--end-block", str(self.end_block)]
        for rpc in self.config.rpcs:
            args += ["--rpc", rpc]
        return args


def mask_args(args: list[str]) -> list[str]:
    """Replace the value following ``--api-token`` with ``***``."""
    masked = list(args)
    for i, arg in enumerate(masked[:-1]):
        if arg == "--api-token":
            masked[i + 1] = "***"
    return masked


class CliSyncRunner:
    """Runs rain-orderbook-cli as a child process, inheriting stdio."""

    def run(self, invocation: SyncInvocation) -> None:
        """Run one sync to completion.

        Raises:
            ConfigurationError: Missing token or RPC endpoints.
            SyncToolError: The CLI could not be started or exited non-zero.
        """
        Path(invocation.db_path).parent.mkdir(parents=True, exist_ok=True)
        args = invocation.args()
        command = [str(invocation.cli_binary), *args]
        logger.info("Running: %s", " ".join([command[0], *mask_args(args)]))

        network = invocation.config.network
        try:
            result = subprocess.run(command, check=False)
        except OSError as exc:
            raise SyncToolError(
                f"Failed to start {CLI_BINARY_NAME} for {network}: {exc}",
                network=network,
            ) from exc

        if result.returncode != 0:
            raise SyncToolError(
                f"CLI sync failed for {network} (exit code {result.returncode})",
                network=network,
                exit_code=result.returncode,
            )
