"""Manifest commands: bump-seed."""

from __future__ import annotations

from pathlib import Path

import click

from .. import DB_DIR
from ..constants import MANIFEST_NAME
from ..errors import LocalDbSyncError
from ..manifest import bump_seed_generation
from ._common import console


def register_manifest_commands(main: click.Group) -> None:
    """Register the manifest command group."""

    @main.group()
    def manifest():
        """Maintain the published dump manifest."""

    @manifest.command("bump-seed")
    @click.argument("chain_id", type=click.IntRange(min=0))
    @click.option("--manifest", "manifest_path", default=None, type=click.Path(dir_okay=False),
                  help=f"Manifest to edit (default: {DB_DIR}/{MANIFEST_NAME}).")
    def manifest_bump_seed(chain_id: int, manifest_path: str):
        """Bump a chain's seed generation so consumers re-download its dump.

        Examples:

            localdb-sync manifest bump-seed 42161

            localdb-sync manifest bump-seed 10 --manifest /srv/dumps/manifest.yaml
        """
        path = Path(manifest_path) if manifest_path else Path(DB_DIR) / MANIFEST_NAME
        try:
            previous, new = bump_seed_generation(path.expanduser(), chain_id)
        except LocalDbSyncError as exc:
            console.print(f"[bold red]{exc}[/]")
            raise SystemExit(1)

        console.print(
            f"Bumped seed generation for chain {chain_id} from {previous} to {new}"
        )
