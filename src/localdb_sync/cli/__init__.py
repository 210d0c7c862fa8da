"""
localdb-sync CLI.

The main Click group is defined here; command modules attach their
commands through register functions.

Entry point: localdb_sync.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="localdb-sync")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """localdb-sync: refresh per-network orderbook databases.

    Hydrates each network's SQLite dump, resumes from the last synced
    block with rain-orderbook-cli, and re-archives the result.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )


# ---------------------------------------------------------------------------
# Register command modules
# ---------------------------------------------------------------------------

from .manifest_cmd import register_manifest_commands
from .sync_cmd import register_sync_commands

register_sync_commands(main)
register_manifest_commands(main)
