"""Shared helpers for CLI command modules."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click

from .. import DB_DIR
from ..config import load_options
from ..models import SyncOptions
from ..reporting import console


def split_networks(values: tuple[str, ...]) -> Optional[list[str]]:
    """Flatten ``--networks a,b --networks c`` into ['a', 'b', 'c'].

    Returns None when no selection was given so file options apply.
    """
    names = [n.strip() for v in values for n in v.split(",") if n.strip()]
    return names or None


def selection_options(func):
    """Options shared by every command that reads settings."""
    func = click.option(
        "--config", "config_file", default=None, type=click.Path(dir_okay=False),
        help="YAML file with run options.",
    )(func)
    func = click.option(
        "--settings-file", default=None, type=click.Path(dir_okay=False),
        help="Read settings YAML from a local file instead of fetching it.",
    )(func)
    func = click.option(
        "--db-dir", default=None, type=click.Path(file_okay=False),
        help=f"Directory holding the databases (default: {DB_DIR}).",
    )(func)
    func = click.option(
        "--chain-id", "chain_ids", multiple=True, type=click.IntRange(min=0),
        help="Also select the network with this chain id (repeatable).",
    )(func)
    func = click.option(
        "--networks", "-n", multiple=True,
        help="Limit to these network names (repeatable or comma separated).",
    )(func)
    return func


def build_options(
    config_file: Optional[str],
    networks: tuple[str, ...],
    chain_ids: tuple[int, ...],
    db_dir: Optional[str],
    settings_file: Optional[str],
    **extra,
) -> SyncOptions:
    return load_options(
        Path(config_file) if config_file else None,
        networks=split_networks(networks),
        chain_ids=list(chain_ids) or None,
        db_dir=db_dir,
        settings_file=settings_file,
        **extra,
    )
