"""Shared test fixtures for localdb-sync."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional

import pytest

from localdb_sync.models import OrderbookConfig

SETTINGS_YAML = """\
# upstream settings
version: 1
networks:
  Optimism:
    chain-id: 10
    rpcs:
      - https://rpc.optimism.io
      - https://rpc.optimism.io
      - https://another-rpc.optimism.io
  Mainnet:
    chain-id: 1
    rpcs:
      - https://mainnet.rpc
subgraphs:
  Optimism: https://example.com/subgraph
orderbooks:
  Optimism:
    address: 0x1234
    deployment-block: 9000
  Mainnet:
    address: 0xabcd
    deployment-block: 100
"""


def _make_store(
    db_path: Path,
    blocks: Optional[list] = None,
    column: str = "last_synced_block",
    table: str = "sync_status",
) -> Path:
    """Create a SQLite store with a checkpoint table holding ``blocks``."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        if table:
            conn.execute(f'CREATE TABLE "{table}" (id INTEGER PRIMARY KEY, "{column}")')
            for value in blocks or []:
                conn.execute(f'INSERT INTO "{table}" ("{column}") VALUES (?)', (value,))
        else:
            conn.execute("CREATE TABLE other (x INTEGER)")
        conn.commit()
    finally:
        conn.close()
    return db_path


@pytest.fixture
def settings_yaml() -> str:
    return SETTINGS_YAML


@pytest.fixture
def db_dir(tmp_path: Path) -> Path:
    """Provide an empty database directory."""
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def optimism_config() -> OrderbookConfig:
    return OrderbookConfig(
        network="Optimism",
        chain_id=10,
        orderbook_address="0x1234",
        deployment_block=9000,
        rpcs=["https://rpc.optimism.io", "https://another-rpc.optimism.io"],
    )


@pytest.fixture
def make_store():
    """Factory for SQLite stores with a checkpoint table."""
    return _make_store
