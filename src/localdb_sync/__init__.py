"""
localdb-sync: keep per-network local orderbook databases fresh.

Hydrate each network's SQLite store from its last dump, resume from the
last synced block, let rain-orderbook-cli fetch the rest, and archive
the result again.
"""

import os

__version__ = "0.1.0"

DB_DIR = os.environ.get("LOCALDB_SYNC_DB_DIR", "data")
CLI_DIR = os.environ.get("LOCALDB_SYNC_CLI_DIR", "bin")
