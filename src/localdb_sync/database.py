"""
Resume-point resolution -- where should the next sync start?

The local store is a SQLite file written by rain-orderbook-cli. Its
schema belongs to the CLI and changes between releases, so the resolver
only assumes there may be a ``sync_status`` table with some column whose
name mentions "block". Anything it cannot read means "no resume point",
which is always safe: the CLI just resyncs from the deployment block.
"""

from __future__ import annotations

import logging
import shutil
import sqlite3
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from .constants import SYNC_STATUS_TABLE
from .models import OrderbookConfig, SyncPlan, ToolAvailability

logger = logging.getLogger("localdb_sync.database")


def quote_identifier(identifier: str) -> str:
    """Quote an SQL identifier, doubling embedded double quotes."""
    return '"' + identifier.replace('"', '""') + '"'


def _max_query(table: str, column: str) -> str:
    col = quote_identifier(column)
    return f"SELECT {col} FROM {quote_identifier(table)} ORDER BY {col} DESC LIMIT 1;"


class CheckpointQuery(ABC):
    """Read-only lookups against a local store.

    Every lookup returns None when it could not be answered.
    """

    @abstractmethod
    def check_availability(self) -> ToolAvailability:
        """Report whether the underlying tool can be used at all."""

    @abstractmethod
    def table_exists(self, db_path: Path, table: str) -> Optional[bool]:
        """Whether ``table`` exists in the store."""

    @abstractmethod
    def column_names(self, db_path: Path, table: str) -> Optional[list[str]]:
        """Column names of ``table`` in declaration order."""

    @abstractmethod
    def max_value(self, db_path: Path, table: str, column: str) -> Optional[str]:
        """Largest value of ``column`` as raw text."""


class SqliteCliQuery(CheckpointQuery):
    """Lookups through the ``sqlite3`` command-line shell in read-only mode."""

    def __init__(self, binary: str = "sqlite3"):
        self.binary = binary

    def check_availability(self) -> ToolAvailability:
        path = shutil.which(self.binary)
        if path is None:
            return ToolAvailability(
                available=False,
                tool=self.binary,
                detail=f"{self.binary} not found on PATH",
            )
        return ToolAvailability(available=True, tool=self.binary, detail=path)

    def _run(self, *args: str) -> Optional[str]:
        try:
            result = subprocess.run(
                [self.binary, "-readonly", *args],
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            logger.debug("Could not run %s: %s", self.binary, exc)
            return None
        if result.returncode != 0:
            logger.debug(
                "%s exited with %d: %s",
                self.binary, result.returncode, result.stderr.strip(),
            )
            return None
        return result.stdout

    def table_exists(self, db_path: Path, table: str) -> Optional[bool]:
        name = table.replace("'", "''")
        out = self._run(
            str(db_path),
            f"SELECT 1 FROM sqlite_master WHERE type='table' AND name='{name}' LIMIT 1;",
        )
        if out is None:
            return None
        return out.strip() == "1"

    def column_names(self, db_path: Path, table: str) -> Optional[list[str]]:
        name = table.replace("'", "''")
        out = self._run("-separator", "|", str(db_path), f"PRAGMA table_info('{name}');")
        if out is None:
            return None
        columns = []
        for line in out.splitlines():
            parts = line.strip().split("|")
            if len(parts) > 1:
                columns.append(parts[1])
        return columns

    def max_value(self, db_path: Path, table: str, column: str) -> Optional[str]:
        out = self._run(str(db_path), _max_query(table, column))
        return None if out is None else out.strip()


class SqliteLibraryQuery(CheckpointQuery):
    """Lookups through Python's sqlite3 module, opening the file read-only."""

    def check_availability(self) -> ToolAvailability:
        return ToolAvailability(
            available=True,
            tool="sqlite3-module",
            detail=f"SQLite {sqlite3.sqlite_version}",
        )

    def _fetch(self, db_path: Path, sql: str, params: tuple = ()) -> Optional[list]:
        uri = f"{Path(db_path).resolve().as_uri()}?mode=ro"
        try:
            conn = sqlite3.connect(uri, uri=True)
        except sqlite3.Error as exc:
            logger.debug("Could not open %s: %s", db_path, exc)
            return None
        try:
            return conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            logger.debug("Query failed on %s: %s", db_path, exc)
            return None
        finally:
            conn.close()

    def table_exists(self, db_path: Path, table: str) -> Optional[bool]:
        rows = self._fetch(
            db_path,
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name=? LIMIT 1",
            (table,),
        )
        if rows is None:
            return None
        return bool(rows)

    def column_names(self, db_path: Path, table: str) -> Optional[list[str]]:
        rows = self._fetch(db_path, f"PRAGMA table_info({quote_identifier(table)})")
        if rows is None:
            return None
        return [row[1] for row in rows]

    def max_value(self, db_path: Path, table: str, column: str) -> Optional[str]:
        rows = self._fetch(db_path, _max_query(table, column))
        if rows is None:
            return None
        if not rows or rows[0][0] is None:
            return ""
        return str(rows[0][0])


def default_checkpoint_query() -> CheckpointQuery:
    """Prefer the sqlite3 CLI when installed, else the sqlite3 module."""
    cli = SqliteCliQuery()
    if cli.check_availability().available:
        return cli
    return SqliteLibraryQuery()


def _parse_block_value(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        value = float(text)
    except ValueError:
        return None
    if not value.is_integer():
        return None
    return int(value)


class ResumePointResolver:
    """Finds the last synced block in a local store.

    The query tool is checked once when the resolver is built. If it is
    unavailable a single warning is logged and every lookup returns None.

    Args:
        query: Lookup collaborator. Defaults to :func:`default_checkpoint_query`.
        table: Name of the checkpoint-tracking table.
    """

    def __init__(
        self,
        query: Optional[CheckpointQuery] = None,
        table: str = SYNC_STATUS_TABLE,
    ):
        self.query = query or default_checkpoint_query()
        self.table = table
        self.availability = self.query.check_availability()
        if not self.availability.available:
            logger.warning(
                "%s CLI not found; skipping local sync-status inspection.",
                self.availability.tool,
            )

    def last_synced_block(self, db_path: Path) -> Optional[int]:
        """Highest block recorded in the store, or None if unknown."""
        db_path = Path(db_path)
        if not db_path.exists():
            return None
        if not self.availability.available:
            return None

        try:
            return self._lookup(db_path)
        except Exception as exc:
            logger.warning("Could not inspect %s: %s", db_path, exc)
            return None

    def _lookup(self, db_path: Path) -> Optional[int]:
        if not self.query.table_exists(db_path, self.table):
            logger.info("No %s table in %s", self.table, db_path.name)
            return None

        columns = self.query.column_names(db_path, self.table)
        if not columns:
            return None
        column = next((c for c in columns if "block" in c.lower()), None)
        if column is None:
            logger.info("No block column in %s.%s", db_path.name, self.table)
            return None

        return _parse_block_value(self.query.max_value(db_path, self.table, column))

    def plan(self, config: OrderbookConfig, db_path: Path, dump_path: Path) -> SyncPlan:
        """Build the sync plan for one network."""
        last = self.last_synced_block(db_path)
        candidate = last + 1 if last is not None else config.deployment_block
        return SyncPlan(
            db_path=db_path,
            dump_path=dump_path,
            last_synced_block=last,
            start_block=max(config.deployment_block, candidate),
        )


def plan_sync(
    config: OrderbookConfig,
    db_path: Path,
    dump_path: Path,
    resolver: Optional[ResumePointResolver] = None,
) -> SyncPlan:
    """Resolve the resume point for ``config`` and return its plan."""
    return (resolver or ResumePointResolver()).plan(config, db_path, dump_path)
