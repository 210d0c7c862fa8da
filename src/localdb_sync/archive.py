"""
Dump lifecycle -- hydrate a working database from its archive, then
re-archive it after the sync.

Per network the database directory holds one canonical dump,
``<network>.db.tar.gz``. During a sync the working store
``<network>.db`` also exists; it is scratch and is deleted afterwards.

    prepare()   IDLE      -> HYDRATED   extract dump (or start fresh)
    mark_synced HYDRATED  -> SYNCED     the CLI has written the store
    finalize()  SYNCED    -> ARCHIVED   tar to .tmp, then replace the dump
    cleanup()   any       -> CLEANED_UP remove the working store

The previous dump is only removed once the new archive has been written
in full, so a failed run always leaves either no dump or a valid one.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tarfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from .constants import DB_SUFFIX, DUMP_SUFFIX, TEMP_SUFFIX
from .errors import ArchiveError, LifecycleError
from .models import ArchivePresence, ArchiveState

logger = logging.getLogger("localdb_sync.archive")


class ArchiveOps(ABC):
    """Filesystem capabilities the lifecycle needs."""

    @abstractmethod
    def exists(self, path: Path) -> bool:
        """Whether ``path`` exists."""

    @abstractmethod
    def mkdir(self, path: Path) -> None:
        """Create ``path`` and its parents."""

    @abstractmethod
    def extract(self, archive: Path, dest_dir: Path) -> None:
        """Unpack ``archive`` into ``dest_dir``. Raises ArchiveError."""

    @abstractmethod
    def compress(self, source: Path, archive: Path) -> None:
        """Write ``source`` alone into a gzip tarball. Raises ArchiveError."""

    @abstractmethod
    def rename(self, src: Path, dst: Path) -> None:
        """Atomically move ``src`` to ``dst``."""

    @abstractmethod
    def delete(self, path: Path) -> None:
        """Remove a file; a missing file is not an error."""


class _LocalFilesystemOps(ArchiveOps):

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def mkdir(self, path: Path) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)

    def rename(self, src: Path, dst: Path) -> None:
        os.replace(src, dst)

    def delete(self, path: Path) -> None:
        try:
            Path(path).unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove %s: %s", path, exc)


class TarArchiveOps(_LocalFilesystemOps):
    """Gzip tarballs via the tarfile module."""

    def extract(self, archive: Path, dest_dir: Path) -> None:
        try:
            with tarfile.open(archive, "r:gz") as tar:
                tar.extractall(path=dest_dir, filter="data")
        except (tarfile.TarError, OSError) as exc:
            raise ArchiveError(
                f"Failed to extract {archive}: {exc}", step="extract",
            ) from exc

    def compress(self, source: Path, archive: Path) -> None:
        source = Path(source)
        try:
            with tarfile.open(archive, "w:gz") as tar:
                tar.add(source, arcname=source.name)
        except (tarfile.TarError, OSError) as exc:
            raise ArchiveError(
                f"Failed to compress {source}: {exc}", step="compress",
            ) from exc


class TarCliArchiveOps(_LocalFilesystemOps):
    """Gzip tarballs via the system ``tar`` binary."""

    def __init__(self, binary: str = "tar"):
        self.binary = binary

    def _run(self, args: list[str], step: str) -> None:
        try:
            result = subprocess.run([self.binary, *args], check=False)
        except OSError as exc:
            raise ArchiveError(f"Could not run {self.binary}: {exc}", step=step) from exc
        if result.returncode != 0:
            raise ArchiveError(
                f"{self.binary} {step} failed (exit code {result.returncode})",
                step=step,
                exit_code=result.returncode,
            )

    def extract(self, archive: Path, dest_dir: Path) -> None:
        self._run(["-xzf", str(archive), "-C", str(dest_dir)], "extract")

    def compress(self, source: Path, archive: Path) -> None:
        source = Path(source)
        self._run(
            ["-czf", str(archive), "-C", str(source.parent), source.name],
            "compress",
        )


class ArchiveLifecycle:
    """One network's working store and dump for a single sync attempt.

    Usable as a context manager; leaving the block always runs
    :meth:`cleanup`.

    Args:
        name: File stem, normally the network name.
        directory: Database directory holding the dump.
        ops: Filesystem capabilities. Defaults to TarArchiveOps.
    """

    def __init__(self, name: str, directory: Path, ops: Optional[ArchiveOps] = None):
        self.name = name
        self.directory = Path(directory)
        self.ops = ops or TarArchiveOps()
        self.db_path = self.directory / f"{name}{DB_SUFFIX}"
        self.dump_path = self.directory / f"{name}{DUMP_SUFFIX}"
        self.temp_path = self.dump_path.with_name(self.dump_path.name + TEMP_SUFFIX)
        self.state = ArchiveState.IDLE

    def __enter__(self) -> "ArchiveLifecycle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def _require(self, *allowed: ArchiveState) -> None:
        if self.state not in allowed:
            expected = ", ".join(s.value for s in allowed)
            raise LifecycleError(
                f"{self.name}: cannot go from {self.state.value} (expected {expected})"
            )

    def archive_presence(self) -> ArchivePresence:
        if self.ops.exists(self.dump_path):
            return ArchivePresence.PRESENT
        return ArchivePresence.ABSENT

    def prepare(self) -> tuple[Path, Path]:
        """Materialize the working store from the dump, if there is one.

        Returns:
            (db_path, dump_path)

        Raises:
            ArchiveError: If the dump exists but cannot be extracted.
        """
        self._require(ArchiveState.IDLE)
        self.ops.mkdir(self.directory)

        if self.ops.exists(self.db_path):
            logger.info("Removing stale working database %s", self.db_path)
            self.ops.delete(self.db_path)

        if self.archive_presence() is ArchivePresence.PRESENT:
            logger.info("Extracting dump for %s from %s", self.name, self.dump_path)
            try:
                self.ops.extract(self.dump_path, self.directory)
            except ArchiveError as exc:
                self.state = ArchiveState.FAILED
                raise ArchiveError(
                    f"Failed to extract dump for {self.name}: {exc}",
                    network=self.name,
                    step="extract",
                    exit_code=exc.exit_code,
                ) from exc
        else:
            logger.info(
                "No existing dump for %s; CLI will initialize a new database.",
                self.name,
            )

        self.state = ArchiveState.HYDRATED
        return self.db_path, self.dump_path

    def mark_synced(self) -> None:
        self._require(ArchiveState.HYDRATED)
        self.state = ArchiveState.SYNCED

    def finalize(self) -> bool:
        """Replace the dump with a fresh archive of the working store.

        Returns:
            True if a new dump was written, False if there was nothing
            to archive.

        Raises:
            ArchiveError: If compression fails. The previous dump is kept.
        """
        self._require(ArchiveState.SYNCED)

        if not self.ops.exists(self.db_path):
            logger.info("No database file produced for %s; skipping archive.", self.name)
            self.state = ArchiveState.ARCHIVED
            return False

        logger.info("Archiving database for %s to %s", self.name, self.dump_path)
        try:
            self.ops.compress(self.db_path, self.temp_path)
        except ArchiveError as exc:
            self.ops.delete(self.temp_path)
            self.state = ArchiveState.FAILED
            raise ArchiveError(
                f"Failed to archive database for {self.name}: {exc}",
                network=self.name,
                step="compress",
                exit_code=exc.exit_code,
            ) from exc

        self.ops.delete(self.dump_path)
        self.ops.rename(self.temp_path, self.dump_path)
        self.state = ArchiveState.ARCHIVED
        return True

    def cleanup(self) -> None:
        """Delete the working store. Safe to call from any state."""
        if self.state is ArchiveState.CLEANED_UP:
            return
        self.ops.delete(self.db_path)
        self.state = ArchiveState.CLEANED_UP
