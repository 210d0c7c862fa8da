"""Tests for the dump lifecycle."""

from __future__ import annotations

import io
import tarfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from localdb_sync.archive import ArchiveLifecycle, TarArchiveOps, TarCliArchiveOps
from localdb_sync.errors import ArchiveError, LifecycleError
from localdb_sync.models import ArchivePresence, ArchiveState


def _write_dump(dump_path: Path, member: str, payload: bytes) -> None:
    dump_path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(dump_path, "w:gz") as tar:
        info = tarfile.TarInfo(member)
        info.size = len(payload)
        tar.addfile(info, io.BytesIO(payload))


def _read_member(dump_path: Path, member: str) -> bytes:
    with tarfile.open(dump_path, "r:gz") as tar:
        return tar.extractfile(member).read()


class FailingCompressOps(TarArchiveOps):
    """Writes a partial temp archive, then fails."""

    def compress(self, source, archive):
        Path(archive).write_bytes(b"partial")
        raise ArchiveError("disk full", step="compress")


class TestPrepare:
    """Hydrating the working store."""

    def test_paths(self, db_dir):
        lifecycle = ArchiveLifecycle("Optimism", db_dir)
        assert lifecycle.db_path == db_dir / "Optimism.db"
        assert lifecycle.dump_path == db_dir / "Optimism.db.tar.gz"
        assert lifecycle.temp_path == db_dir / "Optimism.db.tar.gz.tmp"

    def test_no_dump_starts_fresh(self, db_dir, caplog):
        lifecycle = ArchiveLifecycle("Optimism", db_dir)
        with caplog.at_level("INFO", logger="localdb_sync.archive"):
            db_path, dump_path = lifecycle.prepare()

        assert not db_path.exists()
        assert not dump_path.exists()
        assert lifecycle.state is ArchiveState.HYDRATED
        assert lifecycle.archive_presence() is ArchivePresence.ABSENT
        assert "CLI will initialize a new database" in caplog.text

    def test_creates_missing_directory(self, tmp_path):
        directory = tmp_path / "nested" / "data"
        ArchiveLifecycle("Optimism", directory).prepare()
        assert directory.is_dir()

    def test_extracts_existing_dump(self, db_dir):
        _write_dump(db_dir / "Optimism.db.tar.gz", "Optimism.db", b"store-bytes")
        lifecycle = ArchiveLifecycle("Optimism", db_dir)

        db_path, _ = lifecycle.prepare()

        assert db_path.read_bytes() == b"store-bytes"
        assert lifecycle.archive_presence() is ArchivePresence.PRESENT

    def test_stale_working_store_is_replaced(self, db_dir):
        (db_dir / "Optimism.db").write_bytes(b"stale")
        _write_dump(db_dir / "Optimism.db.tar.gz", "Optimism.db", b"fresh")

        db_path, _ = ArchiveLifecycle("Optimism", db_dir).prepare()

        assert db_path.read_bytes() == b"fresh"

    def test_stale_store_removed_without_dump(self, db_dir):
        (db_dir / "Optimism.db").write_bytes(b"stale")
        db_path, _ = ArchiveLifecycle("Optimism", db_dir).prepare()
        assert not db_path.exists()

    def test_corrupt_dump_raises(self, db_dir):
        dump = db_dir / "Optimism.db.tar.gz"
        dump.write_bytes(b"not a tarball")
        lifecycle = ArchiveLifecycle("Optimism", db_dir)

        with pytest.raises(ArchiveError, match="Failed to extract dump for Optimism") as info:
            lifecycle.prepare()

        assert info.value.network == "Optimism"
        assert info.value.step == "extract"
        assert lifecycle.state is ArchiveState.FAILED
        assert dump.read_bytes() == b"not a tarball"

    def test_prepare_twice_is_rejected(self, db_dir):
        lifecycle = ArchiveLifecycle("Optimism", db_dir)
        lifecycle.prepare()
        with pytest.raises(LifecycleError):
            lifecycle.prepare()


class TestFinalize:
    """Re-archiving the working store."""

    def _synced(self, db_dir, ops=None) -> ArchiveLifecycle:
        lifecycle = ArchiveLifecycle("Optimism", db_dir, ops)
        lifecycle.prepare()
        lifecycle.mark_synced()
        return lifecycle

    def test_writes_dump(self, db_dir):
        lifecycle = self._synced(db_dir)
        lifecycle.db_path.write_bytes(b"synced")

        assert lifecycle.finalize() is True
        assert lifecycle.state is ArchiveState.ARCHIVED
        assert _read_member(lifecycle.dump_path, "Optimism.db") == b"synced"
        assert not lifecycle.temp_path.exists()

    def test_dump_holds_only_the_store(self, db_dir):
        (db_dir / "other.txt").write_text("unrelated")
        lifecycle = self._synced(db_dir)
        lifecycle.db_path.write_bytes(b"synced")
        lifecycle.finalize()

        with tarfile.open(lifecycle.dump_path, "r:gz") as tar:
            assert tar.getnames() == ["Optimism.db"]

    def test_replaces_previous_dump(self, db_dir):
        _write_dump(db_dir / "Optimism.db.tar.gz", "Optimism.db", b"old")
        lifecycle = self._synced(db_dir)
        lifecycle.db_path.write_bytes(b"new")

        lifecycle.finalize()

        assert _read_member(lifecycle.dump_path, "Optimism.db") == b"new"

    def test_nothing_to_archive(self, db_dir, caplog):
        lifecycle = self._synced(db_dir)
        with caplog.at_level("INFO", logger="localdb_sync.archive"):
            assert lifecycle.finalize() is False

        assert not lifecycle.dump_path.exists()
        assert "skipping archive" in caplog.text

    def test_compress_failure_keeps_previous_dump(self, db_dir):
        dump = db_dir / "Optimism.db.tar.gz"
        _write_dump(dump, "Optimism.db", b"old")
        before = dump.read_bytes()
        lifecycle = self._synced(db_dir, FailingCompressOps())
        lifecycle.db_path.write_bytes(b"new")

        with pytest.raises(ArchiveError, match="Failed to archive database for Optimism") as info:
            lifecycle.finalize()

        assert info.value.step == "compress"
        assert lifecycle.state is ArchiveState.FAILED
        assert dump.read_bytes() == before
        assert not lifecycle.temp_path.exists()

    def test_finalize_before_sync_is_rejected(self, db_dir):
        lifecycle = ArchiveLifecycle("Optimism", db_dir)
        lifecycle.prepare()
        with pytest.raises(LifecycleError):
            lifecycle.finalize()


class TestCleanup:
    """Removing the working store."""

    def test_context_manager_removes_store(self, db_dir):
        with ArchiveLifecycle("Optimism", db_dir) as lifecycle:
            lifecycle.prepare()
            lifecycle.db_path.write_bytes(b"scratch")

        assert not lifecycle.db_path.exists()
        assert lifecycle.state is ArchiveState.CLEANED_UP

    def test_removes_store_after_failure(self, db_dir):
        with pytest.raises(RuntimeError):
            with ArchiveLifecycle("Optimism", db_dir) as lifecycle:
                lifecycle.prepare()
                lifecycle.db_path.write_bytes(b"scratch")
                raise RuntimeError("sync blew up")

        assert not lifecycle.db_path.exists()

    def test_is_idempotent(self, db_dir):
        lifecycle = ArchiveLifecycle("Optimism", db_dir)
        lifecycle.cleanup()
        lifecycle.cleanup()
        assert lifecycle.state is ArchiveState.CLEANED_UP

    def test_leaves_dump_in_place(self, db_dir):
        _write_dump(db_dir / "Optimism.db.tar.gz", "Optimism.db", b"keep")
        with ArchiveLifecycle("Optimism", db_dir) as lifecycle:
            lifecycle.prepare()

        assert lifecycle.dump_path.exists()
        assert not lifecycle.db_path.exists()


class TestRoundTrip:
    """Hydrate, re-archive, hydrate again."""

    def test_unchanged_store_survives_a_cycle(self, db_dir, make_store):
        with ArchiveLifecycle("Optimism", db_dir) as first:
            first.prepare()
            make_store(first.db_path, blocks=[100, 200])
            original = first.db_path.read_bytes()
            first.mark_synced()
            first.finalize()

        with ArchiveLifecycle("Optimism", db_dir) as second:
            second.prepare()
            second.mark_synced()
            assert second.finalize() is True

        with ArchiveLifecycle("Optimism", db_dir) as third:
            db_path, _ = third.prepare()
            assert db_path.read_bytes() == original


class TestTarCliArchiveOps:
    """The system tar collaborator."""

    def test_non_zero_exit(self, tmp_path):
        failed = MagicMock(returncode=2)
        with patch("localdb_sync.archive.subprocess.run", return_value=failed) as run:
            with pytest.raises(ArchiveError) as info:
                TarCliArchiveOps().extract(tmp_path / "a.db.tar.gz", tmp_path)

        assert info.value.exit_code == 2
        assert info.value.step == "extract"
        assert run.call_args.args[0][:2] == ["tar", "-xzf"]

    def test_compress_arguments(self, tmp_path):
        ok = MagicMock(returncode=0)
        with patch("localdb_sync.archive.subprocess.run", return_value=ok) as run:
            TarCliArchiveOps().compress(tmp_path / "Optimism.db", tmp_path / "out.tmp")

        assert run.call_args.args[0] == [
            "tar", "-czf", str(tmp_path / "out.tmp"), "-C", str(tmp_path), "Optimism.db",
        ]

    def test_missing_binary(self, tmp_path):
        ops = TarCliArchiveOps(binary="definitely-not-tar-xyz")
        with pytest.raises(ArchiveError, match="Could not run"):
            ops.compress(tmp_path / "a.db", tmp_path / "a.tmp")

    def test_exit_code_reaches_lifecycle_error(self, db_dir):
        (db_dir / "Optimism.db.tar.gz").write_bytes(b"x")
        failed = MagicMock(returncode=1)
        lifecycle = ArchiveLifecycle("Optimism", db_dir, TarCliArchiveOps())
        with patch("localdb_sync.archive.subprocess.run", return_value=failed):
            with pytest.raises(ArchiveError) as info:
                lifecycle.prepare()

        assert info.value.exit_code == 1
        assert info.value.network == "Optimism"
