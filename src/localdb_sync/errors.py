"""Exception hierarchy for localdb-sync.

Soft failures (no dump yet, no sync_status table, sqlite3 missing) never
raise; they resolve to defaults. Everything here is either a data problem
the caller must see or a fatal per-network failure.
"""

from __future__ import annotations

from typing import Any, Optional


class LocalDbSyncError(Exception):
    """Base class for every error raised by localdb-sync."""


class ParseError(LocalDbSyncError):
    """Raised when a settings document cannot be decoded as text."""


class SettingsError(LocalDbSyncError):
    """Raised when the settings location cannot be determined."""


class ConfigurationError(LocalDbSyncError):
    """Raised for missing credentials or invalid run options."""


class ManifestError(LocalDbSyncError):
    """Raised when the dump manifest cannot be read or updated."""


class LifecycleError(LocalDbSyncError):
    """Raised on an illegal archive state transition."""


class HttpError(LocalDbSyncError):
    """Raised when a remote fetch fails."""

    def __init__(self, message: str, url: str, status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class ArchiveError(LocalDbSyncError):
    """Raised when extracting or compressing a dump fails.

    Attributes:
        network: Network whose dump was being processed.
        step: ``extract`` or ``compress``.
        exit_code: Exit status of the archiver, when one was spawned.
    """

    def __init__(
        self,
        message: str,
        network: Optional[str] = None,
        step: Optional[str] = None,
        exit_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.network = network
        self.step = step
        self.exit_code = exit_code


class SyncToolError(LocalDbSyncError):
    """Raised when rain-orderbook-cli cannot be obtained or exits non-zero."""

    def __init__(
        self,
        message: str,
        network: Optional[str] = None,
        exit_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.network = network
        self.exit_code = exit_code


class SyncFailedError(LocalDbSyncError):
    """Raised after a continue-on-error run in which some networks failed.

    Attributes:
        failures: Mapping of network name to its error message.
        report: The run's SyncReport, if available.
    """

    def __init__(self, failures: dict[str, str], report: Any = None):
        names = ", ".join(failures)
        super().__init__(f"Sync failed for {len(failures)} network(s): {names}")
        self.failures = failures
        self.report = report
