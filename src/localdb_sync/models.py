"""
Pydantic models for settings, sync plans, run options, and results.

Parsed settings are built field by field and may be incomplete.
An OrderbookConfig is only ever constructed from fully validated data.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from . import CLI_DIR, DB_DIR


class NetworkSettings(BaseModel):
    """A network entry from the ``networks:`` section."""

    chain_id: Optional[int] = None
    rpcs: list[str] = Field(default_factory=list)


class OrderbookSettings(BaseModel):
    """An entry from the ``orderbooks:`` section."""

    address: Optional[str] = None
    deployment_block: Optional[int] = Field(default=None, ge=0)


class ParsedSettings(BaseModel):
    """Result of parsing a settings document.

    Attributes:
        networks: Network name -> connection info.
        orderbooks: Network name -> orderbook deployment.
        skipped: Field-level diagnostics for values that were ignored.
    """

    networks: dict[str, NetworkSettings] = Field(default_factory=dict)
    orderbooks: dict[str, OrderbookSettings] = Field(default_factory=dict)
    skipped: list[str] = Field(default_factory=list)


class OrderbookConfig(BaseModel):
    """Everything needed to sync one network."""

    model_config = ConfigDict(frozen=True)

    network: str
    chain_id: int
    orderbook_address: str
    deployment_block: int = Field(ge=0)
    rpcs: list[str]

    @field_validator("rpcs")
    @classmethod
    def unique_rpcs(cls, rpcs: list[str]) -> list[str]:
        return list(dict.fromkeys(rpcs))


class SkipReason(BaseModel):
    """Why a network was left out of the sync."""

    network: str
    reason: str

    def __str__(self) -> str:
        return f"Skipping {self.network}: {self.reason}"


class BuildResult(BaseModel):
    configs: list[OrderbookConfig] = Field(default_factory=list)
    skipped: list[SkipReason] = Field(default_factory=list)


class SyncPlan(BaseModel):
    """Where one sync attempt reads, writes, and resumes."""

    model_config = ConfigDict(frozen=True)

    db_path: Path
    dump_path: Path
    last_synced_block: Optional[int] = None
    start_block: int


class ArchiveState(str, Enum):
    """Lifecycle of one network's working store within a sync attempt."""

    IDLE = "idle"
    HYDRATED = "hydrated"
    SYNCED = "synced"
    ARCHIVED = "archived"
    CLEANED_UP = "cleaned_up"
    FAILED = "failed"


class ArchivePresence(str, Enum):
    """Whether a canonical dump exists for a network."""

    ABSENT = "absent"
    PRESENT = "present"


class ToolAvailability(BaseModel):
    """Outcome of probing a checkpoint-query tool once per run."""

    available: bool
    tool: str
    detail: str = ""


class FailurePolicy(str, Enum):
    """What the driver does after a network fails."""

    ABORT = "abort"
    CONTINUE = "continue"


class SyncOptions(BaseModel):
    """Run options, from CLI flags and an optional YAML file."""

    networks: list[str] = Field(default_factory=list)
    chain_ids: list[int] = Field(default_factory=list)
    db_dir: Path = Path(DB_DIR)
    cli_dir: Path = Path(CLI_DIR)
    keep_archive: bool = False
    failure_policy: FailurePolicy = FailurePolicy.ABORT
    settings_file: Optional[Path] = None
    cli_binary: Optional[Path] = None
    commit_hash: Optional[str] = None
    end_block: Optional[int] = Field(default=None, ge=0)
    manifest: bool = True
    bootstrap: bool = True
    release_url_template: Optional[str] = None


class EntityResult(BaseModel):
    """Outcome of syncing a single network."""

    network: str
    succeeded: bool
    plan: Optional[SyncPlan] = None
    archived: bool = False
    error: Optional[str] = None
    duration_seconds: float = 0.0


class SyncReport(BaseModel):
    """Summary of a whole run."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    commit_hash: str = ""
    results: list[EntityResult] = Field(default_factory=list)
    skipped: list[SkipReason] = Field(default_factory=list)

    @property
    def failed(self) -> list[EntityResult]:
        return [r for r in self.results if not r.succeeded]

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()
