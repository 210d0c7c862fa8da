"""
Sync driver -- runs every selected network through its lifecycle.

    published manifest -> settings -> configs -> token -> CLI binary
    -> published dumps
    for each network:
        prepare -> plan -> local-db sync -> finalize -> manifest
        (working store always removed afterwards)

Networks are processed one at a time. Under the default ABORT policy
the first fatal error stops the run; CONTINUE attempts the rest and
raises SyncFailedError at the end. Dumps finalized before a failure are
kept either way.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Mapping, Optional

from rich.console import Console

from . import reporting
from .archive import ArchiveLifecycle, ArchiveOps, TarArchiveOps
from .constants import (
    API_TOKEN_ENV_VARS,
    CLI_ARCHIVE_NAME,
    CLI_ARCHIVE_URL_TEMPLATE,
    CLI_BINARY_URL_ENV_VAR,
    COMMIT_HASH_ENV_VAR,
    CONSTANTS_URL_TEMPLATE,
    DEFAULT_COMMIT_HASH,
    DUMP_SUFFIX,
    MANIFEST_NAME,
    RELEASE_DOWNLOAD_URL_TEMPLATE,
    SETTINGS_YAML_ENV_VAR,
    SYNC_CHAIN_IDS_ENV_VAR,
)
from .database import CheckpointQuery, ResumePointResolver
from .errors import ConfigurationError, LocalDbSyncError, ParseError, SyncFailedError
from .http import HttpClient
from .manifest import Manifest, download_dumps, download_manifest, update_manifest
from .models import (
    BuildResult,
    EntityResult,
    FailurePolicy,
    OrderbookConfig,
    ParsedSettings,
    SyncOptions,
    SyncPlan,
    SyncReport,
)
from .runner import CliSyncRunner, SyncInvocation, download_cli_archive, extract_cli_binary
from .settings import build_orderbook_configs, extract_settings_url, parse_settings_yaml

logger = logging.getLogger("localdb_sync.orchestrator")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncRuntime:
    """Collaborators the driver talks to. Tests swap these out."""

    env: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))
    cwd: Path = field(default_factory=Path.cwd)
    http: HttpClient = field(default_factory=HttpClient)
    runner: CliSyncRunner = field(default_factory=CliSyncRunner)
    checkpoint_query: Optional[CheckpointQuery] = None
    archive_ops: ArchiveOps = field(default_factory=TarArchiveOps)
    clock: Callable[[], datetime] = _utcnow
    console: Console = field(default_factory=lambda: reporting.console)

    def resolve(self, path: Path) -> Path:
        return (self.cwd / Path(path).expanduser()).resolve()


def _env_value(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def resolve_commit_hash(options: SyncOptions, env: Mapping[str, str]) -> str:
    raw = env.get(COMMIT_HASH_ENV_VAR)
    if raw is None:
        raw = options.commit_hash if options.commit_hash is not None else DEFAULT_COMMIT_HASH
    commit = raw.strip()
    if not commit:
        raise ConfigurationError(
            f"{COMMIT_HASH_ENV_VAR} must be set to a valid rain.orderbook commit hash"
        )
    return commit


def resolve_api_token(env: Mapping[str, str]) -> str:
    for name in API_TOKEN_ENV_VARS:
        value = _env_value(env, name)
        if value:
            return value
    raise ConfigurationError(f"Missing API token. Set one of: {', '.join(API_TOKEN_ENV_VARS)}.")


def fetch_settings_text(options: SyncOptions, runtime: SyncRuntime, commit: str) -> str:
    """Read the settings document from a file, an env URL, or upstream constants."""
    if options.settings_file is not None:
        path = runtime.resolve(options.settings_file)
        logger.info("Reading settings from %s", path)
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(f"Cannot read settings file {path}: {exc}") from exc
        except UnicodeDecodeError as exc:
            raise ParseError(f"Settings file {path} is not valid UTF-8: {exc}") from exc

    settings_url = _env_value(runtime.env, SETTINGS_YAML_ENV_VAR)
    if settings_url is None:
        constants_url = CONSTANTS_URL_TEMPLATE.replace("{commit}", commit)
        logger.info("Fetching constants from %s", constants_url)
        settings_url = extract_settings_url(runtime.http.fetch_text(constants_url))

    logger.info("Fetching settings from %s", settings_url)
    return runtime.http.fetch_text(settings_url)


def resolve_chain_ids(options: SyncOptions, env: Mapping[str, str]) -> list[int]:
    """Chain ids requested through the options and ``SYNC_CHAIN_IDS``."""
    chain_ids = list(options.chain_ids)
    for token in (env.get(SYNC_CHAIN_IDS_ENV_VAR) or "").split(","):
        token = token.strip()
        if not token:
            continue
        if not (token.isascii() and token.isdigit()):
            raise ConfigurationError(
                f"{SYNC_CHAIN_IDS_ENV_VAR} must contain comma-separated integers "
                f"(invalid value: `{token}`)"
            )
        chain_ids.append(int(token))
    return chain_ids


def select_networks(
    settings: ParsedSettings,
    options: SyncOptions,
    env: Mapping[str, str],
    manifest: Optional[Manifest] = None,
) -> Optional[list[str]]:
    """Network names to sync, or None to sync every network.

    An explicit selection, by name or by chain id, is widened with the
    chains listed in ``manifest`` so every published dump is refreshed.
    """
    chain_ids = set(resolve_chain_ids(options, env))
    if not options.networks and not chain_ids:
        return None
    if manifest is not None:
        chain_ids.update(manifest.networks)

    names = list(options.networks)
    names += [
        name for name, info in settings.networks.items()
        if info.chain_id is not None and info.chain_id in chain_ids
    ]
    return list(dict.fromkeys(names))


def load_configs(
    options: SyncOptions,
    runtime: SyncRuntime,
    commit: str,
    manifest: Optional[Manifest] = None,
) -> BuildResult:
    settings = parse_settings_yaml(fetch_settings_text(options, runtime, commit))
    selected = select_networks(settings, options, runtime.env, manifest)
    return build_orderbook_configs(settings, selected)


def release_url(options: SyncOptions, file_name: str) -> str:
    template = options.release_url_template or RELEASE_DOWNLOAD_URL_TEMPLATE
    return template.replace("{file}", file_name)


def obtain_cli_binary(options: SyncOptions, runtime: SyncRuntime, commit: str) -> Path:
    """Use the configured binary, or download and unpack the CLI archive."""
    if options.cli_binary is not None:
        binary = runtime.resolve(options.cli_binary)
        if not binary.is_file():
            raise ConfigurationError(f"CLI binary not found: {binary}")
        return binary

    url = _env_value(runtime.env, CLI_BINARY_URL_ENV_VAR)
    if url is None:
        url = CLI_ARCHIVE_URL_TEMPLATE.replace("{commit}", commit)
    logger.info("Using CLI binary at %s", url)

    archive_path = runtime.cwd / CLI_ARCHIVE_NAME
    download_cli_archive(runtime.http, url, archive_path)
    binary = extract_cli_binary(archive_path, runtime.resolve(options.cli_dir))

    if not options.keep_archive:
        try:
            archive_path.unlink()
        except OSError as exc:
            logger.warning("Failed to remove CLI archive %s: %s", archive_path, exc)
    return binary


@dataclass
class _RunContext:
    options: SyncOptions
    runtime: SyncRuntime
    commit: str
    api_token: str
    cli_binary: Path
    db_dir: Path
    resolver: ResumePointResolver


def sync_network(config: OrderbookConfig, ctx: _RunContext, result: EntityResult) -> None:
    """Run one network's full lifecycle, filling in ``result`` as it goes.

    The working store is removed whether or not the sync succeeds.
    """
    runtime = ctx.runtime
    with ArchiveLifecycle(config.network, ctx.db_dir, runtime.archive_ops) as lifecycle:
        db_path, dump_path = lifecycle.prepare()
        plan = ctx.resolver.plan(config, db_path, dump_path)
        result.plan = plan
        reporting.print_plan(config, plan, runtime.console)

        runtime.runner.run(SyncInvocation(
            cli_binary=ctx.cli_binary,
            db_path=db_path,
            config=config,
            repo_commit=ctx.commit,
            api_token=ctx.api_token,
            start_block=plan.start_block,
            end_block=ctx.options.end_block,
        ))
        lifecycle.mark_synced()
        result.archived = lifecycle.finalize()

    if result.archived and ctx.options.manifest:
        update_manifest(
            ctx.db_dir / MANIFEST_NAME,
            config.chain_id,
            release_url(ctx.options, dump_path.name),
            runtime.clock(),
        )
    result.succeeded = True


def run_sync(options: SyncOptions, runtime: Optional[SyncRuntime] = None) -> SyncReport:
    """Sync every selected network.

    Returns:
        SyncReport describing each network's outcome.

    Raises:
        LocalDbSyncError: The first fatal error under FailurePolicy.ABORT.
        SyncFailedError: Under FailurePolicy.CONTINUE, if any network failed.
    """
    runtime = runtime or SyncRuntime()
    report = SyncReport(started_at=runtime.clock())
    logger.info("Sync started at %s", report.started_at.isoformat())

    commit = resolve_commit_hash(options, runtime.env)
    report.commit_hash = commit
    logger.info("Using commit hash %s", commit)

    db_dir = runtime.resolve(options.db_dir)
    manifest = None
    if options.bootstrap:
        db_dir.mkdir(parents=True, exist_ok=True)
        manifest = download_manifest(
            runtime.http, release_url(options, MANIFEST_NAME), db_dir / MANIFEST_NAME,
        )

    build = load_configs(options, runtime, commit, manifest)
    report.skipped = build.skipped
    if not build.configs:
        logger.info("No orderbook configurations matched the selection.")
        report.finished_at = runtime.clock()
        return report

    api_token = resolve_api_token(runtime.env)
    logger.info("Using API token sourced from environment.")

    cli_binary = obtain_cli_binary(options, runtime, commit)
    db_dir.mkdir(parents=True, exist_ok=True)

    if manifest is not None:
        download_dumps(runtime.http, manifest, {
            config.chain_id: db_dir / f"{config.network}{DUMP_SUFFIX}"
            for config in build.configs
        })

    ctx = _RunContext(
        options=options,
        runtime=runtime,
        commit=commit,
        api_token=api_token,
        cli_binary=cli_binary,
        db_dir=db_dir,
        resolver=ResumePointResolver(runtime.checkpoint_query),
    )

    for config in build.configs:
        logger.info("Starting sync for %s (chain %d)", config.network, config.chain_id)
        result = EntityResult(network=config.network, succeeded=False)
        report.results.append(result)
        started = runtime.clock()
        try:
            sync_network(config, ctx, result)
        except (LocalDbSyncError, OSError) as exc:
            result.error = str(exc)
            logger.error("Sync failed for %s: %s", config.network, exc)
            if options.failure_policy is FailurePolicy.ABORT:
                report.finished_at = runtime.clock()
                raise
        finally:
            result.duration_seconds = (runtime.clock() - started).total_seconds()

        if result.succeeded:
            logger.info(
                "%s completed (duration: %.1fs)", config.network, result.duration_seconds,
            )

    report.finished_at = runtime.clock()
    logger.info(
        "Sync completed at %s (duration: %.1fs)",
        report.finished_at.isoformat(), report.duration_seconds,
    )

    if report.failed:
        raise SyncFailedError({r.network: r.error or "" for r in report.failed}, report)
    return report


def plan_only(
    options: SyncOptions, runtime: Optional[SyncRuntime] = None,
) -> list[tuple[OrderbookConfig, SyncPlan]]:
    """Hydrate each selected network just long enough to compute its plan.

    Nothing is synced or re-archived; working stores are removed again.
    """
    runtime = runtime or SyncRuntime()
    commit = resolve_commit_hash(options, runtime.env)
    build = load_configs(options, runtime, commit)
    db_dir = runtime.resolve(options.db_dir)
    resolver = ResumePointResolver(runtime.checkpoint_query)

    plans = []
    for config in build.configs:
        with ArchiveLifecycle(config.network, db_dir, runtime.archive_ops) as lifecycle:
            db_path, dump_path = lifecycle.prepare()
            plan = resolver.plan(config, db_path, dump_path)
        reporting.print_plan(config, plan, runtime.console)
        plans.append((config, plan))
    return plans
