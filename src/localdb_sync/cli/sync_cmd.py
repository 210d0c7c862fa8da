"""Sync commands: run, plan, configs."""

from __future__ import annotations

import click

from .. import CLI_DIR
from ..errors import LocalDbSyncError, SyncFailedError
from ..models import FailurePolicy
from ..orchestrator import (
    SyncRuntime,
    load_configs,
    plan_only,
    resolve_commit_hash,
    run_sync,
)
from ..reporting import print_configs, print_report
from ._common import build_options, console, selection_options


def register_sync_commands(main: click.Group) -> None:
    """Register run, plan, and configs on the main group."""

    @main.command("run")
    @selection_options
    @click.option("--cli-dir", default=None, type=click.Path(file_okay=False),
                  help=f"Where to unpack rain-orderbook-cli (default: {CLI_DIR}).")
    @click.option("--cli-binary", default=None, type=click.Path(dir_okay=False),
                  help="Use an existing rain-orderbook-cli instead of downloading it.")
    @click.option("--keep-archive", is_flag=True, help="Keep the downloaded CLI archive.")
    @click.option("--end-block", default=None, type=click.IntRange(min=0),
                  help="Stop syncing at this block.")
    @click.option("--continue-on-error", is_flag=True,
                  help="Keep going after a network fails.")
    @click.option("--no-manifest", is_flag=True, help="Do not update manifest.yaml.")
    @click.option("--no-bootstrap", is_flag=True,
                  help="Do not pull the published manifest and dumps first.")
    def sync_run(config_file, networks, chain_ids, db_dir, settings_file, cli_dir, cli_binary,
                 keep_archive, end_block, continue_on_error, no_manifest, no_bootstrap):
        """Sync every selected network and re-archive its database.

        Examples:

            localdb-sync run

            localdb-sync run -n Optimism -n Arbitrum --db-dir /srv/dumps
        """
        try:
            options = build_options(
                config_file, networks, chain_ids, db_dir, settings_file,
                cli_dir=cli_dir,
                cli_binary=cli_binary,
                keep_archive=keep_archive or None,
                end_block=end_block,
                failure_policy=FailurePolicy.CONTINUE if continue_on_error else None,
                manifest=False if no_manifest else None,
                bootstrap=False if no_bootstrap else None,
            )
            report = run_sync(options)
        except SyncFailedError as exc:
            if exc.report is not None:
                print_report(exc.report, console)
            console.print(f"[bold red]{exc}[/]")
            raise SystemExit(1)
        except LocalDbSyncError as exc:
            console.print(f"[bold red]{exc}[/]")
            raise SystemExit(1)

        if not report.results:
            console.print("\n[dim]No orderbook configurations matched the selection.[/]\n")
            return
        print_report(report, console)

    @main.command("plan")
    @selection_options
    def sync_plan(config_file, networks, chain_ids, db_dir, settings_file):
        """Show where each network's next sync would start.

        Hydrates each dump just long enough to read its last synced
        block; nothing is synced or re-archived.
        """
        try:
            options = build_options(config_file, networks, chain_ids, db_dir, settings_file)
            plans = plan_only(options)
        except LocalDbSyncError as exc:
            console.print(f"[bold red]{exc}[/]")
            raise SystemExit(1)

        if not plans:
            console.print("\n[dim]No orderbook configurations matched the selection.[/]\n")

    @main.command("configs")
    @selection_options
    def sync_configs(config_file, networks, chain_ids, db_dir, settings_file):
        """List the networks the settings document makes syncable."""
        try:
            options = build_options(config_file, networks, chain_ids, db_dir, settings_file)
            runtime = SyncRuntime()
            commit = resolve_commit_hash(options, runtime.env)
            result = load_configs(options, runtime, commit)
        except LocalDbSyncError as exc:
            console.print(f"[bold red]{exc}[/]")
            raise SystemExit(1)

        print_configs(result, console)
