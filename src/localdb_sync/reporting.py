"""Console output -- sync plans and run summaries as Rich panels and tables."""

from __future__ import annotations

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .constants import format_number
from .models import BuildResult, OrderbookConfig, SyncPlan, SyncReport

console = Console()


def plan_rows(config: OrderbookConfig, plan: SyncPlan) -> list[tuple[str, str]]:
    """Label/value pairs describing one plan."""
    last = plan.last_synced_block
    rows = [
        ("Database path", str(plan.db_path)),
        ("Dump path", str(plan.dump_path)),
        ("Orderbook", config.orderbook_address),
        ("Chain ID", str(config.chain_id)),
        ("Deployment block", format_number(config.deployment_block)),
        ("Last synced block", format_number(last) if last is not None else "none"),
        ("Start block", format_number(plan.start_block)),
        ("Blocks to fetch", "determined by CLI"),
        ("RPC endpoints", str(len(config.rpcs))),
    ]
    rows += [(f"RPC[{i}]", rpc) for i, rpc in enumerate(config.rpcs, start=1)]
    return rows


def render_plan(config: OrderbookConfig, plan: SyncPlan) -> Panel:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column(style="bold cyan", no_wrap=True)
    table.add_column(style="magenta")
    for label, value in plan_rows(config, plan):
        table.add_row(label, value)
    return Panel(
        table,
        title=f"[bold green]Plan for {config.network}[/]",
        title_align="left",
        border_style="green",
    )


def print_plan(
    config: OrderbookConfig, plan: SyncPlan, out: Optional[Console] = None,
) -> None:
    (out or console).print(render_plan(config, plan))


def print_configs(result: BuildResult, out: Optional[Console] = None) -> None:
    out = out or console
    if result.configs:
        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Network", style="cyan")
        table.add_column("Chain ID", justify="right")
        table.add_column("Orderbook")
        table.add_column("Deployment block", justify="right")
        table.add_column("RPCs", justify="right")
        for c in result.configs:
            table.add_row(
                c.network,
                str(c.chain_id),
                c.orderbook_address,
                format_number(c.deployment_block),
                str(len(c.rpcs)),
            )
        out.print(f"\n[bold]{len(result.configs)}[/] network(s) ready to sync:\n")
        out.print(table)
    else:
        out.print("\n[dim]No orderbook configurations matched the selection.[/]")

    for skip in result.skipped:
        out.print(f"  [yellow]{skip}[/]")
    out.print()


def print_report(report: SyncReport, out: Optional[Console] = None) -> None:
    out = out or console
    if not report.results:
        return

    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
    table.add_column("Network", style="cyan")
    table.add_column("Status")
    table.add_column("Start block", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Detail", style="dim")

    for r in report.results:
        status = "[green]OK[/]" if r.succeeded else "[red]FAILED[/]"
        start = format_number(r.plan.start_block) if r.plan else "-"
        detail = r.error or ("archived" if r.archived else "nothing to archive")
        table.add_row(r.network, status, start, f"{r.duration_seconds:.1f}s", detail)

    border = "red" if report.failed else "green"
    out.print(Panel(
        table,
        title=f"Sync summary ({report.duration_seconds:.1f}s)",
        border_style=border,
    ))
