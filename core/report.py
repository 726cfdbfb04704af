"""Console reports for Bubuverse Farm.

Builds ``rich`` tables for the end-of-run summary and for the box and stake
statistics derived from the progress ledger.
"""

from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from core.ledger import LedgerStats, ProgressLedger
from core.orchestrator import AccountStatus, RunSummary


@dataclass(frozen=True)
class TemplateInfo:
    name: str
    tier: str
    color: str


TEMPLATE_CATALOG: Dict[str, TemplateInfo] = {
    "labubu-00000-1": TemplateInfo("Blooming Spirit", "10x", "green"),
    "labubu-00000-2": TemplateInfo("Wise Spirit", "10x", "green"),
    "labubu-00000-3": TemplateInfo("Guardian Spirit", "10x", "green"),
    "labubu-00000-4": TemplateInfo("Midnight Spirit", "100x", "yellow"),
    "labubu-00000-5": TemplateInfo("Starlight Angel", "1000x", "magenta"),
}
UNKNOWN_TEMPLATE = TemplateInfo("Unknown", "Unknown", "bright_black")
TIERS: List[str] = ["10x", "100x", "1000x"]

_STATUS_STYLE = {
    AccountStatus.PROCESSED: "green",
    AccountStatus.SKIPPED: "bright_black",
    AccountStatus.ERRORED: "red",
}


def describe_template(template_id: str) -> TemplateInfo:
    return TEMPLATE_CATALOG.get(template_id, UNKNOWN_TEMPLATE)


def tier_counts(stats: LedgerStats) -> Counter:
    """Item count per rarity tier (unknown templates counted separately)."""
    counts: Counter = Counter({tier: 0 for tier in TIERS})
    for template_id, count in stats.by_template.items():
        counts[describe_template(template_id).tier] += count
    return counts


def build_summary_panel(summary: RunSummary) -> Panel:
    content = (
        f"[green]Processed:[/green] [white]{summary.processed}/{summary.total}[/white]\n"
        f"[bright_black]Skipped:[/bright_black]   [white]{summary.skipped}[/white]\n"
        f"[red]Errors:[/red]    [white]{summary.errored}[/white]"
    )
    if summary.items_succeeded or summary.items_failed:
        content += (
            f"\n[cyan]Items:[/cyan]     [white]{summary.items_succeeded} ok, "
            f"{summary.items_failed} failed[/white]"
        )
    return Panel(
        content,
        title=f"[bold]Summary ({summary.operation})[/bold]",
        border_style="blue",
        box=box.ROUNDED,
    )


def build_outcome_table(summary: RunSummary) -> Table:
    table = Table(
        title=f"Accounts ({summary.operation})",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("#", justify="right")
    table.add_column("Wallet", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("OK", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Detail")

    for index, outcome in enumerate(summary.outcomes, start=1):
        style = _STATUS_STYLE[outcome.status]
        detail = outcome.reason
        if outcome.error_type is not None:
            detail = f"({outcome.error_type.value}) {detail}"
        table.add_row(
            str(index),
            outcome.label,
            f"[{style}]{outcome.status.value}[/{style}]",
            str(outcome.succeeded),
            str(outcome.failed),
            escape(detail),
        )
    return table


def build_box_table(stats: LedgerStats) -> Table:
    """Rarity breakdown of every recorded item."""
    table = Table(
        title="Box Statistics",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Rarity", style="cyan")
    table.add_column("Count", justify="right")

    counts = tier_counts(stats)
    colors = {info.tier: info.color for info in TEMPLATE_CATALOG.values()}
    for tier in TIERS:
        color = colors[tier]
        table.add_row(f"[{color}]NFT {tier}[/{color}]", str(counts[tier]))
    if counts[UNKNOWN_TEMPLATE.tier]:
        table.add_row("Unknown", str(counts[UNKNOWN_TEMPLATE.tier]))
    table.add_row("[bold]Total boxes[/bold]", f"[bold]{stats.total_items}[/bold]")
    return table


def build_stake_table(stats: LedgerStats) -> Table:
    table = Table(
        title="Stake Statistics",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Wallets with staked NFTs", f"{stats.wallets_with_staked}/{stats.wallets}")
    table.add_row("Staked NFTs", f"{stats.staked_items}/{stats.total_items}")
    table.add_row("Unstaked NFTs", str(stats.total_items - stats.staked_items))
    return table


def print_run_report(
    summary: RunSummary,
    ledger: Optional[ProgressLedger] = None,
    console: Optional[Console] = None,
) -> None:
    """Print the run summary plus the statistics relevant to the operation."""
    console = console or Console()
    console.print(build_summary_panel(summary))
    if summary.outcomes:
        console.print(build_outcome_table(summary))
    if ledger is None:
        return
    if summary.operation == "unlock":
        print_ledger_stats(ledger, console, stake=False)
    elif summary.operation == "stake":
        print_ledger_stats(ledger, console, boxes=False)


def print_ledger_stats(
    ledger: ProgressLedger,
    console: Optional[Console] = None,
    boxes: bool = True,
    stake: bool = True,
) -> None:
    console = console or Console()
    stats = ledger.stats()
    if not stats.wallets:
        console.print("[bright_black]No data yet[/bright_black]")
        return
    if boxes:
        console.print(build_box_table(stats))
    if stake:
        console.print(build_stake_table(stats))
