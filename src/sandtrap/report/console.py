"""
Console report generator for SandTrap.

Renders a policy forest in the terminal using Rich: a header with the root
document's settings, one table of explicit decisions per sub-document, and
summary statistics.

Design Principles:
    - Human-readable first: Optimize for quick scanning
    - Status at a glance: Use icons and colors for decisions
    - Progressive detail: Guard sources only in verbose mode
"""

from itertools import groupby

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from sandtrap.report.json import Decision, collect_decisions
from sandtrap.store import PolicyStore

# Decision icons
ICON_ALLOWED = "[green]✓[/green]"
ICON_DENIED = "[red]✗[/red]"
ICON_GUARDED = "[yellow]λ[/yellow]"

_ICONS = {"allowed": ICON_ALLOWED, "denied": ICON_DENIED, "guarded": ICON_GUARDED}


def generate_console_report(
    store: PolicyStore,
    console: Console | None = None,
    verbose: bool = False,
) -> None:
    """
    Print a console report for a policy forest.

    Args:
        store: The loaded policy forest
        console: Rich Console instance (creates one if not provided)
        verbose: Whether to show guard sources in full
    """
    if console is None:
        console = Console()

    decisions = collect_decisions(store)

    _print_header(console, store)
    console.print()

    if not decisions:
        console.print("[dim]No decisions recorded yet.[/dim]")
    for document_id, group in groupby(decisions, key=lambda d: d.document):
        _print_document(console, document_id, list(group), verbose)
        console.print()

    _print_summary(console, store, decisions)


def _print_header(console: Console, store: PolicyStore) -> None:
    document = store.document
    options = document.options

    header = Text()
    header.append(" Policy ", style="bold")
    header.append(store.name, style="bold cyan")
    header.append(" │ ", style="dim")
    header.append(document.onerror.value.upper(), style="bold")
    if options.learn:
        header.append(" │ ", style="dim")
        header.append("LEARN", style="bold magenta")
    if options.interactive:
        header.append(" │ ", style="dim")
        header.append("INTERACTIVE", style="bold yellow")

    console.print(Panel(header, expand=False))
    console.print(f"  [dim]Path:[/dim]   {store.document_path}")
    console.print(f"  [dim]Global:[/dim] {document.global_policy}")


def _print_document(console: Console, document_id: str, decisions: list[Decision], verbose: bool) -> None:
    console.print(f"[bold]{escape(document_id)}[/bold]")

    table = Table(show_header=True, header_style="bold", expand=True)
    table.add_column("", width=2, justify="center")
    table.add_column("Action", style="cyan", width=10)
    table.add_column("Path", overflow="fold")
    table.add_column("Guard", overflow="fold")

    for decision in decisions:
        guard = ""
        if isinstance(decision.value, str):
            guard = decision.value if verbose else _truncate(decision.value, 40)
        table.add_row(_ICONS[decision.kind], decision.action, escape(decision.path), escape(guard))

    console.print(table)


def _truncate(s: str, max_len: int) -> str:
    """Truncate string with ellipsis."""
    if len(s) <= max_len:
        return s
    return s[: max_len - 3] + "..."


def _print_summary(console: Console, store: PolicyStore, decisions: list[Decision]) -> None:
    console.print("[bold]Summary[/bold]")

    allowed = sum(1 for d in decisions if d.kind == "allowed")
    denied = sum(1 for d in decisions if d.kind == "denied")
    guarded = sum(1 for d in decisions if d.kind == "guarded")

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column("Metric", style="dim")
    stats_table.add_column("Value")

    stats_table.add_row("Documents", str(len(store.document.manifest)))
    stats_table.add_row("Decisions", str(len(decisions)))
    stats_table.add_row("Allowed", f"[green]{allowed}[/green]" if allowed else "0")
    stats_table.add_row("Denied", f"[red]{denied}[/red]" if denied else "0")
    stats_table.add_row("Guarded", f"[yellow]{guarded}[/yellow]" if guarded else "0")

    console.print(stats_table)
