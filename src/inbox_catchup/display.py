"""Rich-based display functions for Inbox Catch-up."""

from datetime import datetime, timezone

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .models import FleetResult, MailboxAccount, Rule, SyncStatus

console = Console()
err_console = Console(stderr=True)

_STATUS_COLORS = {
    SyncStatus.OK: "green",
    SyncStatus.SKIPPED: "dim",
    SyncStatus.EXPIRED_RESET: "yellow",
    SyncStatus.ERROR: "red",
}


def _format_expiry(expires_at: float | None) -> str:
    if expires_at is None:
        return "-"
    return datetime.fromtimestamp(expires_at, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def display_accounts(accounts: list[MailboxAccount]) -> None:
    """Show registered accounts with their sync state."""
    table = Table(title="Accounts")
    table.add_column("Email")
    table.add_column("Status")
    table.add_column("History ID", justify="right")
    table.add_column("Token expires")
    table.add_column("Eligible")

    for account in accounts:
        status = "[red]disconnected[/red]" if account.is_disconnected else "[green]active[/green]"
        table.add_row(
            account.email,
            status,
            account.last_synced_history_id or "[dim]none[/dim]",
            _format_expiry(account.expires_at),
            "yes" if account.is_eligible else "[yellow]no[/yellow]",
        )

    console.print(table)


def display_rules(rules: list[Rule]) -> None:
    table = Table(title="Rules")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Name")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Subject")
    table.add_column("Actions")
    table.add_column("Enabled")

    for idx, rule in enumerate(rules, start=1):
        actions = ", ".join(
            f"{a.type}:{a.label}" if a.label else a.type for a in rule.actions
        )
        table.add_row(
            str(idx),
            rule.name,
            rule.from_pattern or "",
            rule.to_pattern or "",
            rule.subject_pattern or "",
            actions,
            "yes" if rule.enabled else "[dim]no[/dim]",
        )

    console.print(table)


def display_fleet_summary(result: FleetResult) -> None:
    """One line per account, printed to stderr next to the JSON result."""
    for run in result.accounts:
        color = _STATUS_COLORS[run.status]
        detail = run.error or f"{run.pages_processed or 0} pages, {run.items_processed or 0} items"
        err_console.print(f"[{color}]{run.status.value:>13}[/{color}]  {run.email}  [dim]{escape(detail)}[/dim]")
