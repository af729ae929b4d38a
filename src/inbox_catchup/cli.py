"""CLI entry point for Inbox Catch-up."""

from __future__ import annotations

import json
import re
import sqlite3

import click

from .auth import authorize_account
from .constants import ACTION_ARCHIVE, ACTION_LABEL, ACTION_MARK_READ, ACTION_STAR
from .display import console, display_accounts, display_fleet_summary, display_rules
from .errors import AccountNotFoundError, InboxCatchupError
from .factory import build_digest_compiler, build_fleet_runner, open_store
from .log import configure_logging
from .models import Rule, RuleAction
from .settings import get_settings


def _send_digest(store, settings, email: str, hours: int) -> None:
    compiler = build_digest_compiler(store, settings)
    items = compiler.compile(email, hours=hours)
    if items:
        console.print(f"[green]Digest sent to {email} ({len(items)} emails).[/green]")
    else:
        console.print("[dim]Nothing to summarize, no digest sent.[/dim]")


@click.group()
@click.version_option(version="0.1.0", prog_name="inbox-catchup")
def cli() -> None:
    """Inbox Catch-up - replay missed Gmail history and send daily digests."""
    settings = get_settings()
    configure_logging(settings.log_level, json=settings.log_json)


@cli.command(name="catch-up")
@click.argument("email", required=False)
@click.option("--send-summary", is_flag=True, help="Also send a daily digest to EMAIL afterwards.")
def catch_up(email: str | None, send_summary: bool) -> None:
    """Replay Gmail history for every eligible account (or just EMAIL)."""
    if send_summary and not email:
        raise click.UsageError("--send-summary needs an EMAIL.")
    settings = get_settings()
    with open_store(settings) as store:
        runner = build_fleet_runner(store, settings)
        result = runner.run(email)

        click.echo(json.dumps(result.to_dict(), indent=2))
        display_fleet_summary(result)

        if send_summary:
            try:
                _send_digest(store, settings, email, settings.digest_default_hours)
            except InboxCatchupError as e:
                raise click.ClickException(str(e)) from e


@cli.command()
@click.argument("email")
@click.option("--hours", default=None, type=click.IntRange(min=1), help="Look back this many hours (default 24).")
def digest(email: str, hours: int | None) -> None:
    """Summarize recent inbox mail for EMAIL and send the digest to it."""
    settings = get_settings()
    with open_store(settings) as store:
        try:
            _send_digest(store, settings, email, hours or settings.digest_default_hours)
        except InboxCatchupError as e:
            raise click.ClickException(str(e)) from e


@cli.command()
def auth() -> None:
    """Authorize a Gmail account and register it for catch-up."""
    settings = get_settings()
    with open_store(settings) as store:
        try:
            account = authorize_account(store, settings.resolved_client_secrets_path)
        except InboxCatchupError as e:
            raise click.ClickException(str(e)) from e
    console.print(
        f"[green]Authorized {account.email}[/green] "
        f"[dim](history id {account.last_synced_history_id})[/dim]"
    )


@cli.command()
def accounts() -> None:
    """List registered accounts and their stored history ids."""
    settings = get_settings()
    with open_store(settings) as store:
        registered = store.list_accounts()

    if not registered:
        console.print("[dim]No accounts registered. Run 'auth' first.[/dim]")
        return
    display_accounts(registered)


@cli.group(name="rules")
def rules_group() -> None:
    """Manage automation rules."""


@rules_group.command(name="add")
@click.argument("email")
@click.argument("name")
@click.option("--from", "from_pattern", default=None, help="Regex matched against the From header.")
@click.option("--to", "to_pattern", default=None, help="Regex matched against the To header.")
@click.option("--subject", "subject_pattern", default=None, help="Regex matched against the subject.")
@click.option("--label", "labels", multiple=True, help="Apply this label (repeatable).")
@click.option("--archive", is_flag=True, help="Remove the message from the inbox.")
@click.option("--mark-read", is_flag=True, help="Mark the message as read.")
@click.option("--star", is_flag=True, help="Star the message.")
def rules_add(
    email: str,
    name: str,
    from_pattern: str | None,
    to_pattern: str | None,
    subject_pattern: str | None,
    labels: tuple[str, ...],
    archive: bool,
    mark_read: bool,
    star: bool,
) -> None:
    """Add a rule NAME to the account EMAIL."""
    if not (from_pattern or to_pattern or subject_pattern):
        raise click.UsageError("Give at least one of --from, --to or --subject.")
    for pattern in (from_pattern, to_pattern, subject_pattern):
        if pattern:
            try:
                re.compile(pattern)
            except re.error as e:
                raise click.UsageError(f"Invalid pattern {pattern!r}: {e}") from e

    actions = [RuleAction(type=ACTION_LABEL, label=label) for label in labels]
    if archive:
        actions.append(RuleAction(type=ACTION_ARCHIVE))
    if mark_read:
        actions.append(RuleAction(type=ACTION_MARK_READ))
    if star:
        actions.append(RuleAction(type=ACTION_STAR))
    if not actions:
        raise click.UsageError("Give at least one action (--label, --archive, --mark-read, --star).")

    settings = get_settings()
    with open_store(settings) as store:
        account = store.get_account_by_email(email)
        if account is None:
            raise click.ClickException(str(AccountNotFoundError(email)))
        try:
            store.add_rule(
                Rule(
                    name=name,
                    email_account_id=account.id,
                    actions=actions,
                    from_pattern=from_pattern,
                    to_pattern=to_pattern,
                    subject_pattern=subject_pattern,
                )
            )
        except sqlite3.IntegrityError as e:
            raise click.ClickException(f"Rule {name!r} already exists for {account.email}.") from e
    console.print(f"[green]Added rule {name!r} for {account.email}.[/green]")


@rules_group.command(name="list")
@click.argument("email")
def rules_list(email: str) -> None:
    """Show the rules of the account EMAIL."""
    settings = get_settings()
    with open_store(settings) as store:
        account = store.get_account_by_email(email)
        if account is None:
            raise click.ClickException(str(AccountNotFoundError(email)))
        rules = store.list_rules(account.id)

    if not rules:
        console.print("[dim]No rules.[/dim]")
        return
    display_rules(rules)


@cli.command()
@click.option("--host", default="127.0.0.1", help="Interface to bind.")
@click.option("--port", default=8080, type=int, help="Port to listen on.")
def serve(host: str, port: int) -> None:
    """Serve the scheduled catch-up trigger over HTTP."""
    import uvicorn

    from .server import create_app

    uvicorn.run(create_app(), host=host, port=port)
