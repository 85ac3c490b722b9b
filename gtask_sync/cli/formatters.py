"""CLI output formatting functions.

This module contains functions for displaying sync summaries, account status
and duplicate sweep progress on the command line.
"""

from typing import TYPE_CHECKING, Any

import click

if TYPE_CHECKING:
    from gtask_sync.sync.models import SyncSummary


def format_quota(quota: dict[str, Any]) -> str:
    """One-line quota report, colored by how much is used."""
    percent = quota.get("percentUsed", 0)
    if percent >= 90:
        color = "red"
    elif percent >= 70:
        color = "yellow"
    else:
        color = "green"
    used = click.style(f"{quota.get('used', 0)}/{quota.get('limit', 0)}", fg=color)
    return f"{used} calls used today ({percent}%), resets at {quota.get('resetsAt')}"


def show_sync_summary(summary: "SyncSummary", verbose: bool = False) -> None:
    """
    Display the result of a sync run.

    Args:
        summary: The finished run
        verbose: Also print the raw counters and quota
    """
    if summary.quota_exceeded and not summary.succeeded:
        click.echo(click.style(summary.message, fg="red"))
        return

    color = "green" if not summary.errors and not summary.skipped else "yellow"
    click.echo(click.style(summary.message, fg=color))

    if verbose:
        click.echo("\n=== Sync Details ===")
        click.echo(f"  Created:      {summary.created}")
        click.echo(f"  Updated:      {summary.updated}")
        click.echo(f"  Recreated:    {summary.recreated}")
        click.echo(f"  Unchanged:    {summary.unchanged}")
        click.echo(f"  Skipped:      {summary.skipped}")
        click.echo(f"  Rate limited: {summary.rate_limited}")
        click.echo(f"  Errors:       {summary.errors}")
        if summary.quota:
            click.echo(f"  Quota:        {format_quota(summary.quota)}")


def show_account_status(account_id: str, status: dict[str, Any]) -> None:
    click.echo(f"--- {account_id} ---")
    if not status["connected"]:
        click.echo(f"  Connection: {click.style('Not connected', fg='red')}")
        click.echo(f"  Run: gtask-sync auth --account {account_id}")
        return

    pending = status["pending"]
    click.echo(f"  Connection: {click.style('Connected', fg='green')}")
    click.echo(f"  Connected at: {status['connectedAt'] or 'Unknown'}")
    click.echo(f"  Last sync: {status['lastSyncAt'] or 'Never'}")
    pending_text = str(pending["pending"])
    if pending["pending"]:
        pending_text = click.style(pending_text, fg="yellow")
    click.echo(
        f"  Tasks: {pending['total']} eligible, {pending['synced']} synced, "
        f"{pending_text} pending"
    )
    click.echo(f"  Quota: {format_quota(status['quota'])}")


def show_sweep_status(status: dict[str, Any] | None) -> None:
    if status is None:
        click.echo("No duplicate sweep has run recently.")
        return

    colors = {"running": "cyan", "completed": "green", "error": "red"}
    state = click.style(status["status"], fg=colors.get(status["status"]))
    click.echo(f"Status: {state} (phase: {status['phase']})")
    click.echo(
        f"Duplicate groups: {status['duplicateGroups']}, "
        f"deleted {status['deleted']}/{status['total']}, errors {status['errors']}"
    )
    if status.get("message"):
        click.echo(status["message"])
