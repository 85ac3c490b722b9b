"""
Command-line interface for gtask_sync.

Provides CLI commands for connecting accounts, pushing local tasks to Google
Tasks, pulling completions back and running maintenance.

Usage:
    # Show help
    gtask-sync --help

    # Authenticate and connect an account
    gtask-sync auth --account work

    # Run synchronization
    gtask-sync sync --account work
    gtask-sync sync --account work --force

    # Check status
    gtask-sync status
"""

import sys
from pathlib import Path
from typing import NoReturn

import click

from gtask_sync import __version__
from gtask_sync.api.tasks_api import TasksAPIError
from gtask_sync.auth.google_auth import (
    AuthenticationError,
    GoogleAuth,
    ReconnectRequiredError,
)
from gtask_sync.cli.formatters import (
    show_account_status,
    show_sweep_status,
    show_sync_summary,
)
from gtask_sync.config.loader import ConfigError, ConfigLoader
from gtask_sync.config.sync_config import SyncSettings
from gtask_sync.storage.db import DatabaseError, SyncDatabase
from gtask_sync.storage.task_store import JsonTaskStore, TaskStoreError
from gtask_sync.sync.engine import (
    AccountNotConnectedError,
    SyncEngine,
    SyncSetupError,
)
from gtask_sync.utils import resolve_config_dir
from gtask_sync.utils.logging import cleanup_old_logs, get_logger, setup_logging
from gtask_sync.utils.paths import database_path, pid_file_path, tasks_file_path

# Errors that end a command with exit code 1 and a one-line message
EXPECTED_ERRORS = (
    SyncSetupError,
    AuthenticationError,
    TasksAPIError,
    DatabaseError,
    TaskStoreError,
)

SWEEP_POLL_SECONDS = 1.0


def build_engine(config_dir: Path, settings: SyncSettings) -> SyncEngine:
    """Wire the engine to the on-disk database, task file and stored tokens."""
    database = SyncDatabase(str(database_path(config_dir)))
    database.initialize()
    task_store = JsonTaskStore(tasks_file_path(config_dir, settings.tasks_file))
    auth = GoogleAuth(config_dir=config_dir)
    return SyncEngine(
        database=database,
        task_store=task_store,
        client_factory=auth.get_authenticated_client,
        settings=settings,
    )


def get_engine(ctx: click.Context) -> SyncEngine:
    if "engine" not in ctx.obj:
        ctx.obj["engine"] = build_engine(ctx.obj["config_dir"], ctx.obj["settings"])
    engine: SyncEngine = ctx.obj["engine"]
    return engine


def fail(message: str) -> NoReturn:
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(1)


def report_error(error: Exception, account_id: str | None = None) -> NoReturn:
    """Print a failure with a hint on how to recover, then exit 1."""
    logger = get_logger(__name__)
    logger.error(f"Command failed: {error}")
    if isinstance(error, ReconnectRequiredError):
        click.echo(click.style(f"Error: {error}", fg="red"), err=True)
        click.echo(
            f"Run: gtask-sync auth --account {account_id or '<account>'}", err=True
        )
        sys.exit(1)
    if isinstance(error, AccountNotConnectedError):
        click.echo(click.style(f"Error: {error}", fg="red"), err=True)
        click.echo("Connect it first with 'gtask-sync auth'.", err=True)
        sys.exit(1)
    fail(str(error))


def resolve_accounts(ctx: click.Context, account: str | None) -> list[str]:
    """Explicit --account, else the accounts listed in config.yaml."""
    if account:
        return [account]
    accounts = ctx.obj["settings"].accounts
    if not accounts:
        fail("No account given. Use --account or list accounts in config.yaml.")
    return list(accounts)


def resolve_account(ctx: click.Context, account: str | None) -> str:
    accounts = resolve_accounts(ctx, account)
    if len(accounts) > 1:
        fail(
            "Several accounts are configured; choose one with --account "
            f"({', '.join(accounts)})."
        )
    return accounts[0]


account_option = click.option(
    "--account",
    "-a",
    default=None,
    help="Account id (defaults to the accounts listed in config.yaml).",
)


@click.group()
@click.version_option(version=__version__, prog_name="gtask-sync")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="GTASK_SYNC_CONFIG_DIR",
    help="Configuration directory path (default: ~/.gtask-sync).",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_dir: str | None) -> None:
    """
    Incremental sync of local tasks to Google Tasks.

    Pushes dated, open tasks into a dedicated Google Tasks list, sending
    only what changed since the last run, and pulls completions back.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = resolve_config_dir(config_dir)
    ctx.obj["config_dir"] = resolved_config_dir

    # A broken config file should not lock the user out of the CLI
    try:
        config = ConfigLoader(config_dir=resolved_config_dir).load_and_validate()
        settings = SyncSettings.from_dict(config)
    except ConfigError as e:
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        settings = SyncSettings()

    ctx.obj["settings"] = settings
    ctx.obj["verbose"] = verbose

    log_dir = Path(settings.log_dir).expanduser() if settings.log_dir else None
    setup_logging(verbose=verbose, log_dir=log_dir, enable_file_logging=True)
    if log_dir is not None and settings.log_retention_count > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=settings.log_retention_count)


# =============================================================================
# Auth / Disconnect Commands
# =============================================================================


@cli.command("auth")
@click.option("--account", "-a", required=True, help="Account id to authenticate.")
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Force re-authentication even if already authenticated.",
)
@click.option(
    "--list-title",
    default=None,
    help="Title of the Google Tasks list to sync into.",
)
@click.pass_context
def auth_command(
    ctx: click.Context, account: str, force: bool, list_title: str | None
) -> None:
    """
    Authenticate a Google account and connect it.

    Opens a browser window to complete the OAuth flow, stores the token,
    then finds or creates the task list used for syncing.

    Examples:

        gtask-sync auth --account work

        gtask-sync auth --account work --list-title "Follow-ups"
    """
    logger = get_logger(__name__)
    config_dir = ctx.obj["config_dir"]

    click.echo(f"Authenticating {account}...")
    try:
        auth = GoogleAuth(config_dir=config_dir)
        auth.authenticate(account, force_reauth=force)
        state = get_engine(ctx).connect_account(account, list_title)
    except ValueError as e:
        fail(str(e))
    except FileNotFoundError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        click.echo("\nTo get started:", err=True)
        click.echo("1. Go to https://console.cloud.google.com/", err=True)
        click.echo("2. Create a project and enable the Google Tasks API", err=True)
        click.echo("3. Create OAuth 2.0 credentials (Desktop application)", err=True)
        click.echo(
            f"4. Download and save as: {config_dir / 'credentials.json'}", err=True
        )
        sys.exit(1)
    except EXPECTED_ERRORS as e:
        report_error(e, account)

    click.echo(click.style(f"Connected {account}!", fg="green"))
    click.echo(f"Task list id: {state.remote_list_id}")
    logger.info(f"Authentication completed for {account}")


@cli.command("disconnect")
@click.option("--account", "-a", required=True, help="Account id to disconnect.")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def disconnect_command(ctx: click.Context, account: str, yes: bool) -> None:
    """
    Disconnect an account and forget its sync state.

    Removes the stored token and all tracking data. Tasks already in
    Google Tasks are left alone.
    """
    if not yes:
        click.confirm(f"Disconnect {account} and forget its sync state?", abort=True)

    try:
        get_engine(ctx).disconnect_account(account)
        GoogleAuth(config_dir=ctx.obj["config_dir"]).clear_credentials(account)
    except (ValueError, DatabaseError) as e:
        fail(str(e))

    click.echo(click.style(f"Disconnected {account}.", fg="green"))


# =============================================================================
# Status Command
# =============================================================================


@cli.command("status")
@account_option
@click.pass_context
def status_command(ctx: click.Context, account: str | None) -> None:
    """
    Show connection, pending work and quota per account.

    Example:

        gtask-sync status
    """
    config_dir = ctx.obj["config_dir"]
    click.echo("=== Google Tasks Sync Status ===\n")
    click.echo(f"Configuration directory: {config_dir}")

    if account:
        accounts = [account]
    else:
        auth = GoogleAuth(config_dir=config_dir)
        accounts = sorted(set(ctx.obj["settings"].accounts) | set(auth.list_accounts()))
    if not accounts:
        click.echo("\nNo accounts configured.")
        click.echo("Run: gtask-sync auth --account <name>")
        return

    click.echo()
    try:
        engine = get_engine(ctx)
        for account_id in accounts:
            show_account_status(account_id, engine.get_sync_status(account_id))
    except EXPECTED_ERRORS as e:
        report_error(e)


# =============================================================================
# Sync Commands
# =============================================================================


@cli.command("sync")
@account_option
@click.option(
    "--force",
    is_flag=True,
    help="Forget what was synced and push every eligible task again.",
)
@click.pass_context
def sync_command(ctx: click.Context, account: str | None, force: bool) -> None:
    """
    Push new and changed tasks to Google Tasks.

    Unchanged tasks are not sent. A run stops early when the time budget
    or the daily API quota runs out; run it again to continue.

    Examples:

        gtask-sync sync --account work

        gtask-sync sync --force
    """
    verbose = ctx.obj["verbose"]
    failed = False
    engine = get_engine(ctx)

    for account_id in resolve_accounts(ctx, account):
        click.echo(f"Syncing {account_id}...")
        try:
            summary = engine.start_sync(account_id, force=force)
        except EXPECTED_ERRORS as e:
            report_error(e, account_id)
        show_sync_summary(summary, verbose=verbose)
        failed = failed or not summary.succeeded

    if failed:
        sys.exit(1)


@cli.command("sync-task")
@account_option
@click.argument("task_id")
@click.pass_context
def sync_task_command(ctx: click.Context, account: str | None, task_id: str) -> None:
    """Push a single task right away."""
    account_id = resolve_account(ctx, account)
    engine = get_engine(ctx)

    task = engine.task_store.get_task(task_id)
    if task is None:
        fail(f"Task {task_id} not found")

    try:
        outcome = engine.sync_task(account_id, task)
    except EXPECTED_ERRORS as e:
        report_error(e, account_id)

    if outcome is None:
        click.echo("Nothing to send (unchanged, not eligible, busy or out of quota).")
    elif outcome.succeeded:
        click.echo(click.style(f"Task {outcome.action.value}: {outcome.remote_id}", fg="green"))
    else:
        fail(f"Task sync failed: {outcome.message}")


@cli.command("pull")
@account_option
@click.pass_context
def pull_command(ctx: click.Context, account: str | None) -> None:
    """
    Mark local tasks completed when they were completed in Google Tasks.
    """
    engine = get_engine(ctx)
    for account_id in resolve_accounts(ctx, account):
        try:
            result = engine.pull_completions(account_id)
        except EXPECTED_ERRORS as e:
            report_error(e, account_id)
        click.echo(
            f"{account_id}: {result['updated']} completed locally, "
            f"{result['alreadyCompleted']} already completed, "
            f"{result['notFound']} not found"
        )


# =============================================================================
# Maintenance Commands
# =============================================================================


@cli.command("sweep")
@account_option
@click.option(
    "--wait/--no-wait",
    default=True,
    help="Wait for the sweep to finish and print its result.",
)
@click.pass_context
def sweep_command(ctx: click.Context, account: str | None, wait: bool) -> None:
    """
    Delete duplicate tasks (same title) from the synced list.

    For each group of duplicates one task is kept: the one this tool
    tracks, otherwise the most recently updated.
    """
    account_id = resolve_account(ctx, account)
    engine = get_engine(ctx)

    try:
        accepted = engine.start_duplicate_sweep(account_id)["accepted"]
    except EXPECTED_ERRORS as e:
        report_error(e, account_id)

    if not accepted:
        click.echo(click.style("A duplicate sweep is already running.", fg="yellow"))
        show_sweep_status(engine.get_duplicate_sweep_status(account_id))
        return

    click.echo(f"Duplicate sweep started for {account_id}.")
    if not wait:
        return

    while not engine.job_tracker.wait(account_id, timeout=SWEEP_POLL_SECONDS):
        status = engine.get_duplicate_sweep_status(account_id)
        if status and ctx.obj["verbose"]:
            click.echo(f"  {status['phase']}: {status['deleted']}/{status['total']}")
    status = engine.get_duplicate_sweep_status(account_id)
    show_sweep_status(status)
    if status is not None and status["status"] == "error":
        sys.exit(1)


@cli.command("cleanup")
@account_option
@click.pass_context
def cleanup_command(ctx: click.Context, account: str | None) -> None:
    """Delete remote tasks whose local task no longer exists."""
    engine = get_engine(ctx)
    for account_id in resolve_accounts(ctx, account):
        try:
            result = engine.cleanup_orphans(account_id)
        except EXPECTED_ERRORS as e:
            report_error(e, account_id)
        click.echo(
            f"{account_id}: {result['deleted']} orphaned tasks deleted, "
            f"{result['errors']} errors"
        )


@cli.command("reset")
@click.option("--account", "-a", required=True, help="Account id to reset.")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def reset_command(ctx: click.Context, account: str, yes: bool) -> None:
    """
    Reset sync state (every task is sent again on the next sync).

    Clears the task mappings and today's quota counter. This does NOT
    delete anything from Google Tasks.
    """
    if not yes:
        click.confirm(
            f"This will clear the sync state of {account}.\nContinue?", abort=True
        )

    try:
        get_engine(ctx).reset_sync_state(account)
    except EXPECTED_ERRORS as e:
        report_error(e, account)

    click.echo(click.style("Sync state has been reset.", fg="green"))


# =============================================================================
# Daemon Command Group
# =============================================================================


@cli.group("daemon")
@click.pass_context
def daemon_group(ctx: click.Context) -> None:
    """
    Run scheduled completion pulls (and optionally syncs) in the foreground.

    Examples:

        gtask-sync daemon start --interval 15m

        gtask-sync daemon status

        gtask-sync daemon stop
    """
    pass


@daemon_group.command("start")
@click.option(
    "--interval",
    "-i",
    default=None,
    help="Interval between runs (e.g., '30s', '5m', '1h'). Defaults to config.",
)
@click.option(
    "--sync/--no-sync",
    "with_sync",
    default=None,
    help="Also run a full sync each cycle (default from config: daemon_sync).",
)
@click.option(
    "--no-initial-run",
    is_flag=True,
    help="Wait one interval before the first run.",
)
@click.pass_context
def daemon_start_command(
    ctx: click.Context,
    interval: str | None,
    with_sync: bool | None,
    no_initial_run: bool,
) -> None:
    """
    Start the scheduler; blocks until SIGTERM or Ctrl+C.
    """
    from gtask_sync.daemon import DaemonError, DaemonScheduler, parse_interval

    logger = get_logger(__name__)
    settings: SyncSettings = ctx.obj["settings"]

    try:
        interval_seconds = parse_interval(interval or settings.daemon_interval)
    except ValueError as e:
        fail(str(e))

    if not settings.accounts:
        fail("No accounts configured. List them under 'accounts' in config.yaml.")

    run_sync = settings.daemon_sync if with_sync is None else with_sync
    engine = get_engine(ctx)
    scheduler = DaemonScheduler(
        interval=interval_seconds,
        pid_file=pid_file_path(ctx.obj["config_dir"]),
        run_immediately=not no_initial_run,
    )
    for account_id in settings.accounts:
        scheduler.add_job(
            f"pull:{account_id}", lambda a=account_id: engine.pull_completions(a)
        )
        if run_sync:
            scheduler.add_job(
                f"sync:{account_id}", lambda a=account_id: engine.start_sync(a)
            )
    scheduler.add_job("purge-locks", engine.lock_manager.purge_expired)
    engine.job_tracker.start_cleanup()

    click.echo(
        f"Starting daemon every {interval_seconds}s for "
        f"{', '.join(settings.accounts)} (Ctrl+C to stop)"
    )
    try:
        scheduler.run()
    except DaemonError as e:
        fail(str(e))
    finally:
        engine.job_tracker.shutdown(timeout=5)

    stats = scheduler.stats
    failures = sum(job.failures for job in stats.jobs.values())
    click.echo(f"Daemon stopped after {stats.cycles} cycles ({failures} job failures).")
    logger.info("Daemon exited")


@daemon_group.command("stop")
@click.pass_context
def daemon_stop_command(ctx: click.Context) -> None:
    """Send SIGTERM to the running daemon."""
    from gtask_sync.daemon import DaemonScheduler

    pid_file = pid_file_path(ctx.obj["config_dir"])
    pid = DaemonScheduler.get_running_pid(pid_file)
    if pid is None:
        click.echo("No daemon is currently running.")
        return

    click.echo(f"Stopping daemon (PID: {pid})...")
    if not DaemonScheduler.stop_running_daemon(pid_file):
        fail("Failed to send stop signal to daemon.")
    click.echo(click.style("Stop signal sent successfully.", fg="green"))


@daemon_group.command("status")
@click.pass_context
def daemon_status_command(ctx: click.Context) -> None:
    from gtask_sync.daemon import DaemonScheduler

    pid_file = pid_file_path(ctx.obj["config_dir"])
    pid = DaemonScheduler.get_running_pid(pid_file)
    if pid is not None:
        click.echo(f"Status: {click.style('Running', fg='green')} (PID {pid})")
    else:
        click.echo(f"Status: {click.style('Stopped', fg='yellow')}")
    if ctx.obj["verbose"]:
        click.echo(f"PID file: {pid_file}")

