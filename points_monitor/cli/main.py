"""
CLI interface for Points Monitor.

Provides command-line access to all tool functionality.
"""

import logging
import sys
import time
from datetime import datetime
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from points_monitor.config.loader import SETTINGS_ENV_VAR, load_settings
from points_monitor.core.errors import PointsMonitorError
from points_monitor.core.period import from_micros
from points_monitor.core.service import PointsMonitor
from points_monitor.storage.models import FeedCredentials, SyncConfig

app = typer.Typer()
config_app = typer.Typer(help="Show or change the stored sync configuration.")
app.add_typer(config_app, name="config")
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

# Everything a command can fail with that should become a clean error line
_FAILURES = (PointsMonitorError, ValueError, OSError, yaml.YAMLError)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def get_monitor(settings_path: Optional[str] = None) -> PointsMonitor:
    """Build the service from the settings file (or defaults)."""
    settings = load_settings(settings_path)
    _configure_logging(settings.log_level)
    return PointsMonitor(settings)


def _monitor(ctx: typer.Context) -> PointsMonitor:
    return get_monitor((ctx.obj or {}).get("settings"))


def _fail(error: Exception) -> None:
    console.print(f"[red]Error:[/] {error}")
    sys.exit(EXIT_CODE_FAIL)


def _mask(secret: str) -> str:
    """Show only the tail of a secret."""
    if not secret:
        return "[dim]<unset>[/]"
    if len(secret) <= 6:
        return "*" * len(secret)
    return "*" * 6 + secret[-4:]


def _format_time(moment: Optional[datetime]) -> str:
    return moment.strftime("%Y-%m-%d %H:%M:%S") if moment else "never"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    settings: Optional[str] = typer.Option(
        None,
        "--settings",
        "-s",
        envvar=SETTINGS_ENV_VAR,
        help="Path to a YAML settings file"
    )
):
    """Points Monitor CLI."""
    ctx.obj = {"settings": settings}
    if ctx.invoked_subcommand is None:
        console.print("Points Monitor - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the Points Monitor database."""
    try:
        monitor = _monitor(ctx)
        console.print(
            f"[green]✓[/] Database initialized at {monitor.settings.database_path}"
        )
        sys.exit(EXIT_CODE_PASS)
    except _FAILURES as e:
        _fail(e)


@app.command()
def sync(
    ctx: typer.Context,
    cookie: Optional[str] = typer.Option(None, "--cookie", help="Feed session cookie"),
    form_key: Optional[str] = typer.Option(None, "--form-key", help="Feed form key"),
    channel: Optional[str] = typer.Option(None, "--channel", help="Feed channel"),
    revision: Optional[str] = typer.Option(None, "--revision", help="Feed revision header"),
    tag_id: Optional[str] = typer.Option(None, "--tag-id", help="Feed tag id header"),
    cycle_day: Optional[int] = typer.Option(
        None,
        "--cycle-day",
        "-d",
        min=1,
        max=31,
        help="Day of month the billing cycle starts"
    ),
    full: bool = typer.Option(
        False,
        "--full",
        "-f",
        help="Re-fetch the whole cycle, updating records already stored"
    )
):
    """
    Pull the current billing cycle's points history into the local store.

    Credentials not given on the command line are taken from the stored
    configuration. Successful credentials are saved for auto sync.
    """
    try:
        monitor = _monitor(ctx)
        stored = monitor.load_config()
        base = stored.credentials
        credentials = FeedCredentials(
            cookie=cookie or base.cookie,
            form_key=form_key or base.form_key,
            channel=channel or base.channel,
            revision=revision or base.revision,
            tag_id=tag_id or base.tag_id,
        )

        with console.status("Syncing points history..."):
            result = monitor.trigger_manual_sync(
                credentials,
                cycle_start_day=cycle_day or stored.cycle_start_day,
                full_sync=full,
            )

        console.print(f"[green]✓[/] {result.message}")
        console.print(
            f"[dim]{result.pages_fetched} page(s) fetched, stopped: {result.stop_reason.value}[/]"
        )
        if result.skipped_count:
            console.print(f"[yellow]{result.skipped_count} record(s) could not be stored[/]")
        sys.exit(EXIT_CODE_PASS)
    except _FAILURES as e:
        _fail(e)


@app.command()
def stats(
    ctx: typer.Context,
    granularity: str = typer.Option(
        "hour",
        "--granularity",
        "-g",
        help="Bucket size: minute, hour, halfday or day"
    ),
    mode: str = typer.Option(
        "discrete",
        "--mode",
        "-m",
        help="discrete per bucket, or cumulative running total"
    ),
    offset: int = typer.Option(
        0,
        "--offset",
        "-o",
        help="Cycle offset in months (0 = current, -1 = previous)"
    )
):
    """Show points usage for a billing cycle, grouped into time buckets."""
    try:
        monitor = _monitor(ctx)
        result = monitor.get_aggregates(granularity, mode, offset)
    except _FAILURES as e:
        _fail(e)
        return

    suffix = " (in progress)" if result.in_progress else ""
    console.print(f"\n[bold]Billing cycle {result.label}{suffix}[/bold]")
    if not result.buckets:
        console.print("[dim]No usage recorded in this cycle.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table()
    table.add_column("Bucket")
    table.add_column("Points", justify="right")
    table.add_column("Records", justify="right")
    for bucket in result.buckets:
        table.add_row(bucket.bucket, f"{bucket.point_cost:,}", str(bucket.record_count))
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def records(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Number of records to show")
):
    """Show the most recent usage records."""
    try:
        events = _monitor(ctx).latest_records(limit)
    except _FAILURES as e:
        _fail(e)
        return

    if not events:
        console.print("[dim]No records stored yet. Run `points-monitor sync` first.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table()
    table.add_column("Time")
    table.add_column("Bot")
    table.add_column("Points", justify="right")
    table.add_column("ID", style="dim")
    for event in events:
        table.add_row(
            _format_time(from_micros(event.creation_time)),
            event.bot_name or "[dim]unknown[/]",
            f"{event.point_cost:,}",
            event.id,
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def bots(ctx: typer.Context):
    """Show total points spent per bot."""
    try:
        totals = _monitor(ctx).consumer_totals()
    except _FAILURES as e:
        _fail(e)
        return

    table = Table()
    table.add_column("Bot")
    table.add_column("Points", justify="right")
    table.add_column("Records", justify="right")
    for total in totals:
        table.add_row(total.bot_name or "[dim]unknown[/]", f"{total.total_cost:,}", str(total.count))
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def status(ctx: typer.Context):
    """Show auto sync configuration and the last scheduled run."""
    try:
        monitor = _monitor(ctx)
        config = monitor.load_config()
        state = monitor.get_run_status()
    except _FAILURES as e:
        _fail(e)
        return

    enabled = "[green]enabled[/]" if config.auto_sync_enabled else "[yellow]disabled[/]"
    console.print(f"Auto sync: {enabled} (every {config.auto_sync_interval_minutes} min)")
    console.print(f"Last run: {_format_time(state.last_run_at)}")
    console.print(f"Last result: {state.last_run_result or '-'}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def balance(ctx: typer.Context):
    """Show the account's points balance and projected runway."""
    try:
        summary = _monitor(ctx).points_balance()
    except _FAILURES as e:
        _fail(e)
        return

    console.print("\n[bold]Points Balance[/bold]")
    console.print("-" * 40)
    if summary.subscription_name:
        console.print(f"Plan: {summary.subscription_name}")
    console.print(f"Allotment: {summary.total_allotment:,}")
    console.print(f"Balance: {summary.current_balance:,}")
    console.print(f"Used: {summary.used_points:,} ({summary.usage_percentage:.1f}%)")
    console.print(f"Average per day: {summary.avg_per_day:,}")
    console.print(f"Projected days left: {summary.remaining_days}")
    console.print(f"Next grant: {_format_time(from_micros(summary.next_grant_time))}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def watch(
    ctx: typer.Context,
    run_now: bool = typer.Option(False, "--run-now", help="Run one sync before waiting")
):
    """Run the auto sync scheduler in the foreground until interrupted."""
    try:
        monitor = _monitor(ctx)
        if not monitor.start_auto_sync():
            console.print(
                "[yellow]Auto sync is disabled.[/] "
                "Enable it with `points-monitor config set --auto-sync`."
            )
            sys.exit(EXIT_CODE_FAIL)
    except _FAILURES as e:
        _fail(e)
        return

    console.print(
        f"[green]✓[/] Auto sync every {monitor.scheduler.interval_minutes} min, Ctrl+C to stop"
    )
    try:
        if run_now:
            monitor.scheduler.tick()
        while monitor.scheduler.is_active:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        monitor.shutdown()
    sys.exit(EXIT_CODE_PASS)


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Show the stored configuration with secrets masked."""
    try:
        config = _monitor(ctx).load_config()
    except _FAILURES as e:
        _fail(e)
        return

    creds = config.credentials
    console.print(f"cookie: {_mask(creds.cookie)}")
    console.print(f"form_key: {_mask(creds.form_key)}")
    console.print(f"channel: {creds.channel or '[dim]<unset>[/]'}")
    console.print(f"revision: {creds.revision}")
    console.print(f"tag_id: {creds.tag_id}")
    console.print(f"cycle_start_day: {config.cycle_start_day}")
    console.print(f"auto_sync_interval_minutes: {config.auto_sync_interval_minutes}")
    console.print(f"auto_sync_enabled: {str(config.auto_sync_enabled).lower()}")
    console.print(f"updated_at: {_format_time(config.updated_at)}")
    sys.exit(EXIT_CODE_PASS)


@config_app.command("set")
def config_set(
    ctx: typer.Context,
    cookie: Optional[str] = typer.Option(None, "--cookie"),
    form_key: Optional[str] = typer.Option(None, "--form-key"),
    channel: Optional[str] = typer.Option(None, "--channel"),
    revision: Optional[str] = typer.Option(None, "--revision"),
    tag_id: Optional[str] = typer.Option(None, "--tag-id"),
    cycle_day: Optional[int] = typer.Option(None, "--cycle-day", "-d", min=1, max=31),
    interval: Optional[int] = typer.Option(None, "--interval", "-i", min=1, help="Minutes"),
    auto_sync: Optional[bool] = typer.Option(
        None,
        "--auto-sync/--no-auto-sync",
        help="Enable or disable scheduled syncs"
    )
):
    """Update stored configuration values; unspecified values are kept."""
    try:
        monitor = _monitor(ctx)
        current = monitor.load_config()
        creds = current.credentials
        updated = SyncConfig(
            credentials=FeedCredentials(
                cookie=cookie if cookie is not None else creds.cookie,
                form_key=form_key if form_key is not None else creds.form_key,
                channel=channel if channel is not None else creds.channel,
                revision=revision if revision is not None else creds.revision,
                tag_id=tag_id if tag_id is not None else creds.tag_id,
            ),
            cycle_start_day=cycle_day or current.cycle_start_day,
            auto_sync_interval_minutes=interval or current.auto_sync_interval_minutes,
            auto_sync_enabled=current.auto_sync_enabled if auto_sync is None else auto_sync,
            updated_at=datetime.now(),
        )
        monitor.save_config(updated)
        monitor.shutdown()
        console.print("[green]✓[/] Configuration saved")
        sys.exit(EXIT_CODE_PASS)
    except _FAILURES as e:
        _fail(e)


if __name__ == "__main__":
    app()
