"""CLI commands for windowpilot using Typer."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
import time
from datetime import datetime, timedelta
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from windowpilot import __version__
from windowpilot.core.config import Config, ConfigStore, get_config
from windowpilot.planning.windows import (
    DayOfWeek,
    minutes_to_time_string,
    parse_time_to_minutes,
    start_time_offset,
)

app = typer.Typer(
    name="windowpilot",
    help="Schedule 5-hour usage windows around your working day.",
    add_completion=False,
)

console = Console()


def setup_logging(log_level: str, log_file: Path | None = None) -> None:
    """Configure logging for the application."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )

    # Reduce noise from external libraries
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def _get_daemon_pid(config: Config) -> int | None:
    from windowpilot.core.orchestrator import Orchestrator

    return Orchestrator.get_daemon_pid(config)


def _config_store(config: Config) -> ConfigStore:
    return ConfigStore(config.config_file)


def _parse_day(value: str) -> DayOfWeek:
    try:
        return DayOfWeek(value.strip().lower())
    except ValueError:
        console.print(f"[red]Unknown day: {value}[/red] (use monday..sunday)")
        raise typer.Exit(1)


@app.command()
def start(
    foreground: bool = typer.Option(
        False,
        "--foreground",
        "-f",
        help="Run in foreground instead of as daemon",
    ),
    log_level: str = typer.Option(
        "INFO",
        "--log-level",
        "-l",
        help="Log level (DEBUG, INFO, WARNING, ERROR)",
    ),
) -> None:
    """Start the windowpilot daemon."""
    config = get_config()

    pid = _get_daemon_pid(config)
    if pid is not None:
        console.print(f"[yellow]Daemon already running (PID: {pid})[/yellow]")
        raise typer.Exit(1)

    if foreground:
        setup_logging(log_level)
        console.print("[green]Starting windowpilot in foreground...[/green]")
        console.print("Press Ctrl+C to stop\n")

        from windowpilot.core.orchestrator import run_daemon

        try:
            asyncio.run(run_daemon(config))
        except KeyboardInterrupt:
            console.print("\n[yellow]Stopped[/yellow]")
        return

    console.print("[green]Starting windowpilot daemon...[/green]")

    log_path = config.log_dir / "daemon.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)

    with open(log_path, "a") as log_file:
        subprocess.Popen(
            [sys.executable, "-m", "windowpilot", "start", "--foreground", "--log-level", log_level],
            stdin=subprocess.DEVNULL,
            stdout=log_file,
            stderr=log_file,
            start_new_session=True,
        )

    time.sleep(1.5)

    daemon_pid = _get_daemon_pid(config)
    if daemon_pid is not None:
        console.print(f"[green]Daemon started (PID: {daemon_pid})[/green]")
        console.print(f"Logs: {log_path}")
    else:
        console.print("[red]Failed to start daemon - check logs[/red]")
        raise typer.Exit(1)


@app.command()
def stop() -> None:
    """Stop the windowpilot daemon."""
    config = get_config()

    pid = _get_daemon_pid(config)
    if pid is None:
        console.print("[yellow]Daemon is not running[/yellow]")
        return

    console.print(f"[yellow]Stopping daemon (PID: {pid})...[/yellow]")

    try:
        os.kill(pid, signal.SIGTERM)

        for _ in range(10):
            time.sleep(1)
            if _get_daemon_pid(config) is None:
                console.print("[green]Daemon stopped[/green]")
                return

        console.print("[yellow]Daemon not responding, forcing shutdown...[/yellow]")
        os.kill(pid, signal.SIGKILL)
        time.sleep(1)

        if _get_daemon_pid(config) is not None:
            console.print("[red]Failed to stop daemon[/red]")
            raise typer.Exit(1)
        console.print("[green]Daemon stopped (forced)[/green]")

    except ProcessLookupError:
        console.print("[green]Daemon stopped[/green]")
        (config.data_dir / "daemon.pid").unlink(missing_ok=True)


@app.command()
def status() -> None:
    """Show daemon status, the weekly schedule and the current window."""
    config = get_config()
    schedule_config = _config_store(config).load()
    pid = _get_daemon_pid(config)

    async def get_state() -> dict:
        from windowpilot.planning.adaptive import AdaptiveLearner
        from windowpilot.scheduler.tick import LAST_AUTO_START_KEY, WINDOW_END_KEY, WINDOW_START_KEY
        from windowpilot.storage.database import Database

        db = Database(config.db_path)
        await db.connect()
        try:
            learner = AdaptiveLearner(db, db, _config_store(config))
            return {
                "window_start": await db.get_state(WINDOW_START_KEY),
                "window_end": await db.get_state(WINDOW_END_KEY),
                "last_auto_start": await db.get_state(LAST_AUTO_START_KEY),
                "adjustment": await learner.get_last_adjustment_info(),
            }
        finally:
            await db.close()

    try:
        state = asyncio.run(get_state())
    except Exception as e:
        console.print(f"[red]Error reading state: {e}[/red]")
        raise typer.Exit(1)

    info = Table(show_header=False, box=None, padding=(0, 2))
    info.add_column("Key", style="cyan")
    info.add_column("Value")
    info.add_row(
        "Daemon",
        f"[green bold]RUNNING[/green bold] (PID {pid})" if pid else "[red bold]STOPPED[/red bold]",
    )
    info.add_row("Current window", f"{state['window_start'] or '-'} -> {state['window_end'] or '-'}")
    info.add_row("Last auto-start", state["last_auto_start"] or "never")
    adjustment = state["adjustment"]
    if adjustment.timestamp:
        info.add_row(
            "Last adjustment",
            f"{adjustment.timestamp:%Y-%m-%d %H:%M} ({adjustment.days_since}d ago, {adjustment.count} total)",
        )
    else:
        info.add_row("Last adjustment", "never")
    info.add_row("Database", str(config.db_path))
    info.add_row("Logs", str(config.log_dir / "daemon.log"))

    console.print(Panel(info, title="windowpilot Status", border_style="green" if pid else "red"))

    table = Table(title="Weekly Schedule", show_header=True, header_style="bold cyan")
    table.add_column("Day")
    table.add_column("Start time")
    table.add_column("Working hours")

    working_hours = schedule_config.working_hours
    for day in DayOfWeek:
        hours = working_hours.hours_for(day)
        hours_text = f"{hours.start}-{hours.end}" if hours else "-"
        start_text = schedule_config.optimal_start_times.get(day) or "-"
        start_minutes = parse_time_to_minutes(schedule_config.optimal_start_times.get(day))
        work_start = hours.start_minutes if hours is not None and hours.is_valid else None
        if start_minutes is not None and start_time_offset(start_minutes, work_start) < 0:
            start_text += " (previous evening)"
        table.add_row(day.label, start_text, hours_text)

    console.print(table)


@app.command()
def plan(
    work_start: str = typer.Argument(..., help="Work start (HH:MM)"),
    work_end: str = typer.Argument(..., help="Work end (HH:MM)"),
    default_profile: bool = typer.Option(
        False, "--default-profile", help="Ignore history and use the uniform profile"
    ),
) -> None:
    """Find the best trigger time for a working day."""
    from windowpilot.planning.profile import build_profile_from_records
    from windowpilot.planning.profile import default_profile as uniform_profile
    from windowpilot.planning.trigger_optimizer import find_optimal_trigger
    from windowpilot.storage.database import Database

    start_minutes = parse_time_to_minutes(work_start)
    end_minutes = parse_time_to_minutes(work_end)
    if start_minutes is None or end_minutes is None or end_minutes <= start_minutes:
        console.print("[red]Work hours must be HH:MM with start before end[/red]")
        raise typer.Exit(1)

    config = get_config()

    async def load_profile():
        db = Database(config.db_path)
        await db.connect()
        try:
            since = datetime.now() - timedelta(days=config.adaptive.lookback_days)
            records = await db.get_hourly_usage_since(since)
            if len(records) < config.adaptive.min_samples:
                return None, len(records)
            windows = await db.get_windows_since(since)
            return build_profile_from_records(records, windows), len(records)
        finally:
            await db.close()

    profile, samples = None, 0
    if not default_profile:
        try:
            profile, samples = asyncio.run(load_profile())
        except Exception as e:
            console.print(f"[yellow]Could not read usage history: {e}[/yellow]")

    source = f"learned from {samples} samples" if profile is not None else "default profile"
    result = find_optimal_trigger(profile or uniform_profile(), start_minutes, end_minutes)

    status_text = "[green]valid[/green]" if result.is_valid else "[yellow]fallback[/yellow]"
    console.print(Panel(
        f"Trigger at [bold]{result.trigger_time_formatted}[/bold] ({status_text}, {source})\n"
        f"{result.bucket_count} window(s), minimum slack {result.min_slack:.0f}%",
        title=f"Plan for {work_start}-{work_end}",
        border_style="cyan",
    ))

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Window")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Work overlap")
    for index, window in enumerate(result.windows, start=1):
        table.add_row(
            str(index),
            window.start_formatted,
            minutes_to_time_string(window.end),
            f"{minutes_to_time_string(window.work_overlap_start)}-"
            f"{minutes_to_time_string(window.work_overlap_end)}",
        )
    console.print(table)


@app.command()
def adjust(
    force: bool = typer.Option(False, "--force", help="Run even if not yet due"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show changes without saving"),
    show_status: bool = typer.Option(False, "--status", help="Only show adjustment status"),
) -> None:
    """Re-optimize start times from recent usage."""
    from windowpilot.planning.adaptive import AdaptiveLearner, format_adjustment_result
    from windowpilot.storage.database import Database

    config = get_config()

    async def run() -> None:
        db = Database(config.db_path)
        await db.connect()
        try:
            learner = AdaptiveLearner(db, db, _config_store(config))

            if show_status:
                info = await learner.get_last_adjustment_info()
                due = await learner.should_run_adjustment()
                if info.timestamp:
                    console.print(
                        f"Last adjustment: {info.timestamp:%Y-%m-%d %H:%M} "
                        f"({info.days_since} days ago), {info.count} total"
                    )
                else:
                    console.print("No adjustments yet")
                console.print(f"Next adjustment due: {'yes' if due else 'no'}")
                return

            if not force and not dry_run and not await learner.should_run_adjustment():
                console.print("[yellow]Adjustment not due yet (use --force to run anyway)[/yellow]")
                return

            result = await learner.run_adaptive_adjustment(dry_run=dry_run)
            console.print(format_adjustment_result(result))
        finally:
            await db.close()

    try:
        asyncio.run(run())
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@app.command("set-time")
def set_time(
    day: str = typer.Argument(..., help="Weekday (monday..sunday)"),
    value: str = typer.Argument(..., help="Start time HH:MM, or 'none' to clear"),
) -> None:
    """Manually set one day's start time."""
    weekday = _parse_day(day)
    time_value: str | None = None
    if value.lower() != "none":
        if parse_time_to_minutes(value) is None:
            console.print(f"[red]Invalid time: {value}[/red] (expected HH:MM)")
            raise typer.Exit(1)
        time_value = value

    config = _config_store(get_config()).set_optimal_start_time(weekday, time_value)
    console.print(
        f"[green]{weekday.label} start time set to {config.optimal_start_times.get(weekday) or '(none)'}[/green]"
    )


@app.command()
def record(
    usage_pct: float | None = typer.Argument(None, help="Cumulative session usage percentage (0-100)"),
    resets_at: str | None = typer.Option(None, "--resets-at", help="Window reset time (ISO 8601)"),
) -> None:
    """Record a usage observation, opening a window if none is active."""
    from windowpilot.core.recorder import UsageRecorder
    from windowpilot.planning.windows import parse_timestamp
    from windowpilot.scheduler.active_window import UsageCacheProbe
    from windowpilot.storage.database import Database

    config = get_config()

    reset_time = None
    if resets_at:
        reset_time = parse_timestamp(resets_at)
        if reset_time is None:
            console.print(f"[red]Invalid timestamp: {resets_at}[/red]")
            raise typer.Exit(1)

    async def run():
        db = Database(config.db_path)
        await db.connect()
        try:
            probe = UsageCacheProbe(config.usage.cache_path, config.usage.cache_ttl_seconds)
            return await UsageRecorder(db, probe).record(usage_pct, reset_time)
        finally:
            await db.close()

    try:
        result = asyncio.run(run())
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    usage_text = f"{result.usage_pct:.0f}%" if result.usage_pct is not None else "no usage value"
    if result.window_started:
        console.print(f"[green]Recorded {usage_text}; new window until {result.window_end:%H:%M}[/green]")
    else:
        console.print(f"[green]Recorded {usage_text} in window {result.window_id}[/green]")


@app.command()
def stats(
    days: int | None = typer.Option(None, "--days", "-d", help="Lookback in days (default: adaptive lookback)"),
) -> None:
    """Show usage history statistics."""
    from windowpilot.planning.patterns import compute_impact, load_baseline
    from windowpilot.planning.profile import (
        build_profile_from_records,
        calculate_wasted_quota,
        count_wait_events,
    )
    from windowpilot.storage.database import Database

    config = get_config()
    lookback = days or config.adaptive.lookback_days

    async def gather():
        db = Database(config.db_path)
        await db.connect()
        try:
            now = datetime.now()
            since = now - timedelta(days=lookback)
            impact = None
            baseline = await load_baseline(db)
            if baseline is not None:
                impact = compute_impact(baseline, await db.get_windows_since(baseline.saved_at), now)
            return (
                await db.get_hourly_usage_since(since),
                await db.get_windows_since(since),
                await db.get_size_mb(),
                impact,
            )
        finally:
            await db.close()

    try:
        records, windows, size_mb, impact = asyncio.run(gather())
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Usage Stats (last {lookback} days)", show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("Hourly samples", str(len(records)))
    table.add_row("Windows", str(len(windows)))
    table.add_row("Quota exhausted (waits)", str(count_wait_events(records, windows)))
    table.add_row("Unused quota at reset", f"{calculate_wasted_quota(records, windows):.0f}%")
    table.add_row("Database size", f"{size_mb:.2f} MB")
    console.print(table)

    if records:
        profile = build_profile_from_records(records, windows)
        hours = Table(title="Average Usage by Hour", show_header=True, header_style="bold cyan")
        hours.add_column("Hour")
        hours.add_column("Usage")
        for hour in range(24):
            if profile[hour] > 0:
                hours.add_row(f"{hour:02d}:00", f"{profile[hour]:.1f}%")
        console.print(hours)

    if impact is not None:
        sign = "+" if impact.usage_change >= 0 else ""
        lines = [
            f"Windows avoided:   {impact.windows_avoided} (saved ~{impact.hours_saved:.0f}h of limit time)",
            f"Windows per day:   {impact.windows_per_day_before:.2f} -> {impact.windows_per_day_after:.2f}",
            f"Avg window usage:  {impact.usage_before:.0f}% -> {impact.usage_after:.0f}% "
            f"({sign}{impact.usage_change:.0f}%)",
        ]
        console.print(Panel("\n".join(lines), title=f"Impact (last {impact.days} days)", border_style="green"))


@app.command()
def analyze(
    save: bool = typer.Option(False, "--save", help="Save recommended start times to the config"),
    force: bool = typer.Option(False, "--force", help="Analyze even with few samples"),
    days: int | None = typer.Option(None, "--days", "-d", help="Lookback in days (default: adaptive lookback)"),
) -> None:
    """Analyze weekly usage patterns and recommend start times."""
    from windowpilot.planning.patterns import (
        analyze_weekly_patterns,
        ensure_baseline,
        format_pattern_summary,
    )
    from windowpilot.storage.database import Database

    config = get_config()
    lookback = days or config.adaptive.lookback_days

    async def run():
        db = Database(config.db_path)
        await db.connect()
        try:
            now = datetime.now()
            since = now - timedelta(days=lookback)
            records = await db.get_hourly_usage_since(since)
            if not records or (len(records) < config.adaptive.min_samples and not force):
                return records, None
            windows = await db.get_windows_since(since)
            baseline = await ensure_baseline(db, len(records), windows, lookback, now)
            return records, baseline
        finally:
            await db.close()

    try:
        records, baseline = asyncio.run(run())
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if not records:
        console.print("[yellow]No usage data recorded yet.[/yellow]")
        return
    if len(records) < config.adaptive.min_samples and not force:
        console.print(
            f"[yellow]Not enough data yet ({len(records)}/{config.adaptive.min_samples} hourly samples).[/yellow]\n"
            "Use --force to analyze with available data anyway."
        )
        return

    console.print(f"Analyzing {len(records)} hourly records from the last {lookback} days...\n")
    pattern = analyze_weekly_patterns(records)
    console.print(format_pattern_summary(pattern))
    console.print()

    if baseline is not None:
        console.print("[green]Baseline statistics saved. Impact tracking is now active.[/green]")

    start_times = pattern.start_times()
    if not save:
        console.print("To save these recommendations, run: windowpilot analyze --save")
    elif start_times:
        _config_store(config).update_optimal_start_times(start_times)
        console.print(f"[green]Saved start times for {len(start_times)} day(s).[/green]")
    else:
        console.print("[yellow]No recommendations to save.[/yellow]")


@app.command()
def export(
    output: Path = typer.Argument(Path("windowpilot-export.json"), help="Output file"),
    as_csv: bool = typer.Option(False, "--csv", help="Write hourly usage and windows as CSV"),
) -> None:
    """Export the usage history, counters and config."""
    from windowpilot.storage.database import Database
    from windowpilot.storage.export import collect_export, write_csv, write_json

    config = get_config()

    async def gather():
        db = Database(config.db_path)
        await db.connect()
        try:
            return await collect_export(db, config), await db.get_all_hourly_usage(), await db.get_all_windows()
        finally:
            await db.close()

    try:
        data, hourly, windows = asyncio.run(gather())
        if as_csv:
            paths = write_csv(output, hourly, windows)
        else:
            paths = [write_json(output, data)]
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    for path in paths:
        console.print(f"  {path}")
    console.print(f"[green]Exported {len(hourly)} hourly records and {len(windows)} windows.[/green]")


@app.command()
def clear(
    clear_all: bool = typer.Option(False, "--all", help="Also delete the config file and usage cache"),
    force: bool = typer.Option(False, "--force", help="Do not ask for confirmation"),
) -> None:
    """Delete recorded usage history."""
    from windowpilot.scheduler.tick import WINDOW_END_KEY, WINDOW_START_KEY
    from windowpilot.storage.database import Database

    config = get_config()
    if not config.db_path.exists():
        console.print("No data to clear.")
        return

    if not force:
        targets = "usage history, windows and counters"
        if clear_all:
            targets += ", plus the config file and usage cache"
        if not typer.confirm(f"This deletes all {targets}. Continue?"):
            console.print("Cancelled.")
            return

    async def run() -> dict[str, int]:
        db = Database(config.db_path)
        await db.connect()
        try:
            counts = await db.clear_usage_data()
            await db.set_state(WINDOW_START_KEY, None)
            await db.set_state(WINDOW_END_KEY, None)
            return counts
        finally:
            await db.close()

    try:
        counts = asyncio.run(run())
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(
        f"[green]Cleared {counts['hourly_usage']} hourly records and {counts['usage_windows']} windows[/green]"
    )

    if clear_all:
        for path in (config.config_file, config.usage.cache_path):
            if path is not None:
                path.unlink(missing_ok=True)
        console.print("[green]Cleared config and usage cache[/green]")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"windowpilot v{__version__}")


@app.callback()
def main_callback() -> None:
    """windowpilot - usage window scheduling."""
    pass


if __name__ == "__main__":
    app()
