"""Command-line interface for Agile tariff rates."""

import json
import logging
from datetime import date, datetime, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.text import Text

from . import db
from .analysis import rates as analytics
from .collectors.octopus import OctopusClient
from .config import load_settings
from .errors import ConfigError, RatesError
from .models import BAND_HIGH, BAND_NEGATIVE, LOCAL_TIMEZONE, Intensity
from .orchestrator import RatesOrchestrator
from .reports.rates_report import format_day_summary_text, format_rate, format_time, get_day_summary
from .scheduler import expected_end, utc_now
from .store import RateStore

console = Console()


def _intensity_style(intensity: Intensity) -> str:
    if intensity.band == BAND_NEGATIVE:
        return "bold green" if intensity.level >= 0.5 else "green"
    if intensity.band == BAND_HIGH:
        if intensity.level >= 0.75:
            return "bold red"
        if intensity.level >= 0.25:
            return "red"
        return "yellow"
    return ""


def _parse_day(ctx, value: str | None) -> date:
    if not value:
        return datetime.now(ZoneInfo(LOCAL_TIMEZONE)).date()
    try:
        return date.fromisoformat(value)
    except ValueError:
        console.print(f"[red]Invalid date {value!r}, expected YYYY-MM-DD[/red]")
        ctx.exit(1)


def _build_store(ctx) -> RateStore:
    return RateStore(ctx.obj["settings"].db_path)


def _build_client(ctx) -> OctopusClient:
    return OctopusClient(product_code=ctx.obj["settings"].product_code)


def _build_orchestrator(ctx) -> RatesOrchestrator:
    settings = ctx.obj["settings"]
    return RatesOrchestrator(
        source=_build_client(ctx),
        store=_build_store(ctx),
        settings_provider=lambda: settings,
    )


@click.group()
@click.option("--db-path", type=click.Path(), help="Path to SQLite database")
@click.option("--config", "config_path", type=click.Path(), help="Path to settings.yaml")
@click.option("-v", "--verbose", is_flag=True, help="Show progress logging")
@click.pass_context
def cli(ctx, db_path, config_path, verbose):
    """Agile tariff rates - fetch, cache and analyse half-hourly prices."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    ctx.ensure_object(dict)
    try:
        settings = load_settings(Path(config_path) if config_path else None)
    except ConfigError as e:
        console.print(f"[red]Invalid settings: {e}[/red]")
        ctx.exit(1)
    if db_path:
        settings.db_path = Path(db_path)
    ctx.obj["settings"] = settings


# Database commands
@cli.group()
def database():
    """Manage the local rate cache."""
    pass


@database.command("init")
@click.pass_context
def db_init(ctx):
    """Create the rate cache schema."""
    db.init_db(ctx.obj["settings"].db_path)
    console.print("[green]Database initialized successfully[/green]")


@database.command("stats")
@click.pass_context
def db_stats(ctx):
    """Show how many rates are cached and the range they cover."""
    _build_store(ctx)
    stats = db.get_stats(ctx.obj["settings"].db_path)["rates"]

    table = Table(title="Rate Cache")
    table.add_column("Cache", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Range")

    table.add_row(
        "Rates",
        str(stats["count"]),
        f"{stats['earliest'] or 'N/A'} → {stats['latest'] or 'N/A'}",
    )
    table.add_row("Last updated", "", stats["last_updated"] or "N/A")

    console.print(table)


@database.command("reset")
@click.confirmation_option(prompt="Delete all cached rates?")
@click.pass_context
def db_reset(ctx):
    """Delete all cached rates."""
    try:
        count = _build_orchestrator(ctx).reset()
    except RatesError as e:
        console.print(f"[red]Failed to reset database: {e}[/red]")
        ctx.exit(1)
    console.print(f"[green]Deleted {count} rates[/green]")


# Fetch commands
@cli.command()
@click.option("--force", is_flag=True, help="Fetch even if cached rates already cover the expected period")
@click.pass_context
def refresh(ctx, force):
    """Fetch rates from the Octopus API if the cache needs it."""
    orchestrator = _build_orchestrator(ctx)
    try:
        orchestrator.load()
        refreshed = orchestrator.refresh(force=force)
    except RatesError as e:
        console.print(f"[red]Failed to refresh rates: {e}[/red]")
        if orchestrator.has_data:
            console.print(f"[yellow]Keeping {len(orchestrator.current_snapshot())} cached rates[/yellow]")
        ctx.exit(1)

    snapshot = orchestrator.current_snapshot()
    if refreshed:
        console.print(f"[green]Fetched rates, {len(snapshot)} now cached[/green]")
    elif not snapshot:
        console.print("[yellow]No rates fetched, try again with --force[/yellow]")
    else:
        console.print(
            f"[cyan]Cached rates already run to {format_time(snapshot[-1].valid_to)} "
            f"(need {format_time(expected_end(utc_now()))}), nothing to do[/cyan]"
        )


@cli.command()
@click.argument("postcode")
@click.pass_context
def region(ctx, postcode):
    """Look up the pricing region for a postcode."""
    code = _build_client(ctx).resolve_region(postcode)
    console.print(f"Region for {postcode}: [bold]{code}[/bold]")


@cli.command()
@click.pass_context
def product(ctx):
    """Show the current Agile import product."""
    try:
        agile = _build_client(ctx).find_agile_product()
    except RatesError as e:
        console.print(f"[red]Failed to find Agile product: {e}[/red]")
        ctx.exit(1)

    console.print(f"[bold]{agile.full_name}[/bold] ({agile.code})")
    if agile.code != ctx.obj["settings"].product_code:
        console.print(f"[yellow]Configured product is {ctx.obj['settings'].product_code}[/yellow]")
    console.print(agile.description)


# Analysis commands
@cli.command()
@click.option("--date", "day", help="Local date to show (YYYY-MM-DD), defaults to today")
@click.pass_context
def rates(ctx, day):
    """List the cached rates for a day."""
    settings = ctx.obj["settings"]
    tz = ZoneInfo(LOCAL_TIMEZONE)
    target = _parse_day(ctx, day)
    day_rates = analytics.rates_for_day(_build_store(ctx).fetch_for_day(target, tz), target, tz)

    if not day_rates:
        console.print(f"[yellow]No rates cached for {target}[/yellow]")
        return

    now = utc_now()
    table = Table(title=f"Agile rates for {target}")
    table.add_column("Time", style="cyan")
    table.add_column("Rate", justify="right")
    table.add_column("Exc. VAT", justify="right", style="dim")

    for record in day_rates:
        style = _intensity_style(analytics.classify(record, day_rates))
        marker = " ◀" if record.covers(now) else ""
        table.add_row(
            f"{format_time(record.valid_from, tz)} - {format_time(record.valid_to, tz)}{marker}",
            Text(format_rate(record.value_inc_vat, settings.show_rates_in_pounds), style=style),
            format_rate(record.value_exc_vat, settings.show_rates_in_pounds),
        )

    console.print(table)


@cli.command()
@click.option("--hours", default=2.0, help="Averaging window for the upcoming average (default: 2)")
@click.pass_context
def current(ctx, hours):
    """Show the current rate and the upcoming extremes."""
    settings = ctx.obj["settings"]
    series = _build_store(ctx).fetch_all()
    now = utc_now()

    def rate(value):
        return format_rate(value, settings.show_rates_in_pounds)

    record = analytics.current_rate(series, now)
    if record is None:
        console.print("[yellow]No rate cached for the current time - try 'refresh'[/yellow]")
    else:
        console.print(
            f"Now: [bold]{rate(record.value_inc_vat)}[/bold] "
            f"until {format_time(record.valid_to)}"
        )

    lowest = analytics.lowest_upcoming(series, now)
    highest = analytics.highest_upcoming(series, now)
    if lowest:
        console.print(f"Lowest upcoming: [green]{rate(lowest[0].value_inc_vat)}[/green] at {format_time(lowest[0].valid_from)}")
    if highest:
        console.print(f"Highest upcoming: [red]{rate(highest[0].value_inc_vat)}[/red] at {format_time(highest[0].valid_from)}")

    average = analytics.average_upcoming(series, now, hours)
    if average is not None:
        console.print(f"Average over next {hours:g}h: {rate(average)}")
    cheapest_ten = analytics.lowest_n_average(series, now)
    if cheapest_ten is not None:
        console.print(f"Average of 10 cheapest upcoming slots: {rate(cheapest_ten)}")


@cli.command()
@click.option("--hours", default=2.0, help="Window length in hours, in 0.5h steps (default: 2)")
@click.option("--count", default=5, help="Number of windows to show (default: 5)")
@click.option("--merge", is_flag=True, help="Merge overlapping windows into single bands")
@click.option("--include-past-hour", is_flag=True, help="Also consider slots from the last hour")
@click.pass_context
def best(ctx, hours, count, merge, include_past_hour):
    """Find the cheapest upcoming time windows."""
    settings = ctx.obj["settings"]
    series = _build_store(ctx).fetch_all()
    now = utc_now()
    since = now - timedelta(hours=1) if include_past_hour else now

    try:
        windows = analytics.best_average_windows(series, hours, count, since=since)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        ctx.exit(1)

    if not windows:
        console.print(f"[yellow]Not enough upcoming rates for a {hours:g}h window[/yellow]")
        return

    table = Table(title=f"Cheapest {hours:g}h windows")
    table.add_column("Start", style="cyan")
    table.add_column("End")
    table.add_column("Average", justify="right")
    for window in windows:
        table.add_row(
            window.start.astimezone(ZoneInfo(LOCAL_TIMEZONE)).strftime("%a %H:%M"),
            format_time(window.end),
            format_rate(window.average, settings.show_rates_in_pounds),
        )
    console.print(table)

    if merge:
        console.print("\n[cyan]Merged bands:[/cyan]")
        for band in analytics.merge_overlapping_windows(windows):
            console.print(f"  {format_time(band.start)} - {format_time(band.end)}")


@cli.command("summary")
@click.option("--date", "day", help="Local date to summarize (YYYY-MM-DD), defaults to today")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def summary_cmd(ctx, day, as_json):
    """Summarize one day's rates."""
    settings = ctx.obj["settings"]
    tz = ZoneInfo(LOCAL_TIMEZONE)
    target = _parse_day(ctx, day)
    data = get_day_summary(_build_store(ctx).fetch_for_day(target, tz), target, tz)

    if as_json:
        console.print(json.dumps(data, indent=2))
    else:
        console.print(format_day_summary_text(data, settings.show_rates_in_pounds))


if __name__ == "__main__":
    cli()
