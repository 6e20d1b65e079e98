from __future__ import annotations

import sys

import click
import uvicorn

from tallypoint.aggregator import HttpFlushSink, MatchEvent, MetricAggregator, UnitRunner
from tallypoint.chart import render_chart
from tallypoint.client import RegistryClient
from tallypoint.config import Settings, configure_logging
from tallypoint.errors import NoData, RegistryError


@click.group()
@click.option("--url", envvar="TALLY_SUPERVISOR_URL", default="http://127.0.0.1:1525", show_default=True,
              help="Supervisor base URL.")
@click.option("--user", envvar="TALLY_AUTH_USER", default="cloud", show_default=True)
@click.option("--password", envvar="TALLY_AUTH_PASSWORD", default="pelican")
@click.pass_context
def cli(ctx: click.Context, url: str, user: str, password: str):
    """Register log filters and inspect their match statistics."""
    ctx.obj = {"url": url, "user": user, "password": password}


def _client(ctx: click.Context) -> RegistryClient:
    obj = ctx.obj
    return RegistryClient(obj["url"], obj["user"], obj["password"])


@cli.command()
def serve():
    """Run the supervisor (settings come from TALLY_* variables)."""
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    from tallypoint.supervisor_app import create_app

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


@cli.group("filter")
def filter_group():
    """Manage filters."""


@filter_group.command("add")
@click.argument("name")
@click.argument("regex")
@click.pass_context
def filter_add(ctx: click.Context, name: str, regex: str):
    """Create a filter and print its id."""
    try:
        filter_id = _client(ctx).create_filter(name, regex)
    except RegistryError as exc:
        raise click.ClickException(str(exc))
    click.echo(filter_id)


@filter_group.command("list")
@click.pass_context
def filter_list(ctx: click.Context):
    """List registered filters."""
    try:
        filters = _client(ctx).list_filters()
    except RegistryError as exc:
        raise click.ClickException(str(exc))
    if not filters:
        click.echo("No filters")
        return
    for flt in filters:
        click.echo(f"{flt.id}\t{flt.name}\t{flt.pattern}\t{flt.owner}")


@filter_group.command("rm")
@click.argument("filter_id")
@click.pass_context
def filter_rm(ctx: click.Context, filter_id: str):
    """Delete a filter."""
    try:
        deleted = _client(ctx).delete_filter(filter_id)
    except RegistryError as exc:
        raise click.ClickException(str(exc))
    click.echo("deleted" if deleted else f"Filter {filter_id} did not exist")


@cli.command()
@click.argument("filter_id")
@click.option("--width", type=int, default=None, help="Chart width (defaults to the terminal).")
@click.option("--height", type=int, default=None, help="Chart height (defaults to the terminal).")
@click.option("--color/--no-color", default=True, show_default=True)
@click.pass_context
def stats(ctx: click.Context, filter_id: str, width, height, color: bool):
    """Chart the per-minute matches (and errors) of a filter."""
    try:
        results = _client(ctx).results(filter_id)
        chart = render_chart(results, width=width, height=height, color=color)
    except (RegistryError, NoData) as exc:
        raise click.ClickException(str(exc))
    click.echo(chart.text)


@cli.command()
@click.option("--tick", type=float, default=None, help="Flush interval in seconds.")
@click.pass_context
def feed(ctx: click.Context, tick):
    """
    Aggregate match events read from stdin and flush them to the supervisor.

    Each line is "FILTER_ID [METRIC] [INCREMENT]"; metric and increment default to 1.
    """
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    sink = HttpFlushSink(ctx.obj["url"], ctx.obj["user"], ctx.obj["password"],
                         timeout=settings.flush_timeout, retries=settings.flush_retries)
    runner = UnitRunner(MetricAggregator(sink), tick_interval=tick or settings.tick_s)
    runner.start()
    skipped = 0
    try:
        for line in sys.stdin:
            event = parse_event(line)
            if event is None:
                skipped += 1
                continue
            runner.submit(event)
    finally:
        runner.stop()
    if skipped:
        click.echo(f"skipped {skipped} malformed lines", err=True)
    if runner.dropped:
        click.echo(f"dropped {runner.dropped} events (queue full)", err=True)


def parse_event(line: str):
    parts = line.split()
    if not parts or len(parts) > 3:
        return None
    try:
        metric = int(parts[1]) if len(parts) > 1 else 1
        increment = int(parts[2]) if len(parts) > 2 else 1
    except ValueError:
        return None
    return MatchEvent(parts[0], metric, increment)


def main():
    cli()
