"""
Command-line interface for feed-poller.

Provides commands to run the polling scheduler, initialize the
database, manage sources and categories, and run diagnostic checks.

Usage:
    feed-poller run           # Run the polling scheduler
    feed-poller init-db       # Initialize database
    feed-poller add-source    # Add or update a source
    feed-poller set-category  # Set a category polling frequency
    feed-poller check ID      # Check one source now
    feed-poller failures      # Analyze recent feed failures
    feed-poller health        # Check service health
"""

import asyncio
import signal
import sys
import uuid

import click

from feed_poller.observability.logging import get_logger, setup_logging
from feed_poller.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Feed Poller - scheduled RSS/Atom polling with downstream delivery."""
    setup_logging(level="DEBUG" if debug else None)


@main.command()
@click.option("--group", "group_id", default=None, help="Only poll sources of this group")
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def run(group_id: str | None, metrics: bool, metrics_port: int | None) -> None:
    """Run the polling scheduler."""
    from feed_poller.services.poller_service import PollerService
    from feed_poller.storage.database import Database

    logger = get_logger()

    async def _run():
        async with Database() as db:
            service = PollerService(db, group_id=group_id)

            if metrics:
                get_metrics().start_server(port=metrics_port)

            # Shutdown signals only set the event; the watcher task stops the service
            stop_requested = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, stop_requested.set)

            async def _stop_on_signal():
                await stop_requested.wait()
                logger.info("Shutdown signal received")
                await service.stop()

            watcher = asyncio.create_task(_stop_on_signal())
            try:
                await service.start()
            finally:
                watcher.cancel()

    asyncio.run(_run())


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from feed_poller.sources.repository import SourcesRepository
    from feed_poller.storage.database import Database

    async def _run():
        db = Database()
        await db.connect()

        repo = SourcesRepository(db)
        await repo.create_tables()

        click.echo("Database initialized successfully")

        await db.close()

    asyncio.run(_run())


@main.command("add-source")
@click.argument("url")
@click.option("--group", "group_id", required=True, help="Owning group id")
@click.option("--destination", required=True, help="Delivery webhook URL")
@click.option("--id", "source_id", default=None, help="Source id (generated if omitted)")
@click.option("--category", default=None, help="Category name")
@click.option("--frequency", default=None, type=int, help="Per-source frequency override (minutes)")
@click.option("--nickname", default=None, help="Display name")
@click.option("--ignore-errors", is_flag=True, help="Suppress all error messages")
@click.option("--no-failure-alerts", is_flag=True, help="Suppress threshold alerts")
def add_source(
    url: str,
    group_id: str,
    destination: str,
    source_id: str | None,
    category: str | None,
    frequency: int | None,
    nickname: str | None,
    ignore_errors: bool,
    no_failure_alerts: bool,
) -> None:
    """Add or update a feed source."""
    from feed_poller.sources.repository import SourcesRepository
    from feed_poller.sources.schemas import Source
    from feed_poller.storage.database import Database

    source = Source(
        id=source_id or uuid.uuid4().hex,
        url=url,
        group_id=group_id,
        destination=destination,
        category=category,
        frequency_override_minutes=frequency,
        nickname=nickname,
        ignore_errors=ignore_errors,
        disable_failure_notifications=no_failure_alerts,
    )

    async def _run():
        async with Database() as db:
            await SourcesRepository(db).upsert(source)
        click.echo(f"Source {source.id} saved")

    asyncio.run(_run())


@main.command("set-category")
@click.argument("name")
@click.argument("minutes", type=int)
@click.option("--group", "group_id", required=True, help="Owning group id")
def set_category(name: str, minutes: int, group_id: str) -> None:
    """Set the polling frequency of a category."""
    from feed_poller.sources.repository import CategoryRepository
    from feed_poller.sources.schemas import CategoryFrequency
    from feed_poller.storage.database import Database

    async def _run():
        async with Database() as db:
            await CategoryRepository(db).upsert(
                CategoryFrequency(group_id=group_id, name=name, frequency_minutes=minutes)
            )
        click.echo(f"Category '{name}' in {group_id} set to {minutes} minutes")

    asyncio.run(_run())


@main.command()
@click.argument("source_id")
def check(source_id: str) -> None:
    """Check a single source now and print the outcome."""
    from feed_poller.services.poller_service import PollerService
    from feed_poller.storage.database import Database

    async def _run():
        async with Database() as db:
            service = PollerService(db)
            outcome = await service.check_once(source_id)
        color = "green" if outcome.value == "success" else "yellow"
        click.echo(click.style(f"{source_id}: {outcome.value}", fg=color))

    asyncio.run(_run())


@main.command()
@click.option(
    "--limit",
    default=30,
    show_default=True,
    type=click.IntRange(min=1),
    help="Number of recent failures to analyze",
)
def failures(limit: int) -> None:
    """Analyze the most recent feed failures."""
    from feed_poller.sources.report import build_failure_report, render_failure_report
    from feed_poller.sources.repository import SourcesRepository
    from feed_poller.storage.database import Database

    async def _run():
        async with Database() as db:
            records = await SourcesRepository(db).list_recent_failures(limit)
        click.echo(render_failure_report(build_failure_report(records)))

    asyncio.run(_run())


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    logger = get_logger()

    async def _check():
        results: dict[str, bool] = {}

        # Check PostgreSQL
        try:
            from feed_poller.storage.database import Database
            db = Database()
            await db.connect()
            results["postgres"] = await db.health_check()
            await db.close()
        except Exception as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))

        # Print results
        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        all_healthy = True
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
            if not status:
                all_healthy = False

        click.echo("-" * 40)

        if all_healthy:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(_check())


if __name__ == "__main__":
    main()
