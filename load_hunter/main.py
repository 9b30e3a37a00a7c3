from __future__ import annotations

import asyncio
import contextlib
import signal
import sys
from dataclasses import asdict
from typing import AsyncIterator, List, Optional, Tuple

import click
import typer

from load_hunter.config import Settings, get_settings
from load_hunter.domain.errors import LoadHunterError, StoreUnavailableError
from load_hunter.domain.models import OperatorAction
from load_hunter.geo.resolver import LocationCache, LocationResolver
from load_hunter.infrastructure.db_factory import PoolManager
from load_hunter.infrastructure.geocoder import MapboxGeocoder
from load_hunter.infrastructure.notifications import PgNotificationListener
from load_hunter.infrastructure.pg_store import PostgresStore
from load_hunter.reporter import print_bucket, print_counts, print_queue, print_sweep
from load_hunter.service import BUCKETS, LoadHunterService
from load_hunter.utils.logging import configure_logging
from load_hunter.worker import MatchingWorker, build_worker

app = typer.Typer(help="Load Hunter CLI.")


@contextlib.asynccontextmanager
async def _runtime(settings: Settings) -> AsyncIterator[Tuple[MatchingWorker, LoadHunterService]]:
    """Open the pool and the geocoder, wire worker and service, close both on exit."""
    pools = PoolManager(settings=settings)
    await pools.open()
    try:
        async with MapboxGeocoder(settings=settings) as geocoder:
            resolver = LocationResolver(geocoder, LocationCache(settings.geocode_cache_max_entries))
            worker = build_worker(PostgresStore(pools), resolver, settings=settings)
            yield worker, LoadHunterService.for_worker(worker)
    finally:
        await pools.close()


def _setup() -> Settings:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    return settings


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"radius={settings.default_pickup_radius_miles}mi lookback={settings.backfill_lookback_minutes}m "
        f"missed={settings.missed_threshold_minutes}m expiry_fallback={settings.expiry_fallback_minutes}m | "
        f"sweeps forward={settings.forward_sweep_seconds}s lifecycle={settings.lifecycle_sweep_seconds}s | "
        f"geocoder={'on' if settings.geocoder_token else 'off'}"
    )


@app.command()
def worker(
    listen: bool = typer.Option(
        True,
        "--listen/--no-listen",
        help="Consume LISTEN/NOTIFY change events in addition to the periodic sweeps.",
    ),
) -> None:
    """
    Run the matching worker until interrupted.
    """
    settings = _setup()

    async def _run() -> None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(signum, stop.set)
        async with _runtime(settings) as (matching_worker, _):
            events = PgNotificationListener(settings=settings).listen() if listen else None
            await matching_worker.run(stop, events=events)

    asyncio.run(_run())


@app.command()
def sweep() -> None:
    """
    Resume pending activations and run one forward and one lifecycle pass.
    """
    settings = _setup()

    async def _run():
        async with _runtime(settings) as (matching_worker, _):
            return await matching_worker.run_once()

    results = asyncio.run(_run())
    print_sweep([asdict(result) for result in results])


@app.command()
def enable(hunt_id: str = typer.Argument(..., help="Hunt plan id.")) -> None:
    """
    Enable a hunt: pin its floor, backfill recent postings, go live.
    """
    settings = _setup()

    async def _run():
        async with _runtime(settings) as (_, service):
            return await service.enable_hunt(hunt_id)

    hunt = _guarded(lambda: asyncio.run(_run()))
    typer.echo(f"Hunt {hunt.id} is {hunt.state.value} (floor={hunt.floor_marker}).")


@app.command()
def disable(hunt_id: str = typer.Argument(..., help="Hunt plan id.")) -> None:
    """
    Disable a hunt and reset its cursor.
    """
    settings = _setup()

    async def _run():
        async with _runtime(settings) as (_, service):
            return await service.disable_hunt(hunt_id)

    hunt = _guarded(lambda: asyncio.run(_run()))
    typer.echo(f"Hunt {hunt.id} is {hunt.state.value}.")


@app.command()
def queue(
    tenant_id: str = typer.Argument(..., help="Tenant id."),
    vehicle: Optional[List[str]] = typer.Option(
        None, "--vehicle", "-v", help="Viewer vehicle id(s); their matches become primary."
    ),
    grouping: bool = typer.Option(True, "--group/--no-group", help="One row per posting."),
    mine_only: bool = typer.Option(
        False, "--mine/--all", help="Only postings matched by the --vehicle ids, or every vehicle's."
    ),
    bucket: Optional[str] = typer.Option(
        None, "--bucket", "-b", help=f"Show a decision bucket instead: {', '.join(BUCKETS)}."
    ),
    counts: bool = typer.Option(False, "--counts", help="Show bucket counts."),
) -> None:
    """
    Show the live queue, a decision bucket, or bucket counts for a tenant.
    """
    settings = _setup()

    async def _run() -> None:
        async with _runtime(settings) as (_, service):
            if counts:
                print_counts(tenant_id, await service.bucket_counts(tenant_id))
            elif bucket:
                print_bucket(bucket, await service.bucket(tenant_id, bucket))
            else:
                print_queue(
                    await service.live_queue(tenant_id, vehicle, grouping=grouping, mine_only=mine_only)
                )

    _guarded(lambda: asyncio.run(_run()))


@app.command()
def decide(
    match_id: str = typer.Argument(..., help="Match id."),
    action: OperatorAction = typer.Argument(..., help="skip, bid, waitlist, undecided or book."),
    rate: Optional[float] = typer.Option(None, "--rate", help="Bid rate."),
    actor: Optional[str] = typer.Option(None, "--actor", help="Who made the decision."),
    load_id: Optional[str] = typer.Option(None, "--load-id", help="Booked load reference."),
    notes: Optional[str] = typer.Option(None, "--notes", help="Free-text note for the audit row."),
) -> None:
    """
    Record an operator decision on a match.
    """
    settings = _setup()

    async def _run():
        async with _runtime(settings) as (_, service):
            return await service.actions.apply(
                match_id, action, actor=actor, rate=rate, notes=notes, booked_load_id=load_id
            )

    match = _guarded(lambda: asyncio.run(_run()))
    typer.echo(f"Match {match.id} is now {match.status.value}.")


def _guarded(call):
    """Report domain errors (unknown ids, invalid transitions) as a clean exit 2."""
    try:
        return call()
    except StoreUnavailableError:
        raise
    except (LoadHunterError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2)


def main() -> None:
    # Abort, usage and store errors are mapped to exit codes here, not by click
    try:
        code = app(standalone_mode=False)
    except (click.exceptions.Abort, KeyboardInterrupt):
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
    except click.ClickException as exc:
        exc.show()
        sys.exit(exc.exit_code)
    except StoreUnavailableError as exc:
        typer.echo(f"Store unavailable: {exc}", err=True)
        sys.exit(1)
    sys.exit(code if isinstance(code, int) else 0)


if __name__ == "__main__":
    main()
