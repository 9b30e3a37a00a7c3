from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from load_hunter.domain.models import MatchEntry, MatchGroup, Place


def _place(place: Optional[Place]) -> str:
    if place is None:
        return "-"
    return place.city_state or place.postal_code or (
        f"{place.coordinates.lat:.3f},{place.coordinates.lng:.3f}" if place.coordinates else "-"
    )


def _distance(value: Optional[float]) -> str:
    return f"{value:,.1f}" if value is not None else "zip"


def print_queue(groups: Sequence[MatchGroup], console: Optional[Console] = None) -> None:
    """
    Render the grouped live queue as a rich table.

    One row per group; the primary match supplies the vehicle and distance,
    the count column shows how many vehicles matched the same posting.
    """
    console = console or Console()

    if not groups:
        console.print("[yellow]No live matches.[/yellow]")
        return

    table = Table(title="Load Hunter Live Queue", box=box.ROUNDED, caption="Newest postings first")
    table.add_column("Seq", justify="right", style="magenta")
    table.add_column("Match", style="cyan", no_wrap=True)
    table.add_column("Origin", style="green")
    table.add_column("Destination", style="green")
    table.add_column("Type")
    table.add_column("Pickup")
    table.add_column("Vehicle", style="bold")
    table.add_column("Miles", justify="right", style="yellow")
    table.add_column("Matches", justify="right", style="blue")

    for group in groups:
        match, posting = group.primary.match, group.primary.posting
        table.add_row(
            str(posting.seq),
            match.id,
            _place(posting.origin),
            _place(posting.destination),
            posting.vehicle_type or "-",
            posting.pickup_date.isoformat() if posting.pickup_date else "-",
            match.vehicle_id,
            _distance(match.distance_miles),
            str(group.match_count),
        )

    console.print(table)


def print_bucket(name: str, entries: Sequence[MatchEntry], console: Optional[Console] = None) -> None:
    console = console or Console()

    if not entries:
        console.print(f"[yellow]Bucket '{name}' is empty.[/yellow]")
        return

    table = Table(title=f"Bucket: {name}", box=box.ROUNDED)
    table.add_column("Seq", justify="right", style="magenta")
    table.add_column("Match", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Vehicle", style="bold")
    table.add_column("Origin", style="green")
    table.add_column("Actioned", style="dim")
    table.add_column("Rate", justify="right", style="yellow")

    for entry in entries:
        match = entry.match
        table.add_row(
            str(entry.posting.seq),
            match.id,
            match.status.value,
            match.vehicle_id,
            _place(entry.posting.origin),
            match.actioned_at.strftime("%Y-%m-%d %H:%M") if match.actioned_at else "-",
            f"{match.bid_rate:,.2f}" if match.bid_rate is not None else "-",
        )

    console.print(table)


def print_counts(tenant_id: str, counts: Dict[str, int], console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title=f"Buckets for {tenant_id}", box=box.SIMPLE)
    table.add_column("Bucket", style="cyan")
    table.add_column("Matches", justify="right", style="magenta")
    for name, count in counts.items():
        table.add_row(name, f"{count:,}")
    console.print(table)


def print_sweep(results: List[Dict[str, Any]], console: Optional[Console] = None) -> None:
    """Summarize a one-shot sweep, one row per tenant."""
    console = console or Console()

    if not results:
        console.print("[yellow]No tenants with enabled hunts.[/yellow]")
        return

    table = Table(title="Sweep Results", box=box.ROUNDED)
    table.add_column("Tenant", style="cyan", no_wrap=True)
    for column in ("resumed", "matched", "missed", "expired"):
        table.add_column(column.capitalize(), justify="right", style="magenta")
    for row in results:
        table.add_row(
            str(row["tenant_id"]),
            *(f"{row.get(column, 0):,}" for column in ("resumed", "matched", "missed", "expired")),
        )
    console.print(table)


__all__ = ["print_bucket", "print_counts", "print_queue", "print_sweep"]
