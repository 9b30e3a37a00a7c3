"""
Synthetic posting generator for Load Hunter.

Implements deterministic pseudo-random posting generation around a handful of
US freight hubs, CSV emission, and Postgres COPY loading into
``public.postings``. The database assigns ``seq`` on insert, so postings enter
the stream in file order and the notify trigger fires for each row.
"""

from __future__ import annotations

import csv
import random
import sys
import tempfile
import time
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path

import typer

from load_hunter.infrastructure.db_factory import build_dsn, get_sync_connection

app = typer.Typer(help="Generate synthetic postings and load into Postgres (CSV + COPY).")

# city, state, zip, lat, lng
HUBS = [
    ("Atlanta", "GA", "30303", 33.749, -84.388),
    ("Macon", "GA", "31201", 32.841, -83.632),
    ("Chattanooga", "TN", "37402", 35.046, -85.309),
    ("Birmingham", "AL", "35203", 33.519, -86.810),
    ("Charlotte", "NC", "28202", 35.227, -80.843),
    ("Dallas", "TX", "75201", 32.777, -96.797),
    ("Memphis", "TN", "38103", 35.149, -90.049),
    ("Jacksonville", "FL", "32202", 30.332, -81.656),
]

RAW_TYPES = [
    "Large Straight",
    "large-straight",
    "Small Straight",
    "CARGO VAN",
    "Sprinter",
    "Straight",
    "Flatbed",
    "Reefer",
    "",
]

COLUMNS = [
    "id",
    "tenant_id",
    "received_at",
    "expires_at",
    "status",
    "origin_city",
    "origin_state",
    "origin_postal",
    "origin_lat",
    "origin_lng",
    "dest_city",
    "dest_state",
    "dest_postal",
    "dest_lat",
    "dest_lng",
    "vehicle_type",
    "pickup_date",
    "weight",
    "has_issues",
]


def _build_dsn(dsn_override: str | None) -> str:
    if dsn_override:
        return dsn_override
    return build_dsn()


def _jitter(rng: random.Random, value: float, spread: float = 0.25) -> str:
    return f"{value + rng.uniform(-spread, spread):.5f}"


def _generate_postings_csv(
    csv_path: Path,
    rows: int,
    batch_size: int,
    seed: int,
    tenant_id: str = "demo",
    now: datetime | None = None,
    spread_minutes: int = 30,
) -> None:
    rng = random.Random(seed)
    now = now or datetime.now(UTC)

    with csv_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(COLUMNS)

        buffer: list[list[str]] = []
        for i in range(rows):
            origin = rng.choice(HUBS)
            destination = rng.choice([hub for hub in HUBS if hub is not origin])
            # received times increase with i so seq order follows arrival order
            received_at = now - timedelta(minutes=spread_minutes) + timedelta(
                seconds=spread_minutes * 60 * i / max(rows, 1)
            )
            expires_at = received_at + timedelta(minutes=rng.choice([45, 90, 180])) if rng.random() < 0.7 else None
            # Some postings only carry a zip, some only city/state.
            shape = rng.random()
            with_coords = shape < 0.5
            with_city = shape < 0.85
            buffer.append(
                [
                    str(uuid.UUID(int=rng.getrandbits(128), version=4)),
                    tenant_id,
                    received_at.isoformat(),
                    expires_at.isoformat() if expires_at else "",
                    "new",
                    origin[0] if with_city else "",
                    origin[1] if with_city else "",
                    origin[2],
                    _jitter(rng, origin[3]) if with_coords else "",
                    _jitter(rng, origin[4]) if with_coords else "",
                    destination[0],
                    destination[1],
                    destination[2],
                    "",
                    "",
                    rng.choice(RAW_TYPES),
                    (now.date() + timedelta(days=rng.randint(-1, 5))).isoformat(),
                    f"{rng.randint(500, 12_000)}",
                    "t" if rng.random() < 0.05 else "f",
                ]
            )
            if len(buffer) >= batch_size:
                writer.writerows(buffer)
                buffer.clear()
        if buffer:
            writer.writerows(buffer)


def _copy_into_db(dsn: str, csv_path: Path) -> int:
    with get_sync_connection(dsn) as conn:
        with conn.cursor() as cur:
            with cur.copy(
                f"""
                COPY public.postings ({", ".join(COLUMNS)})
                FROM STDIN WITH (FORMAT csv, HEADER TRUE, NULL '')
                """
            ) as copy:
                with csv_path.open("r", encoding="utf-8") as f:
                    for line in f:
                        copy.write(line)
            loaded = cur.rowcount
            conn.commit()
    return loaded


@app.command()
def main(
    rows: int = typer.Option(
        1_000,
        "--rows",
        "-r",
        help="Number of postings to generate.",
    ),
    tenant: str = typer.Option(
        "demo",
        "--tenant",
        "-t",
        help="Tenant id stamped on every posting.",
    ),
    batch_size: int = typer.Option(
        500,
        "--batch-size",
        "-b",
        help="Batch size for CSV buffering during generation.",
    ),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
    spread_minutes: int = typer.Option(
        30,
        "--spread-minutes",
        help="Spread received_at over this many minutes before now.",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Optional CSV output path (if omitted, a temp file will be used).",
    ),
    dsn: str | None = typer.Option(
        None,
        "--dsn",
        help="Optional DSN override for Postgres.",
    ),
    no_load: bool = typer.Option(
        False,
        "--no-load",
        help="Only generate CSV; skip loading into Postgres.",
    ),
) -> None:
    """
    Generate synthetic postings and optionally load them into Postgres using COPY.
    """
    start = time.perf_counter()
    if output:
        csv_path = output
        csv_path.parent.mkdir(parents=True, exist_ok=True)
    else:
        tmpdir = Path(tempfile.mkdtemp(prefix="load_hunter_csv_"))
        csv_path = tmpdir / "postings.csv"

    typer.echo(f"Generating {rows:,} postings for tenant '{tenant}' -> {csv_path} (seed={seed})")
    _generate_postings_csv(
        csv_path,
        rows=rows,
        batch_size=batch_size,
        seed=seed,
        tenant_id=tenant,
        spread_minutes=spread_minutes,
    )
    typer.echo(f"CSV generation completed in {time.perf_counter() - start:.2f}s")

    if no_load:
        typer.echo("Skipping load (no-load flag set).")
        return

    load_start = time.perf_counter()
    typer.echo("Loading CSV into Postgres via COPY...")
    loaded = _copy_into_db(_build_dsn(dsn), csv_path)
    typer.echo(f"Loaded {loaded:,} postings in {time.perf_counter() - load_start:.2f}s.")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
