import csv
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
from rich.console import Console
from typer.testing import CliRunner

from load_hunter import main as cli
from load_hunter.domain.errors import StoreUnavailableError
from load_hunter.domain.models import Match, MatchEntry, MatchGroup, MatchStatus, Place
from load_hunter.reporter import print_bucket, print_counts, print_queue, print_sweep
from scripts import seed_postings

NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


def _console() -> Console:
    return Console(record=True, width=200, color_system=None)


def _entry(make_posting, seq, vehicle_id, distance=None, status=MatchStatus.ACTIVE, **posting_fields):
    posting = make_posting(seq, **posting_fields)
    match = Match(
        id=f"m{seq}-{vehicle_id}",
        tenant_id=posting.tenant_id,
        posting_id=posting.id,
        hunt_id="h1",
        vehicle_id=vehicle_id,
        distance_miles=distance,
        status=status,
        matched_at=NOW,
    )
    return MatchEntry(match=match, posting=posting)


def test_seed_postings_writes_csv(tmp_path: Path):
    csv_path = tmp_path / "postings.csv"
    seed_postings._generate_postings_csv(csv_path, rows=5, batch_size=2, seed=123, tenant_id="t1", now=NOW)
    assert csv_path.exists()
    with csv_path.open("r", newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    # header + 5 rows
    assert len(rows) == 6
    assert rows[0] == seed_postings.COLUMNS
    body = [dict(zip(rows[0], row)) for row in rows[1:]]
    assert {row["tenant_id"] for row in body} == {"t1"}
    assert {row["status"] for row in body} == {"new"}
    received = [datetime.fromisoformat(row["received_at"]) for row in body]
    assert received == sorted(received)
    assert all(row["origin_postal"] for row in body)


def test_seed_postings_is_deterministic(tmp_path: Path):
    first, second = tmp_path / "a.csv", tmp_path / "b.csv"
    seed_postings._generate_postings_csv(first, rows=20, batch_size=7, seed=9, now=NOW)
    seed_postings._generate_postings_csv(second, rows=20, batch_size=3, seed=9, now=NOW)
    assert first.read_text(encoding="utf-8") == second.read_text(encoding="utf-8")


def test_print_queue_shows_primary_and_group_size(make_posting):
    primary = _entry(make_posting, 7, "v2", distance=12.34, destination=Place(postal_code="37402"))
    sibling = _entry(make_posting, 7, "v1", distance=None)
    console = _console()

    print_queue([MatchGroup(primary=primary, siblings=[sibling])], console=console)

    text = console.export_text()
    assert "Load Hunter Live Queue" in text
    assert "m7-v2" in text
    assert "Atlanta, GA" in text
    assert "37402" in text
    assert "12.3" in text
    assert "2024-01-12" in text


def test_print_queue_empty():
    console = _console()
    print_queue([], console=console)
    assert "No live matches" in console.export_text()


def test_print_bucket_lists_decisions(make_posting):
    entry = _entry(make_posting, 3, "v1", status=MatchStatus.BID, origin=Place(postal_code="31201"))
    entry = MatchEntry(
        match=entry.match.model_copy(update={"bid_rate": 1500.0, "actioned_at": NOW}),
        posting=entry.posting,
    )
    console = _console()

    print_bucket("bid", [entry], console=console)

    text = console.export_text()
    assert "Bucket: bid" in text
    assert "31201" in text
    assert "1,500.00" in text
    assert "2024-01-10 12:00" in text


def test_print_counts_and_sweep():
    console = _console()
    print_counts("tenant-a", {"live": 1200, "missed": 0}, console=console)
    print_sweep([{"tenant_id": "tenant-a", "resumed": 1, "matched": 4, "missed": 0, "expired": 2}], console=console)
    text = console.export_text()
    assert "1,200" in text
    assert "tenant-a" in text
    assert "Sweep Results" in text


def test_cli_info_prints_configuration(monkeypatch):
    monkeypatch.setenv("DB_NAME", "load_hunter_cli")
    cli.get_settings.cache_clear()
    try:
        result = CliRunner().invoke(cli.app, ["info"])
    finally:
        cli.get_settings.cache_clear()
    assert result.exit_code == 0
    assert "load_hunter_cli" in result.output
    assert "geocoder=" in result.output


def test_cli_rejects_unknown_action():
    result = CliRunner().invoke(cli.app, ["decide", "m1", "ignore"])
    assert result.exit_code != 0


def _run_main(monkeypatch, *args):
    monkeypatch.setattr(sys, "argv", ["load-hunter", *args])
    with pytest.raises(SystemExit) as exc_info:
        cli.main()
    return exc_info.value.code


def test_main_exits_zero_after_a_command(monkeypatch):
    cli.get_settings.cache_clear()
    try:
        assert _run_main(monkeypatch, "info") == 0
    finally:
        cli.get_settings.cache_clear()


def test_main_maps_ctrl_c_to_130(monkeypatch, capsys):
    def interrupted():
        raise KeyboardInterrupt

    monkeypatch.setattr(cli, "get_settings", interrupted)
    assert _run_main(monkeypatch, "info") == 130
    assert "Cancelled by user." in capsys.readouterr().err


def test_main_reports_an_unavailable_store(monkeypatch, capsys):
    def unreachable():
        raise StoreUnavailableError("connection refused")

    monkeypatch.setattr(cli, "get_settings", unreachable)
    assert _run_main(monkeypatch, "info") == 1
    assert "Store unavailable: connection refused" in capsys.readouterr().err


def test_main_keeps_usage_errors_at_exit_code_2(monkeypatch):
    assert _run_main(monkeypatch, "decide", "m1", "ignore") == 2
