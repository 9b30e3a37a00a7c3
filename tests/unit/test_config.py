from __future__ import annotations

from time import sleep

from load_hunter import config
from load_hunter.utils import profiler

EXPECTED_RADIUS = 100.0
EXPECTED_LOOKBACK_MINUTES = 15
EXPECTED_FALLBACK_MINUTES = 120


def test_settings_defaults(monkeypatch) -> None:
    for name in ("DB_HOST", "DB_PORT", "DB_NAME", "DEFAULT_PICKUP_RADIUS_MILES", "GEOCODER_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    settings = config.Settings(_env_file=None)

    assert settings.db_host == "localhost"
    assert settings.db_port == 5432
    assert settings.db_name == "load_hunter"
    assert settings.default_pickup_radius_miles == EXPECTED_RADIUS
    assert settings.backfill_lookback_minutes == EXPECTED_LOOKBACK_MINUTES
    assert settings.missed_threshold_minutes == EXPECTED_LOOKBACK_MINUTES
    assert settings.expiry_fallback_minutes == EXPECTED_FALLBACK_MINUTES
    assert settings.notify_channel == "load_hunter_events"
    assert settings.geocoder_token is None


def test_settings_read_upper_case_environment(monkeypatch) -> None:
    monkeypatch.setenv("DB_HOST", "db.internal")
    monkeypatch.setenv("MATCH_BATCH_SIZE", "250")
    monkeypatch.setenv("LOG_JSON", "true")

    settings = config.Settings(_env_file=None)

    assert settings.db_host == "db.internal"
    assert settings.match_batch_size == 250
    assert settings.log_json is True


def test_get_settings_is_cached() -> None:
    config.get_settings.cache_clear()
    try:
        assert config.get_settings() is config.get_settings()
    finally:
        config.get_settings.cache_clear()


def test_profile_block_measures_time() -> None:
    with profiler.profile_block("sleep") as stats:
        sleep(0.05)

    assert stats.duration_seconds >= 0.05
    extra = stats.as_log_extra()
    assert extra["tick"] == "sleep"
    assert extra["duration_ms"] >= 50
    if stats.rss_bytes is not None:
        assert extra["rss_bytes"] > 0


def test_profile_block_can_skip_rss() -> None:
    with profiler.profile_block("no-rss", measure_rss=False) as stats:
        pass

    assert stats.rss_bytes is None
    assert "rss_bytes" not in stats.as_log_extra()
