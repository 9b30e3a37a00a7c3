"""
Configuration settings for Load Hunter.

Uses Pydantic Settings to load environment variables for database connections,
logging, geocoding, and the matching/sweep cadence.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("load_hunter", alias="DB_NAME")
    db_pool_min_size: int = Field(1, alias="DB_POOL_MIN_SIZE")
    db_pool_max_size: int = Field(10, alias="DB_POOL_MAX_SIZE")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Geocoding
    geocoder_base_url: str = Field(
        "https://api.mapbox.com/geocoding/v5/mapbox.places", alias="GEOCODER_BASE_URL"
    )
    geocoder_token: Optional[str] = Field(None, alias="GEOCODER_TOKEN")
    geocoder_timeout_seconds: float = Field(5.0, alias="GEOCODER_TIMEOUT_SECONDS")
    geocoder_country: str = Field("US", alias="GEOCODER_COUNTRY")
    # 0 keeps every resolution for the life of the process
    geocode_cache_max_entries: int = Field(0, alias="GEOCODE_CACHE_MAX_ENTRIES")

    # Matching
    default_pickup_radius_miles: float = Field(100.0, alias="DEFAULT_PICKUP_RADIUS_MILES")
    backfill_lookback_minutes: int = Field(15, alias="BACKFILL_LOOKBACK_MINUTES")
    missed_threshold_minutes: int = Field(15, alias="MISSED_THRESHOLD_MINUTES")
    expiry_fallback_minutes: int = Field(120, alias="EXPIRY_FALLBACK_MINUTES")
    match_batch_size: int = Field(500, alias="MATCH_BATCH_SIZE")
    vehicle_type_map_path: Optional[str] = Field(None, alias="VEHICLE_TYPE_MAP_PATH")

    # Worker cadence
    forward_sweep_seconds: float = Field(60.0, alias="FORWARD_SWEEP_SECONDS")
    lifecycle_sweep_seconds: float = Field(30.0, alias="LIFECYCLE_SWEEP_SECONDS")
    notify_channel: str = Field("load_hunter_events", alias="NOTIFY_CHANNEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
