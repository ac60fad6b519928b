"""
config.py — Grill Monitor application settings.

Usage:
    from grillmon.config import settings
    print(settings.session_dir)

Only main.py and client.py read settings; every other component receives its
intervals, retention windows and paths as constructor arguments.
"""
from pathlib import Path
from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Silently ignore any extra env vars
    )

    # --- Environment ---
    # Selects the durable-storage root (see session_dir)
    environment: Literal["development", "production"] = "development"
    session_dir_development: str = "data/sessions"
    session_dir_production: str = "/var/lib/grill-monitor/sessions"

    # --- Session lifetime & history retention ---
    session_max_age_hours: float = 24
    history_retention_hours: float = 24
    history_max_readings: int = 17280     # 24h of readings at 5s
    reading_interval_seconds: float = 5.0

    # --- Sync ---
    sync_interval_seconds: float = 10.0
    sync_min_interval_seconds: float = 5.0
    max_backups: int = 50

    # --- Local cache ---
    local_cache_backend: Literal["file", "redis"] = "file"
    local_cache_path: str = "data/local/session_cache.json"
    redis_url: str = "redis://localhost:6379"

    # --- Device client ---
    server_url: str = "http://localhost:8000"
    http_timeout_seconds: float = 10.0

    # --- Sensor feed ---
    # Node-RED style upstream; empty string disables the upstream poll
    sensor_upstream_url: str = ""

    # --- Weather (Open-Meteo) ---
    weather_latitude: float = 47.6833
    weather_longitude: float = 13.0933
    weather_timezone: str = "Europe/Vienna"
    weather_location_label: str = "Hallein, Salzburg, Austria"

    # --- CORS ---
    # Comma-separated list of allowed dashboard origins
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    # --- Application ---
    debug: bool = False
    app_version: str = "0.1.0"

    @property
    def session_dir(self) -> Path:
        """Durable session root for the active environment."""
        if self.environment == "production":
            return Path(self.session_dir_production)
        return Path(self.session_dir_development)

    @property
    def cors_origins_list(self) -> List[str]:
        """Split comma-separated CORS origins into a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


# Module-level singleton: import this throughout the codebase
settings = Settings()
