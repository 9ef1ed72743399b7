"""Application configuration and settings management."""

from pathlib import Path
from typing import Any

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="COLDCHAIN_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Cold Chain Risk Service"
    api_prefix: str = "/api"
    data_root: Path = Field(default=Path("data"), description="Root directory for exported reports.")
    log_level: str = Field(default="INFO", description="Root log level for the service.")

    vehicle_lookback_hours: float = Field(default=24.0, gt=0)
    environment_window_hours: float = Field(default=6.0, gt=0)
    historical_window_days: int = Field(default=30, ge=1)

    average_speed_kmh: float = Field(default=60.0, gt=0, description="Average road speed used for duration estimates.")
    stop_dwell_hours: float = Field(default=0.5, ge=0, description="Service time spent at each stop.")
    eta_minutes_per_stop: int = Field(default=75, ge=1, description="Dwell plus travel minutes budgeted per remaining stop.")

    early_warning_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    critical_warning_threshold: float = Field(default=0.8, ge=0.0, le=1.0)

    default_max_risk: float = Field(default=80, ge=0, le=100)
    default_max_cost: float = Field(default=10000.0, gt=0)
    default_max_transit_hours: float = Field(default=24.0, gt=0)

    batch_max_workers: int = Field(default=8, ge=1)

    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    @field_validator("data_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value: Any) -> str:
        return str(value).strip().upper() or "INFO"

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()


settings = Settings()
