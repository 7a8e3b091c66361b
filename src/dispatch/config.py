"""Application configuration and settings management."""

from pathlib import Path
from typing import Any, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="DISPATCH_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Batch Dispatch Engine API"
    api_prefix: str = "/api"
    data_root: Path = Field(default=Path("data"), description="Root directory for route reports.")
    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    # Depot
    depot_name: str = "Main Depot"
    depot_latitude: float = Field(default=8.4542, ge=-90.0, le=90.0)
    depot_longitude: float = Field(default=124.6319, ge=-180.0, le=180.0)

    # Batching
    batch_capacity_kg: float = Field(default=5000.0, gt=0.0, description="Hard weight ceiling of a batch.")
    assignment_threshold_kg: float = Field(
        default=3500.0,
        gt=0.0,
        description="Minimum batch weight before a driver is assigned.",
    )
    merge_radius_km: float = Field(default=5.0, ge=0.0)

    # Service day and scheduling
    service_timezone: str = "Asia/Manila"
    service_day_start_hour: int = Field(default=8, ge=0, le=23)
    consolidation_cutoff_hour: Optional[int] = Field(
        default=20,
        ge=0,
        le=23,
        description="Local hour after which the day's pending batches are released for delivery.",
    )
    cycle_interval_seconds: float = Field(default=15.0, gt=0.0)
    scheduler_enabled: bool = False
    driver_role: str = "driver"

    # Route optimizer
    optimizer_population_size: int = Field(default=120, ge=4)
    optimizer_max_generations: int = Field(default=400, ge=1)
    optimizer_mutation_rate: float = Field(default=0.02, ge=0.0, le=1.0)
    optimizer_elite_count: int = Field(default=10, ge=1)
    optimizer_patience: int = Field(default=50, ge=1)
    optimizer_refinement_iterations: int = Field(default=10, ge=0)
    optimizer_time_limit_seconds: Optional[float] = Field(default=None, gt=0.0)
    optimizer_seed: Optional[int] = None
    optimizer_workers: int = Field(default=2, ge=1)
    average_speed_kmh: float = Field(default=30.0, gt=0.0)
    service_minutes_per_stop: float = Field(default=20.0, ge=0.0)
    road_distance_factor: float = Field(
        default=1.2,
        ge=1.0,
        description="Multiplier applied to great-circle distance to approximate driving distance.",
    )
    fuel_km_per_liter: float = Field(default=10.0, gt=0.0)
    fuel_price_per_liter: float = Field(default=60.0, ge=0.0)
    persist_route_reports: bool = False

    # Notifications
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Endpoint receiving batch.assigned / batch.delivered events.",
    )
    notification_max_retries: int = Field(default=3, ge=0)
    notification_backoff_seconds: float = Field(default=1.0, ge=0.0)
    notification_timeout_seconds: float = Field(default=10.0, gt=0.0)

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )

    @field_validator("data_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

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
