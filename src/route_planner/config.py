"""Application configuration and settings management."""

from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="ROUTES_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "School Van Route Planner API"
    api_prefix: str = "/api"
    log_level: str = Field(default="INFO", description="Root log level applied by create_app().")

    ors_api_key: Optional[str] = Field(
        default=None,
        description="OpenRouteService API key sent verbatim in the Authorization header.",
    )
    ors_base_url: str = Field(
        default="https://api.openrouteservice.org",
        description="Base URL for the OpenRouteService API.",
    )
    ors_profile: Literal["driving-car", "driving-hgv", "cycling-regular", "foot-walking"] = Field(
        default="driving-car",
        description="Routing profile used for matrix, optimization and directions requests.",
    )
    ors_timeout_seconds: float = Field(default=30.0, gt=0.0)

    # Free tier: 40 requests/minute, 2000 requests/day
    rate_limit_per_minute: int = Field(default=40, ge=1)
    rate_limit_per_day: int = Field(default=2000, ge=1)

    retry_max_attempts: int = Field(default=3, ge=1)
    retry_initial_delay_seconds: float = Field(default=1.0, ge=0.0)
    retry_max_delay_seconds: float = Field(default=5.0, ge=0.0)
    retry_backoff_multiplier: float = Field(default=2.0, ge=1.0)

    job_service_seconds: int = Field(
        default=60,
        ge=0,
        description="Time spent at each stop for pickup or drop-off.",
    )
    enforce_pair_precedence: bool = Field(
        default=True,
        description="Keep each student's first-leg stop ahead of their second-leg stop in the solved order.",
    )

    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:8081",
            "http://127.0.0.1:8081",
            "http://localhost:19006",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )
    routes_table: str = "routes"
    students_table: str = "students"
    driver_locations_table: str = "driver_locations"

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

    @field_validator("ors_base_url", mode="after")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


settings = Settings()
