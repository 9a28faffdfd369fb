import os
import logging
from datetime import timedelta
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class CollaborationSettings(BaseModel):
    """Tunables for edge generation, path caching and trend scoring."""

    database_url: Optional[str] = None
    performer_performer_cap: int = Field(10, ge=0)
    performer_director_cap: int = Field(20, ge=0)
    key_crew_roles: List[str]
    path_cache_ttl: timedelta = timedelta(days=7)
    trend_window_years: int = Field(2, ge=0)
    trend_half_life_years: float = Field(1.0, gt=0)
    trend_baseline_years: int = Field(10, ge=1)
    max_path_depth: int = Field(6, ge=1)
    apply_workers: int = Field(4, ge=1)
    job_stale_after: timedelta = timedelta(hours=6)

    @field_validator("key_crew_roles")
    @classmethod
    def normalize_roles(cls, roles: List[str]) -> List[str]:
        return sorted({role.strip().lower() for role in roles if role and role.strip()})

    @classmethod
    def from_env(cls) -> "CollaborationSettings":
        """Build settings from environment variables.

        KEY_CREW_ROLES has no default: the allow-list decides which crew
        credits generate edges, so it must be set explicitly (an empty
        value means no key crew).
        """
        key_crew_roles = os.getenv("KEY_CREW_ROLES")
        if key_crew_roles is None:
            raise ValueError("KEY_CREW_ROLES environment variable not set")

        return cls(
            database_url=os.getenv("DATABASE_URL"),
            performer_performer_cap=int(os.getenv("PERFORMER_PERFORMER_CAP", "10")),
            performer_director_cap=int(os.getenv("PERFORMER_DIRECTOR_CAP", "20")),
            key_crew_roles=key_crew_roles.split(","),
            path_cache_ttl=timedelta(days=float(os.getenv("PATH_CACHE_TTL_DAYS", "7"))),
            trend_window_years=int(os.getenv("TREND_WINDOW_YEARS", "2")),
            trend_half_life_years=float(os.getenv("TREND_HALF_LIFE_YEARS", "1.0")),
            trend_baseline_years=int(os.getenv("TREND_BASELINE_YEARS", "10")),
            max_path_depth=int(os.getenv("MAX_PATH_DEPTH", "6")),
            apply_workers=int(os.getenv("APPLY_WORKERS", "4")),
            job_stale_after=timedelta(minutes=float(os.getenv("JOB_STALE_AFTER_MINUTES", "360"))),
        )


@lru_cache
def get_settings() -> CollaborationSettings:
    """Provide the process-wide settings for dependency injection."""
    settings = CollaborationSettings.from_env()
    logger.info(
        f"Loaded settings: caps=({settings.performer_performer_cap}, {settings.performer_director_cap}), "
        f"key crew roles={settings.key_crew_roles}"
    )
    return settings
