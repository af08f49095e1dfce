"""Runtime configuration."""

from __future__ import annotations

import os
import pathlib
from dataclasses import dataclass

DEFAULT_DATABASE_URL = "postgresql://user:pass@db:5432/commissions"
DEFAULT_STRIPE_API_BASE = "https://api.stripe.com"
DEFAULT_RULES_PATH = pathlib.Path(__file__).parent / "ingest" / "rules.yml"


@dataclass(slots=True, frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    stripe_secret_key: str | None = None
    stripe_api_base: str = DEFAULT_STRIPE_API_BASE
    stripe_page_size: int = 100
    stripe_rate_limit: float = 20.0
    sync_stale_seconds: int = 60 * 60
    sync_batch_size: int = 50
    sync_schedule_minutes: int = 60
    redis_url: str = "redis://redis:6379/0"
    rules_path: pathlib.Path = DEFAULT_RULES_PATH

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables; call load_dotenv() first if needed."""
        env = os.environ
        return cls(
            database_url=env.get("DATABASE_URL", DEFAULT_DATABASE_URL),
            stripe_secret_key=env.get("STRIPE_SECRET_KEY") or None,
            stripe_api_base=env.get("STRIPE_API_BASE", DEFAULT_STRIPE_API_BASE).rstrip("/"),
            stripe_page_size=int(env.get("STRIPE_PAGE_SIZE", 100)),
            stripe_rate_limit=float(env.get("STRIPE_RATE_LIMIT", 20.0)),
            sync_stale_seconds=int(env.get("SYNC_STALE_SECONDS", 60 * 60)),
            sync_batch_size=int(env.get("SYNC_BATCH_SIZE", 50)),
            sync_schedule_minutes=int(env.get("SYNC_SCHEDULE_MINUTES", 60)),
            redis_url=env.get("REDIS_URL", "redis://redis:6379/0"),
            rules_path=pathlib.Path(env.get("RULES_PATH", DEFAULT_RULES_PATH)),
        )

    @property
    def has_stripe_key(self) -> bool:
        return bool(self.stripe_secret_key)
