"""quizsync configuration loaded from environment variables."""

from enum import Enum
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings

# Always resolve .env relative to the project root, no matter where the process starts
_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"


class SyncMode(str, Enum):
    LOCAL = "local"
    CLOUD = "cloud"


class Settings(BaseSettings):
    """quizsync settings; every value can come from the environment or .env."""

    # ── Runtime ─────────────────────────────────────────────────────────
    MODE: SyncMode = SyncMode.LOCAL
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # ── CORS ────────────────────────────────────────────────────────────
    CORS_ORIGINS: List[str] = ["*"]

    # ── Local store ─────────────────────────────────────────────────────
    LOCAL_DATABASE_URL: str = "sqlite:///./quizsync.db"
    DATABASE_ECHO: bool = False

    # ── Remote store (PostgREST / Supabase) ─────────────────────────────
    REMOTE_URL: str = ""
    REMOTE_API_KEY: str = ""
    REMOTE_TIMEOUT_SECONDS: float = 10.0

    # ── Background sync ─────────────────────────────────────────────────
    SYNC_WORKERS: int = 4

    # ── Celery ──────────────────────────────────────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"
    # Run tasks synchronously in-process when True (no broker needed).
    CELERY_TASK_ALWAYS_EAGER: bool = True

    # ── Adaptive‑learning knobs ─────────────────────────────────────────
    MASTERY_THRESHOLD: int = 3
    MASTERY_COOLDOWN_DAYS: int = 7
    RECENT_WRONG_DAYS: int = 3
    PRIORITY_BASE_WEIGHT: float = 1.0
    WRONG_PRIORITY_WEIGHT: float = 3.0
    RECENT_WRONG_BOOST: float = 2.0

    # ── History ─────────────────────────────────────────────────────────
    HISTORY_LIMIT: int = 20
    STUDY_TIME_HISTORY_DAYS: int = 84

    @property
    def cloud_enabled(self) -> bool:
        """Cloud mode requested *and* a remote backend is configured."""
        return (
            self.MODE == SyncMode.CLOUD
            and bool(self.REMOTE_URL)
            and bool(self.REMOTE_API_KEY)
        )

    model_config = {"env_file": str(_ENV_FILE), "env_prefix": "QUIZSYNC_", "case_sensitive": True, "extra": "ignore"}


settings = Settings()
