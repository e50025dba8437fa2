"""Application configuration - frozen settings read from env vars (and .env)."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent / ".env")


def _env(key: str, default: str) -> str:
    """Read env var with default."""
    return os.environ.get(key, default)


@dataclass(frozen=True)
class Settings:
    app_name: str = "CivicGuard API"
    version: str = "1.0.0"

    # Auth: HS256 bearer tokens
    jwt_secret: str = "dev-secret-change"
    jwt_alg: str = "HS256"
    jwt_expire_minutes: int = 60 * 24 * 14  # 14 days

    # Record store
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "civicguard"

    # Object storage: one directory per bucket under storage_root
    storage_root: str = "./data/storage"
    public_base_url: str = "http://localhost:8000"

    cors_allow_origins: str = "*"
    log_level: str = "INFO"

    # Upload limits (bytes)
    max_photo_bytes: int = 10 * 1024 * 1024
    max_avatar_bytes: int = 5 * 1024 * 1024

    leaderboard_size: int = 50

    # Wizard sessions: idle and post-submit lifetimes (seconds), and a hard cap
    wizard_idle_seconds: int = 60 * 60
    wizard_submitted_seconds: int = 5 * 60
    wizard_max_sessions: int = 1000

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]


def load_settings() -> Settings:
    """Build Settings from the environment."""
    return Settings(
        app_name=_env("APP_NAME", Settings.app_name),
        jwt_secret=_env("JWT_SECRET", Settings.jwt_secret),
        jwt_expire_minutes=int(_env("JWT_EXPIRE_MINUTES", str(Settings.jwt_expire_minutes))),
        database_url=_env("DATABASE_URL", Settings.database_url),
        database_name=_env("DATABASE_NAME", Settings.database_name),
        storage_root=_env("STORAGE_ROOT", Settings.storage_root),
        public_base_url=_env("PUBLIC_BASE_URL", Settings.public_base_url).rstrip("/"),
        cors_allow_origins=_env("CORS_ALLOW_ORIGINS", Settings.cors_allow_origins),
        log_level=_env("LOG_LEVEL", Settings.log_level),
        max_photo_bytes=int(_env("MAX_PHOTO_BYTES", str(Settings.max_photo_bytes))),
        max_avatar_bytes=int(_env("MAX_AVATAR_BYTES", str(Settings.max_avatar_bytes))),
        leaderboard_size=int(_env("LEADERBOARD_SIZE", str(Settings.leaderboard_size))),
        wizard_idle_seconds=int(_env("WIZARD_IDLE_SECONDS", str(Settings.wizard_idle_seconds))),
        wizard_submitted_seconds=int(_env("WIZARD_SUBMITTED_SECONDS", str(Settings.wizard_submitted_seconds))),
        wizard_max_sessions=int(_env("WIZARD_MAX_SESSIONS", str(Settings.wizard_max_sessions))),
    )


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
        force=True,
    )
