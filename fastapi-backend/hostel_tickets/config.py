"""
Centralized settings for the hostel complaint ticketing backend.

Provides a lightweight wrapper around environment variables (with `.env`
support for local development) so the rest of the codebase can import a single
`get_settings()` helper when configuration is needed. Ticket numbering and the
allocation strategy live here so every worker formats identifiers the same way.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional
import os

from dotenv import dotenv_values


TICKET_ALLOCATORS = ("sequence", "probe")


@dataclass(frozen=True)
class Settings:
    """Immutable view of application configuration."""

    # General
    environment: str
    allowed_hosts: tuple[str, ...]

    # Database (read-only; SQLModel/alembic still look at DATABASE_URL)
    database_url: str

    # Tokens
    jwt_secret: Optional[str]
    jwt_access_minutes: int

    # Ticket identifiers
    ticket_prefix: str
    ticket_width: int
    ticket_allocator: str
    ticket_max_attempts: int

    # Observability
    sentry_dsn: Optional[str]


def _env_lookup(key: str, env: dict[str, str], default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(key) or env.get(key) or default


@lru_cache()
def get_settings() -> Settings:
    """Load settings once per process."""

    env_path = Path(__file__).resolve().parents[2] / ".env"
    env_file = dotenv_values(str(env_path)) if env_path.exists() else {}

    allocator = _env_lookup("TICKET_ALLOCATOR", env_file, "sequence").strip().lower()
    if allocator not in TICKET_ALLOCATORS:
        raise ValueError(
            f"TICKET_ALLOCATOR must be one of {', '.join(TICKET_ALLOCATORS)}, got {allocator!r}"
        )

    return Settings(
        environment=_env_lookup("APP_ENV", env_file, "development"),
        allowed_hosts=tuple(
            h.strip() for h in _env_lookup("ALLOWED_HOSTS", env_file, "*").split(",") if h.strip()
        ),
        database_url=_env_lookup("DATABASE_URL", env_file, "sqlite+aiosqlite:///./hostel_tickets.db"),
        jwt_secret=_env_lookup("JWT_SECRET", env_file),
        jwt_access_minutes=int(_env_lookup("JWT_ACCESS_MINUTES", env_file, "60")),
        ticket_prefix=_env_lookup("TICKET_PREFIX", env_file, "TKT"),
        ticket_width=int(_env_lookup("TICKET_WIDTH", env_file, "6")),
        ticket_allocator=allocator,
        ticket_max_attempts=int(_env_lookup("TICKET_MAX_ATTEMPTS", env_file, "25")),
        sentry_dsn=_env_lookup("SENTRY_DSN", env_file),
    )


__all__ = ["Settings", "get_settings", "TICKET_ALLOCATORS"]
