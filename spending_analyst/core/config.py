"""Application configuration primitives."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _load_env(dotenv_path: Optional[Path] = None) -> None:
    """Load the .env file once for the process."""

    if getattr(_load_env, "_loaded", False):  # type: ignore[attr-defined]
        return

    load_dotenv(dotenv_path)
    setattr(_load_env, "_loaded", True)  # type: ignore[attr-defined]


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection details for the hosted Postgres instance."""

    driver: str = "postgresql+psycopg"
    user: str = "postgres"
    password: str = ""
    host: str = "127.0.0.1"
    port: int = 5432
    name: str = "postgres"
    url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "DatabaseSettings":
        """Instantiate settings using environment overrides when present."""

        defaults = cls()
        return cls(
            driver=os.getenv("DB_DRIVER", defaults.driver),
            user=os.getenv("DB_USER", defaults.user),
            password=os.getenv("DB_PASSWORD", defaults.password),
            host=os.getenv("DB_HOST", defaults.host),
            port=int(os.getenv("DB_PORT", defaults.port)),
            name=os.getenv("DB_NAME", defaults.name),
            url=os.getenv("DATABASE_URL") or None,
        )

    @property
    def sqlalchemy_url(self) -> str:
        """Return a SQLAlchemy compatible URL.

        A full ``DATABASE_URL`` (as handed out by Supabase) wins over the
        individual parts.
        """

        if self.url:
            if self.url.startswith("postgres://"):
                return "postgresql+psycopg://" + self.url[len("postgres://"):]
            if self.url.startswith("postgresql://"):
                return "postgresql+psycopg://" + self.url[len("postgresql://"):]
            return self.url

        if self.password:
            credentials = f"{self.user}:{self.password}"
        else:
            credentials = self.user
        return f"{self.driver}://{credentials}@{self.host}:{self.port}/{self.name}"

    @property
    def masked_url(self) -> str:
        """URL safe to write to logs."""

        if self.url:
            return f"{self.sqlalchemy_url.split('@', 1)[-1]} (from DATABASE_URL)"
        pwd = "***" if self.password else ""
        return f"{self.driver}://{self.user}:{pwd}@{self.host}:{self.port}/{self.name}"


@dataclass(frozen=True)
class Settings:
    """Container for application configuration."""

    database: DatabaseSettings
    sqlalchemy_echo: bool = False
    log_level: str = "INFO"
    log_dir: Optional[Path] = Path("logs")

    @classmethod
    def from_env(cls, dotenv_path: Optional[Path] = None) -> "Settings":
        """Build ``Settings`` using environment variables (optionally from ``.env``)."""

        _load_env(dotenv_path)

        database = DatabaseSettings.from_env()

        sqlalchemy_echo = os.getenv("SQLALCHEMY_ECHO", "false").lower() == "true"
        raw_log_dir = os.getenv("LOG_DIR", "logs").strip()

        return cls(
            database=database,
            sqlalchemy_echo=sqlalchemy_echo,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_dir=Path(raw_log_dir) if raw_log_dir else None,
        )


@lru_cache()
def get_settings(dotenv_path: Optional[Path] = None) -> Settings:
    """Return a cached settings instance."""

    return Settings.from_env(dotenv_path=dotenv_path)
