"""Service configuration helpers."""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from functools import lru_cache
import os

DEFAULT_DATABASE_DRIVERNAME = "postgresql+psycopg"
DEFAULT_DATABASE_HOST = "127.0.0.1"
DEFAULT_DATABASE_PORT = 5432
DEFAULT_MIGRATIONS_PATH = "migrations"
DEFAULT_LOG_LEVEL = "INFO"

_TRUTHY = frozenset({"true", "1"})


def _get_int_env(name: str, default: int | None) -> int | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    return int(raw)


def _get_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def redact_secret(secret: str | None) -> str:
    """Return a non-recoverable placeholder for sensitive values."""
    if not secret:
        return "<empty>"
    return "<redacted>"


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection and migration settings for the persistence layer."""

    drivername: str = DEFAULT_DATABASE_DRIVERNAME
    host: str | None = DEFAULT_DATABASE_HOST
    port: int | None = DEFAULT_DATABASE_PORT
    username: str | None = None
    password: str | None = None
    database: str | None = None
    connection_url: str | None = None
    logging: bool = False
    migrations_path: str = DEFAULT_MIGRATIONS_PATH

    def safe_for_logging(self) -> dict[str, str | int | bool | None]:
        """Return database settings safe for logs."""
        return {
            "drivername": self.drivername,
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "password": redact_secret(self.password),
            "database": self.database,
            "connection_url": redact_secret(self.connection_url),
            "logging": self.logging,
            "migrations_path": self.migrations_path,
        }


@dataclass(frozen=True)
class LoggingSettings:
    """Runtime settings for log output."""

    level: str = DEFAULT_LOG_LEVEL
    fmt: str = "text"


@dataclass(frozen=True)
class ServiceConfig:
    """Minimal service configuration; most values come from the environment."""

    name: str
    version: str | None = None
    database: bool = False
    service_root_uri: str = ""
    database_config: DatabaseSettings | None = None
    extra_decorators: dict[str, str] = field(default_factory=dict)


def collect_database_environment() -> dict[str, str | int | bool]:
    """Read database overrides that are present in the environment."""
    env: dict[str, str | int | bool] = {}
    if "DATABASE_HOST" in os.environ:
        env["host"] = os.environ["DATABASE_HOST"]
    if "DATABASE_PORT" in os.environ:
        env["port"] = _get_int_env("DATABASE_PORT", DEFAULT_DATABASE_PORT)
    if "DATABASE_USERNAME" in os.environ:
        env["username"] = os.environ["DATABASE_USERNAME"]
    if "DATABASE_PASSWORD" in os.environ:
        env["password"] = os.environ["DATABASE_PASSWORD"]
    if "DATABASE_NAME" in os.environ:
        env["database"] = os.environ["DATABASE_NAME"]
    if "DATABASE_CONNECTION_URL" in os.environ:
        env["connection_url"] = os.environ["DATABASE_CONNECTION_URL"]
    if "DATABASE_MIGRATIONS_PATH" in os.environ:
        env["migrations_path"] = os.environ["DATABASE_MIGRATIONS_PATH"]
    env["logging"] = _get_bool_env("DATABASE_LOGGING", False)
    return env


def resolve_database_settings(explicit: DatabaseSettings | None = None) -> DatabaseSettings:
    """Layer defaults, environment values and explicit settings, in that order."""
    settings = replace(DatabaseSettings(), **collect_database_environment())
    if explicit is None:
        return settings

    defaults = DatabaseSettings()
    overrides = {
        name: getattr(explicit, name)
        for name in DatabaseSettings.__dataclass_fields__
        if getattr(explicit, name) != getattr(defaults, name)
    }
    return replace(settings, **overrides)


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Load logging settings from the environment."""
    default_fmt = "json" if os.getenv("ROUTEKIT_ENV") == "production" else "text"
    return LoggingSettings(
        level=os.getenv("ROUTEKIT_LOG_LEVEL", DEFAULT_LOG_LEVEL),
        fmt=os.getenv("ROUTEKIT_LOG_FORMAT", default_fmt),
    )
