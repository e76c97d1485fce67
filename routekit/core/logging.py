"""Structured logging with service/component decorators.

Every record carries a ``decorators`` mapping built from the process-wide
defaults (``service``), the component decorators and the per-call
decorators, in that order of precedence. ``component`` and ``service``
always come from the logger itself.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from datetime import timezone
from typing import Any
import json
import logging

from routekit.core.config import LoggingSettings

UNKNOWN_SERVICE = "unknown service"

DEBUG = "debug"
INFO = "info"
WARNING = "warning"
ERROR = "error"
CRITICAL = "critical"

_LEVELS = {
    DEBUG: logging.DEBUG,
    INFO: logging.INFO,
    WARNING: logging.WARNING,
    ERROR: logging.ERROR,
    CRITICAL: logging.CRITICAL,
}


class Logger:
    """Leveled logger that decorates each record with service context."""

    default_decorators: dict[str, Any] = {"service": ""}

    def __init__(self, component: str, decorators: Mapping[str, Any] | None = None) -> None:
        self.decorators: dict[str, Any] = {
            **Logger.default_decorators,
            **(decorators or {}),
            "component": component,
            "service": Logger.default_decorators.get("service", ""),
        }
        self._logger = logging.getLogger(f"routekit.{component.lower().replace(':', '.')}")

    @classmethod
    def init(cls, service_name: str, decorators: Mapping[str, Any] | None = None) -> None:
        """Set the process-wide decorators shared by every logger."""
        cls.default_decorators = {**(decorators or {}), "service": service_name}

    def log(
        self,
        level: str,
        message: str,
        decorators: Mapping[str, Any] | None = None,
        *,
        exc_info: BaseException | None = None,
    ) -> None:
        merged = {
            **self.decorators,
            **(decorators or {}),
            "component": self.decorators["component"],
            "service": self.decorators["service"]
            or Logger.default_decorators.get("service")
            or UNKNOWN_SERVICE,
        }
        self._logger.log(
            _LEVELS[level],
            message,
            exc_info=exc_info,
            extra={"decorators": merged},
        )

    def debug(self, message: str, decorators: Mapping[str, Any] | None = None) -> None:
        self.log(DEBUG, message, decorators)

    def info(self, message: str, decorators: Mapping[str, Any] | None = None) -> None:
        self.log(INFO, message, decorators)

    def warn(self, error: BaseException, decorators: Mapping[str, Any] | None = None) -> None:
        self.log(WARNING, _describe(error), decorators)

    def error(self, error: BaseException, decorators: Mapping[str, Any] | None = None) -> None:
        self.log(ERROR, _describe(error), decorators, exc_info=error)

    def critical(self, error: BaseException, decorators: Mapping[str, Any] | None = None) -> None:
        self.log(CRITICAL, _describe(error), decorators, exc_info=error)


def _describe(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"


class JSONFormatter(logging.Formatter):
    """Format records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        decorators = record.__dict__.get("decorators")
        if isinstance(decorators, Mapping):
            for key, value in decorators.items():
                log.setdefault(key, value)
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Human readable format that appends decorators as key=value pairs."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        decorators = record.__dict__.get("decorators")
        if not isinstance(decorators, Mapping):
            return line
        pairs = " ".join(f"{key}={value}" for key, value in decorators.items())
        return f"{line} | {pairs}"


def setup_logging(settings: LoggingSettings) -> None:
    """Configure the root logger once on startup."""
    handler = logging.StreamHandler()
    if settings.fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter())
    root = logging.getLogger()
    for existing in list(root.handlers):
        if getattr(existing, "_routekit", False):
            root.removeHandler(existing)
    handler._routekit = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.level.upper(), logging.INFO))
