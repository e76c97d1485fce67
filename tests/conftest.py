"""Shared pytest fixtures for routekit test suites."""

from collections.abc import Generator
from pathlib import Path
import sys

import pytest
from fastapi import FastAPI

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from routekit.core.logging import Logger  # noqa: E402
from routekit.routing.router import Router  # noqa: E402


@pytest.fixture(autouse=True)
def restore_logger_defaults() -> Generator[None, None, None]:
    """Keep service decorators set by one test from leaking into the next."""
    saved = dict(Logger.default_decorators)
    yield
    Logger.default_decorators = saved


@pytest.fixture(autouse=True)
def clean_database_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "DATABASE_HOST",
        "DATABASE_PORT",
        "DATABASE_USERNAME",
        "DATABASE_PASSWORD",
        "DATABASE_NAME",
        "DATABASE_CONNECTION_URL",
        "DATABASE_LOGGING",
        "DATABASE_MIGRATIONS_PATH",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def router() -> Router:
    """A router bound to a fresh FastAPI app, not yet finalized."""
    return Router(FastAPI(), namespace="billing")
