"""Service bootstrap: build the FastAPI app, its router and optional database."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
import re

from fastapi import FastAPI

from routekit.core.config import ServiceConfig
from routekit.core.config import get_logging_settings
from routekit.core.errors import ErrorCatalog
from routekit.core.logging import Logger
from routekit.core.logging import setup_logging
from routekit.db.base import Database
from routekit.routing.router import Router

_NON_WORD = re.compile(r"[^a-zA-Z0-9_]")


def service_uri(name: str) -> str:
    """``"Billing Service!"`` -> ``"billing_service"``; only the first space becomes ``_``."""
    return _NON_WORD.sub("", name.replace(" ", "_", 1)).lower()


@dataclass
class Service:
    """Handles a service needs after ``init``: app, router and database."""

    config: ServiceConfig
    app: FastAPI
    router: Router
    database: Database | None = None


def init(config: ServiceConfig, errors: Mapping[str, Mapping[str, Any]] | None = None) -> Service:
    """Initialize a service from a minimal configuration; most values come from the environment."""
    setup_logging(get_logging_settings())
    Logger.init(config.name, config.extra_decorators)

    database: Database | None = None
    if config.database:
        database = Database()
        database.init(config.database_config, service_uri(config.name))

    app = FastAPI(title=config.name, version=config.version or "0.1.0")
    router = Router(app, namespace=config.service_root_uri, catalog=ErrorCatalog())
    if errors:
        router.register_errors(errors)
    app.state.router = router
    return Service(config=config, app=app, router=router, database=database)


def finalize(service: Service) -> FastAPI:
    """Attach the trailing error and not-found handlers once every route is registered."""
    service.router.finalize()
    return service.app
