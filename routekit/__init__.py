"""Versioned routing and canonical JSON error responses for FastAPI services."""

from routekit.core.config import DatabaseSettings
from routekit.core.config import ServiceConfig
from routekit.core.errors import CataloguedError
from routekit.core.errors import ErrorCatalog
from routekit.core.errors import ErrorNormalizer
from routekit.core.logging import Logger
from routekit.routing.context import RequestContext
from routekit.routing.responses import ResponseBuilder
from routekit.routing.router import RouteConfig
from routekit.routing.router import Router
from routekit.routing.validation import SchemaConfig
from routekit.service import Service
from routekit.service import finalize
from routekit.service import init

__all__ = [
    "CataloguedError",
    "DatabaseSettings",
    "ErrorCatalog",
    "ErrorNormalizer",
    "Logger",
    "RequestContext",
    "ResponseBuilder",
    "RouteConfig",
    "Router",
    "SchemaConfig",
    "Service",
    "ServiceConfig",
    "finalize",
    "init",
]
