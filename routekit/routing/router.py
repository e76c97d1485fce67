"""Versioned route registration with a fixed middleware order per route."""

from __future__ import annotations

from collections.abc import Mapping
from collections.abc import Sequence
from dataclasses import dataclass
from dataclasses import field
from typing import Any

from fastapi import FastAPI

from routekit.core.errors import ErrorCatalog
from routekit.core.errors import ErrorNormalizer
from routekit.core.errors import register_error_handlers
from routekit.core.logging import Logger
from routekit.routing.context import ChainStep
from routekit.routing.context import ErrorMiddleware
from routekit.routing.context import Middleware
from routekit.routing.context import MiddlewareChain
from routekit.routing.context import build_endpoint
from routekit.routing.context import error_step
from routekit.routing.context import step
from routekit.routing.parsing import BodyParseGuard
from routekit.routing.parsing import JsonBodyParser
from routekit.routing.responses import Handler
from routekit.routing.responses import ResponseAdapter
from routekit.routing.validation import RequestValidator
from routekit.routing.validation import SchemaConfig

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE")


@dataclass
class RouteConfig:
    """Optional per-route middleware and schema configuration."""

    schema_config: SchemaConfig | Mapping[str, Any] | None = None
    security_middlewares: Sequence[Middleware] = ()
    parser_middlewares: Sequence[Middleware] | None = None
    error_middleware: ErrorMiddleware | None = None
    handler_middlewares: Sequence[Middleware] = ()

    @classmethod
    def coerce(cls, config: RouteConfig | Mapping[str, Any] | None) -> RouteConfig:
        if config is None:
            return cls()
        if isinstance(config, RouteConfig):
            return config
        unknown = set(config) - set(cls.__dataclass_fields__)
        if unknown:
            raise ValueError(f"unknown route config keys: {sorted(unknown)}")
        return cls(**config)


@dataclass(frozen=True)
class RegisteredRoute:
    method: str
    path: str
    chain: MiddlewareChain = field(repr=False)


def parse_route(route: str) -> str:
    """Strip a single leading ``/``; inner separators stay."""
    if route.startswith("/"):
        return route[1:]
    return route


def compose_route(root: str, namespace: str | None, route: str) -> str:
    if not namespace:
        return f"/{root}/{parse_route(route)}"
    return f"/{root}/{namespace}/{parse_route(route)}"


class Router:
    """Compose per-route middleware chains and bind them to a FastAPI app."""

    def __init__(
        self,
        app: FastAPI,
        namespace: str = "",
        catalog: ErrorCatalog | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.app = app
        self.namespace = namespace or ""
        self.catalog = catalog or ErrorCatalog()
        self.logger = logger or Logger("Utils:Routing")
        self.normalizer = ErrorNormalizer(self.catalog)
        self.validator = RequestValidator()
        self.responses = ResponseAdapter()
        self.body_parse_guard = BodyParseGuard(JsonBodyParser(), self.catalog)
        self.routes: list[RegisteredRoute] = []
        self._finalized = False

    @property
    def finalized(self) -> bool:
        return self._finalized

    def register_errors(self, entries: Mapping[str, Mapping[str, Any]]) -> None:
        """Merge service-specific error descriptors into this router's catalog."""
        self._ensure_open("register_errors")
        self.catalog.register(entries)

    def aggregate_middlewares(self, config: RouteConfig) -> list[ChainStep]:
        """Security, then parsing, then the custom error middleware, then handler middlewares."""
        steps = [step(fn) for fn in config.security_middlewares]
        if config.parser_middlewares:
            steps.extend(step(fn) for fn in config.parser_middlewares)
        else:
            steps.append(step(self.body_parse_guard))
        if config.error_middleware is not None:
            steps.append(error_step(config.error_middleware))
        steps.extend(step(fn) for fn in config.handler_middlewares)
        return steps

    def compose_chain(self, handler: Handler, config: RouteConfig) -> MiddlewareChain:
        steps = self.aggregate_middlewares(config)
        steps.extend(
            [
                step(self.validator.build(config.schema_config)),
                step(self.responses.wrap(handler)),
                error_step(self.normalizer.handle),
            ]
        )
        return MiddlewareChain(steps)

    def register(
        self,
        method: str,
        version: int,
        path: str,
        handler: Handler,
        config: RouteConfig | Mapping[str, Any] | None = None,
    ) -> str:
        """Bind ``handler`` at ``/v{version}/{namespace}/{path}`` and return that path."""
        self._ensure_open("register")
        method = method.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"unsupported HTTP method {method!r}")

        route_config = RouteConfig.coerce(config)
        composed = compose_route(f"v{version}", self.namespace, path)
        self.validator.check_config(route_config.schema_config, composed)

        chain = self.compose_chain(handler, route_config)
        self.app.add_api_route(
            composed,
            build_endpoint(chain),
            methods=[method],
            name=f"{method.lower()} {composed}",
            response_model=None,
        )
        self.routes.append(RegisteredRoute(method=method, path=composed, chain=chain))
        self.logger.debug("route registered", {"method": method, "route": composed, "steps": len(chain)})
        return composed

    def get(self, path: str, version: int, handler: Handler, config: RouteConfig | Mapping[str, Any] | None = None) -> str:
        return self.register("GET", version, path, handler, config)

    def post(self, path: str, version: int, handler: Handler, config: RouteConfig | Mapping[str, Any] | None = None) -> str:
        return self.register("POST", version, path, handler, config)

    def put(self, path: str, version: int, handler: Handler, config: RouteConfig | Mapping[str, Any] | None = None) -> str:
        return self.register("PUT", version, path, handler, config)

    def delete(self, path: str, version: int, handler: Handler, config: RouteConfig | Mapping[str, Any] | None = None) -> str:
        return self.register("DELETE", version, path, handler, config)

    def finalize(self) -> None:
        """Attach the catch-all error handler and the not-found handler; call once, last."""
        self._ensure_open("finalize")
        register_error_handlers(self.app, self.normalizer)
        self._finalized = True
        self.logger.info("routing finalized", {"routes": len(self.routes)})

    def _ensure_open(self, operation: str) -> None:
        if self._finalized:
            raise RuntimeError(f"{operation}() called after finalize()")
