"""Error catalog, error normalization and exception handler registration."""

from __future__ import annotations

from collections.abc import Mapping
from copy import deepcopy
from dataclasses import dataclass
from typing import TYPE_CHECKING
from typing import Any
import re
import uuid

from fastapi import FastAPI
from fastapi import Request
from fastapi import status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from routekit.core.logging import WARNING
from routekit.core.logging import Logger
from routekit.schemas.error import ErrorEnvelope

if TYPE_CHECKING:
    from routekit.routing.context import RequestContext

NOT_FOUND = "NotFound"
UNEXPECTED_ERROR = "UnexpectedError"
INVALID_REQUEST = "InvalidRequest"
UNAUTHORISED = "Unauthorised"

REQUEST_ID_HEADER = "x-request-id"

_UNEXPECTED_MESSAGE = "There was an unexpected error. We have been alerted and are looking into it."

BUILTIN_ERRORS: dict[str, dict[str, Any]] = {
    NOT_FOUND: {
        "message": "The resource you are looking for does not exist",
        "statusCode": 404,
    },
    UNEXPECTED_ERROR: {
        "message": _UNEXPECTED_MESSAGE,
        "statusCode": 500,
    },
    INVALID_REQUEST: {
        "message": "Invalid request",
        "statusCode": 400,
    },
    "InvalidRequest.charset.unsupported": {
        "message": "Unsupported charset",
        "statusCode": 415,
    },
    "InvalidRequest.encoding.unsupported": {
        "message": "Content encoding unsupported",
        "statusCode": 415,
    },
    "InvalidRequest.entity.parse.failed": {
        "message": "Invalid request",
        "statusCode": 400,
    },
    "InvalidRequest.entity.too.large": {
        "message": "Request entity too large",
        "statusCode": 413,
    },
    "InvalidRequest.request.aborted": {
        "message": "Request aborted",
        "statusCode": 400,
    },
    "InvalidRequest.request.size.invalid": {
        "message": "Request size did not match content length",
        "statusCode": 400,
    },
    "InvalidRequest.stream.encoding.set": {
        "message": _UNEXPECTED_MESSAGE,
        "statusCode": 500,
    },
    "InvalidRequest.parameters.too.many": {
        "message": "Too many parameters",
        "statusCode": 413,
    },
    UNAUTHORISED: {
        "message": "You are not authorised to access this resource",
        "statusCode": 401,
    },
}

_WORD_PATTERN = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|[0-9]+")


class CataloguedError(Exception):
    """Error naming a catalog key, with optional details merged over its descriptor."""

    def __init__(self, code: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(code)
        self.code = code
        self.details = dict(details) if details is not None else None


class NotFoundError(CataloguedError):
    """Convenience exception for missing resources."""

    def __init__(self, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(NOT_FOUND, details=details)


class UnauthorisedError(CataloguedError):
    """Convenience exception for rejected credentials."""

    def __init__(self, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(UNAUTHORISED, details=details)


@dataclass(frozen=True)
class Catalogued:
    code: str
    details: dict[str, Any] | None
    original: BaseException | str


@dataclass(frozen=True)
class Unrecognized:
    original: BaseException | str


def to_err_code(key: str) -> str:
    """Upper snake case of a catalog key: ``InvalidRequest.entity`` -> ``INVALID_REQUEST_ENTITY``."""
    return "_".join(word.upper() for word in _WORD_PATTERN.findall(key))


def deep_merge(target: dict[str, Any], *sources: Mapping[str, Any] | None) -> dict[str, Any]:
    """Merge ``sources`` into ``target`` key by key, recursing into mappings.

    A ``None`` source value never replaces an existing value.
    """
    for source in sources:
        if not source:
            continue
        for key, value in source.items():
            current = target.get(key)
            if isinstance(value, Mapping):
                if not isinstance(current, dict):
                    current = {}
                target[key] = deep_merge(current, value)
            elif value is None and key in target:
                continue
            else:
                target[key] = deepcopy(value)
    return target


class ErrorCatalog:
    """Mapping of error codes to canonical ``{message, statusCode, err_code}`` descriptors.

    Populate during startup only; concurrent requests read it without locking.
    """

    def __init__(self, entries: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._entries: dict[str, dict[str, Any]] = {}
        self.register(BUILTIN_ERRORS)
        if entries:
            self.register(entries)

    def register(self, entries: Mapping[str, Mapping[str, Any]]) -> None:
        """Merge service entries, overriding existing descriptors field by field."""
        for key, entry in entries.items():
            if not isinstance(entry, Mapping):
                raise TypeError(f"error catalog entry {key!r} must be a mapping")
        deep_merge(self._entries, entries)
        for key, descriptor in self._entries.items():
            descriptor["err_code"] = to_err_code(key)

    def resolve(self, code: str) -> dict[str, Any] | None:
        """Return a copy of the descriptor registered under ``code``."""
        descriptor = self._entries.get(code)
        if descriptor is None:
            return None
        return deepcopy(descriptor)

    def __contains__(self, code: object) -> bool:
        return code in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def codes(self) -> list[str]:
        return list(self._entries)


def clamp_status_code(raw: Any) -> int:
    """Return ``raw`` as an HTTP status, forcing 500 outside ``[100, 599]``."""
    try:
        status_code = int(raw)
    except (TypeError, ValueError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    if status_code < 100 or status_code > 599:
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status_code


def original_url(request: Request) -> str:
    """Requested path including the query string."""
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


class ErrorNormalizer:
    """Single terminal point turning any failure into the JSON error envelope."""

    def __init__(self, catalog: ErrorCatalog, logger: Logger | None = None) -> None:
        self.catalog = catalog
        self.logger = logger or Logger("Routing:Errors")

    def classify(self, error: BaseException | str) -> Catalogued | Unrecognized:
        if isinstance(error, CataloguedError):
            return Catalogued(code=error.code, details=error.details, original=error)
        if isinstance(error, str) and error in self.catalog:
            return Catalogued(code=error, details=None, original=error)
        return Unrecognized(original=error)

    def describe(self, error: BaseException | str) -> dict[str, Any]:
        """Resolve ``error`` to a descriptor, falling back to ``UnexpectedError``."""
        kind = self.classify(error)
        if isinstance(kind, Catalogued):
            descriptor = self.catalog.resolve(kind.code)
            if descriptor is not None:
                return deep_merge(descriptor, kind.details)
        return self.catalog.resolve(UNEXPECTED_ERROR) or deepcopy(BUILTIN_ERRORS[UNEXPECTED_ERROR])

    def envelope(self, descriptor: Mapping[str, Any], request: Request) -> ErrorEnvelope:
        """Stamp a fresh ``error_id`` and the propagated ``request_id``."""
        content = dict(descriptor)
        content["error_id"] = str(uuid.uuid4())
        request_id = request.headers.get(REQUEST_ID_HEADER)
        if request_id:
            content["request_id"] = request_id
        return ErrorEnvelope.model_validate(content)

    def respond(self, error: BaseException | str, request: Request) -> JSONResponse:
        """Build the error response for ``error`` and log it."""
        descriptor = self.describe(error)
        status_code = clamp_status_code(descriptor.get("statusCode"))
        envelope = self.envelope(descriptor, request)
        self._log(error, envelope, status_code, request)
        return JSONResponse(status_code=status_code, content=envelope.to_content())

    async def handle(self, error: BaseException | str | None, ctx: RequestContext) -> None:
        """Chain step: with no error pass through, otherwise set the terminal response."""
        if error is None:
            return
        ctx.response = self.respond(error, ctx.request)

    def not_found(self, request: Request) -> JSONResponse:
        """Standard 404 for unmatched routes, echoing the requested URI."""
        uri = original_url(request)
        descriptor = self.catalog.resolve(NOT_FOUND) or deepcopy(BUILTIN_ERRORS[NOT_FOUND])
        descriptor["uri"] = uri
        envelope = self.envelope(descriptor, request)
        self.logger.log(
            WARNING,
            "Error: NotFound",
            {"uri": uri, "response": envelope.to_content()},
        )
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=envelope.to_content())

    def _log(
        self,
        error: BaseException | str,
        envelope: ErrorEnvelope,
        status_code: int,
        request: Request,
    ) -> None:
        decorators = {
            "uri": original_url(request),
            "response": envelope.to_content(),
        }
        catalogued = isinstance(self.classify(error), Catalogued)
        if isinstance(error, str):
            error = RuntimeError(error)
        if catalogued and status_code < 500:
            self.logger.warn(error, decorators)
        else:
            self.logger.error(error, decorators)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Route misses become ``NotFound``; other HTTP errors go through the normalizer."""
    normalizer: ErrorNormalizer = request.app.state.error_normalizer
    if exc.status_code in (status.HTTP_404_NOT_FOUND, status.HTTP_405_METHOD_NOT_ALLOWED):
        return normalizer.not_found(request)
    return normalizer.respond(exc, request)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for failures raised outside a composed route chain."""
    normalizer: ErrorNormalizer = request.app.state.error_normalizer
    return normalizer.respond(exc, request)


def register_error_handlers(app: FastAPI, normalizer: ErrorNormalizer) -> None:
    """Attach the catch-all error handler and then the not-found handler."""
    app.state.error_normalizer = normalizer
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
