"""Per-request context and the ordered middleware chain runner."""

from __future__ import annotations

from collections.abc import Awaitable
from collections.abc import Callable
from collections.abc import Sequence
from dataclasses import dataclass
from dataclasses import field
from typing import Any

from fastapi import Request
from fastapi import Response

from routekit.core.errors import REQUEST_ID_HEADER
from routekit.routing.concurrency import call_step
from routekit.routing.responses import ResponseBuilder

Middleware = Callable[["RequestContext"], Any]
ErrorMiddleware = Callable[[BaseException, "RequestContext"], Any]


@dataclass
class RequestContext:
    """Everything one request's middleware chain reads and writes."""

    request: Request
    query: dict[str, Any] = field(default_factory=dict)
    params: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)
    body: Any = None
    request_id: str | None = None
    state: dict[str, Any] = field(default_factory=dict)
    builder: ResponseBuilder = field(default_factory=ResponseBuilder)
    response: Response | None = None

    @classmethod
    def from_request(cls, request: Request) -> RequestContext:
        return cls(
            request=request,
            query=_query_section(request),
            params=dict(request.path_params),
            headers={key.lower(): value for key, value in request.headers.items()},
            cookies=dict(request.cookies),
            request_id=request.headers.get(REQUEST_ID_HEADER),
        )

    def section(self, name: str) -> Any:
        """Return the request section (``query``, ``body``, ...) named ``name``."""
        return getattr(self, name, None)


def _query_section(request: Request) -> dict[str, Any]:
    query: dict[str, Any] = {}
    for key in request.query_params.keys():
        if key in query:
            continue
        values = request.query_params.getlist(key)
        query[key] = values if len(values) > 1 else values[0]
    return query


@dataclass(frozen=True)
class ChainStep:
    """One chain entry; error steps only run while an error is pending."""

    fn: Callable[..., Any]
    handles_errors: bool = False

    @property
    def name(self) -> str:
        return getattr(self.fn, "__qualname__", None) or type(self.fn).__name__


def step(fn: Middleware) -> ChainStep:
    return ChainStep(fn=fn)


def error_step(fn: ErrorMiddleware) -> ChainStep:
    return ChainStep(fn=fn, handles_errors=True)


class MiddlewareChain:
    """Run steps strictly in order until one of them sets ``ctx.response``."""

    def __init__(self, steps: Sequence[ChainStep]) -> None:
        self.steps = tuple(steps)

    async def run(self, ctx: RequestContext) -> Response:
        error: BaseException | None = None
        for entry in self.steps:
            if ctx.response is not None:
                break
            if error is None and entry.handles_errors:
                continue
            if error is not None and not entry.handles_errors:
                continue
            try:
                if entry.handles_errors:
                    await call_step(entry.fn, error, ctx)
                    error = None
                else:
                    await call_step(entry.fn, ctx)
            except Exception as exc:  # noqa: BLE001 - forwarded down the chain
                error = exc

        if ctx.response is not None:
            return ctx.response
        if error is not None:
            raise error
        raise RuntimeError("middleware chain finished without a response")

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self):
        return iter(self.steps)


Endpoint = Callable[[Request], Awaitable[Response]]


def build_endpoint(chain: MiddlewareChain) -> Endpoint:
    """Wrap ``chain`` as a FastAPI endpoint taking the raw request."""

    async def endpoint(request: Request) -> Response:
        ctx = RequestContext.from_request(request)
        return await chain.run(ctx)

    return endpoint
