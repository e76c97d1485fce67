"""Response builder, response shapes and the handler response adapter."""

from __future__ import annotations

from collections.abc import AsyncIterator
from collections.abc import Callable
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from dataclasses import is_dataclass
from typing import TYPE_CHECKING
from typing import Any
from typing import Union

from fastapi import Response
from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import HTMLResponse
from fastapi.responses import JSONResponse
from fastapi.responses import RedirectResponse
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from starlette.concurrency import iterate_in_threadpool
from starlette.concurrency import run_in_threadpool

from routekit.core.logging import Logger
from routekit.routing.concurrency import call_step

if TYPE_CHECKING:
    from routekit.routing.context import RequestContext

OCTET_STREAM = "application/octet-stream"
STREAM_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class JsonBody:
    value: Any


@dataclass(frozen=True)
class HtmlBody:
    content: str


@dataclass(frozen=True)
class Redirect:
    url: str


@dataclass(frozen=True)
class StatusOnly:
    status_code: int


@dataclass(frozen=True)
class Stream:
    source: Any
    headers: Mapping[str, str] = field(default_factory=dict)


ResponseShape = Union[JsonBody, HtmlBody, Redirect, StatusOnly, Stream]
SHAPES = (JsonBody, HtmlBody, Redirect, StatusOnly, Stream)


def _is_record_or_sequence(value: Any) -> bool:
    if isinstance(value, (Mapping, list, tuple, BaseModel)):
        return True
    return is_dataclass(value) and not isinstance(value, type)


def is_empty_result(value: Any) -> bool:
    """``None`` and falsy scalars (``""``, ``0``, ``False``) mean nothing was returned."""
    if value is None:
        return True
    return isinstance(value, (str, bytes, int, float)) and not value


def as_json_value(value: Any) -> Any:
    """Records and sequences pass through; anything else becomes ``{"message": value}``."""
    if _is_record_or_sequence(value):
        return value
    if isinstance(value, BaseException):
        value = str(value)
    return {"message": value}


class ResponseBuilder:
    """Handed to every handler to describe its terminal response.

    Calls are not exclusive: the last shape set wins, and ``status`` applies
    to whichever shape is emitted.
    """

    def __init__(self) -> None:
        self.shape: ResponseShape | None = None
        self.status_code: int | None = None

    def json(self, content: Any) -> ResponseBuilder:
        self.shape = JsonBody(as_json_value(content))
        return self

    def html(self, content: str) -> ResponseBuilder:
        self.shape = HtmlBody(content)
        return self

    def redirect(self, url: str) -> ResponseBuilder:
        self.shape = Redirect(url)
        return self

    def status(self, code: int) -> ResponseBuilder:
        self.status_code = code
        if self.shape is None or isinstance(self.shape, StatusOnly):
            self.shape = StatusOnly(code)
        return self

    def stream(self, source: Any, headers: Mapping[str, str] | None = None) -> ResponseBuilder:
        self.shape = Stream(source, dict(headers or {}))
        return self


Handler = Callable[["RequestContext", ResponseBuilder], Any]


class ResponseAdapter:
    """Turn handler return values into exactly one terminal response."""

    def __init__(self, logger: Logger | None = None) -> None:
        self.logger = logger or Logger("Routing:Responses")

    def wrap(self, handler: Handler) -> Callable[[RequestContext], Any]:
        """Chain step running ``handler``; failures propagate to the error steps."""

        async def respond(ctx: RequestContext) -> None:
            result = await call_step(handler, ctx, ctx.builder)
            ctx.response = await self.emit(result, ctx)

        respond.__qualname__ = f"respond[{getattr(handler, '__qualname__', repr(handler))}]"
        return respond

    async def emit(self, result: Any, ctx: RequestContext) -> Response:
        builder = ctx.builder
        if is_empty_result(result):
            return Response(
                content=b"",
                status_code=builder.status_code or status.HTTP_200_OK,
                media_type="application/json",
            )
        if result is builder:
            shape = builder.shape
            if shape is None:
                return await self.emit(None, ctx)
        elif isinstance(result, SHAPES):
            shape = result
        else:
            shape = JsonBody(as_json_value(result))
        return await self._render(shape, builder.status_code, ctx)

    async def _render(self, shape: ResponseShape, status_code: int | None, ctx: RequestContext) -> Response:
        if isinstance(shape, JsonBody):
            return JSONResponse(
                content=jsonable_encoder(shape.value),
                status_code=status_code or status.HTTP_200_OK,
            )
        if isinstance(shape, HtmlBody):
            return HTMLResponse(content=shape.content, status_code=status_code or status.HTTP_200_OK)
        if isinstance(shape, Redirect):
            if status_code is None or not 300 <= status_code < 400:
                status_code = status.HTTP_302_FOUND
            return RedirectResponse(url=shape.url, status_code=status_code)
        if isinstance(shape, StatusOnly):
            return Response(status_code=status_code or shape.status_code)
        return await self._stream(shape, status_code or status.HTTP_200_OK, ctx)

    async def _stream(self, shape: Stream, status_code: int, ctx: RequestContext) -> Response:
        chunks = iterate_source(shape.source)
        # A failure before the first chunk still reaches the error steps.
        try:
            first: bytes | None = await chunks.__anext__()
        except StopAsyncIteration:
            first = None

        headers = {"content-type": OCTET_STREAM}
        for key, value in shape.headers.items():
            headers[key.lower()] = str(value)

        return StreamingResponse(
            self._drain(first, chunks, ctx),
            status_code=status_code,
            headers=headers,
        )

    async def _drain(
        self,
        first: bytes | None,
        chunks: AsyncIterator[bytes],
        ctx: RequestContext,
    ) -> AsyncIterator[bytes]:
        try:
            if first is not None:
                yield first
            async for chunk in chunks:
                yield chunk
        except Exception as exc:  # noqa: BLE001 - headers already sent
            self.logger.error(exc, {"uri": ctx.request.url.path, "request_id": ctx.request_id})
            return
        finally:
            await chunks.aclose()
        self.logger.debug("stream finished", {"uri": ctx.request.url.path, "request_id": ctx.request_id})


def _to_bytes(chunk: Any) -> bytes:
    if isinstance(chunk, bytes):
        return chunk
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    if isinstance(chunk, (bytearray, memoryview)):
        return bytes(chunk)
    raise TypeError(f"stream chunks must be bytes or str, got {type(chunk).__name__}")


async def iterate_source(source: Any) -> AsyncIterator[bytes]:
    """Normalize bytes, file-like objects and (async) iterables to an async byte iterator."""
    if isinstance(source, (bytes, bytearray, memoryview, str)):
        yield _to_bytes(source)
        return

    if hasattr(source, "read"):
        try:
            while True:
                chunk = await run_in_threadpool(source.read, STREAM_CHUNK_SIZE)
                if not chunk:
                    break
                yield _to_bytes(chunk)
        finally:
            close = getattr(source, "close", None)
            if close is not None:
                await run_in_threadpool(close)
        return

    if hasattr(source, "__aiter__"):
        async for chunk in source:
            yield _to_bytes(chunk)
        return

    if hasattr(source, "__iter__"):
        async for chunk in iterate_in_threadpool(iter(source)):
            yield _to_bytes(chunk)
        return

    raise TypeError(f"unsupported stream source {type(source).__name__}")
