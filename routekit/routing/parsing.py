"""Request body parsers and the guard relabelling their failures as catalog errors."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qsl
import codecs
import json
import zlib

from fastapi import Request
from starlette.requests import ClientDisconnect

from routekit.core.errors import INVALID_REQUEST
from routekit.core.errors import CataloguedError
from routekit.core.errors import ErrorCatalog
from routekit.core.logging import Logger
from routekit.routing.concurrency import call_step
from routekit.routing.context import RequestContext

DEFAULT_LIMIT = 100 * 1024
DEFAULT_PARAMETER_LIMIT = 1000

_INFLATERS: dict[str, Callable[[], Any]] = {
    "gzip": lambda: zlib.decompressobj(16 + zlib.MAX_WBITS),
    "deflate": lambda: zlib.decompressobj(),
}


class BodyParseError(Exception):
    """Body parsing failure with a dotted ``type`` tag, an HTTP status and an expose flag."""

    def __init__(self, message: str, *, type: str, status: int, expose: bool = True) -> None:
        super().__init__(message)
        self.message = message
        self.type = type
        self.status = status
        self.expose = expose


def _media_type(request: Request) -> tuple[str, dict[str, str]]:
    raw = request.headers.get("content-type", "")
    media_type, _, rest = raw.partition(";")
    params: dict[str, str] = {}
    for item in rest.split(";"):
        key, sep, value = item.partition("=")
        if sep:
            params[key.strip().lower()] = value.strip().strip('"')
    return media_type.strip().lower(), params


def _has_body(request: Request) -> bool:
    if "transfer-encoding" in request.headers:
        return True
    length = request.headers.get("content-length")
    return length is not None and length.strip() not in ("", "0")


class BodyParser:
    """Read, bound and inflate a request body; subclasses decode the text."""

    default_charset = "utf-8"

    def __init__(self, *, limit: int = DEFAULT_LIMIT, inflate: bool = True) -> None:
        self.limit = limit
        self.inflate = inflate

    async def __call__(self, ctx: RequestContext) -> None:
        if ctx.state.get("body_parsed"):
            return
        if ctx.body is None:
            ctx.body = {}
        if not _has_body(ctx.request):
            return
        media_type, params = _media_type(ctx.request)
        if not self.accepts(media_type):
            return
        charset = self.charset(params)
        raw = await self.read(ctx.request)
        ctx.state["raw_body"] = raw
        text = self._decode_text(raw, charset)
        ctx.body = self.decode(text) if text else {}
        ctx.state["body_parsed"] = True

    def accepts(self, media_type: str) -> bool:
        raise NotImplementedError

    def charset(self, params: dict[str, str]) -> str:
        return params.get("charset", self.default_charset).lower()

    def decode(self, text: str) -> Any:
        raise NotImplementedError

    async def read(self, request: Request) -> bytes:
        """Return the decoded (inflated) body bytes, enforcing ``limit``."""
        encoding = request.headers.get("content-encoding", "identity").strip().lower()
        if encoding != "identity":
            if not self.inflate:
                raise BodyParseError(
                    "content encoding unsupported",
                    type="encoding.unsupported",
                    status=415,
                )
            if encoding not in _INFLATERS:
                raise BodyParseError(
                    f'unsupported content encoding "{encoding}"',
                    type="encoding.unsupported",
                    status=415,
                )

        declared = self._declared_length(request)
        if encoding == "identity" and declared is not None and declared > self.limit:
            raise self._too_large()

        chunks: list[bytes] = []
        received = 0
        try:
            async for chunk in request.stream():
                received += len(chunk)
                if encoding == "identity" and received > self.limit:
                    raise self._too_large()
                chunks.append(chunk)
        except ClientDisconnect as exc:
            raise BodyParseError("request aborted", type="request.aborted", status=400) from exc

        if declared is not None and received != declared:
            raise BodyParseError(
                "request size did not match content length",
                type="request.size.invalid",
                status=400,
            )

        raw = b"".join(chunks)
        if encoding == "identity":
            return raw
        return self._inflate(raw, encoding)

    def _inflate(self, raw: bytes, encoding: str) -> bytes:
        inflater = _INFLATERS[encoding]()
        try:
            inflated = inflater.decompress(raw, self.limit + 1)
        except zlib.error as exc:
            raise BodyParseError(str(exc), type="entity.parse.failed", status=400) from exc
        if len(inflated) > self.limit or inflater.unconsumed_tail:
            raise self._too_large()
        return inflated

    def _declared_length(self, request: Request) -> int | None:
        raw = request.headers.get("content-length")
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    def _decode_text(self, raw: bytes, charset: str) -> str:
        try:
            codecs.lookup(charset)
        except LookupError as exc:
            raise self._unsupported_charset(charset) from exc
        try:
            return raw.decode(charset)
        except UnicodeDecodeError as exc:
            raise BodyParseError(str(exc), type="entity.parse.failed", status=400) from exc

    def _too_large(self) -> BodyParseError:
        return BodyParseError("request entity too large", type="entity.too.large", status=413)

    def _unsupported_charset(self, charset: str) -> BodyParseError:
        return BodyParseError(
            f'unsupported charset "{charset.upper()}"',
            type="charset.unsupported",
            status=415,
        )


class JsonBodyParser(BodyParser):
    """JSON bodies; ``strict`` only accepts objects and arrays at the top level."""

    def __init__(self, *, limit: int = DEFAULT_LIMIT, inflate: bool = True, strict: bool = True) -> None:
        super().__init__(limit=limit, inflate=inflate)
        self.strict = strict

    def accepts(self, media_type: str) -> bool:
        return media_type == "application/json" or (media_type.startswith("application/") and media_type.endswith("+json"))

    def charset(self, params: dict[str, str]) -> str:
        charset = super().charset(params)
        if not charset.startswith("utf-"):
            raise self._unsupported_charset(charset)
        return charset

    def decode(self, text: str) -> Any:
        if self.strict:
            stripped = text.lstrip(" \t\n\r")
            if stripped and stripped[0] not in "{[":
                position = len(text) - len(stripped)
                raise BodyParseError(
                    f"Unexpected token {stripped[0]!r} in JSON at position {position}",
                    type="entity.parse.failed",
                    status=400,
                )
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise BodyParseError(str(exc), type="entity.parse.failed", status=400) from exc


class UrlencodedBodyParser(BodyParser):
    """``application/x-www-form-urlencoded`` bodies; repeated keys become lists."""

    def __init__(
        self,
        *,
        limit: int = DEFAULT_LIMIT,
        inflate: bool = True,
        parameter_limit: int = DEFAULT_PARAMETER_LIMIT,
    ) -> None:
        super().__init__(limit=limit, inflate=inflate)
        self.parameter_limit = parameter_limit

    def accepts(self, media_type: str) -> bool:
        return media_type == "application/x-www-form-urlencoded"

    def charset(self, params: dict[str, str]) -> str:
        charset = super().charset(params)
        if charset != "utf-8":
            raise self._unsupported_charset(charset)
        return charset

    def decode(self, text: str) -> Any:
        try:
            pairs = parse_qsl(text, keep_blank_values=True, max_num_fields=self.parameter_limit)
        except ValueError as exc:
            raise BodyParseError("too many parameters", type="parameters.too.many", status=413) from exc
        body: dict[str, Any] = {}
        for key, value in pairs:
            if key not in body:
                body[key] = value
            elif isinstance(body[key], list):
                body[key].append(value)
            else:
                body[key] = [body[key], value]
        return body


class BodyParseGuard:
    """Run a body parser and relabel its failures as ``InvalidRequest`` catalog errors.

    The raw message reaches the client only when the parser marked it safe to
    expose and the status is not a generic 500.
    """

    def __init__(
        self,
        parser: Callable[[RequestContext], Any] | None = None,
        catalog: ErrorCatalog | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.parser = parser or JsonBodyParser()
        self.catalog = catalog or ErrorCatalog()
        self.logger = logger or Logger("Routing:BodyParser")

    async def __call__(self, ctx: RequestContext) -> None:
        try:
            await call_step(self.parser, ctx)
        except Exception as exc:
            self.logger.warn(exc, {"uri": ctx.request.url.path, "request_id": ctx.request_id})
            raise self.relabel(exc) from exc

    def relabel(self, exc: BaseException) -> CataloguedError:
        code = f"{INVALID_REQUEST}.{getattr(exc, 'type', None)}"
        if code not in self.catalog:
            code = INVALID_REQUEST
        status = getattr(exc, "status", None)
        exposed = getattr(exc, "expose", False) is True and status not in (None, 500)
        return CataloguedError(
            code,
            details={
                "message": str(getattr(exc, "message", exc)) if exposed else None,
                "statusCode": status,
            },
        )
