"""Unit tests for handler return values and response builder shapes."""

from __future__ import annotations

from collections.abc import AsyncIterator
from collections.abc import Iterator
import io

import pytest
from fastapi.testclient import TestClient
from pydantic import BaseModel

from routekit.routing.responses import HtmlBody
from routekit.routing.responses import JsonBody
from routekit.routing.responses import ResponseBuilder
from routekit.routing.responses import StatusOnly
from routekit.routing.responses import as_json_value
from routekit.routing.router import Router


class Invoice(BaseModel):
    id: int
    total: float


def _client_for(router: Router, handler, method: str = "GET") -> TestClient:  # noqa: ANN001
    router.register(method, 1, "/subject", handler)
    router.finalize()
    return TestClient(router.app)


def test_returning_none_sends_empty_json_response(router: Router) -> None:
    client = _client_for(router, lambda ctx, res: None)

    response = client.get("/v1/billing/subject")

    assert response.status_code == 200
    assert response.content == b""
    assert response.headers["content-type"].startswith("application/json")


def test_returning_none_keeps_builder_status(router: Router) -> None:
    def handler(ctx, res):  # noqa: ANN001
        res.status(202)

    response = _client_for(router, handler).get("/v1/billing/subject")

    assert response.status_code == 202
    assert response.content == b""


@pytest.mark.parametrize("value", ["", 0, 0.0, False])
def test_falsy_scalar_return_values_send_empty_response(router: Router, value: object) -> None:
    client = _client_for(router, lambda ctx, res: value)

    response = client.get("/v1/billing/subject")

    assert response.status_code == 200
    assert response.content == b""
    assert response.headers["content-type"].startswith("application/json")


def test_empty_records_and_sequences_are_still_json(router: Router) -> None:
    values = iter([{}, []])
    client = _client_for(router, lambda ctx, res: next(values))

    assert client.get("/v1/billing/subject").json() == {}
    assert client.get("/v1/billing/subject").json() == []


def test_scalar_return_values_are_wrapped_in_message(router: Router) -> None:
    values = iter(["foo", 42, True])
    client = _client_for(router, lambda ctx, res: next(values))

    assert client.get("/v1/billing/subject").json() == {"message": "foo"}
    assert client.get("/v1/billing/subject").json() == {"message": 42}
    assert client.get("/v1/billing/subject").json() == {"message": True}


def test_records_and_sequences_are_sent_as_json(router: Router) -> None:
    values = iter([{"id": 1}, [1, 2, 3], Invoice(id=7, total=9.5)])
    client = _client_for(router, lambda ctx, res: next(values))

    assert client.get("/v1/billing/subject").json() == {"id": 1}
    assert client.get("/v1/billing/subject").json() == [1, 2, 3]
    assert client.get("/v1/billing/subject").json() == {"id": 7, "total": 9.5}


def test_returning_an_exception_value_sends_its_text(router: Router) -> None:
    client = _client_for(router, lambda ctx, res: ValueError("not raised"))

    response = client.get("/v1/billing/subject")

    assert response.status_code == 200
    assert response.json() == {"message": "not raised"}


def test_builder_json_with_status(router: Router) -> None:
    def handler(ctx, res):  # noqa: ANN001
        return res.status(201).json({"id": 3})

    response = _client_for(router, handler, "POST").post("/v1/billing/subject", json={})

    assert response.status_code == 201
    assert response.json() == {"id": 3}


def test_builder_json_wraps_scalars(router: Router) -> None:
    response = _client_for(router, lambda ctx, res: res.json("x")).get("/v1/billing/subject")

    assert response.json() == {"message": "x"}


def test_builder_html(router: Router) -> None:
    response = _client_for(router, lambda ctx, res: res.html("<p>hi</p>")).get("/v1/billing/subject")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert response.text == "<p>hi</p>"


def test_builder_redirect_defaults_to_302(router: Router) -> None:
    client = _client_for(router, lambda ctx, res: res.redirect("/elsewhere"))

    response = client.get("/v1/billing/subject", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "/elsewhere"


def test_builder_redirect_keeps_explicit_3xx_status(router: Router) -> None:
    client = _client_for(router, lambda ctx, res: res.status(301).redirect("/moved"))

    response = client.get("/v1/billing/subject", follow_redirects=False)

    assert response.status_code == 301
    assert response.headers["location"] == "/moved"


def test_builder_status_only(router: Router) -> None:
    response = _client_for(router, lambda ctx, res: res.status(204)).get("/v1/billing/subject")

    assert response.status_code == 204
    assert response.content == b""


def test_builder_last_shape_wins(router: Router) -> None:
    def handler(ctx, res):  # noqa: ANN001
        res.json({"ignored": True})
        res.html("<b>kept</b>")
        return res

    response = _client_for(router, handler).get("/v1/billing/subject")

    assert response.text == "<b>kept</b>"


def test_returning_a_shape_directly(router: Router) -> None:
    client = _client_for(router, lambda ctx, res: JsonBody([{"id": 1}]))

    assert client.get("/v1/billing/subject").json() == [{"id": 1}]


def test_stream_bytes_with_headers(router: Router) -> None:
    def handler(ctx, res):  # noqa: ANN001
        return res.stream(b"a,b\n1,2\n", {"Content-Type": "text/csv", "X-Export": "invoices"})

    response = _client_for(router, handler).get("/v1/billing/subject")

    assert response.status_code == 200
    assert response.content == b"a,b\n1,2\n"
    assert response.headers["content-type"] == "text/csv"
    assert response.headers["x-export"] == "invoices"


def test_stream_defaults_to_octet_stream(router: Router) -> None:
    response = _client_for(router, lambda ctx, res: res.stream(b"\x00\x01")).get("/v1/billing/subject")

    assert response.headers["content-type"] == "application/octet-stream"
    assert response.content == b"\x00\x01"


def test_stream_file_like_source_is_closed(router: Router) -> None:
    source = io.BytesIO(b"x" * 200_000)

    response = _client_for(router, lambda ctx, res: res.stream(source)).get("/v1/billing/subject")

    assert len(response.content) == 200_000
    assert source.closed


def test_stream_async_generator_source(router: Router) -> None:
    async def chunks() -> AsyncIterator[bytes]:
        yield b"one,"
        yield "two"

    response = _client_for(router, lambda ctx, res: res.stream(chunks())).get("/v1/billing/subject")

    assert response.content == b"one,two"


def test_stream_failure_before_first_chunk_is_normalized(router: Router) -> None:
    def chunks() -> Iterator[bytes]:
        raise OSError("disk gone")
        yield b""  # pragma: no cover

    response = _client_for(router, lambda ctx, res: res.stream(chunks())).get("/v1/billing/subject")

    assert response.status_code == 500
    assert response.json()["err_code"] == "UNEXPECTED_ERROR"


def test_stream_failure_after_first_chunk_ends_the_body(router: Router) -> None:
    def chunks() -> Iterator[bytes]:
        yield b"partial"
        raise OSError("disk gone")

    response = _client_for(router, lambda ctx, res: res.stream(chunks())).get("/v1/billing/subject")

    assert response.status_code == 200
    assert response.content == b"partial"


def test_sync_handler_exception_is_normalized(router: Router) -> None:
    def handler(ctx, res):  # noqa: ANN001
        raise ZeroDivisionError("nope")

    response = _client_for(router, handler).get("/v1/billing/subject")

    assert response.status_code == 500
    assert response.json()["statusCode"] == 500


def test_async_handler_result_and_exception(router: Router) -> None:
    async def handler(ctx, res):  # noqa: ANN001
        if ctx.query.get("fail"):
            raise RuntimeError("async failure")
        return {"async": True}

    client = _client_for(router, handler)

    assert client.get("/v1/billing/subject").json() == {"async": True}
    assert client.get("/v1/billing/subject?fail=1").status_code == 500


def test_builder_status_keeps_existing_shape() -> None:
    builder = ResponseBuilder().html("<p/>").status(404)

    assert isinstance(builder.shape, HtmlBody)
    assert builder.status_code == 404


def test_builder_status_without_shape_is_status_only() -> None:
    builder = ResponseBuilder().status(204)

    assert builder.shape == StatusOnly(204)


def test_as_json_value() -> None:
    assert as_json_value({"a": 1}) == {"a": 1}
    assert as_json_value((1, 2)) == (1, 2)
    assert as_json_value(None) == {"message": None}
    assert as_json_value(KeyError("k")) == {"message": "'k'"}
