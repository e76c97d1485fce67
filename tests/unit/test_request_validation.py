"""Unit tests for request schema validation and failure aggregation."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Any

from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from routekit.routing.router import RouteConfig
from routekit.routing.router import Router
from routekit.routing.validation import PydanticSchemaValidator
from routekit.routing.validation import SchemaConfig
from routekit.routing.validation import ValidationIssue
from routekit.routing.validation import is_valid
from routekit.routing.validation import validator
from routekit.routing.validation import validator_coerced
from routekit.schemas.error import ValidationFailure


class Address(BaseModel):
    city: str
    postcode: str


class CreateCustomer(BaseModel):
    name: str
    age: int
    address: Address
    tags: list[str] = []


class Filters(BaseModel):
    page: int | None = None


class ListQuery(BaseModel):
    page: int


class RecordingValidator:
    """Validator capability that reports canned errors and records calls."""

    def __init__(self, results: dict[str, list[dict[str, str]]]) -> None:
        self.results = results
        self.calls: list[Any] = []
        self.errors: list[dict[str, str]] = []

    def validate(self, schema: Any, payload: Any) -> bool:
        self.calls.append(schema)
        self.errors = self.results.get(schema, [])
        return not self.errors

    def errors_text(self) -> list[str]:
        return [f"data{error['dataPath']} {error['message']}" for error in self.errors]


def _client(router: Router, method: str, schema_config: Any) -> TestClient:
    router.register(method, 1, "/customers", lambda ctx, res: {"ok": True}, RouteConfig(schema_config=schema_config))
    router.finalize()
    return TestClient(router.app)


def test_validator_reports_paths_and_missing_properties() -> None:
    checker = PydanticSchemaValidator(strict=True)

    ok = checker.validate(CreateCustomer, {"age": "x", "address": {"city": "Oslo"}, "tags": [1]})

    assert ok is False
    issues = {issue.data_path: issue.message for issue in checker.errors}
    assert issues[""] == "must have required property 'name'"
    assert issues[".address"] == "must have required property 'postcode'"
    assert ".age" in issues
    assert ".tags[0]" in issues
    assert all(text.startswith("data") for text in checker.errors_text())


def test_validator_clears_errors_after_success() -> None:
    checker = PydanticSchemaValidator()
    checker.validate(ListQuery, {})

    assert checker.validate(ListQuery, {"page": 1}) is True
    assert checker.errors == []


def test_strict_and_coercing_validators() -> None:
    assert validator.validate(ListQuery, {"page": "2"}) is False
    assert validator_coerced.validate(ListQuery, {"page": "2"}) is True


def test_is_valid_returns_true_or_failure_fields() -> None:
    assert is_valid({"page": 1}, ListQuery) is True
    assert is_valid({}, ListQuery) == {"missing": ["must have required property 'page'"]}


def test_validation_failure_aggregation() -> None:
    failure = ValidationFailure()

    failure.add(".one", "is bad")
    failure.add("", "must have required property 'two'")
    failure.add(".nested.three", "too long")
    failure.add("[0]", "not a string")

    assert failure.to_content() == {
        "one": "is bad",
        "nested.three": "too long",
        "[0]": "not a string",
        "missing": ["must have required property 'two'"],
    }


def test_invalid_body_returns_invalid_request_with_fields(router: Router) -> None:
    client = _client(router, "POST", SchemaConfig(PydanticSchemaValidator(strict=True), body=CreateCustomer))

    response = client.post("/v1/billing/customers", json={"age": 30, "address": {"city": "Oslo", "postcode": "0150"}})

    assert response.status_code == 400
    payload = response.json()
    assert payload["message"] == "Invalid request"
    assert payload["err_code"] == "INVALID_REQUEST"
    assert payload["fields"] == {"missing": ["must have required property 'name'"]}


def test_valid_body_reaches_handler(router: Router) -> None:
    client = _client(router, "POST", SchemaConfig(PydanticSchemaValidator(strict=True), body=CreateCustomer))

    response = client.post(
        "/v1/billing/customers",
        json={"name": "Ada", "age": 36, "address": {"city": "London", "postcode": "N1"}},
    )

    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_validator_issue_mappings_are_aggregated(router: Router) -> None:
    capability = RecordingValidator(
        {
            "body-schema": [
                {"dataPath": ".one", "message": "is bad"},
                {"dataPath": "", "message": "must have required property 'two'"},
            ]
        }
    )
    client = _client(router, "POST", {"validator": capability, "body": "body-schema"})

    response = client.post("/v1/billing/customers", json={"one": 1})

    assert response.status_code == 400
    assert response.json()["fields"] == {"one": "is bad", "missing": ["must have required property 'two'"]}


def test_issue_objects_are_aggregated(router: Router) -> None:
    class ObjectValidator:
        errors: list[ValidationIssue] = []

        def validate(self, schema: Any, payload: Any) -> bool:
            self.errors = [ValidationIssue(".page", "must be integer")]
            return False

    client = _client(router, "GET", SchemaConfig(ObjectValidator(), query=ListQuery))

    response = client.get("/v1/billing/customers?page=x")

    assert response.json()["fields"] == {"page": "must be integer", "missing": []}


def test_absent_section_is_an_unexpected_error(router: Router) -> None:
    def skip_body(ctx):  # noqa: ANN001
        return None

    router.post(
        "/customers",
        1,
        lambda ctx, res: {"ok": True},
        RouteConfig(
            schema_config=SchemaConfig(PydanticSchemaValidator(), body=CreateCustomer),
            parser_middlewares=[skip_body],
        ),
    )
    router.finalize()

    response = TestClient(router.app).post("/v1/billing/customers", json={"name": "Ada"})

    assert response.status_code == 500
    assert response.json()["err_code"] == "UNEXPECTED_ERROR"


def test_empty_body_is_validated(router: Router) -> None:
    client = _client(router, "POST", SchemaConfig(PydanticSchemaValidator(), body=CreateCustomer))

    empty_object = client.post("/v1/billing/customers", json={})
    no_body = client.post("/v1/billing/customers")

    assert empty_object.status_code == 400
    assert empty_object.json()["err_code"] == "INVALID_REQUEST"
    assert sorted(empty_object.json()["fields"]["missing"]) == [
        "must have required property 'address'",
        "must have required property 'age'",
        "must have required property 'name'",
    ]
    assert no_body.status_code == 400


def test_empty_query_is_validated(router: Router) -> None:
    optional = Router(FastAPI(), namespace="optional")
    optional_client = _client(optional, "GET", SchemaConfig(validator_coerced, query=Filters))
    required_client = _client(router, "GET", SchemaConfig(validator_coerced, query=ListQuery))

    assert optional_client.get("/v1/optional/customers").json() == {"ok": True}
    response = required_client.get("/v1/billing/customers")
    assert response.status_code == 400
    assert response.json()["fields"] == {"missing": ["must have required property 'page'"]}


def test_is_valid_keeps_results_separate_across_threads() -> None:
    payloads = [{"page": index} if index % 2 else {} for index in range(200)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda payload: is_valid(payload, ListQuery), payloads))

    for payload, result in zip(payloads, results):
        if payload:
            assert result is True
        else:
            assert result == {"missing": ["must have required property 'page'"]}


def test_query_strings_need_coercion(router: Router) -> None:
    strict = Router(FastAPI(), namespace="strict")
    strict_client = _client(strict, "GET", SchemaConfig(validator, query=ListQuery))
    coerced_client = _client(router, "GET", SchemaConfig(validator_coerced, query=ListQuery))

    assert strict_client.get("/v1/strict/customers?page=2").status_code == 400
    assert coerced_client.get("/v1/billing/customers?page=2").status_code == 200


def test_sections_validate_in_declaration_order_and_stop_at_first_failure(router: Router) -> None:
    capability = RecordingValidator({"query-schema": [{"dataPath": ".page", "message": "bad"}]})
    client = _client(
        router,
        "POST",
        SchemaConfig(capability, query="query-schema", body="body-schema"),
    )

    response = client.post("/v1/billing/customers?page=x", json={"a": 1})

    assert response.status_code == 400
    assert capability.calls == ["query-schema"]


def test_later_sections_run_when_earlier_ones_pass(router: Router) -> None:
    capability = RecordingValidator({})
    client = _client(
        router,
        "POST",
        SchemaConfig(capability, body="body-schema", query="query-schema"),
    )

    response = client.post("/v1/billing/customers?page=1", json={"a": 1})

    assert response.status_code == 200
    assert capability.calls == ["body-schema", "query-schema"]


def test_routes_without_schema_skip_validation(router: Router) -> None:
    client = _client(router, "POST", None)

    assert client.post("/v1/billing/customers").json() == {"ok": True}
