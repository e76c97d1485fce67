"""Request schema validation against a pluggable validator capability."""

from __future__ import annotations

from collections.abc import Callable
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any
from typing import Protocol
from typing import runtime_checkable
import sys

from pydantic import TypeAdapter
from pydantic import ValidationError

from routekit.core.errors import INVALID_REQUEST
from routekit.core.errors import UNEXPECTED_ERROR
from routekit.core.errors import CataloguedError
from routekit.core.logging import Logger
from routekit.routing.context import RequestContext
from routekit.schemas.error import ValidationFailure

REQUEST_SECTIONS = ("query", "body", "params", "headers", "cookies")


@dataclass(frozen=True)
class ValidationIssue:
    """One validator error: a ``.a.b[0]`` style data path and a message."""

    data_path: str
    message: str


@runtime_checkable
class SchemaValidator(Protocol):
    """Capability consumed by the request validator."""

    errors: list[ValidationIssue]

    def validate(self, schema: Any, payload: Any) -> bool: ...

    def errors_text(self) -> list[str]: ...


def _data_path(location: tuple[Any, ...]) -> str:
    parts: list[str] = []
    for part in location:
        if isinstance(part, int):
            parts.append(f"[{part}]")
        else:
            parts.append(f".{part}")
    return "".join(parts)


@lru_cache(maxsize=256)
def _cached_adapter(schema: Any) -> TypeAdapter[Any]:
    return TypeAdapter(schema)


def _adapter(schema: Any) -> TypeAdapter[Any]:
    try:
        return _cached_adapter(schema)
    except TypeError:
        return TypeAdapter(schema)


class PydanticSchemaValidator:
    """Validate payloads against pydantic models or any type ``TypeAdapter`` accepts.

    A missing required field is reported on its parent path, so a field missing
    from the section root shows up in ``ValidationFailure.missing``.
    """

    def __init__(self, *, strict: bool = False) -> None:
        self.strict = strict
        self.errors: list[ValidationIssue] = []

    def validate(self, schema: Any, payload: Any) -> bool:
        self.errors = []
        try:
            _adapter(schema).validate_python(payload, strict=self.strict)
        except ValidationError as exc:
            self.errors = [self._issue(error) for error in exc.errors()]
            return False
        return True

    def errors_text(self) -> list[str]:
        return [f"data{issue.data_path} {issue.message}" for issue in self.errors]

    def _issue(self, error: Mapping[str, Any]) -> ValidationIssue:
        location = tuple(part for part in error.get("loc", ()) if part != "__root__")
        if error.get("type") == "missing" and location:
            return ValidationIssue(
                data_path=_data_path(location[:-1]),
                message=f"must have required property '{location[-1]}'",
            )
        return ValidationIssue(data_path=_data_path(location), message=str(error.get("msg", "Invalid value")))


# No coercion: values must already have the declared types.
validator = PydanticSchemaValidator(strict=True)
# Coerces where possible, e.g. ``?page=1`` becomes ``1`` for an int field.
validator_coerced = PydanticSchemaValidator()


def is_valid(payload: Any, schema: Any) -> bool | dict[str, Any]:
    """Return ``True`` or the aggregated failure fields for ``payload``.

    Uses its own strict validator so concurrent callers never share ``errors``.
    """
    checker = PydanticSchemaValidator(strict=True)
    if checker.validate(schema, payload):
        return True
    failure = ValidationFailure()
    for issue in checker.errors:
        failure.add(issue.data_path, issue.message)
    return failure.to_content()


class SchemaConfig:
    """Validator capability plus one schema per request section, in declaration order."""

    def __init__(self, validator: Any = None, **sections: Any) -> None:
        self.validator = validator
        self.sections: dict[str, Any] = dict(sections)

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> SchemaConfig:
        sections = {key: value for key, value in config.items() if key != "validator"}
        return cls(config.get("validator"), **sections)

    def __repr__(self) -> str:
        return f"SchemaConfig(validator={self.validator!r}, sections={list(self.sections)})"


class SchemaConfigError(Exception):
    """Schema configuration that cannot be used at route registration."""


def coerce_schema_config(schema_config: SchemaConfig | Mapping[str, Any] | None) -> SchemaConfig | None:
    if schema_config is None or isinstance(schema_config, SchemaConfig):
        return schema_config
    if isinstance(schema_config, Mapping):
        return SchemaConfig.from_mapping(schema_config)
    raise SchemaConfigError(f"unsupported schema configuration {type(schema_config).__name__}")


class RequestValidator:
    """Build per-route validation steps and check schema configuration at startup."""

    def __init__(self, logger: Logger | None = None) -> None:
        self.logger = logger or Logger("Routing:Validation")

    def check_config(self, schema_config: SchemaConfig | Mapping[str, Any] | None, route: str) -> None:
        """Terminate the process when a supplied schema configuration is unusable."""
        try:
            config = coerce_schema_config(schema_config)
            if config is None:
                return
            if not callable(getattr(config.validator, "validate", None)):
                raise SchemaConfigError("ERR_ROUTER_INVALID_ROUTE_SCHEMA_SPECIFIED")
            unknown = [name for name in config.sections if name not in REQUEST_SECTIONS]
            if unknown:
                raise SchemaConfigError(f"ERR_ROUTER_UNKNOWN_REQUEST_SECTION {unknown}")
        except SchemaConfigError as exc:
            self.logger.critical(exc, {"route": route, "schemaConfig": repr(schema_config)})
            sys.exit(1)

    def build(self, schema_config: SchemaConfig | Mapping[str, Any] | None = None) -> Callable[[RequestContext], Any]:
        config = coerce_schema_config(schema_config)

        if config is None or config.validator is None:

            async def skip_validation(ctx: RequestContext) -> None:
                return None

            return skip_validation

        capability = config.validator
        sections = tuple(config.sections.items())

        async def validate_request(ctx: RequestContext) -> None:
            for name, schema in sections:
                payload = ctx.section(name)
                if payload is None:
                    self.logger.info(
                        f"validate_request() missing {name}",
                        {"lookup": name, "path": ctx.request.url.path, "request_id": ctx.request_id},
                    )
                    raise CataloguedError(UNEXPECTED_ERROR)

                if capability.validate(schema, payload) is not True:
                    failure = ValidationFailure()
                    for issue in capability.errors:
                        failure.add(*_issue_parts(issue))
                    self.logger.info(
                        "validate_request() validation failed",
                        {
                            "lookup": name,
                            "path": ctx.request.url.path,
                            "errors": _errors_text(capability),
                            "request_id": ctx.request_id,
                        },
                    )
                    raise CataloguedError(INVALID_REQUEST, details={"fields": failure.to_content()})

        return validate_request


def _issue_parts(issue: Any) -> tuple[str, str]:
    if isinstance(issue, Mapping):
        return str(issue.get("dataPath", issue.get("data_path", ""))), str(issue.get("message", ""))
    return str(getattr(issue, "data_path", "")), str(getattr(issue, "message", ""))


def _errors_text(capability: Any) -> Any:
    errors_text = getattr(capability, "errors_text", None)
    if callable(errors_text):
        return errors_text()
    return None

