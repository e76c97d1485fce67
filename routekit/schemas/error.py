"""Error envelope schemas shared across route handlers."""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from typing import Any

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field


@dataclass
class ValidationFailure:
    """Validator issues aggregated for one request section."""

    fields: dict[str, str] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)

    def add(self, data_path: str, message: str) -> None:
        """Record one issue, stripping a single leading path separator."""
        key = data_path[1:] if data_path.startswith(".") else data_path
        if key == "":
            self.missing.append(message)
        else:
            self.fields[key] = message

    def to_content(self) -> dict[str, Any]:
        return {**self.fields, "missing": list(self.missing)}


class ErrorEnvelope(BaseModel):
    """Canonical JSON error body; override details may add extra keys."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    message: Any = None
    statusCode: Any = None
    err_code: Any = None
    error_id: str
    request_id: str | None = None
    uri: str | None = None
    field_errors: Any = Field(default=None, alias="fields")

    def to_content(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
