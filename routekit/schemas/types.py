"""Reusable schema types for request validation."""

from __future__ import annotations

from ipaddress import IPv4Address
from typing import Annotated

from pydantic import AfterValidator
from pydantic import Field
from pydantic import StringConstraints

_DATE_ISO_UTC = (
    r"(\d{4}-[01]\d-[0-3]\dT[0-2]\d:[0-5]\d:[0-5]\d\.\d+([+-][0-2]\d:[0-5]\d|Z))"
    r"|(\d{4}-[01]\d-[0-3]\dT[0-2]\d:[0-5]\d:[0-5]\d([+-][0-2]\d:[0-5]\d|Z))"
    r"|(\d{4}-[01]\d-[0-3]\dT[0-2]\d:[0-5]\d([+-][0-2]\d:[0-5]\d|Z))"
)
_GID_NAME = r"^([A-Za-z]{1,1}|[A-Za-z0-9_]{2,15})$"
_UUID = r"^[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12}$"


def _ipv4(value: str) -> str:
    IPv4Address(value)
    return value


GlobaliD = Annotated[str, StringConstraints(pattern=_GID_NAME)]
UUIDString = Annotated[str, StringConstraints(pattern=_UUID)]
DateUTC = Annotated[str, StringConstraints(pattern=_DATE_ISO_UTC)]
Currency = Annotated[str, StringConstraints(min_length=3, max_length=10)]
IPv4 = Annotated[str, AfterValidator(_ipv4)]
Latitude = Annotated[float, Field(ge=-90, le=90)]
Longitude = Annotated[float, Field(ge=-180, le=180)]
