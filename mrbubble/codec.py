"""Conversion between domain records and ``google.protobuf.Struct``.

Records go out as JSON-shaped dicts: Decimals as strings, datetimes as ISO
8601, enums as their values. Struct carries every number as a double, so
integer fields are coerced back on the way in.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from google.protobuf import json_format
from google.protobuf.struct_pb2 import Struct

from .errors import InvalidInputError


def to_jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def encode(value: Any) -> Struct:
    """Record or dict to Struct."""
    message = Struct()
    json_format.ParseDict(to_jsonable(value), message)
    return message


def decode(message: Struct) -> dict:
    """Struct to a plain dict."""
    return json_format.MessageToDict(message)


def required(payload: dict, name: str) -> Any:
    value = payload.get(name)
    if value is None or value == "":
        raise InvalidInputError(f"Missing field: {name}")
    return value


def optional_int(payload: dict, name: str) -> Optional[int]:
    """Integer field that arrived as a double; None when absent."""
    value = payload.get(name)
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidInputError(f"Field {name} must be an integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidInputError(f"Field {name} must be an integer: {value!r}")
        return int(value)
    if isinstance(value, int):
        return value
    raise InvalidInputError(f"Field {name} must be an integer: {value!r}")
