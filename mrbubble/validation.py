"""Validation helpers for boundary and precondition checks.

Eliminates repeated validation boilerplate across the logic modules.
"""

from collections.abc import Sequence
from typing import Any, Optional, TypeVar

from .errors import InvalidInputError, NotFoundError, errmsg

T = TypeVar("T")


def require_found(entity: Optional[T], error_msg: str) -> T:
    """Require that a lookup returned an entity."""
    if entity is None:
        raise NotFoundError(error_msg)
    return entity


def require_present(field: str, error_msg: str) -> None:
    """Require that a text field is non-empty."""
    if not field:
        raise InvalidInputError(error_msg)


def require_positive(value, error_msg: str) -> None:
    """Require that a value is greater than zero."""
    if value <= 0:
        raise InvalidInputError(error_msg)


def require_non_negative(value: int, error_msg: str) -> None:
    """Require that a value is zero or greater."""
    if value < 0:
        raise InvalidInputError(error_msg)


def require_not_empty(items: Sequence[Any], error_msg: str) -> None:
    """Require that a sequence has at least one element."""
    if not items:
        raise InvalidInputError(error_msg)


def require_between(value, low, high, error_msg: str) -> None:
    """Require that low <= value <= high."""
    if value < low or value > high:
        raise InvalidInputError(error_msg)


def require_cents(value: Any, error_msg: str = errmsg.NEGATIVE_AMOUNT) -> int:
    """Require a non-negative integer amount in minor units."""
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        else:
            raise InvalidInputError(f"Amount must be whole cents: {value!r}")
    require_non_negative(value, error_msg)
    return value


def require_geo(lat: Any, lng: Any) -> Optional[tuple[float, float]]:
    """Validate an optional (lat, lng) pair.

    Returns None when both are absent. One without the other, a
    non-numeric value or an out-of-range coordinate is malformed.
    """
    if lat is None and lng is None:
        return None
    if lat is None or lng is None:
        raise InvalidInputError(errmsg.INVALID_GEO)
    try:
        if isinstance(lat, bool) or isinstance(lng, bool):
            raise TypeError("bool is not a coordinate")
        lat_f = float(lat)
        lng_f = float(lng)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(errmsg.INVALID_GEO, e) from e
    if lat_f != lat_f or lng_f != lng_f:
        raise InvalidInputError(errmsg.INVALID_GEO)
    require_between(lat_f, -90.0, 90.0, errmsg.INVALID_GEO)
    require_between(lng_f, -180.0, 180.0, errmsg.INVALID_GEO)
    return lat_f, lng_f
