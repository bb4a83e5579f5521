"""Tolerant JSON field decoding shared by all exchange adapters.

Exchanges send numbers either as JSON numbers or as numeric strings, and
timestamps as integer or string milliseconds. These helpers accept both and
raise DecodeError for anything else, so adapters never duplicate the rules.
"""

import json
from decimal import Decimal, InvalidOperation
from typing import Any

from fundsync.exceptions import DecodeError


def load_json(raw: bytes | str, what: str) -> Any:
    """Parse a response body, raising DecodeError on malformed JSON."""
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise DecodeError(f"malformed JSON in {what} response", {"what": what}) from exc


def require(obj: Any, key: str, what: str) -> Any:
    """Return obj[key], raising DecodeError if obj is not a mapping or key is missing."""
    if not isinstance(obj, dict):
        raise DecodeError(
            f"expected object in {what}, got {type(obj).__name__}", {"what": what}
        )
    if key not in obj:
        raise DecodeError(f"missing field '{key}' in {what}", {"what": what, "field": key})
    return obj[key]


def require_list(obj: Any, key: str, what: str) -> list:
    """Return obj[key] and check it is a JSON array."""
    value = require(obj, key, what)
    if not isinstance(value, list):
        raise DecodeError(f"field '{key}' in {what} is not a list", {"what": what, "field": key})
    return value


def decimal_or_str(value: Any, field: str) -> Decimal:
    """Decode a JSON number or numeric string into a Decimal.

    Floats go through str() so 0.0001 stays Decimal("0.0001"). NaN and
    infinities are rejected whether they arrive as strings or as the bare
    JSON tokens json.loads turns into floats.
    """
    if isinstance(value, bool):
        raise DecodeError(f"field '{field}' is a boolean, expected a number", {"field": field})
    if isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation as exc:
            raise DecodeError(
                f"field '{field}' is not numeric: {value!r}", {"field": field}
            ) from exc
    else:
        raise DecodeError(
            f"field '{field}' has unsupported type {type(value).__name__}", {"field": field}
        )
    if not result.is_finite():
        raise DecodeError(f"field '{field}' is not finite: {value!r}", {"field": field})
    return result


def optional_decimal(value: Any, field: str) -> Decimal | None:
    """Like decimal_or_str, but null and empty strings decode to None."""
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return decimal_or_str(value, field)


def int_or_str(value: Any, field: str) -> int:
    """Decode an integer or integer string (e.g. millisecond timestamps)."""
    if isinstance(value, bool):
        raise DecodeError(f"field '{field}' is a boolean, expected an integer", {"field": field})
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError as exc:
            raise DecodeError(
                f"field '{field}' is not an integer: {value!r}", {"field": field}
            ) from exc
    raise DecodeError(
        f"field '{field}' has unsupported type {type(value).__name__}", {"field": field}
    )


def price_fallback(*candidates: Decimal | None) -> Decimal | None:
    """Return the first present price in a fallback chain (mark, index, last)."""
    for price in candidates:
        if price is not None:
            return price
    return None


def base_oi_to_usd(open_interest_base: Decimal | None, price: Decimal | None) -> Decimal | None:
    """Convert base-unit open interest to USD.

    Without a price the result is None: open interest is never left in base
    units or defaulted to zero.
    """
    if open_interest_base is None or price is None:
        return None
    return open_interest_base * price
