"""
Named field transforms applied by transformation rules.

Each transform takes the (non-null) field value and the rule parameters
and returns the new value, raising ValueError when the value cannot be
transformed.
"""

import math
from datetime import date, datetime, timezone
from typing import Any, Callable

from dateutil import parser as date_parser

TransformFunc = Callable[[Any, dict[str, Any]], Any]

DEFAULT_DATE_FORMAT = "%Y-%m-%d"


def uppercase(value: Any, params: dict[str, Any]) -> str:
    return str(value).upper()


def lowercase(value: Any, params: dict[str, Any]) -> str:
    return str(value).lower()


def trim(value: Any, params: dict[str, Any]) -> str:
    return str(value).strip()


def date_format(value: Any, params: dict[str, Any]) -> str:
    """
    Re-format a date.

    Accepts datetime/date objects, epoch milliseconds and any string
    dateutil can parse. ``params["format"]`` is a strftime pattern.
    """
    fmt = params.get("format") or DEFAULT_DATE_FORMAT

    if isinstance(value, datetime | date):
        parsed = value
    elif isinstance(value, int | float) and not isinstance(value, bool):
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    else:
        try:
            parsed = date_parser.parse(str(value))
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Cannot parse '{value}' as a date: {e}")

    return parsed.strftime(fmt)


def number_format(value: Any, params: dict[str, Any]) -> int | float:
    """
    Coerce to a number, optionally rounded to ``params["decimals"]`` places.

    Zero decimals yields an int.
    """
    if isinstance(value, bool):
        raise ValueError("Value is not a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Value '{value}' is not a number")
    if math.isnan(number):
        raise ValueError("Value is not a number")

    decimals = params.get("decimals")
    if decimals is None:
        return int(number) if number.is_integer() and not isinstance(value, float) else number
    if int(decimals) == 0:
        return int(round(number))
    return round(number, int(decimals))


def custom(value: Any, params: dict[str, Any]) -> Any:
    """Apply ``params["function"]`` (a callable taking the value); identity without one."""
    func = params.get("function") or params.get("customFunction")
    if func is None:
        return value
    if not callable(func):
        raise ValueError("Custom transform 'function' is not callable")
    return func(value)


BUILTIN_TRANSFORMS: dict[str, TransformFunc] = {
    "uppercase": uppercase,
    "lowercase": lowercase,
    "trim": trim,
    "date_format": date_format,
    "number_format": number_format,
    "custom": custom,
}
