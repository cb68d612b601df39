"""
Conversion of database column values into sample values and label values.

Drivers hand back int, float, Decimal, bool, datetime/date, bytes-like,
str or None. Network addresses, UUIDs and intervals are read through
their text form. Anything else is an unknown kind.
"""

from __future__ import annotations

import ipaddress
import math
import re
import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any

import structlog

logger = structlog.get_logger()

NAN = float("nan")

# Base-10 or exponential notation, plus the special values a database may render.
_FLOAT_RE = re.compile(
    r"[+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|inf|infinity|nan)",
    re.IGNORECASE,
)

_BYTES_TYPES = (bytes, bytearray, memoryview)

# psycopg adapts these to objects; their str() is the server's text form.
_TEXT_FORM_TYPES = (
    ipaddress.IPv4Address,
    ipaddress.IPv6Address,
    ipaddress.IPv4Interface,
    ipaddress.IPv6Interface,
    ipaddress.IPv4Network,
    ipaddress.IPv6Network,
    uuid.UUID,
    timedelta,
)


def _as_datetime(value: date) -> datetime:
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _parse_float(text: str) -> tuple[float, bool]:
    if not _FLOAT_RE.fullmatch(text):
        logger.debug("unparseable_number", value=text)
        return NAN, False
    return float(text), True


def to_number(value: Any) -> tuple[float, bool]:
    """
    Convert a column value to a float sample value.

    NULL is a valid absence and yields ``(nan, True)``. Only unparseable
    text/bytes and unknown kinds return ``ok=False``.
    """
    if value is None:
        return NAN, True
    if isinstance(value, bool):
        return (1.0 if value else 0.0), True
    if isinstance(value, int):
        try:
            return float(value), True
        except OverflowError:
            return (math.inf if value > 0 else -math.inf), True
    if isinstance(value, (float, Decimal)):
        return float(value), True
    if isinstance(value, date):
        return float(math.floor(_as_datetime(value).timestamp())), True
    if isinstance(value, _BYTES_TYPES):
        try:
            text = bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return NAN, False
        return _parse_float(text)
    if isinstance(value, str):
        return _parse_float(value)
    if isinstance(value, _TEXT_FORM_TYPES):
        return _parse_float(str(value))
    return NAN, False


def format_float(value: float) -> str:
    """
    Shortest round-trip rendering in %g style.

    Integral values print without a fractional part and the exponent form
    is used below 1e-4 and from 1e6 up.
    """
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"

    sign, digits, exponent = Decimal(repr(value)).normalize().as_tuple()
    mantissa = "".join(str(d) for d in digits)
    point = len(mantissa) + exponent  # position of the decimal point
    exp10 = point - 1
    prefix = "-" if sign else ""

    if exp10 < -4 or exp10 >= 6:
        head, tail = mantissa[0], mantissa[1:]
        body = f"{head}.{tail}" if tail else head
        return f"{prefix}{body}e{'-' if exp10 < 0 else '+'}{abs(exp10):02d}"
    if point <= 0:
        return f"{prefix}0.{'0' * -point}{mantissa}"
    if point >= len(mantissa):
        return f"{prefix}{mantissa}{'0' * (point - len(mantissa))}"
    return f"{prefix}{mantissa[:point]}.{mantissa[point:]}"


def format_rfc3339(value: datetime) -> str:
    """RFC 3339 timestamp, fractional seconds trimmed, ``Z`` for UTC."""
    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    if value.microsecond:
        text += f".{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset()
    if not offset:
        return text + "Z"
    minutes = int(offset.total_seconds()) // 60
    sign = "+" if minutes >= 0 else "-"
    hours, minutes = divmod(abs(minutes), 60)
    return f"{text}{sign}{hours:02d}:{minutes:02d}"


def to_text(value: Any, time_as_string: bool = False) -> tuple[str, bool]:
    """
    Convert a column value to a label value.

    NULL becomes the empty string. Bytes are reinterpreted as UTF-8 with
    surrogate escapes so malformed sequences survive until the encoding
    check. Unknown kinds yield ``("", False)``.
    """
    if value is None:
        return "", True
    if isinstance(value, bool):
        return ("true" if value else "false"), True
    if isinstance(value, int):
        return str(value), True
    if isinstance(value, float):
        return format_float(value), True
    if isinstance(value, Decimal):
        return format_float(float(value)), True
    if isinstance(value, date):
        moment = _as_datetime(value)
        if time_as_string:
            return format_rfc3339(moment), True
        seconds = math.floor(moment.timestamp())
        return f"{seconds}{moment.microsecond // 1000:03d}", True
    if isinstance(value, _BYTES_TYPES):
        return bytes(value).decode("utf-8", errors="surrogateescape"), True
    if isinstance(value, str):
        return value, True
    if isinstance(value, _TEXT_FORM_TYPES):
        return str(value), True
    return "", False
