"""Total conversions for the loosely-typed values the POS API returns.

Poster sends money as decimal strings ("10.50", sometimes "10,50") and dates
either as millisecond epochs in a string or as "YYYY-MM-DD HH:MM:SS" in UTC.
None of these helpers raise.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import ROUND_HALF_UP, Context, Decimal, InvalidOperation
from typing import Any

from poster_sync.utils.time import iso_z, parse_iso

EPOCH_MS_MIN = 946_684_800_000  # 2000-01-01T00:00:00Z
EPOCH_MS_MAX = 4_102_444_800_000  # 2100-01-01T00:00:00Z

# Past the float range a value is treated like an infinity.
MAX_CENTS_EXPONENT = 308
_CENTS_CONTEXT = Context(prec=400, rounding=ROUND_HALF_UP)


def _to_decimal(value: Any) -> Decimal | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        raw = str(value)
    elif isinstance(value, str):
        raw = value.strip().replace(",", ".", 1)
        if not raw:
            return None
    else:
        return None
    try:
        number = Decimal(raw)
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def to_cents(value: Any) -> int:
    number = _to_decimal(value)
    if number is None or number.adjusted() > MAX_CENTS_EXPONENT:
        return 0
    cents = number.scaleb(2, context=_CENTS_CONTEXT)
    return int(cents.to_integral_value(context=_CENTS_CONTEXT))


def optional_cents(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return to_cents(value)


def to_iso(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    s = str(value).strip()
    if not s:
        return None

    if s.isascii() and s.isdigit():
        ms = int(s)
        if EPOCH_MS_MIN <= ms < EPOCH_MS_MAX:
            moment = datetime.fromtimestamp(ms // 1000, tz=UTC)
            return iso_z(moment + timedelta(milliseconds=ms % 1000))
        return None

    parsed = parse_iso(s.replace(" ", "T", 1))
    return None if parsed is None else iso_z(parsed)


def to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        number = _to_decimal(value)
        return None if number is None else int(number)


def to_id(value: Any) -> int | None:
    """Positive source id, or None for missing, zero or garbage values."""
    number = to_int(value)
    return number if number is not None and number > 0 else None
