# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""Small value helpers shared by the provider parsers."""

import re
from datetime import datetime, timezone
from typing import Any, Optional

_NUMERIC_RE = re.compile(r"^-?\d+(\.\d+)?$")


def plan_label(value: Any) -> Optional[str]:
    """Capitalize each word: "max" -> "Max", "pro plus" -> "Pro Plus"."""
    text = str(value or "").strip()
    if not text:
        return None
    return re.sub(r"(^|\s)([a-z])", lambda m: m.group(1) + m.group(2).upper(), text)


def dollars(cents: float) -> float:
    return round(cents / 100.0, 2)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def reset_in(seconds_until: float) -> Optional[str]:
    """Compact countdown: "2d 3h", "4h 10m", "12m", "<1m"."""
    if seconds_until is None or seconds_until < 0:
        return None
    total_minutes = int(seconds_until // 60)
    total_hours = total_minutes // 60
    days = total_hours // 24
    if days > 0:
        return f"{days}d {total_hours % 24}h"
    if total_hours > 0:
        return f"{total_hours}h {total_minutes % 60}m"
    if total_minutes > 0:
        return f"{total_minutes}m"
    return "<1m"


def _from_epoch(number: float) -> Optional[datetime]:
    # Values below 1e10 are seconds, above are milliseconds
    ms = number * 1000 if abs(number) < 1e10 else number
    try:
        return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if is_number(value):
        return _from_epoch(float(value))
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    if _NUMERIC_RE.match(text):
        return _from_epoch(float(text))
    if text.endswith(" UTC"):
        text = text[:-4] + "Z"
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = re.sub(r"([+-]\d{2})(\d{2})$", r"\1:\2", text)
    # fromisoformat before 3.11 wants exactly 3 or 6 fractional digits
    text = re.sub(r"\.(\d+)", lambda m: "." + m.group(1)[:6].ljust(6, "0"), text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_date_ms(value: Any) -> Optional[int]:
    parsed = _parse_datetime(value)
    return int(parsed.timestamp() * 1000) if parsed else None


def to_iso(value: Any) -> Optional[str]:
    """Normalize a timestamp (ISO string, epoch seconds or ms) to UTC ISO-8601."""
    parsed = _parse_datetime(value)
    if parsed is None:
        return None
    return (
        parsed.astimezone(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )
