"""Epoch-millisecond helpers shared by the records, state, and scan code."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def iso_from_ms(value: float | None) -> str | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()


def finite_number(value: Any) -> float | None:
    """Coerce loosely-typed JSON numbers (including numeric strings) to float."""

    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            parsed = float(value)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def timestamp_to_ms(value: Any) -> float | None:
    """Normalize a transcript timestamp (epoch seconds, epoch ms, or ISO-8601) to epoch ms."""

    numeric = finite_number(value)
    if numeric is not None:
        return numeric if numeric > 1_000_000_000_000 else numeric * 1000
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp() * 1000
    return None
