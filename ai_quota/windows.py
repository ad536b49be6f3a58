"""Normalization and slot classification of vendor rate-limit windows.

Vendors describe the same window in several spellings (camelCase or
snake_case, absolute reset timestamps or seconds-until-reset). Each logical
attribute is resolved from an ordered table of accepted field names: the
first finite number wins.
"""

import math
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from .models import ClassifiedWindow, ClassifiedWindows, NormalizedWindow

USED_PERCENT_FIELDS = ("usedPercent", "used_percent")
WINDOW_MINUTES_FIELDS = ("windowDurationMins", "windowMinutes", "window_minutes")
RESETS_AT_FIELDS = ("resetsAt", "resets_at")
RESET_AFTER_FIELDS = ("resetAfterSeconds", "reset_after_seconds")

# A lone window at least this long is the weekly one.
LONG_WINDOW_MINUTES = 24 * 60


def finite_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def _first_finite(raw: Mapping[str, Any], fields: tuple[str, ...]) -> float | None:
    for name in fields:
        value = finite_number(raw.get(name))
        if value is not None:
            return value
    return None


def normalize_window(raw: Any, now: datetime) -> NormalizedWindow | None:
    """Reduce one raw window record to a NormalizedWindow.

    Returns None when no usable percentage is present. The reset time falls
    back to ``now + reset_after`` and then ``now + window_minutes``; when
    neither is known ``reset_at`` stays None and the window is not
    displayable.
    """
    if not isinstance(raw, Mapping):
        return None

    used_percent = _first_finite(raw, USED_PERCENT_FIELDS)
    if used_percent is None:
        return None

    window_minutes = _first_finite(raw, WINDOW_MINUTES_FIELDS)

    reset_at: datetime | None = None
    resets_at = _first_finite(raw, RESETS_AT_FIELDS)
    if resets_at is not None:
        try:
            reset_at = datetime.fromtimestamp(resets_at, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            reset_at = None
    if reset_at is None:
        reset_after = _first_finite(raw, RESET_AFTER_FIELDS)
        if reset_after is not None:
            reset_at = now + timedelta(seconds=reset_after)
        elif window_minutes is not None:
            reset_at = now + timedelta(minutes=window_minutes)

    return NormalizedWindow(
        used_percent=used_percent,
        window_minutes=window_minutes,
        reset_at=reset_at,
    )


def _place(window: NormalizedWindow, slot: str) -> ClassifiedWindow:
    return ClassifiedWindow(
        slot=slot,
        used_percent=window.used_percent,
        reset_at=window.reset_at,
        window_minutes=window.window_minutes,
    )


def classify_windows(
    primary: NormalizedWindow | None,
    secondary: NormalizedWindow | None,
) -> ClassifiedWindows:
    """Assign up to two normalized windows to the short and long slots.

    Windows without a reset time are dropped first. With two windows of
    known duration the shorter one is "short" (primary on a tie); if either
    duration is unknown the primary is "short". A lone window is "long" only
    when it spans at least a day.
    """
    usable = [w for w in (primary, secondary) if w is not None and w.reset_at is not None]

    if len(usable) == 2:
        first, second = usable
        if (
            first.window_minutes is not None
            and second.window_minutes is not None
            and second.window_minutes < first.window_minutes
        ):
            first, second = second, first
        return ClassifiedWindows(short=_place(first, "short"), long=_place(second, "long"))

    if len(usable) == 1:
        lone = usable[0]
        if lone.window_minutes is not None and lone.window_minutes >= LONG_WINDOW_MINUTES:
            return ClassifiedWindows(long=_place(lone, "long"))
        return ClassifiedWindows(short=_place(lone, "short"))

    return ClassifiedWindows()


def snapshot_windows(
    primary: Any,
    secondary: Any,
    now: datetime,
) -> ClassifiedWindows:
    """Normalize and classify a primary/secondary window pair."""
    return classify_windows(normalize_window(primary, now), normalize_window(secondary, now))
