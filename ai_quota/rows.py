"""Display rows built from provider results.

Every provider payload is reduced to a list of UsageWindow values (see
``usage_windows``). Windowed providers collapse their windows into one row,
most-constraining window first; per-track providers get one row per track.
"""

import logging
from datetime import datetime, timezone
from functools import singledispatch
from typing import Any

from pydantic import BaseModel, ConfigDict

from .errors import ReasonCode
from .formatter import clamp_percent, format_reset_in, round_percent
from .models import (
    ClaudeUsageBucket,
    ClaudeUsageData,
    CopilotUsage,
    DisplayRow,
    GeminiUsage,
    ProviderResult,
    RateLimitSnapshot,
    ResultStatus,
    Urgency,
)
from .windows import normalize_window, snapshot_windows

logger = logging.getLogger(__name__)

SLOT_LABELS = {"short": "5h", "long": "7d"}
FIVE_HOUR_MINUTES = 5 * 60
SEVEN_DAY_MINUTES = 7 * 24 * 60

LOW_QUOTA_PERCENT = 80
LOGIN_REASONS = frozenset({ReasonCode.NO_CREDENTIALS, ReasonCode.AUTH_FAILED})

# Gemini model families, in display order.
GEMINI_FAMILIES = ("pro", "flash")

# Payload types that yield one row per track instead of one row per provider.
PER_TRACK_TYPES: tuple[type, ...] = (GeminiUsage,)


class UsageWindow(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str | None
    limit: str
    used_percent: int
    reset_at: datetime

    def describe(self, now: datetime, with_label: bool = True) -> str:
        text = f"{self.used_percent}% used (resets in {format_reset_in(self.reset_at, now)})"
        if with_label and self.label:
            return f"{self.label}: {text}"
        return text


def urgency_for(used_percent: float) -> Urgency:
    clamped = clamp_percent(used_percent)
    if clamped >= 100:
        return Urgency.WAIT_RESET
    if clamped >= LOW_QUOTA_PERCENT:
        return Urgency.LOW_QUOTA
    return Urgency.CAN_USE


def most_constraining_first(windows: list[UsageWindow]) -> list[UsageWindow]:
    """Highest usage first, then sooner reset; otherwise input order."""
    return sorted(windows, key=lambda w: (-w.used_percent, w.reset_at))


def gemini_family(model_id: str) -> str | None:
    lowered = model_id.lower()
    for family in GEMINI_FAMILIES:
        if family in lowered:
            return family
    return None


@singledispatch
def usage_windows(data: Any, now: datetime) -> list[UsageWindow]:
    """Displayable usage windows for a provider payload."""
    return []


def _bucket_window(bucket: ClaudeUsageBucket | None, minutes: int) -> dict[str, Any] | None:
    if bucket is None:
        return None
    return {
        "used_percent": bucket.utilization,
        "window_minutes": minutes,
        "resets_at": bucket.resets_at.timestamp(),
    }


@usage_windows.register
def _claude_windows(data: ClaudeUsageData, now: datetime) -> list[UsageWindow]:
    classified = snapshot_windows(
        _bucket_window(data.five_hour, FIVE_HOUR_MINUTES),
        _bucket_window(data.seven_day, SEVEN_DAY_MINUTES),
        now,
    )
    sonnet = normalize_window(_bucket_window(data.seven_day_sonnet, SEVEN_DAY_MINUTES), now)
    if sonnet is not None and sonnet.reset_at is None:
        sonnet = None

    windows = []
    for w in classified.windows():
        label = SLOT_LABELS[w.slot]
        if w.slot == "long" and sonnet is not None:
            label = "7d (all models)"
        windows.append(
            UsageWindow(
                label=label,
                limit=SLOT_LABELS[w.slot],
                used_percent=round_percent(w.used_percent),
                reset_at=w.reset_at,
            )
        )
    if sonnet is not None:
        windows.append(
            UsageWindow(
                label="7d (sonnet only)",
                limit="7d",
                used_percent=round_percent(sonnet.used_percent),
                reset_at=sonnet.reset_at,
            )
        )
    return windows


@usage_windows.register
def _codex_windows(data: RateLimitSnapshot, now: datetime) -> list[UsageWindow]:
    classified = snapshot_windows(data.primary, data.secondary, now)
    return [
        UsageWindow(
            label=SLOT_LABELS[w.slot],
            limit=SLOT_LABELS[w.slot],
            used_percent=round_percent(w.used_percent),
            reset_at=w.reset_at,
        )
        for w in classified.windows()
    ]


@usage_windows.register
def _copilot_windows(data: CopilotUsage, now: datetime) -> list[UsageWindow]:
    return [
        UsageWindow(
            label=None,
            limit="-",
            used_percent=round_percent(100 - clamp_percent(data.percent_remaining)),
            reset_at=data.reset_at,
        )
    ]


@usage_windows.register
def _gemini_windows(data: GeminiUsage, now: datetime) -> list[UsageWindow]:
    by_family: dict[str, UsageWindow] = {}
    for model_id, usage in data.root.items():
        family = gemini_family(model_id)
        if family is None or family in by_family:
            continue
        by_family[family] = UsageWindow(
            label=family,
            limit=family,
            used_percent=round_percent(usage.usage),
            reset_at=usage.reset_at,
        )
    return [by_family[f] for f in GEMINI_FAMILIES if f in by_family]


def describe_usage(data: Any, now: datetime | None = None) -> str:
    """One-line summary of a payload, most-constraining window first."""
    now = now or datetime.now(timezone.utc)
    windows = usage_windows(data, now)
    if not windows:
        return "no data"
    return ", ".join(w.describe(now) for w in most_constraining_first(windows))


def _failure_row(provider: str, reason: ReasonCode | None) -> DisplayRow:
    if reason in LOGIN_REASONS:
        return DisplayRow(
            provider=provider,
            urgency=Urgency.LOGIN_REQUIRED,
            limit="-",
            details="login required",
        )
    details = f"fetch failed ({reason.value})" if reason is not None else "fetch failed"
    return DisplayRow(provider=provider, urgency=Urgency.FETCH_FAILED, limit="-", details=details)


def provider_rows(provider: str, result: ProviderResult, now: datetime) -> list[DisplayRow]:
    if result.status != ResultStatus.OK:
        return [_failure_row(provider, result.reason)]

    windows = usage_windows(result.data, now)
    if not windows:
        return [DisplayRow(provider=provider, urgency=Urgency.FETCH_FAILED, limit="-", details="no data")]

    if isinstance(result.data, PER_TRACK_TYPES):
        return [
            DisplayRow(
                provider=f"{provider}/{w.limit}",
                urgency=urgency_for(w.used_percent),
                limit=w.limit,
                details=w.describe(now, with_label=False),
            )
            for w in windows
        ]

    ordered = most_constraining_first(windows)
    lead = ordered[0]
    return [
        DisplayRow(
            provider=provider,
            urgency=urgency_for(lead.used_percent),
            limit=lead.limit,
            details=", ".join(w.describe(now) for w in ordered),
        )
    ]


def build_rows(
    results: dict[str, ProviderResult],
    providers: list[str],
    now: datetime | None = None,
) -> list[DisplayRow]:
    """Build display rows for ``providers``, in the order given."""
    now = now or datetime.now(timezone.utc)
    rows: list[DisplayRow] = []
    for provider in providers:
        result = results.get(provider)
        if result is None:
            rows.append(_failure_row(provider, None))
            continue
        try:
            rows.extend(provider_rows(provider, result, now))
        except Exception as e:
            logger.warning("Could not build rows for %s: %s", provider, e, exc_info=True)
            rows.append(_failure_row(provider, ReasonCode.UNKNOWN))
    return rows


def max_used_percent(data: Any, now: datetime) -> int | None:
    windows = usage_windows(data, now)
    if not windows:
        return None
    return max(w.used_percent for w in windows)

