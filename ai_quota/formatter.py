import math
from datetime import datetime

from .models import DisplayRow

TABLE_HEADERS = ("PROVIDER", "STATUS", "LIMIT", "DETAILS")


def clamp_percent(value: float) -> float:
    """Clamp a percentage to [0, 100]; non-finite values become 0."""
    if not math.isfinite(value):
        return 0.0
    return min(100.0, max(0.0, value))


def round_percent(value: float) -> int:
    """Round half-up to a whole percentage, then clamp."""
    if not math.isfinite(value):
        return 0
    return int(clamp_percent(math.floor(value + 0.5)))


def format_reset_in(reset_at: datetime, now: datetime) -> str:
    """Format the time until ``reset_at`` as e.g. "1d 5m" or "2h 15m".

    Minutes are truncated. Days and hours appear only when non-zero; minutes
    appear when non-zero or when they are the only unit.
    """
    seconds = (reset_at - now).total_seconds()
    if seconds <= 0:
        return "already reset"
    total_minutes = int(seconds // 60)
    days, remainder = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(remainder, 60)

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0 or not parts:
        parts.append(f"{minutes}m")
    return " ".join(parts)


def format_table(rows: list[DisplayRow]) -> str:
    """Render rows as an aligned plain-text table."""
    cells = [(r.provider, r.urgency.value, r.limit, r.details) for r in rows]

    widths = [len(h) for h in TABLE_HEADERS]
    for row in cells:
        for i, value in enumerate(row):
            widths[i] = max(widths[i], len(value))

    def _line(values: tuple[str, ...]) -> str:
        padded = [value.ljust(widths[i]) for i, value in enumerate(values[:-1])]
        return "  ".join(padded + [values[-1]])

    lines = [_line(TABLE_HEADERS)]
    lines.append("  ".join("-" * w for w in widths))
    for row in cells:
        lines.append(_line(row))
    return "\n".join(lines)
