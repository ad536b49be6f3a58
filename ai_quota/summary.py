from collections.abc import Iterable, Mapping
from datetime import datetime, timezone

from .models import GlobalSummary, ProviderResult, ResultStatus
from .rows import LOW_QUOTA_PERCENT, max_used_percent

Results = Mapping[str, ProviderResult] | Iterable[ProviderResult]


def _values(results: Results) -> list[ProviderResult]:
    if isinstance(results, Mapping):
        return list(results.values())
    return list(results)


def max_stress(results: Results, now: datetime | None = None) -> int:
    """Highest usage percentage across all ok results (0 if none)."""
    now = now or datetime.now(timezone.utc)
    stress = 0
    for result in _values(results):
        if result.status != ResultStatus.OK:
            continue
        used = max_used_percent(result.data, now)
        if used is not None:
            stress = max(stress, used)
    return stress


def summarize(results: Results, now: datetime | None = None) -> GlobalSummary:
    """Overall verdict: any hard failure is critical, high usage is a warning."""
    values = _values(results)
    failed = sum(1 for r in values if r.status == ResultStatus.ERROR)
    if failed > 0:
        return GlobalSummary(
            status="critical",
            message=f"{failed} provider(s) failed to report quota.",
        )

    stress = max_stress(values, now)
    if stress >= LOW_QUOTA_PERCENT:
        return GlobalSummary(status="warning", message=f"Usage is high (up to {stress}%).")

    return GlobalSummary(status="healthy", message="All providers are within limits.")
