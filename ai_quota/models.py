from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, RootModel, model_validator

from .errors import ReasonCode


class NormalizedWindow(BaseModel):
    """A rate-limit window reduced to one field per attribute.

    ``used_percent`` keeps the vendor value as-is (it may fall outside 0-100);
    clamping happens where the value is displayed.
    """
    used_percent: float
    window_minutes: float | None = None
    reset_at: datetime | None = None


class ClassifiedWindow(BaseModel):
    """A normalized window assigned to the short (~5h) or long (~7d) slot."""
    model_config = ConfigDict(frozen=True)

    slot: Literal["short", "long"]
    used_percent: float
    reset_at: datetime
    window_minutes: float | None = None


class ClassifiedWindows(BaseModel):
    model_config = ConfigDict(frozen=True)

    short: ClassifiedWindow | None = None
    long: ClassifiedWindow | None = None

    @property
    def is_empty(self) -> bool:
        return self.short is None and self.long is None

    def windows(self) -> list[ClassifiedWindow]:
        """Present windows, short slot first."""
        return [w for w in (self.short, self.long) if w is not None]


class ClaudeUsageBucket(BaseModel):
    """A Claude rolling-window bucket; utilization is a percentage (0-100)."""
    utilization: float
    resets_at: datetime


class ClaudeExtraUsage(BaseModel):
    is_enabled: bool = False
    monthly_limit: float | None = None
    used_credits: float = 0.0
    utilization: float = 0.0


class ClaudeUsageData(BaseModel):
    five_hour: ClaudeUsageBucket | None = None
    seven_day: ClaudeUsageBucket | None = None
    seven_day_sonnet: ClaudeUsageBucket | None = None
    extra_usage: ClaudeExtraUsage | None = None


class RateLimitSnapshot(BaseModel):
    """Codex rate limits; windows stay vendor-shaped until normalization."""
    primary: dict[str, Any] | None = None
    secondary: dict[str, Any] | None = None
    credits: float | None = None
    plan_type: str | None = None


class CopilotUsage(BaseModel):
    percent_remaining: float
    reset_at: datetime
    entitlement: float
    overage_used: float = 0.0
    overage_enabled: bool = False
    source: Literal["user", "header"]


class GeminiModelUsage(BaseModel):
    limit: float
    usage: float
    reset_at: datetime


class GeminiUsage(RootModel[dict[str, GeminiModelUsage]]):
    """Per-model usage keyed by the vendor's model id."""
    root: dict[str, GeminiModelUsage] = {}


class ResultStatus(str, Enum):
    OK = "ok"
    NO_DATA = "no-data"
    ERROR = "error"


class ProviderResult(BaseModel):
    """Outcome of one provider fetch, ready for any renderer."""
    model_config = ConfigDict(frozen=True)

    status: ResultStatus
    data: Any = None
    reason: ReasonCode | None = None
    error: str | None = None
    display: str

    @model_validator(mode="after")
    def _check_consistency(self) -> "ProviderResult":
        if self.status == ResultStatus.OK:
            if self.data is None:
                raise ValueError("an ok result must carry data")
            if self.reason is not None:
                raise ValueError("an ok result cannot carry a reason")
        elif self.data is not None:
            raise ValueError(f"a {self.status.value} result cannot carry data")
        if not self.display:
            raise ValueError("display must not be empty")
        return self


class Urgency(str, Enum):
    CAN_USE = "CAN_USE"
    LOW_QUOTA = "LOW_QUOTA"
    WAIT_RESET = "WAIT_RESET"
    LOGIN_REQUIRED = "LOGIN_REQUIRED"
    FETCH_FAILED = "FETCH_FAILED"


class DisplayRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: str
    urgency: Urgency
    limit: str
    details: str


class GlobalSummary(BaseModel):
    status: Literal["healthy", "warning", "critical"]
    message: str


class QuotaReport(BaseModel):
    """Results for every supported provider plus the overall verdict."""
    results: dict[str, ProviderResult]
    summary: GlobalSummary

    @property
    def has_errors(self) -> bool:
        return any(r.status == ResultStatus.ERROR for r in self.results.values())

    def to_json_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            name: result.model_dump(mode="json")
            for name, result in self.results.items()
        }
        out["summary"] = self.summary.model_dump(mode="json")
        return out
