from datetime import datetime, timedelta, timezone

import pytest

from ai_quota.errors import ReasonCode
from ai_quota.models import (
    ClaudeUsageBucket,
    ClaudeUsageData,
    CopilotUsage,
    GeminiModelUsage,
    GeminiUsage,
    RateLimitSnapshot,
    Urgency,
)
from ai_quota.results import error_result, no_data_result, ok_result
from ai_quota.rows import build_rows, describe_usage, gemini_family, urgency_for, usage_windows

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def claude_usage():
    return ClaudeUsageData(
        five_hour=ClaudeUsageBucket(utilization=10, resets_at=NOW + timedelta(hours=2, minutes=11)),
        seven_day=ClaudeUsageBucket(utilization=22, resets_at=NOW + timedelta(days=5, hours=16, minutes=11)),
    )


@pytest.fixture
def codex_snapshot():
    return RateLimitSnapshot(
        primary={
            "used_percent": 0,
            "windowDurationMins": 300,
            "resetsAt": (NOW + timedelta(hours=4)).timestamp(),
        },
        secondary={
            "used_percent": 100,
            "windowDurationMins": 10080,
            "resetsAt": (NOW + timedelta(days=2)).timestamp(),
        },
        plan_type="plus",
    )


@pytest.fixture
def gemini_usage():
    reset = NOW + timedelta(hours=20)
    return GeminiUsage({
        "gemini-2.5-pro": GeminiModelUsage(limit=100, usage=12.5, reset_at=reset),
        "gemini-2.5-flash": GeminiModelUsage(limit=100, usage=100, reset_at=reset),
        "gemini-2.0-flash": GeminiModelUsage(limit=100, usage=1, reset_at=reset),
        "text-embedding": GeminiModelUsage(limit=100, usage=50, reset_at=reset),
    })


@pytest.mark.parametrize("used, urgency", [
    (0, Urgency.CAN_USE), (79, Urgency.CAN_USE), (80, Urgency.LOW_QUOTA),
    (99, Urgency.LOW_QUOTA), (100, Urgency.WAIT_RESET), (130, Urgency.WAIT_RESET),
])
def test_urgency_for(used, urgency):
    assert urgency_for(used) == urgency


def test_claude_row_lists_most_constraining_first(claude_usage):
    result = ok_result(claude_usage, describe_usage(claude_usage, NOW))

    rows = build_rows({"claude": result}, ["claude"], NOW)

    assert len(rows) == 1
    assert rows[0].provider == "claude"
    assert rows[0].urgency == Urgency.CAN_USE
    assert rows[0].limit == "7d"
    assert rows[0].details == "7d: 22% used (resets in 5d 16h 11m), 5h: 10% used (resets in 2h 11m)"
    assert result.display == rows[0].details


def test_claude_sonnet_window(claude_usage):
    data = claude_usage.model_copy(update={
        "seven_day_sonnet": ClaudeUsageBucket(utilization=40, resets_at=NOW + timedelta(days=1)),
    })

    labels = [w.label for w in usage_windows(data, NOW)]

    assert labels == ["5h", "7d (all models)", "7d (sonnet only)"]
    assert describe_usage(data, NOW).startswith("7d (sonnet only): 40% used")


def test_codex_exhausted_weekly_window(codex_snapshot):
    result = ok_result(codex_snapshot, describe_usage(codex_snapshot, NOW))

    rows = build_rows({"codex": result}, ["codex"], NOW)

    assert rows[0].urgency == Urgency.WAIT_RESET
    assert rows[0].limit == "7d"
    assert rows[0].details.startswith("7d: 100% used")
    assert rows[0].details.index("7d:") < rows[0].details.index("5h:")


def test_equal_usage_sorts_by_earliest_reset():
    data = RateLimitSnapshot(
        primary={"used_percent": 50, "windowDurationMins": 300, "resetsAt": (NOW + timedelta(hours=3)).timestamp()},
        secondary={"used_percent": 50, "windowDurationMins": 10080, "resetsAt": (NOW + timedelta(hours=1)).timestamp()},
    )
    assert describe_usage(data, NOW).startswith("7d: 50% used (resets in 1h)")


def test_copilot_row_uses_remaining_percent():
    data = CopilotUsage(
        percent_remaining=15.5,
        reset_at=NOW + timedelta(days=10),
        entitlement=300,
        source="user",
    )

    rows = build_rows({"copilot": ok_result(data, "x")}, ["copilot"], NOW)

    assert rows[0].urgency == Urgency.LOW_QUOTA
    assert rows[0].limit == "-"
    assert rows[0].details == "85% used (resets in 10d)"


def test_gemini_rows_per_family(gemini_usage):
    rows = build_rows({"gemini": ok_result(gemini_usage, "x")}, ["gemini"], NOW)

    assert [r.provider for r in rows] == ["gemini/pro", "gemini/flash"]
    assert rows[0].urgency == Urgency.CAN_USE
    assert rows[0].details == "13% used (resets in 20h)"
    assert rows[1].urgency == Urgency.WAIT_RESET
    assert rows[1].limit == "flash"


def test_gemini_family_is_case_insensitive():
    assert gemini_family("Gemini-3-PRO-preview") == "pro"
    assert gemini_family("gemini-2.5-flash-lite") == "flash"
    assert gemini_family("imagen") is None


def test_gemini_without_known_families_has_no_data():
    data = GeminiUsage({"imagen": GeminiModelUsage(limit=100, usage=5, reset_at=NOW)})

    rows = build_rows({"gemini": ok_result(data, "x")}, ["gemini"], NOW)

    assert rows[0].urgency == Urgency.FETCH_FAILED
    assert rows[0].details == "no data"


@pytest.mark.parametrize("reason", [ReasonCode.NO_CREDENTIALS, ReasonCode.AUTH_FAILED])
def test_login_required_rows(reason):
    rows = build_rows({"claude": error_result(reason, "nope")}, ["claude"], NOW)
    assert rows[0].urgency == Urgency.LOGIN_REQUIRED
    assert rows[0].details == "login required"


def test_fetch_failed_rows():
    results = {
        "codex": error_result(ReasonCode.TIMEOUT, "slow"),
        "copilot": no_data_result(),
    }

    rows = build_rows(results, ["codex", "copilot", "gemini"], NOW)

    assert [r.urgency for r in rows] == [Urgency.FETCH_FAILED] * 3
    assert rows[0].details == "fetch failed (timeout)"
    assert rows[1].details == "fetch failed"
    assert rows[2].details == "fetch failed"


def test_unknown_payload_type_has_no_windows():
    assert usage_windows({"something": 1}, NOW) == []
    assert describe_usage({"something": 1}, NOW) == "no data"


def test_rows_follow_requested_order(claude_usage, codex_snapshot):
    results = {
        "claude": ok_result(claude_usage, "x"),
        "codex": ok_result(codex_snapshot, "x"),
    }
    rows = build_rows(results, ["codex", "claude"], NOW)
    assert [r.provider for r in rows] == ["codex", "claude"]
