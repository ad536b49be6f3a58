"""Classification of provider fetch outcomes into ProviderResult values."""

import asyncio
import json
import logging
import re
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import httpx
from pydantic import RootModel

from .errors import QuotaFetchError, ReasonCode
from .models import ProviderResult, ResultStatus

logger = logging.getLogger(__name__)

# Reasons that mean "not logged in" rather than a failure.
NO_DATA_REASONS = frozenset({ReasonCode.NO_CREDENTIALS, ReasonCode.TOKEN_EXPIRED})

# Legacy fallback for errors that arrive without a reason code. Checked in order.
_MESSAGE_PATTERNS: tuple[tuple[re.Pattern[str], ReasonCode], ...] = (
    (re.compile(r"credential|not found|auth required|not logged in", re.I), ReasonCode.NO_CREDENTIALS),
    (re.compile(r"expired", re.I), ReasonCode.TOKEN_EXPIRED),
    (re.compile(r"\b40[13]\b|forbidden|unauthori[sz]ed", re.I), ReasonCode.AUTH_FAILED),
    (re.compile(r"timed? ?out|timeout|abort", re.I), ReasonCode.TIMEOUT),
    (re.compile(r"network|fetch failed|connection", re.I), ReasonCode.NETWORK_ERROR),
)


def reason_from_message(message: str) -> ReasonCode:
    for pattern, reason in _MESSAGE_PATTERNS:
        if pattern.search(message):
            return reason
    return ReasonCode.UNKNOWN


def reason_from_exception(error: BaseException) -> ReasonCode:
    """Best reason code for an exception that is not a QuotaFetchError."""
    if isinstance(error, QuotaFetchError):
        return error.reason
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return ReasonCode.TIMEOUT
    if isinstance(error, httpx.TransportError):
        return ReasonCode.NETWORK_ERROR
    if isinstance(error, json.JSONDecodeError):
        return ReasonCode.PARSE_ERROR
    if isinstance(error, FileNotFoundError):
        return ReasonCode.NO_CREDENTIALS
    return reason_from_message(str(error))


def is_empty(value: Any) -> bool:
    """True for values that mean "the provider found nothing"."""
    if isinstance(value, RootModel):
        value = value.root
    if value is None:
        return True
    if isinstance(value, (Mapping, Sequence)) and not isinstance(value, str):
        return len(value) == 0
    return False


def ok_result(data: Any, display: str) -> ProviderResult:
    return ProviderResult(status=ResultStatus.OK, data=data, display=display or "no data")


def no_data_result(
    reason: ReasonCode | None = None,
    message: str | None = None,
    display: str | None = None,
) -> ProviderResult:
    if display is None:
        display = f"no data ({reason.value})" if reason is not None else "no data"
    return ProviderResult(
        status=ResultStatus.NO_DATA,
        reason=reason,
        error=message,
        display=display,
    )


def error_result(reason: ReasonCode, message: str) -> ProviderResult:
    return ProviderResult(
        status=ResultStatus.ERROR,
        reason=reason,
        error=message,
        display=f"error ({reason.value}): {message}",
    )


def result_from_error(error: BaseException) -> ProviderResult:
    reason = reason_from_exception(error)
    message = str(error) or type(error).__name__
    if reason in NO_DATA_REASONS:
        return no_data_result(reason, message)
    return error_result(reason, message)


def classify_outcome(
    outcome: Any,
    describe: Callable[[Any], str] | None = None,
    displayable: Callable[[Any], bool] | None = None,
) -> ProviderResult:
    """Turn a fetch outcome (a value or the exception it raised) into a result.

    ``describe`` renders the one-line display for a successful value and
    ``displayable`` tells whether the value has any usage window to show; a
    value without one is no-data. Both are guarded like the fetch itself, so a
    malformed payload produces an ``unknown`` error instead of escaping.
    """
    if isinstance(outcome, BaseException):
        return result_from_error(outcome)
    if is_empty(outcome):
        return no_data_result()
    try:
        if displayable is not None and not displayable(outcome):
            return no_data_result()
        display = describe(outcome) if describe is not None else "ok"
    except Exception as e:
        logger.warning("Could not describe usage data: %s", e, exc_info=True)
        return error_result(ReasonCode.UNKNOWN, f"Could not describe usage data: {e}")
    return ok_result(outcome, display)
