from enum import Enum


class ReasonCode(str, Enum):
    """Why a provider fetch did not return usable data."""
    NO_CREDENTIALS = "no_credentials"
    TOKEN_EXPIRED = "token_expired"
    AUTH_FAILED = "auth_failed"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    PARSE_ERROR = "parse_error"
    ENDPOINT_CHANGED = "endpoint_changed"
    API_ERROR = "api_error"
    UNKNOWN = "unknown"


class QuotaFetchError(Exception):
    """Structured error raised by provider fetchers."""

    def __init__(
        self,
        reason: ReasonCode | str,
        message: str,
        http_status: int | None = None,
    ):
        super().__init__(message)
        self.reason = ReasonCode(reason)
        self.message = message
        self.http_status = http_status


def reason_from_http_status(status: int) -> ReasonCode:
    if status in (401, 403):
        return ReasonCode.AUTH_FAILED
    if status in (404, 410):
        return ReasonCode.ENDPOINT_CHANGED
    return ReasonCode.API_ERROR
