import time
from pathlib import Path
from typing import Any

from ..errors import QuotaFetchError, ReasonCode
from ..models import RateLimitSnapshot
from ..windows import finite_number
from .base import BaseProvider


def _convert_api_window(window: Any, now_secs: float) -> dict[str, Any] | None:
    """Convert a wham/usage window to the raw window shape used for snapshots."""
    if not isinstance(window, dict):
        return None
    used_percent = finite_number(window.get("used_percent"))
    if used_percent is None:
        return None
    limit_window_seconds = finite_number(window.get("limit_window_seconds"))
    reset_after_seconds = finite_number(window.get("reset_after_seconds"))
    return {
        "used_percent": used_percent,
        "windowDurationMins": limit_window_seconds / 60 if limit_window_seconds is not None else None,
        "resetsAt": now_secs + reset_after_seconds if reset_after_seconds is not None else None,
    }


class CodexProvider(BaseProvider):
    """Codex (ChatGPT) rate limits from the ChatGPT backend API."""

    API_URL = "https://chatgpt.com/backend-api/wham/usage"

    @property
    def name(self) -> str:
        return "codex"

    def authenticate(self) -> None:
        """Setup Bearer token authentication from ~/.codex/auth.json."""
        path = self._credentials_path(Path.home() / ".codex" / "auth.json")
        auth = self._read_json_file(path, "Codex auth.json")

        tokens = auth.get("tokens")
        tokens = tokens if isinstance(tokens, dict) else {}
        access_token = tokens.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise QuotaFetchError(ReasonCode.NO_CREDENTIALS, f"Codex access_token missing in {path}")

        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        account_id = tokens.get("account_id") or auth.get("account_id")
        if account_id:
            self._headers["chatgpt-account-id"] = str(account_id)

    async def fetch_usage(self) -> dict:
        """Fetch rate limit data from the Codex usage endpoint."""
        url = self.config.api_base_url or self.API_URL
        async with self._client() as client:
            response = await self._request(client, "GET", url, headers=self._headers)
            data = self._json_object(response, "Codex usage response")
        if not data:
            raise QuotaFetchError(ReasonCode.PARSE_ERROR, "Codex usage response missing JSON object.")
        return data

    def parse_usage(self, raw_data: dict) -> RateLimitSnapshot:
        """Parse Codex response into a primary/secondary snapshot."""
        rate_limits = raw_data.get("rate_limits")
        if not isinstance(rate_limits, dict):
            raise QuotaFetchError(ReasonCode.PARSE_ERROR, "Codex usage response missing rate_limits.")

        now_secs = time.time()
        primary = _convert_api_window(rate_limits.get("primary"), now_secs)
        secondary = _convert_api_window(rate_limits.get("secondary"), now_secs)
        if primary is None and secondary is None:
            raise QuotaFetchError(
                ReasonCode.PARSE_ERROR, "Codex usage response missing primary/secondary windows."
            )

        plan_type = raw_data.get("plan_type")
        return RateLimitSnapshot(
            primary=primary,
            secondary=secondary,
            credits=finite_number(raw_data.get("credits")),
            plan_type=plan_type if isinstance(plan_type, str) else None,
        )
