import json
import logging
import platform
import subprocess
import time
from pathlib import Path

from ..errors import QuotaFetchError, ReasonCode
from ..models import ClaudeExtraUsage, ClaudeUsageBucket, ClaudeUsageData
from ..windows import finite_number
from .base import BaseProvider, parse_iso_time

logger = logging.getLogger(__name__)

KEYCHAIN_SERVICE = "Claude Code-credentials"
# Treat tokens expiring within this many milliseconds as already expired.
EXPIRY_BUFFER_MS = 5 * 60 * 1000


class ClaudeProvider(BaseProvider):
    """Claude subscription usage from the Anthropic OAuth usage endpoint."""

    API_URL = "https://api.anthropic.com/api/oauth/usage"

    @property
    def name(self) -> str:
        return "claude"

    def _read_keychain_credentials(self) -> dict | None:
        """Read credentials from the macOS Keychain (Claude Code 2.x+)."""
        if platform.system() != "Darwin":
            return None
        try:
            raw = subprocess.run(
                ["/usr/bin/security", "find-generic-password", "-s", KEYCHAIN_SERVICE, "-w"],
                capture_output=True, text=True, timeout=5,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.debug("Keychain lookup failed: %s", e)
            return None
        if raw.returncode != 0 or not raw.stdout.strip():
            return None
        try:
            return json.loads(raw.stdout.strip())
        except json.JSONDecodeError:
            logger.debug("Keychain item %r is not JSON", KEYCHAIN_SERVICE)
            return None

    def _load_oauth(self) -> dict:
        data = None
        if not self.config.credentials_path:
            data = self._read_keychain_credentials()
        if data is None:
            path = self._credentials_path(Path.home() / ".claude" / ".credentials.json")
            data = self._read_json_file(path, "Claude credentials")
        oauth = data.get("claudeAiOauth")
        if not isinstance(oauth, dict):
            raise QuotaFetchError(ReasonCode.NO_CREDENTIALS, "Claude credentials missing claudeAiOauth.")
        return oauth

    def authenticate(self) -> None:
        """Setup Bearer token authentication from Claude Code's OAuth login."""
        oauth = self._load_oauth()
        access_token = oauth.get("accessToken")
        expires_at = finite_number(oauth.get("expiresAt"))
        if not isinstance(access_token, str) or not access_token or expires_at is None:
            raise QuotaFetchError(ReasonCode.NO_CREDENTIALS, "Claude credentials missing.")

        if time.time() * 1000 + EXPIRY_BUFFER_MS >= expires_at:
            raise QuotaFetchError(ReasonCode.TOKEN_EXPIRED, "Claude access token is expired.")

        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "anthropic-beta": "oauth-2025-04-20",
        }

    async def fetch_usage(self) -> dict:
        """Fetch usage data from the Anthropic API."""
        async with self._client() as client:
            response = await self._request(client, "GET", self.API_URL, headers=self._headers)
            return self._json_object(response, "Claude usage response")

    def _parse_bucket(self, value: object) -> ClaudeUsageBucket | None:
        if not isinstance(value, dict):
            return None
        utilization = finite_number(value.get("utilization"))
        resets_at = value.get("resets_at")
        if utilization is None or not isinstance(resets_at, str) or not resets_at:
            return None
        try:
            reset_time = parse_iso_time(resets_at)
        except ValueError:
            logger.debug("Ignoring Claude bucket with bad resets_at %r", resets_at)
            return None
        return ClaudeUsageBucket(utilization=utilization, resets_at=reset_time)

    def _parse_extra_usage(self, value: object) -> ClaudeExtraUsage | None:
        if not isinstance(value, dict):
            return None
        is_enabled = value.get("is_enabled")
        return ClaudeExtraUsage(
            is_enabled=is_enabled if isinstance(is_enabled, bool) else False,
            monthly_limit=finite_number(value.get("monthly_limit")),
            used_credits=finite_number(value.get("used_credits")) or 0.0,
            utilization=finite_number(value.get("utilization")) or 0.0,
        )

    def parse_usage(self, raw_data: dict) -> ClaudeUsageData | None:
        """Parse Claude response; None when no bucket is present."""
        usage = ClaudeUsageData(
            five_hour=self._parse_bucket(raw_data.get("five_hour")),
            seven_day=self._parse_bucket(raw_data.get("seven_day")),
            seven_day_sonnet=self._parse_bucket(raw_data.get("seven_day_sonnet")),
            extra_usage=self._parse_extra_usage(raw_data.get("extra_usage")),
        )
        if usage.five_hour is None and usage.seven_day is None and usage.seven_day_sonnet is None:
            return None
        return usage
