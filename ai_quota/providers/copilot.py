import calendar
import json
import logging
import math
import os
import re
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs

from ..errors import QuotaFetchError, ReasonCode
from ..formatter import clamp_percent
from ..models import CopilotUsage
from .base import USER_AGENT, BaseProvider, parse_iso_time

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.github.com"
DEFAULT_API_VERSION = "2025-05-01"
QUOTA_HEADERS = (
    "x-quota-snapshot-premium_interactions",
    "x-quota-snapshot-premium_models",
)
_OAUTH_TOKEN_RE = re.compile(r"oauth_token:\s*(\S+)")


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _one_month_later(now: datetime) -> datetime:
    year, month = (now.year + 1, 1) if now.month == 12 else (now.year, now.month + 1)
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def parse_copilot_user_info(data: Any) -> CopilotUsage | None:
    """Parse a copilot_internal/user body; None when fields are missing."""
    if not isinstance(data, dict):
        return None
    snapshots = data.get("quota_snapshots")
    if not isinstance(snapshots, dict):
        return None
    premium = snapshots.get("premium_interactions")
    if not isinstance(premium, dict):
        return None

    entitlement = _to_number(premium.get("entitlement"))
    percent_remaining = _to_number(premium.get("percent_remaining"))
    reset_text = data.get("quota_reset_date")
    if entitlement is None or percent_remaining is None or not isinstance(reset_text, str) or not reset_text:
        return None
    try:
        reset_at = parse_iso_time(reset_text)
    except ValueError:
        return None

    return CopilotUsage(
        percent_remaining=clamp_percent(percent_remaining),
        reset_at=reset_at,
        entitlement=entitlement,
        overage_used=_to_number(premium.get("overage_count")) or 0.0,
        overage_enabled=premium.get("overage_permitted") is True,
        source="user",
    )


def parse_copilot_quota_header(header_value: str, now: datetime | None = None) -> CopilotUsage | None:
    """Parse a quota snapshot header such as ``ent=3000&rem=64&rst=...&ov=0&ovPerm=false``.

    A missing reset date means one month from ``now``.
    """
    trimmed = header_value.strip()
    if not trimmed:
        return None
    params = {k: v[0] for k, v in parse_qs(trimmed, keep_blank_values=True).items()}

    entitlement = _to_number(params.get("ent"))
    percent_remaining = _to_number(params.get("rem"))
    if entitlement is None or percent_remaining is None:
        return None

    reset_text = params.get("rst")
    if reset_text:
        try:
            reset_at = parse_iso_time(reset_text)
        except ValueError:
            return None
    else:
        reset_at = _one_month_later(now or datetime.now(timezone.utc))

    return CopilotUsage(
        percent_remaining=clamp_percent(percent_remaining),
        reset_at=reset_at,
        entitlement=entitlement,
        overage_used=_to_number(params.get("ov")) or 0.0,
        overage_enabled=params.get("ovPerm") == "true",
        source="header",
    )


class CopilotProvider(BaseProvider):
    """GitHub Copilot premium request quota."""

    @property
    def name(self) -> str:
        return "copilot"

    def _hosts_files(self) -> list[Path]:
        home = Path.home()
        return [
            home / ".config" / "gh" / "hosts.yml",
            home / "AppData" / "Roaming" / "GitHub CLI" / "hosts.yml",
        ]

    def _gh_cli_token(self) -> str | None:
        try:
            result = subprocess.run(
                ["gh", "auth", "token", "--hostname", "github.com"],
                capture_output=True, text=True, timeout=5,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.debug("copilot: gh auth token unavailable: %s", e)
            return None
        token = result.stdout.strip()
        return token if result.returncode == 0 and token else None

    def resolve_token(self) -> str | None:
        """Token from config, GITHUB_TOKEN, gh hosts.yml, then the gh CLI."""
        if self.config.token:
            return self.config.token
        env_token = os.environ.get("GITHUB_TOKEN")
        if env_token:
            logger.debug("copilot: using token from GITHUB_TOKEN env var")
            return env_token
        for path in self._hosts_files():
            if not path.exists():
                continue
            try:
                match = _OAUTH_TOKEN_RE.search(path.read_text(encoding="utf-8"))
            except OSError as e:
                logger.debug("copilot: cannot read %s: %s", path, e)
                continue
            if match:
                logger.debug("copilot: found token in %s", path)
                return match.group(1)
        return self._gh_cli_token()

    def authenticate(self) -> None:
        token = self.resolve_token()
        if not token:
            raise QuotaFetchError(
                ReasonCode.NO_CREDENTIALS,
                "Copilot token not found; set GITHUB_TOKEN or sign in with the gh CLI.",
            )
        self._headers = {
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": DEFAULT_API_VERSION,
            "User-Agent": USER_AGENT,
        }

    async def fetch_usage(self) -> dict:
        """Fetch the user info body and any quota snapshot header."""
        base = (self.config.api_base_url or DEFAULT_API_BASE_URL).strip().rstrip("/")
        async with self._client() as client:
            response = await self._request(
                client, "GET", f"{base}/copilot_internal/user", headers=self._headers
            )

        header_value = next(
            (response.headers[h] for h in QUOTA_HEADERS if response.headers.get(h)), None
        )
        body = None
        if response.text.strip():
            try:
                body = response.json()
            except json.JSONDecodeError:
                logger.debug("copilot: user info body is not JSON, relying on headers")
        return {"body": body, "quota_header": header_value}

    def parse_usage(self, raw_data: dict) -> CopilotUsage | None:
        usage = parse_copilot_user_info(raw_data.get("body"))
        if usage is None and raw_data.get("quota_header"):
            usage = parse_copilot_quota_header(raw_data["quota_header"])
        return usage
