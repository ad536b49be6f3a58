"""Gemini quota from the Cloud Code Assist API.

Gemini CLI stores Google OAuth credentials in ~/.gemini/oauth_creds.json.
When the access token is missing or about to expire it is refreshed with the
OAuth client of the installed Gemini CLI, and the new token is written back
to the credential file.
"""

import asyncio
import base64
import binascii
import json
import logging
import os
import re
import sys
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel

from ..config import DEFAULT_TIMEOUT_SECONDS, ProviderConfig
from ..errors import QuotaFetchError, ReasonCode
from ..models import GeminiModelUsage, GeminiUsage
from ..windows import finite_number
from .base import USER_AGENT, BaseProvider, parse_iso_time

logger = logging.getLogger(__name__)

ENV_OAUTH_CLIENT_ID = "AI_QUOTA_GEMINI_OAUTH_CLIENT_ID"
ENV_OAUTH_CLIENT_SECRET = "AI_QUOTA_GEMINI_OAUTH_CLIENT_SECRET"

TOKEN_URL = "https://oauth2.googleapis.com/token"
LOAD_CODE_ASSIST_URL = "https://cloudcode-pa.googleapis.com/v1internal:loadCodeAssist"
RETRIEVE_QUOTA_URL = "https://cloudcode-pa.googleapis.com/v1internal:retrieveUserQuota"

# Refresh tokens expiring within this many milliseconds.
EXPIRY_BUFFER_MS = 5 * 60 * 1000

_CLIENT_ID_RE = re.compile(r"const\s+OAUTH_CLIENT_ID\s*=\s*['\"]([^'\"]+)['\"]")
_CLIENT_SECRET_RE = re.compile(r"const\s+OAUTH_CLIENT_SECRET\s*=\s*['\"]([^'\"]+)['\"]")
_OAUTH2_JS = Path("dist") / "src" / "code_assist" / "oauth2.js"


class OAuthClientInfo(BaseModel):
    client_id: str | None = None
    client_secret: str | None = None
    source: str | None = None


def client_id_from_id_token(id_token: Any) -> str | None:
    """The audience (or authorized party) of a Google id_token."""
    if not isinstance(id_token, str):
        return None
    parts = id_token.split(".")
    if len(parts) != 3:
        return None
    payload_b64 = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        payload = json.loads(base64.urlsafe_b64decode(payload_b64).decode("utf-8"))
    except (ValueError, binascii.Error):
        return None
    if not isinstance(payload, dict):
        return None
    for key in ("aud", "azp"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def extract_oauth_constants(content: str) -> OAuthClientInfo | None:
    client_id = _CLIENT_ID_RE.search(content)
    client_secret = _CLIENT_SECRET_RE.search(content)
    if not client_id and not client_secret:
        return None
    return OAuthClientInfo(
        client_id=client_id.group(1) if client_id else None,
        client_secret=client_secret.group(1) if client_secret else None,
        source="gemini-cli",
    )


def _gemini_cli_oauth_files() -> list[Path]:
    roots = []
    if sys.platform == "win32":
        app_data = os.environ.get("APPDATA")
        if app_data:
            roots.append(Path(app_data) / "npm" / "node_modules")
    else:
        roots.extend([
            Path.home() / ".npm-global" / "lib" / "node_modules",
            Path("/usr/local/lib/node_modules"),
            Path("/usr/lib/node_modules"),
            Path("/opt/homebrew/lib/node_modules"),
        ])
    candidates = []
    for root in roots:
        cli = root / "@google" / "gemini-cli"
        candidates.append(cli / "node_modules" / "@google" / "gemini-cli-core" / _OAUTH2_JS)
        candidates.append(root / "@google" / "gemini-cli-core" / _OAUTH2_JS)
    return candidates


class OAuthClientCache:
    """Discovers the Gemini OAuth client once and remembers it.

    Pass one instance to every GeminiProvider that should share the lookup;
    a fresh instance starts from scratch.
    """

    def __init__(self, candidates: list[Path] | None = None):
        self._candidates = candidates
        self._info: OAuthClientInfo | None = None
        self._resolved = False

    def _from_env(self) -> OAuthClientInfo | None:
        client_id = os.environ.get(ENV_OAUTH_CLIENT_ID) or None
        client_secret = os.environ.get(ENV_OAUTH_CLIENT_SECRET) or None
        if not client_id and not client_secret:
            return None
        return OAuthClientInfo(client_id=client_id, client_secret=client_secret, source="env")

    def _from_gemini_cli(self) -> OAuthClientInfo | None:
        candidates = self._candidates if self._candidates is not None else _gemini_cli_oauth_files()
        for path in candidates:
            if not path.exists():
                continue
            try:
                content = path.read_text(encoding="utf-8")
            except OSError as e:
                logger.debug("gemini: cannot read %s: %s", path, e)
                continue
            info = extract_oauth_constants(content)
            if info is not None:
                logger.debug("gemini: OAuth client found in %s", path)
                return info
        return None

    def resolve(self) -> OAuthClientInfo | None:
        if not self._resolved:
            self._info = self._from_env() or self._from_gemini_cli()
            self._resolved = True
        return self._info


def _non_empty(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


class GeminiProvider(BaseProvider):
    """Gemini per-model quota usage provider."""

    def __init__(
        self,
        config: ProviderConfig | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        oauth_cache: OAuthClientCache | None = None,
    ):
        super().__init__(config, timeout, transport)
        self.oauth_cache = oauth_cache or OAuthClientCache()
        self._creds_path: Path | None = None
        self._creds: dict = {}

    @property
    def name(self) -> str:
        return "gemini"

    def authenticate(self) -> None:
        """Load ~/.gemini/oauth_creds.json; refreshing happens in fetch_usage."""
        self._creds_path = self._credentials_path(Path.home() / ".gemini" / "oauth_creds.json")
        self._creds = self._read_json_file(self._creds_path, "Gemini OAuth credentials")

    def _needs_refresh(self) -> bool:
        if not _non_empty(self._creds.get("access_token")):
            return True
        expiry = finite_number(self._creds.get("expiry_date"))
        return expiry is not None and expiry < time.time() * 1000 + EXPIRY_BUFFER_MS

    async def _refresh_access_token(self, client: httpx.AsyncClient) -> str:
        refresh_token = _non_empty(self._creds.get("refresh_token"))
        if refresh_token is None:
            raise QuotaFetchError(
                ReasonCode.TOKEN_EXPIRED,
                "Gemini access token expired and no refresh token available.",
            )

        discovered = await asyncio.to_thread(self.oauth_cache.resolve)
        client_id = (
            client_id_from_id_token(self._creds.get("id_token"))
            or (discovered.client_id if discovered else None)
            or _non_empty(self._creds.get("client_id"))
        )
        client_secret = (
            (discovered.client_secret if discovered else None)
            or _non_empty(self._creds.get("client_secret"))
        )
        if not client_id:
            raise QuotaFetchError(
                ReasonCode.NO_CREDENTIALS,
                f"Gemini OAuth refresh requires a client ID; set {ENV_OAUTH_CLIENT_ID} or install Gemini CLI.",
            )
        if not client_secret:
            raise QuotaFetchError(
                ReasonCode.NO_CREDENTIALS,
                f"Gemini OAuth refresh requires a client secret; set {ENV_OAUTH_CLIENT_SECRET} or install Gemini CLI.",
            )

        try:
            response = await self._request(
                client,
                "POST",
                TOKEN_URL,
                data={
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except QuotaFetchError as e:
            if e.http_status in (400, 401, 403):
                raise QuotaFetchError(
                    ReasonCode.AUTH_FAILED,
                    f"Failed to refresh Google access token ({e.http_status}).",
                    http_status=e.http_status,
                ) from e
            raise

        data = self._json_object(response, "Google token refresh response")
        access_token = _non_empty(data.get("access_token"))
        if access_token is None:
            raise QuotaFetchError(ReasonCode.PARSE_ERROR, "Google token refresh response missing access_token.")

        self._creds["access_token"] = access_token
        expires_in = finite_number(data.get("expires_in"))
        if expires_in is not None:
            self._creds["expiry_date"] = int(time.time() * 1000 + max(0.0, expires_in) * 1000)
        await asyncio.to_thread(self._save_credentials)
        return access_token

    def _save_credentials(self) -> None:
        """Write refreshed credentials back; the in-memory token is used regardless."""
        if self._creds_path is None:
            return
        # Replace atomically so an interrupted write never truncates Gemini CLI's file.
        tmp_path = self._creds_path.with_name(self._creds_path.name + ".tmp")
        try:
            tmp_path.write_text(json.dumps(self._creds, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._creds_path)
        except OSError as e:
            logger.warning("gemini: could not persist refreshed token to %s: %s", self._creds_path, e)
            tmp_path.unlink(missing_ok=True)

    async def fetch_usage(self) -> dict:
        """Resolve the Code Assist project, then retrieve its quota buckets."""
        async with self._client() as client:
            if self._needs_refresh():
                access_token = await self._refresh_access_token(client)
            else:
                access_token = self._creds["access_token"]

            headers = {
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
            }
            platform_name = "WINDOWS_AMD64" if sys.platform == "win32" else "LINUX_AMD64"
            load_response = await self._request(
                client,
                "POST",
                LOAD_CODE_ASSIST_URL,
                headers=headers,
                json={"metadata": {"ideType": "GEMINI_CLI", "platform": platform_name}},
            )
            load_data = self._json_object(load_response, "loadCodeAssist response")
            project_id = load_data.get("cloudaicompanionProject")
            if not project_id:
                raise QuotaFetchError(
                    ReasonCode.PARSE_ERROR, "No cloudaicompanionProject found in loadCodeAssist response."
                )

            quota_response = await self._request(
                client, "POST", RETRIEVE_QUOTA_URL, headers=headers, json={"project": project_id}
            )
            return self._json_object(quota_response, "retrieveUserQuota response")

    def parse_usage(self, raw_data: dict) -> GeminiUsage:
        """Parse quota buckets; usage is the percentage of the bucket consumed."""
        models: dict[str, GeminiModelUsage] = {}
        buckets = raw_data.get("buckets")
        if not isinstance(buckets, list):
            return GeminiUsage(models)

        for bucket in buckets:
            if not isinstance(bucket, dict):
                continue
            model_id = _non_empty(bucket.get("modelId"))
            if model_id is None:
                continue

            remaining = finite_number(bucket.get("remainingFraction"))
            remaining = 1.0 if remaining is None else min(max(remaining, 0.0), 1.0)
            used = round((1.0 - remaining) * 100, 6)

            reset_text = bucket.get("resetTime")
            if reset_text:
                try:
                    reset_at = parse_iso_time(str(reset_text))
                except ValueError as e:
                    raise QuotaFetchError(
                        ReasonCode.PARSE_ERROR, "Gemini quota bucket resetTime was invalid."
                    ) from e
            else:
                reset_at = datetime.now(timezone.utc) + timedelta(hours=1)

            models[model_id] = GeminiModelUsage(limit=100, usage=used, reset_at=reset_at)

        return GeminiUsage(models)
