import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx

from ..config import DEFAULT_TIMEOUT_SECONDS, ProviderConfig
from ..errors import QuotaFetchError, ReasonCode, reason_from_http_status

logger = logging.getLogger(__name__)

USER_AGENT = "ai-quota"


def parse_iso_time(time_str: str) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    dt = datetime.fromisoformat(time_str.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class BaseProvider(ABC):
    """Abstract base class for quota providers.

    Subclasses read their credentials in ``authenticate``, call the vendor in
    ``fetch_usage`` and convert the response in ``parse_usage``. Every failure
    leaves the provider as a QuotaFetchError carrying a reason code.
    """

    def __init__(
        self,
        config: ProviderConfig | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or ProviderConfig()
        self.timeout = timeout
        self._transport = transport
        self._headers: dict[str, str] = {}

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name."""
        pass

    @abstractmethod
    def authenticate(self) -> None:
        """Load credentials and set up authentication headers."""
        pass

    @abstractmethod
    async def fetch_usage(self) -> dict:
        """Call provider API and return raw response data."""
        pass

    @abstractmethod
    def parse_usage(self, raw_data: dict) -> Any:
        """Convert raw response to the provider's usage model (None if empty)."""
        pass

    async def fetch(self) -> Any:
        # Credential lookup may shell out or read files; keep it off the event loop.
        await asyncio.to_thread(self.authenticate)
        logger.debug("Fetching usage for %s", self.name)
        raw_data = await self.fetch_usage()
        return self.parse_usage(raw_data)

    def _credentials_path(self, default: Path) -> Path:
        if self.config.credentials_path:
            return Path(self.config.credentials_path).expanduser()
        return default

    def _read_json_file(self, path: Path, what: str) -> dict:
        """Read a local credential file, mapping failures to reason codes."""
        if not path.exists():
            raise QuotaFetchError(ReasonCode.NO_CREDENTIALS, f"{what} not found at {path}")
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise QuotaFetchError(ReasonCode.API_ERROR, f"Failed to read {what} at {path}: {e}") from e
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise QuotaFetchError(ReasonCode.PARSE_ERROR, f"Failed to parse {what} at {path}") from e
        if not isinstance(data, dict):
            raise QuotaFetchError(ReasonCode.PARSE_ERROR, f"{what} at {path} is not a JSON object")
        return data

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise QuotaFetchError(ReasonCode.TIMEOUT, f"{self.name} request timed out: {url}") from e
        except httpx.RequestError as e:
            raise QuotaFetchError(ReasonCode.NETWORK_ERROR, f"{self.name} request failed: {e}") from e

        if response.is_error:
            raise QuotaFetchError(
                reason_from_http_status(response.status_code),
                f"{self.name} request failed ({response.status_code} {response.reason_phrase}).",
                http_status=response.status_code,
            )
        return response

    def _json_object(self, response: httpx.Response, what: str) -> dict:
        if not response.text.strip():
            return {}
        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise QuotaFetchError(ReasonCode.PARSE_ERROR, f"{what} was not valid JSON.") from e
        if not isinstance(data, dict):
            raise QuotaFetchError(ReasonCode.PARSE_ERROR, f"{what} was not a JSON object.")
        return data
