"""Concurrent fetch of every provider into a QuotaReport."""

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import httpx

from .config import Config
from .models import ProviderResult, QuotaReport
from .providers import PROVIDERS, GeminiProvider, OAuthClientCache
from .providers.base import BaseProvider
from .results import classify_outcome, no_data_result
from .rows import describe_usage, usage_windows
from .summary import summarize

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("claude", "gemini", "copilot", "codex")


def create_provider(
    name: str,
    config: Config,
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
    oauth_cache: OAuthClientCache | None = None,
) -> BaseProvider:
    if name not in PROVIDERS:
        raise ValueError(f"Unknown provider: {name}")
    provider_cls = PROVIDERS[name]
    if provider_cls is GeminiProvider:
        return GeminiProvider(config.provider(name), timeout, transport, oauth_cache=oauth_cache)
    return provider_cls(config.provider(name), timeout, transport)


async def _fetch_one(provider: BaseProvider, timeout: float) -> Any:
    try:
        return await asyncio.wait_for(provider.fetch(), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise TimeoutError(f"{provider.name} timed out after {timeout:g}s") from e


async def fetch_all_rate_limits(
    providers: Iterable[str] | None = None,
    timeout_seconds: float | None = None,
    config: Config | None = None,
    now: datetime | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    oauth_cache: OAuthClientCache | None = None,
) -> QuotaReport:
    """Fetch the requested providers concurrently and classify each outcome.

    Every supported provider appears in the report. Providers that were not
    requested, or are disabled in the config, are reported as skipped.
    A provider failure never propagates; it becomes an error or no-data result.
    """
    config = config or Config()
    requested = list(SUPPORTED_PROVIDERS) if providers is None else list(providers)
    unknown = [p for p in requested if p not in SUPPORTED_PROVIDERS]
    if unknown:
        raise ValueError(f"Unknown provider(s): {', '.join(unknown)}")

    active = [
        name for name in SUPPORTED_PROVIDERS
        if name in requested and config.provider(name).enabled
    ]
    oauth_cache = oauth_cache or OAuthClientCache()

    fetchers = []
    for name in active:
        timeout = config.timeout_for(name, timeout_seconds)
        provider = create_provider(name, config, timeout, transport, oauth_cache)
        logger.info("Fetching usage for %s...", name)
        fetchers.append(_fetch_one(provider, timeout))
    outcomes = await asyncio.gather(*fetchers, return_exceptions=True)

    now = now or datetime.now(timezone.utc)
    results: dict[str, ProviderResult] = {}
    for name in SUPPORTED_PROVIDERS:
        if name not in active:
            results[name] = no_data_result(display="skipped")
            continue
        outcome = outcomes[active.index(name)]
        if isinstance(outcome, BaseException):
            logger.debug("%s failed: %r", name, outcome)
        results[name] = classify_outcome(
            outcome,
            describe=lambda data: describe_usage(data, now),
            displayable=lambda data: bool(usage_windows(data, now)),
        )

    return QuotaReport(results=results, summary=summarize(results, now))
