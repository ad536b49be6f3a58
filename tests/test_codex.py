import json
import time

import httpx
import pytest

from ai_quota.config import ProviderConfig
from ai_quota.errors import QuotaFetchError, ReasonCode
from ai_quota.providers.codex import CodexProvider


@pytest.fixture
def sample_codex_response():
    return {
        "plan_type": "plus",
        "rate_limits": {
            "primary": {"used_percent": 12, "limit_window_seconds": 18000, "reset_after_seconds": 3600},
            "secondary": {"used_percent": 64, "limit_window_seconds": 604800, "reset_after_seconds": 172800},
        },
        "credits": None,
    }


@pytest.fixture
def auth_file(tmp_path):
    path = tmp_path / "auth.json"
    path.write_text(json.dumps({"tokens": {"access_token": "codex-token", "account_id": "acct-1"}}))
    return path


def test_codex_authenticate(auth_file):
    provider = CodexProvider(ProviderConfig(credentials_path=str(auth_file)))

    provider.authenticate()

    assert provider._headers["Authorization"] == "Bearer codex-token"
    assert provider._headers["chatgpt-account-id"] == "acct-1"


def test_codex_missing_token(tmp_path):
    path = tmp_path / "auth.json"
    path.write_text(json.dumps({"OPENAI_API_KEY": None}))
    provider = CodexProvider(ProviderConfig(credentials_path=str(path)))

    with pytest.raises(QuotaFetchError) as exc_info:
        provider.authenticate()
    assert exc_info.value.reason == ReasonCode.NO_CREDENTIALS


def test_codex_malformed_auth_file(tmp_path):
    path = tmp_path / "auth.json"
    path.write_text("{not json")
    provider = CodexProvider(ProviderConfig(credentials_path=str(path)))

    with pytest.raises(QuotaFetchError) as exc_info:
        provider.authenticate()
    assert exc_info.value.reason == ReasonCode.PARSE_ERROR


def test_codex_parse_usage(sample_codex_response):
    before = time.time()
    snapshot = CodexProvider().parse_usage(sample_codex_response)

    assert snapshot.plan_type == "plus"
    assert snapshot.credits is None
    assert snapshot.primary["used_percent"] == 12
    assert snapshot.primary["windowDurationMins"] == 300
    assert snapshot.secondary["windowDurationMins"] == 10080
    assert before + 3600 <= snapshot.primary["resetsAt"] <= time.time() + 3600


def test_codex_parse_usage_single_window(sample_codex_response):
    sample_codex_response["rate_limits"]["primary"] = None

    snapshot = CodexProvider().parse_usage(sample_codex_response)

    assert snapshot.primary is None
    assert snapshot.secondary["used_percent"] == 64


@pytest.mark.parametrize("raw", [
    {},
    {"rate_limits": None},
    {"rate_limits": {"primary": None, "secondary": {"limit_window_seconds": 60}}},
])
def test_codex_parse_usage_missing_windows(raw):
    with pytest.raises(QuotaFetchError) as exc_info:
        CodexProvider().parse_usage(raw)
    assert exc_info.value.reason == ReasonCode.PARSE_ERROR


@pytest.mark.asyncio
async def test_codex_fetch(auth_file, sample_codex_response):
    def handler(request):
        assert request.url == CodexProvider.API_URL
        assert request.headers["chatgpt-account-id"] == "acct-1"
        return httpx.Response(200, json=sample_codex_response)

    provider = CodexProvider(
        ProviderConfig(credentials_path=str(auth_file)),
        transport=httpx.MockTransport(handler),
    )

    snapshot = await provider.fetch()

    assert snapshot.secondary["used_percent"] == 64


@pytest.mark.asyncio
async def test_codex_fetch_empty_body(auth_file):
    provider = CodexProvider(
        ProviderConfig(credentials_path=str(auth_file)),
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="")),
    )

    with pytest.raises(QuotaFetchError) as exc_info:
        await provider.fetch()
    assert exc_info.value.reason == ReasonCode.PARSE_ERROR


@pytest.mark.asyncio
async def test_codex_fetch_timeout(auth_file):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    provider = CodexProvider(
        ProviderConfig(credentials_path=str(auth_file)),
        transport=httpx.MockTransport(handler),
    )

    with pytest.raises(QuotaFetchError) as exc_info:
        await provider.fetch()
    assert exc_info.value.reason == ReasonCode.TIMEOUT
