import json
import time
from datetime import datetime, timezone

import httpx
import pytest

from ai_quota.config import ProviderConfig
from ai_quota.errors import QuotaFetchError, ReasonCode
from ai_quota.providers.claude import ClaudeProvider


@pytest.fixture
def sample_claude_response():
    return {
        "five_hour": {"utilization": 10.0, "resets_at": "2026-03-01T14:11:00Z"},
        "seven_day": {"utilization": 22.0, "resets_at": "2026-03-07T04:11:00+00:00"},
        "seven_day_sonnet": None,
        "extra_usage": {"is_enabled": True, "monthly_limit": 50, "used_credits": 12.5, "utilization": 25},
    }


@pytest.fixture
def credentials_file(tmp_path):
    def write(oauth):
        path = tmp_path / ".credentials.json"
        path.write_text(json.dumps({"claudeAiOauth": oauth}))
        return path
    return write


def make_provider(path, transport=None):
    return ClaudeProvider(ProviderConfig(credentials_path=str(path)), transport=transport)


def valid_oauth():
    return {"accessToken": "sk-ant-test", "expiresAt": (time.time() + 3600) * 1000}


def test_claude_authenticate(credentials_file):
    provider = make_provider(credentials_file(valid_oauth()))

    provider.authenticate()

    assert provider._headers["Authorization"] == "Bearer sk-ant-test"
    assert provider._headers["anthropic-beta"] == "oauth-2025-04-20"


def test_claude_missing_credentials(tmp_path):
    provider = make_provider(tmp_path / "missing.json")

    with pytest.raises(QuotaFetchError) as exc_info:
        provider.authenticate()
    assert exc_info.value.reason == ReasonCode.NO_CREDENTIALS


def test_claude_missing_access_token(credentials_file):
    provider = make_provider(credentials_file({"expiresAt": 1}))

    with pytest.raises(QuotaFetchError) as exc_info:
        provider.authenticate()
    assert exc_info.value.reason == ReasonCode.NO_CREDENTIALS


def test_claude_token_expiring_soon(credentials_file):
    oauth = {"accessToken": "sk-ant-test", "expiresAt": (time.time() + 60) * 1000}
    provider = make_provider(credentials_file(oauth))

    with pytest.raises(QuotaFetchError) as exc_info:
        provider.authenticate()
    assert exc_info.value.reason == ReasonCode.TOKEN_EXPIRED


def test_claude_credentials_from_home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setattr(ClaudeProvider, "_read_keychain_credentials", lambda self: None)
    (tmp_path / ".claude").mkdir()
    (tmp_path / ".claude" / ".credentials.json").write_text(json.dumps({"claudeAiOauth": valid_oauth()}))

    provider = ClaudeProvider()
    provider.authenticate()

    assert provider._headers["Authorization"] == "Bearer sk-ant-test"


def test_claude_parse_usage(sample_claude_response):
    usage = ClaudeProvider().parse_usage(sample_claude_response)

    assert usage.five_hour.utilization == 10.0
    assert usage.five_hour.resets_at == datetime(2026, 3, 1, 14, 11, tzinfo=timezone.utc)
    assert usage.seven_day.resets_at == datetime(2026, 3, 7, 4, 11, tzinfo=timezone.utc)
    assert usage.seven_day_sonnet is None
    assert usage.extra_usage.is_enabled is True
    assert usage.extra_usage.monthly_limit == 50


def test_claude_parse_usage_skips_invalid_buckets():
    raw = {
        "five_hour": {"utilization": "10", "resets_at": "2026-03-01T14:11:00Z"},
        "seven_day": {"utilization": 5, "resets_at": ""},
        "seven_day_sonnet": {"utilization": 5, "resets_at": "not a date"},
    }
    assert ClaudeProvider().parse_usage(raw) is None


@pytest.mark.asyncio
async def test_claude_fetch(credentials_file, sample_claude_response):
    def handler(request):
        assert request.url == ClaudeProvider.API_URL
        assert request.headers["Authorization"] == "Bearer sk-ant-test"
        return httpx.Response(200, json=sample_claude_response)

    provider = make_provider(credentials_file(valid_oauth()), httpx.MockTransport(handler))

    usage = await provider.fetch()

    assert usage.seven_day.utilization == 22.0


@pytest.mark.asyncio
@pytest.mark.parametrize("status, reason", [
    (401, ReasonCode.AUTH_FAILED),
    (404, ReasonCode.ENDPOINT_CHANGED),
    (500, ReasonCode.API_ERROR),
])
async def test_claude_fetch_http_errors(credentials_file, status, reason):
    transport = httpx.MockTransport(lambda request: httpx.Response(status, text="nope"))
    provider = make_provider(credentials_file(valid_oauth()), transport)

    with pytest.raises(QuotaFetchError) as exc_info:
        await provider.fetch()
    assert exc_info.value.reason == reason
    assert exc_info.value.http_status == status


@pytest.mark.asyncio
async def test_claude_fetch_invalid_json(credentials_file):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))
    provider = make_provider(credentials_file(valid_oauth()), transport)

    with pytest.raises(QuotaFetchError) as exc_info:
        await provider.fetch()
    assert exc_info.value.reason == ReasonCode.PARSE_ERROR


@pytest.mark.asyncio
async def test_claude_fetch_network_error(credentials_file):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    provider = make_provider(credentials_file(valid_oauth()), httpx.MockTransport(handler))

    with pytest.raises(QuotaFetchError) as exc_info:
        await provider.fetch()
    assert exc_info.value.reason == ReasonCode.NETWORK_ERROR
