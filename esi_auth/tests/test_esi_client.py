"""
Unit tests for EsiClient.
"""

import json
import pytest
import httpx
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

from esi_auth.app.client import ERROR_LIMIT_REMAIN_HEADER, ERROR_LIMIT_RESET_HEADER, EsiClient
from esi_auth.app.models import Token, utcnow
from shared.errors import ApiError, ErrorLimited, NetworkError, ReauthRequired


class FakeTime:
    def __init__(self, now=1_800_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def _limit_headers(remain, reset):
    return {ERROR_LIMIT_REMAIN_HEADER: str(remain), ERROR_LIMIT_RESET_HEADER: str(reset)}


class TestEsiClient:
    """Test cases for EsiClient."""

    @pytest.fixture
    def sent(self):
        return []

    @pytest.fixture
    def responses(self):
        return []

    @pytest.fixture
    def fake_time(self):
        return FakeTime()

    @pytest.fixture
    def session(self):
        now = utcnow()
        session = MagicMock()
        session.ensure_valid = AsyncMock(
            return_value=Token(access_value="access-value", expires_at=now + timedelta(minutes=20), issued_at=now)
        )
        return session

    @pytest.fixture
    def client(self, settings, sent, responses, fake_time):
        def handler(request):
            sent.append(request)
            if responses:
                response = responses.pop(0)
                if isinstance(response, Exception):
                    raise response
                return response
            return httpx.Response(200, json={"ok": True}, headers=_limit_headers(100, 60))

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return EsiClient(settings, http_client=http_client, clock=fake_time)

    @pytest.mark.asyncio
    async def test_public_query(self, client, sent):
        data = await client.query("get", "status/", params={"datasource": "tranquility"})

        assert data == {"ok": True}
        assert sent[0].method == "GET"
        assert str(sent[0].url) == "http://sso.test/esi/latest/status/?datasource=tranquility"
        assert "Authorization" not in sent[0].headers

    @pytest.mark.asyncio
    async def test_authenticated_query(self, client, sent, session):
        client.attach_session(session)

        await client.query("POST", "/characters/1/assets/names/", authenticated=True, json=[1, 2])

        assert sent[0].headers["Authorization"] == "Bearer access-value"
        assert json.loads(sent[0].content) == [1, 2]
        assert str(sent[0].url) == "http://sso.test/esi/latest/characters/1/assets/names/"

    @pytest.mark.asyncio
    async def test_authenticated_query_without_session(self, client, sent):
        with pytest.raises(ReauthRequired):
            await client.query("GET", "characters/1/wallet/", authenticated=True)
        assert sent == []

    @pytest.mark.asyncio
    async def test_auth_failure_sends_nothing(self, client, sent, session):
        session.ensure_valid = AsyncMock(side_effect=ReauthRequired())
        client.attach_session(session)

        with pytest.raises(ReauthRequired):
            await client.query("GET", "characters/1/wallet/", authenticated=True)
        assert sent == []

    @pytest.mark.asyncio
    async def test_error_status(self, client, responses):
        responses.append(httpx.Response(404, json={"error": "Not found"}))

        with pytest.raises(ApiError) as exc_info:
            await client.query("GET", "universe/types/0/")

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_transport_failure(self, client, responses):
        responses.append(httpx.ReadTimeout("timed out"))

        with pytest.raises(NetworkError):
            await client.query("GET", "status/")

    @pytest.mark.asyncio
    async def test_empty_body(self, client, responses):
        responses.append(httpx.Response(204))
        assert await client.query("DELETE", "characters/1/contacts/") is None

    @pytest.mark.asyncio
    async def test_not_limited_with_budget_left(self, client):
        await client.query("GET", "status/")

        assert not client.is_error_limited
        assert client.error_limited_for() == 0

    @pytest.mark.asyncio
    async def test_error_limited_refuses_requests(self, client, sent, responses, fake_time):
        responses.append(httpx.Response(420, headers=_limit_headers(0, 2)))

        with pytest.raises(ApiError):
            await client.query("GET", "status/")

        assert client.is_error_limited
        with pytest.raises(ErrorLimited) as exc_info:
            await client.query("GET", "status/")
        assert 0 < exc_info.value.retry_after_ms <= 2000
        assert len(sent) == 1

        fake_time.now += 2.5
        assert not client.is_error_limited
        await client.query("GET", "status/")
        assert len(sent) == 2

    @pytest.mark.asyncio
    async def test_error_limit_reset_by_later_response(self, client, responses):
        responses.append(httpx.Response(200, json={}, headers=_limit_headers(1, 30)))
        await client.query("GET", "status/")
        assert not client.is_error_limited

    @pytest.mark.asyncio
    async def test_unparseable_limit_headers(self, client, responses):
        responses.append(httpx.Response(200, json={}, headers=_limit_headers("many", 5)))

        with pytest.raises(ApiError):
            await client.query("GET", "status/")
