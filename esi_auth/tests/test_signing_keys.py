"""
Unit tests for SigningKeySet.
"""

import asyncio
import pytest
import httpx

from esi_auth.app.jwks import SigningKeySet
from shared.errors import NetworkError


JWKS_URL = "http://sso.test/oauth/jwks"
METADATA_URL = "http://sso.test/.well-known/oauth-authorization-server"


class TestSigningKeySet:
    """Test cases for SigningKeySet."""

    @pytest.fixture
    def mock_jwks_data(self):
        """Mock key set document."""
        return {
            "keys": [
                {"kty": "RSA", "kid": "JWT-Signature-Key", "use": "sig", "n": "mock-n", "e": "AQAB", "alg": "RS256"},
                {"kty": "EC", "kid": "JWT-Signature-Key-EC", "use": "sig", "crv": "P-256", "x": "x", "y": "y", "alg": "ES256"},
                {"kty": "RSA", "use": "sig", "n": "no-kid", "e": "AQAB"},
            ]
        }

    def _client(self, handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_lazy_load_then_cached(self, mock_jwks_data):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=mock_jwks_data)

        key_set = SigningKeySet(self._client(handler), jwks_url=JWKS_URL)
        assert not key_set.loaded
        assert requests == []

        keys = await key_set.get_keys()
        await key_set.get_keys()

        assert set(keys) == {"JWT-Signature-Key", "JWT-Signature-Key-EC"}
        assert len(requests) == 1
        assert key_set.generation == 1
        assert key_set.get("JWT-Signature-Key")["alg"] == "RS256"

    @pytest.mark.asyncio
    async def test_discovers_jwks_uri_from_metadata(self, mock_jwks_data):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            if request.url.path == "/.well-known/oauth-authorization-server":
                return httpx.Response(200, json={"issuer": "https://login.eveonline.com", "jwks_uri": JWKS_URL})
            return httpx.Response(200, json=mock_jwks_data)

        key_set = SigningKeySet(self._client(handler), metadata_url=METADATA_URL)
        await key_set.get_keys()
        await key_set.refresh()

        assert key_set.jwks_url == JWKS_URL
        assert paths == ["/.well-known/oauth-authorization-server", "/oauth/jwks", "/oauth/jwks"]

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_share_one_fetch(self, mock_jwks_data):
        requests = []

        async def handler(request):
            requests.append(request)
            await asyncio.sleep(0.01)
            return httpx.Response(200, json=mock_jwks_data)

        key_set = SigningKeySet(self._client(handler), jwks_url=JWKS_URL)
        await key_set.get_keys()
        seen = key_set.generation

        await asyncio.gather(*(key_set.refresh(seen_generation=seen) for _ in range(5)))

        assert len(requests) == 2
        assert key_set.generation == seen + 1

    @pytest.mark.asyncio
    async def test_failure_with_stale_cache(self, mock_jwks_data):
        responses = [httpx.Response(200, json=mock_jwks_data), httpx.Response(503)]

        def handler(request):
            return responses.pop(0)

        key_set = SigningKeySet(self._client(handler), jwks_url=JWKS_URL)
        await key_set.get_keys()

        keys = await key_set.refresh()

        assert "JWT-Signature-Key" in keys
        assert key_set.generation == 1

    @pytest.mark.asyncio
    async def test_failure_no_cache(self):
        def handler(request):
            raise httpx.ConnectError("Network error", request=request)

        key_set = SigningKeySet(self._client(handler), jwks_url=JWKS_URL)

        with pytest.raises(NetworkError):
            await key_set.get_keys()
        assert not key_set.loaded

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        httpx.Response(404),
        httpx.Response(200, content=b"not json"),
        httpx.Response(200, json={"no_keys": []}),
        httpx.Response(200, json=["keys"]),
    ])
    async def test_bad_documents(self, response):
        key_set = SigningKeySet(self._client(lambda request: response), jwks_url=JWKS_URL)

        with pytest.raises(NetworkError):
            await key_set.get_keys()

    @pytest.mark.asyncio
    async def test_metadata_without_jwks_uri(self):
        key_set = SigningKeySet(
            self._client(lambda request: httpx.Response(200, json={"issuer": "x"})),
            metadata_url=METADATA_URL,
        )

        with pytest.raises(NetworkError):
            await key_set.get_keys()

    @pytest.mark.asyncio
    async def test_clear_cache(self, mock_jwks_data):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=mock_jwks_data)

        key_set = SigningKeySet(self._client(handler), jwks_url=JWKS_URL)
        await key_set.get_keys()
        key_set.clear_cache()
        await key_set.get_keys()

        assert len(requests) == 2

    def test_requires_a_url(self):
        with pytest.raises(ValueError):
            SigningKeySet(httpx.AsyncClient())
