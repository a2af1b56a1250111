"""
Signing-key set client for EVE SSO.
"""

import asyncio
from typing import Any, Dict, Optional

import httpx

from shared.errors import NetworkError
from shared.logging import get_logger


class SigningKeySet:
    """Lazily populated cache of the SSO's published signing keys.

    Keys live for the lifetime of the object. The only invalidation is an
    explicit ``refresh()``, which the verifier issues once when a token
    names a key id the cache does not know.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        jwks_url: Optional[str] = None,
        metadata_url: Optional[str] = None,
    ):
        if not jwks_url and not metadata_url:
            raise ValueError("Either jwks_url or metadata_url is required")
        self.client = client
        self.jwks_url = jwks_url
        self.metadata_url = metadata_url
        self.logger = get_logger("esi_auth.jwks")

        self._keys: Optional[Dict[str, Dict[str, Any]]] = None
        self._generation = 0
        self._lock = asyncio.Lock()
        self.fetch_count = 0

    @property
    def loaded(self) -> bool:
        return self._keys is not None

    @property
    def generation(self) -> int:
        """Incremented on every successful fetch."""
        return self._generation

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Current ``kid -> JWK`` mapping; empty until first load."""
        return dict(self._keys or {})

    def get(self, kid: str) -> Optional[Dict[str, Any]]:
        return (self._keys or {}).get(kid)

    async def get_keys(self) -> Dict[str, Dict[str, Any]]:
        """Return the key set, fetching it on first use."""
        if self._keys is None:
            await self.refresh(seen_generation=self._generation)
        return self.snapshot()

    async def refresh(self, seen_generation: Optional[int] = None) -> Dict[str, Dict[str, Any]]:
        """Re-fetch the key set.

        Callers that pass the generation they observed share one fetch:
        if another task refreshed while this one waited on the lock, the
        newer keys are returned without another request.
        """
        async with self._lock:
            if seen_generation is not None and self._generation != seen_generation and self._keys is not None:
                return self.snapshot()

            try:
                keys = await self._fetch()
            except NetworkError:
                if self._keys is not None:
                    self.logger.warning("Using stale signing keys due to fetch failure")
                    return self.snapshot()
                raise

            self._keys = keys
            self._generation += 1
            self.logger.info("Signing keys refreshed", keys_count=len(keys))
            return self.snapshot()

    async def _fetch(self) -> Dict[str, Dict[str, Any]]:
        url = self.jwks_url or await self._discover_jwks_url()
        self.fetch_count += 1
        payload = await self._get_json(url, "signing key set")

        keys = payload.get("keys")
        if not isinstance(keys, list):
            raise NetworkError("Signing key response missing 'keys' array", details={"url": url})

        by_kid: Dict[str, Dict[str, Any]] = {}
        for key in keys:
            if isinstance(key, dict) and isinstance(key.get("kid"), str):
                by_kid[key["kid"]] = key
        return by_kid

    async def _discover_jwks_url(self) -> str:
        """Resolve ``jwks_uri`` from the authorization-server metadata."""
        metadata = await self._get_json(self.metadata_url, "authorization server metadata")
        jwks_uri = metadata.get("jwks_uri")
        if not isinstance(jwks_uri, str) or not jwks_uri:
            raise NetworkError("Authorization server metadata missing 'jwks_uri'", details={"url": self.metadata_url})
        self.jwks_url = jwks_uri
        return jwks_uri

    async def _get_json(self, url: str, what: str) -> Dict[str, Any]:
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            self.logger.error(f"Failed to fetch {what}", url=url, error=str(e))
            raise NetworkError(f"Failed to fetch {what}", details={"url": url, "http_error": str(e)}) from e

        if response.status_code != 200:
            self.logger.error(f"Unexpected status fetching {what}", url=url, status_code=response.status_code)
            raise NetworkError(
                f"Failed to fetch {what}: status {response.status_code}",
                details={"url": url, "status_code": response.status_code},
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise NetworkError(f"Invalid JSON in {what}", details={"url": url}) from e
        if not isinstance(payload, dict):
            raise NetworkError(f"Invalid {what} document", details={"url": url})
        return payload

    def clear_cache(self):
        """Drop cached keys; the next ``get_keys`` fetches again."""
        self._keys = None
        self.logger.info("Signing key cache cleared")
