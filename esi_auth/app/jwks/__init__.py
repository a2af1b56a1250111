"""
Signing-key set package.

Fetches and caches the JSON Web Key Set EVE SSO signs access tokens with.

Key points:
- Keys are fetched lazily on first verification, never at import time.
- The cache has no TTL; a token naming an unknown key id triggers one
  explicit refresh, which also picks up rotated keys.
- Concurrent refreshes share a single request.
"""

from .client import SigningKeySet

__all__ = ["SigningKeySet"]
