"""
PKCE (RFC 7636) verifier and challenge generation.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass, field


def base64url(data: bytes) -> str:
    """URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def challenge_for(verifier: str) -> str:
    """S256 code challenge for ``verifier``."""
    return base64url(hashlib.sha256(verifier.encode("ascii")).digest())


@dataclass(frozen=True)
class PkcePair:
    verifier: str = field(repr=False)
    challenge: str
    method: str = "S256"


def generate() -> PkcePair:
    verifier = base64url(secrets.token_bytes(32))
    return PkcePair(verifier=verifier, challenge=challenge_for(verifier))
