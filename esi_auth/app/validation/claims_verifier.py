"""
Claims verification for EVE SSO access tokens.
"""

import time
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from jose import jws, jwt
from jose.exceptions import JOSEError
from pydantic import ValidationError as PydanticValidationError

from shared.config import EsiSettings
from shared.errors import BadSignature, ClaimInvalid, Malformed, UnknownKey
from shared.logging import get_logger
from ..jwks.client import SigningKeySet
from ..models import TokenClaims


class ClaimsVerifier:
    """Validates structure, signature and standard claims of an access token."""

    def __init__(
        self,
        client_id: str,
        accepted_issuers: Iterable[str],
        expected_audience: Optional[str] = None,
        clock_skew_seconds: int = 5,
        allowed_algorithms: Iterable[str] = ("RS256", "ES256"),
        clock: Callable[[], float] = time.time,
    ):
        self.client_id = client_id
        self.accepted_issuers = frozenset(accepted_issuers)
        self.expected_audience = expected_audience
        self.clock_skew_seconds = clock_skew_seconds
        self.allowed_algorithms = tuple(allowed_algorithms)
        self.clock = clock
        self.logger = get_logger("esi_auth.verifier")

    @classmethod
    def from_settings(cls, settings: EsiSettings, clock: Callable[[], float] = time.time) -> "ClaimsVerifier":
        if not settings.client_id:
            raise ValueError("client_id is required for token verification")
        return cls(
            client_id=settings.client_id,
            accepted_issuers=settings.accepted_issuers,
            expected_audience=settings.expected_audience,
            clock_skew_seconds=settings.clock_skew_seconds,
            allowed_algorithms=settings.allowed_algorithms,
            clock=clock,
        )

    def verify(self, token_text: str, signing_keys: Mapping[str, Dict[str, Any]]) -> TokenClaims:
        """Verify ``token_text`` against ``signing_keys`` and return its claims."""
        header, payload = self._parse(token_text)

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise Malformed("Token header missing key id (kid)")

        key = signing_keys.get(kid)
        if key is None:
            raise UnknownKey(kid)

        self._verify_signature(token_text, header, key)
        self._validate_claims(payload)

        try:
            claims = TokenClaims.from_payload(payload)
        except PydanticValidationError as e:
            raise ClaimInvalid("subject", "Token claims do not match the expected shape", details={"error": str(e)}) from e

        self.logger.debug("Token verified", sub=claims.sub, kid=kid)
        return claims

    async def verify_with_refresh(self, token_text: str, key_set: SigningKeySet) -> TokenClaims:
        """Verify using a cached key set, re-fetching it at most once on an unknown key id."""
        keys = await key_set.get_keys()
        generation = key_set.generation
        try:
            return self.verify(token_text, keys)
        except UnknownKey as e:
            self.logger.info("Unknown signing key, refreshing key set", kid=e.kid)
            keys = await key_set.refresh(seen_generation=generation)
        return self.verify(token_text, keys)

    def _parse(self, token_text: str):
        if not isinstance(token_text, str) or token_text.count(".") != 2:
            raise Malformed("Token must have three dot-separated segments")
        try:
            header = jwt.get_unverified_header(token_text)
            payload = jwt.get_unverified_claims(token_text)
        except JOSEError as e:
            raise Malformed("Token header or payload could not be decoded", details={"error": str(e)}) from e
        if not isinstance(header, dict) or not isinstance(payload, dict):
            raise Malformed("Token header and payload must be JSON objects")
        return header, payload

    def _verify_signature(self, token_text: str, header: Dict[str, Any], key: Dict[str, Any]) -> None:
        algorithm = header.get("alg")
        if algorithm not in self.allowed_algorithms:
            raise BadSignature(f"Algorithm not allowed: {algorithm}", details={"alg": algorithm})
        key_algorithm = key.get("alg")
        if key_algorithm and key_algorithm != algorithm:
            raise BadSignature(
                "Token algorithm does not match signing key",
                details={"alg": algorithm, "key_alg": key_algorithm},
            )
        try:
            jws.verify(token_text, key, algorithms=[algorithm])
        except JOSEError as e:
            raise BadSignature(details={"error": str(e)}) from e

    def _validate_claims(self, payload: Dict[str, Any]) -> None:
        now = self.clock()
        skew = self.clock_skew_seconds

        issuer = payload.get("iss")
        if issuer not in self.accepted_issuers:
            raise ClaimInvalid("issuer", details={"iss": issuer})

        audience = payload.get("aud")
        if isinstance(audience, str):
            audience = [audience]
        if not isinstance(audience, list) or self.client_id not in audience:
            raise ClaimInvalid("audience", details={"aud": audience})
        if self.expected_audience and self.expected_audience not in audience:
            raise ClaimInvalid("audience", details={"aud": audience})

        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            raise ClaimInvalid("expiry", "Token has no usable 'exp' claim")
        if exp + skew <= now:
            raise ClaimInvalid("expiry", "Token has expired", details={"exp": exp})

        nbf = payload.get("nbf")
        if nbf is not None:
            if not isinstance(nbf, (int, float)) or isinstance(nbf, bool):
                raise ClaimInvalid("not_before", "Token has an unusable 'nbf' claim")
            if nbf - skew > now:
                raise ClaimInvalid("not_before", "Token is not yet valid", details={"nbf": nbf})

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            raise ClaimInvalid("subject", "Token missing subject claim")
