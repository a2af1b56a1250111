"""
Token validation package.

Validates the signed access tokens EVE SSO issues: structure, signature
against the published key set, issuer, audience, expiry and not-before.
The resulting claims are advisory; the opaque access value is what gets
presented to the API.
"""

from .claims_verifier import ClaimsVerifier

__all__ = ["ClaimsVerifier"]
