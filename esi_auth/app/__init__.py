"""
EVE Online SSO client for the ESI API.

This package obtains, verifies and keeps alive the bearer credentials used
for authenticated ESI requests:

- app.flow: Authorization URL construction, CSRF state and PKCE.
- app.session: Code exchange, refresh-on-demand and the session lifecycle.
- app.validation: Signature and claims verification of access tokens.
- app.jwks: Cached signing-key set with refetch on unknown key ids.
- app.transport: Attaches the bearer credential to outbound requests.
- app.client: ESI request helper with error-limit tracking.

Design notes:
- Module import performs no network calls. All IO happens in awaited
  operations on explicitly constructed objects.
- Refresh is lazy: it only happens when a request needs a valid token.
- Use the shared/ utilities for logging, configuration and errors.
"""

from .client import EsiClient
from .flow import AuthorizationFlow, ESI_SCOPES
from .jwks import SigningKeySet
from .models import AuthorizationRequest, Token, TokenClaims, TokenResponse
from .session import Session, SessionManager, SessionState
from .transport import AuthenticatedRequestBuilder
from .validation import ClaimsVerifier

__all__ = [
    "AuthenticatedRequestBuilder",
    "AuthorizationFlow",
    "AuthorizationRequest",
    "ClaimsVerifier",
    "ESI_SCOPES",
    "EsiClient",
    "Session",
    "SessionManager",
    "SessionState",
    "SigningKeySet",
    "Token",
    "TokenClaims",
    "TokenResponse",
]
