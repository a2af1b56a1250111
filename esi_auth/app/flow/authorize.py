"""
Authorization-request construction for the EVE SSO authorization-code flow.
"""

import secrets
from typing import AbstractSet, Iterable, List, Optional, Sequence, Tuple, Union
from urllib.parse import urlencode

from shared.config import EsiSettings
from shared.errors import ValidationError
from shared.logging import get_logger
from . import pkce
from .scopes import ESI_SCOPES
from ..models import AuthorizationRequest, normalize_scopes

STATE_BYTES = 32

ScopeInput = Union[str, Sequence[str], AbstractSet[str]]


class AuthorizationFlow:
    """Builds authorization URLs bound to a fresh CSRF state.

    Pure apart from randomness: nothing is stored here. The caller keeps the
    returned state (and PKCE verifier, when used) until the callback.
    """

    def __init__(self, settings: EsiSettings, known_scopes: Optional[Iterable[str]] = None):
        if not settings.client_id:
            raise ValueError("client_id is required to build authorization URLs")
        self.settings = settings
        if known_scopes is None:
            known_scopes = settings.known_scopes if settings.known_scopes is not None else ESI_SCOPES
        self.known_scopes = frozenset(known_scopes)
        self.logger = get_logger("esi_auth.flow")

    def build_authorize_url(self, scopes: ScopeInput, redirect_target: Optional[str] = None) -> Tuple[str, str]:
        """Return ``(url, state)`` for a new authorization attempt."""
        request = self.begin(scopes, redirect_target)
        return request.url, request.state

    def begin(self, scopes: ScopeInput, redirect_target: Optional[str] = None) -> AuthorizationRequest:
        """Start an authorization attempt, including PKCE material when configured."""
        requested = self._validate_scopes(scopes)
        redirect_uri = redirect_target or self.settings.callback_url
        if not redirect_uri:
            raise ValidationError("A redirect target is required", details={"field": "redirect_target"})

        state = secrets.token_urlsafe(STATE_BYTES)
        params: List[Tuple[str, str]] = [
            ("response_type", "code"),
            ("redirect_uri", redirect_uri),
            ("client_id", self.settings.client_id),
            ("scope", self.settings.scope_delimiter.join(requested)),
            ("state", state),
        ]

        code_verifier = None
        if self.settings.uses_pkce:
            pair = pkce.generate()
            code_verifier = pair.verifier
            params.append(("code_challenge", pair.challenge))
            params.append(("code_challenge_method", pair.method))

        url = f"{self.settings.authorize_url}?{urlencode(params)}"
        self.logger.debug("Built authorization URL", scopes=requested, pkce=code_verifier is not None)
        return AuthorizationRequest(
            url=url,
            state=state,
            scopes=tuple(requested),
            redirect_uri=redirect_uri,
            code_verifier=code_verifier,
        )

    def _validate_scopes(self, scopes: ScopeInput) -> List[str]:
        if isinstance(scopes, (set, frozenset)):
            scopes = sorted(scopes)
        requested = normalize_scopes(scopes, self.settings.scope_delimiter)
        if not requested:
            raise ValidationError("At least one scope must be requested", details={"field": "scopes"})
        unknown = [scope for scope in requested if scope not in self.known_scopes]
        if unknown:
            raise ValidationError("Unknown scopes requested", details={"unknown_scopes": unknown})
        return requested
