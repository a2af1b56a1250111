"""
Session lifecycle: authorization-code exchange, refresh and expiry policy.
"""

import asyncio
import secrets
import uuid
from collections import OrderedDict
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

import httpx

from shared.config import EsiSettings
from shared.errors import (
    AuthError,
    CsrfMismatch,
    ExchangeRejected,
    NetworkError,
    ReauthRequired,
    RefreshRejected,
    ValidationError,
)
from shared.logging import get_logger, set_character_context, set_session_id
from ..flow.authorize import AuthorizationFlow
from ..jwks.client import SigningKeySet
from ..models import Token, TokenClaims, TokenResponse, utcnow
from ..validation.claims_verifier import ClaimsVerifier

MAX_CONSUMED_STATES = 10_000


class SessionState(Enum):
    """Observable lifecycle state of a Session."""
    AUTHENTICATED = "authenticated"
    EXPIRING = "expiring"
    REFRESHING = "refreshing"
    REAUTH_REQUIRED = "reauth_required"


class Session:
    """Owns one Token and keeps it usable for authenticated requests.

    The Token lives in a lock-protected slot and is swapped wholesale once
    a refreshed Token has been fully validated. Only one refresh is in
    flight at a time; concurrent callers wait for it and reuse its result.
    """

    def __init__(
        self,
        manager: "SessionManager",
        token: Token,
        claims: Optional[TokenClaims] = None,
        session_id: Optional[str] = None,
    ):
        self._manager = manager
        self._token = token
        self._claims = claims
        self._lock = asyncio.Lock()
        self._terminal_reason: Optional[str] = None
        # Bumped once per completed refresh attempt; cancelled attempts do not count.
        self._generation = 0
        self._last_failure: Optional[AuthError] = None
        self.session_id = session_id or str(uuid.uuid4())
        self.refresh_count = 0
        self.logger = get_logger("esi_auth.session")

    @property
    def token(self) -> Token:
        return self._token

    @property
    def claims(self) -> Optional[TokenClaims]:
        """Claims of the most recently verified token; None in opaque mode."""
        return self._claims

    @property
    def character_id(self) -> Optional[int]:
        return self._claims.character_id if self._claims else None

    @property
    def state(self) -> SessionState:
        if self._terminal_reason is not None:
            return SessionState.REAUTH_REQUIRED
        if self._lock.locked():
            return SessionState.REFRESHING
        if self._needs_refresh(self._token):
            return SessionState.EXPIRING
        return SessionState.AUTHENTICATED

    async def ensure_valid(self) -> Token:
        """Return a Token that is safe to use, refreshing it if it is near expiry.

        Callers that queue behind a refresh attempt share its outcome: the
        refreshed Token on success, or the same error when it failed.
        """
        self._raise_if_terminal()
        token = self._token
        if not self._needs_refresh(token):
            return token

        generation = self._generation
        async with self._lock:
            self._raise_if_terminal()
            if self._generation != generation:
                # A refresh attempt finished while this caller waited.
                if self._last_failure is not None:
                    raise self._last_failure
                return self._token

            token = self._token
            if not self._needs_refresh(token):
                return token

            if not token.has_refresh:
                if not token.is_expired(self._manager.clock()):
                    return token
                self._terminal_reason = "expired"
                self.logger.warning("Access token expired without refresh token", session_id=self.session_id)
                raise ReauthRequired(
                    "Access token is expired and no refresh token is present",
                    details={"reason": "expired", "session_id": self.session_id},
                )

            try:
                new_token, claims = await self._manager.refresh_token(token)
            except RefreshRejected:
                self._terminal_reason = "refresh_rejected"
                self._finish_attempt(None)
                self.logger.warning("Refresh rejected, session requires re-authentication", session_id=self.session_id)
                raise
            except AuthError as e:
                self._finish_attempt(e)
                self.logger.warning("Refresh failed, keeping current token", session_id=self.session_id, error=e.code)
                raise

            self._token = new_token
            if claims is not None:
                self._claims = claims
            self.refresh_count += 1
            self._finish_attempt(None)
            self.logger.info(
                "Access token refreshed",
                session_id=self.session_id,
                expires_at=new_token.expires_at.isoformat(),
            )
            return new_token

    def _finish_attempt(self, failure: Optional[AuthError]) -> None:
        self._last_failure = failure
        self._generation += 1

    def _needs_refresh(self, token: Token) -> bool:
        return token.expires_within(self._manager.settings.refresh_margin_seconds, self._manager.clock())

    def _raise_if_terminal(self) -> None:
        if self._terminal_reason is not None:
            raise ReauthRequired(details={"reason": self._terminal_reason, "session_id": self.session_id})


class SessionManager:
    """Exchanges codes and refresh tokens with EVE SSO and hands out Sessions."""

    def __init__(
        self,
        settings: EsiSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        verifier: Optional[ClaimsVerifier] = None,
        key_set: Optional[SigningKeySet] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if not settings.client_id:
            raise ValueError("client_id is required for SSO authentication")
        self.settings = settings
        self.clock = clock
        self.logger = get_logger("esi_auth.session_manager")

        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(
            timeout=settings.http_timeout,
            headers={"User-Agent": settings.user_agent},
        )

        # Verification mode is fixed for every Session this manager creates.
        self.verify_tokens = settings.verify_tokens
        self.verifier: Optional[ClaimsVerifier] = None
        self.key_set: Optional[SigningKeySet] = None
        if self.verify_tokens:
            self.verifier = verifier or ClaimsVerifier.from_settings(settings, clock=self._timestamp)
            self.key_set = key_set or SigningKeySet(
                self.client,
                jwks_url=settings.jwks_url,
                metadata_url=settings.metadata_url,
            )

        self._consumed_states: "OrderedDict[str, None]" = OrderedDict()
        self._flow: Optional[AuthorizationFlow] = None

    async def close(self) -> None:
        """Close the underlying HTTP client if this manager created it."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "SessionManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _timestamp(self) -> float:
        return self.clock().timestamp()

    @property
    def flow(self) -> AuthorizationFlow:
        if self._flow is None:
            self._flow = AuthorizationFlow(self.settings)
        return self._flow

    async def complete_login(
        self,
        code: str,
        returned_state: str,
        expected_state: str,
        code_verifier: Optional[str] = None,
        redirect_target: Optional[str] = None,
    ) -> Session:
        """Exchange an authorization code for a verified Session."""
        if self.settings.uses_pkce and not code_verifier:
            raise ValidationError(
                "PKCE code verifier is required for application authentication",
                details={"field": "code_verifier"},
            )
        self._consume_state(returned_state, expected_state)

        form: Dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
        }
        redirect_uri = redirect_target or self.settings.callback_url
        if redirect_uri:
            form["redirect_uri"] = redirect_uri
        if self.settings.uses_pkce:
            form["code_verifier"] = code_verifier

        response = await self._post_token(form, rejected=ExchangeRejected)
        token, claims = await self._build_token(response)
        return self._open_session(token, claims, "Login completed")

    async def resume(self, refresh_value: str) -> Session:
        """Open a Session from a previously stored refresh token."""
        if not refresh_value:
            raise ReauthRequired("No refresh token available to request an access token")
        form = {"grant_type": "refresh_token", "refresh_token": refresh_value}
        response = await self._post_token(form, rejected=RefreshRejected)
        token, claims = await self._build_token(response, fallback_refresh=refresh_value)
        return self._open_session(token, claims, "Session resumed from refresh token")

    async def refresh_token(self, token: Token) -> Tuple[Token, Optional[TokenClaims]]:
        """Run the refresh grant for ``token`` and return its replacement."""
        if not token.refresh_value:
            raise ReauthRequired("No refresh token available to request an access token")
        form = {"grant_type": "refresh_token", "refresh_token": token.refresh_value}
        response = await self._post_token(form, rejected=RefreshRejected)
        return await self._build_token(response, fallback_refresh=token.refresh_value, fallback_scopes=token.scopes)

    def _consume_state(self, returned_state: str, expected_state: str) -> None:
        if not returned_state or not expected_state:
            raise CsrfMismatch("Authorization state missing")
        if not secrets.compare_digest(returned_state.encode(), expected_state.encode()):
            self.logger.warning("Authorization state mismatch")
            raise CsrfMismatch()
        if returned_state in self._consumed_states:
            self.logger.warning("Authorization state replayed")
            raise CsrfMismatch("Authorization state already used")

        self._consumed_states[returned_state] = None
        while len(self._consumed_states) > MAX_CONSUMED_STATES:
            self._consumed_states.popitem(last=False)

    def _open_session(self, token: Token, claims: Optional[TokenClaims], message: str) -> Session:
        session = Session(self, token, claims)
        set_session_id(session.session_id)
        if claims is not None:
            set_character_context(claims.character_id)
        self.logger.info(
            message,
            session_id=session.session_id,
            sub=claims.sub if claims else None,
            verified=claims is not None,
            scopes=sorted(token.scopes),
        )
        return session

    async def _build_token(
        self,
        response: TokenResponse,
        fallback_refresh: Optional[str] = None,
        fallback_scopes=None,
    ) -> Tuple[Token, Optional[TokenClaims]]:
        issued = self.clock()
        claims = None
        if self.verify_tokens:
            claims = await self.verifier.verify_with_refresh(response.access_token, self.key_set)
            if not response.scope and claims.scopes:
                fallback_scopes = frozenset(claims.scopes)

        token = Token.from_response(
            response,
            now=issued,
            fallback_refresh=fallback_refresh,
            fallback_scopes=fallback_scopes,
        )
        return token, claims

    async def _post_token(self, form: Dict[str, str], rejected: type) -> TokenResponse:
        grant = form["grant_type"]
        auth = None
        secret = self.settings.client_secret.get_secret_value() if self.settings.client_secret else None
        if secret and self.settings.token_auth_method == "client_secret_basic":
            auth = httpx.BasicAuth(self.settings.client_id, secret)
        else:
            form = {**form, "client_id": self.settings.client_id}
            if secret:
                form["client_secret"] = secret

        try:
            response = await self.client.post(
                self.settings.token_url,
                data=form,
                auth=auth,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            self.logger.error("Token endpoint unreachable", grant_type=grant, error=str(e))
            raise NetworkError("Token endpoint unreachable", details={"grant_type": grant, "http_error": str(e)}) from e

        if response.status_code >= 500:
            self.logger.warning("Token endpoint server error", grant_type=grant, status_code=response.status_code)
            raise NetworkError(
                f"Token endpoint returned status {response.status_code}",
                details={"grant_type": grant, "status_code": response.status_code},
            )

        if response.status_code != 200:
            error_code, description = self._parse_error(response)
            self.logger.warning(
                "Token endpoint rejected grant",
                grant_type=grant,
                status_code=response.status_code,
                error=error_code,
            )
            raise rejected(error_code, description, response.status_code, details={"grant_type": grant})

        try:
            return TokenResponse.model_validate(response.json())
        except ValueError as e:
            self.logger.error("Token endpoint returned an unusable body", grant_type=grant)
            raise ExchangeRejected(
                "invalid_response",
                "Token endpoint response could not be parsed",
                response.status_code,
                details={"grant_type": grant},
            ) from e

    @staticmethod
    def _parse_error(response: httpx.Response) -> Tuple[str, Optional[str]]:
        try:
            body: Any = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), str):
            return body["error"], body.get("error_description")
        return f"http_{response.status_code}", None
