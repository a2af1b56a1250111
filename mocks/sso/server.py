"""
Mock EVE SSO server providing authorization, token and signing-key endpoints,
plus a couple of ESI routes that require a bearer token.
"""

import base64
import secrets
from typing import Dict, Any, Optional, List
from urllib.parse import urlencode

import jwt
from fastapi import FastAPI, Form, Header, Query
from fastapi.responses import JSONResponse, RedirectResponse

from esi_auth.app.flow.pkce import challenge_for
from shared.logging import get_logger
from shared.test_helpers import MockTokenGenerator, SigningKey, TestCharacter


class MockSsoServer:
    """Mock EVE SSO implementation."""

    def __init__(
        self,
        base_url: str = "http://sso.test",
        client_id: str = "test-client",
        client_secret: Optional[str] = "test-secret",
        access_ttl: int = 1200,
    ):
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.access_ttl = access_ttl
        self.logger = get_logger("mock.sso")
        self.app = FastAPI(title="Mock EVE SSO", version="1.0.0")

        self.character = TestCharacter(character_id=2112625428, name="Test Pilot")
        self.tokens = MockTokenGenerator(client_id=client_id)
        self.published_keys: List[SigningKey] = [self.tokens.signing_key]

        # code -> grant details; single use
        self.codes: Dict[str, Dict[str, Any]] = {}
        # refresh token -> scopes; rotated on use
        self.refresh_tokens: Dict[str, List[str]] = {}

        self.token_requests = 0
        self.jwks_requests = 0
        self.error_limit_remain = 100
        self.error_limit_reset = 60

        self._setup_routes()

    def _setup_routes(self):
        """Set up mock SSO routes."""

        @self.app.get("/")
        async def root():
            return {
                "service": "mock-sso",
                "message": "Mock EVE SSO for the ESI client",
                "version": "1.0.0",
                "issuer": self.tokens.issuer,
            }

        @self.app.get("/.well-known/oauth-authorization-server")
        async def metadata():
            """Authorization server metadata."""
            return {
                "issuer": self.tokens.issuer,
                "authorization_endpoint": f"{self.base_url}/v2/oauth/authorize",
                "token_endpoint": f"{self.base_url}/v2/oauth/token",
                "jwks_uri": f"{self.base_url}/oauth/jwks",
                "response_types_supported": ["code", "token"],
                "grant_types_supported": ["authorization_code", "refresh_token"],
                "code_challenge_methods_supported": ["S256"],
                "token_endpoint_auth_methods_supported": ["client_secret_basic", "client_secret_post", "none"],
                "token_endpoint_auth_signing_alg_values_supported": ["HS256"],
            }

        @self.app.get("/oauth/jwks")
        async def jwks_endpoint():
            """Signing key set."""
            self.jwks_requests += 1
            return {
                "keys": [key.public_jwk() for key in self.published_keys],
                "SkipUnresolvedJsonWebKeys": True,
            }

        @self.app.get("/v2/oauth/authorize")
        async def authorize(
            response_type: str = Query(...),
            redirect_uri: str = Query(...),
            client_id: str = Query(...),
            scope: str = Query(""),
            state: str = Query(...),
            code_challenge: Optional[str] = Query(None),
            code_challenge_method: Optional[str] = Query(None),
        ):
            """Approve the request immediately and redirect back with a code."""
            if client_id != self.client_id:
                return self._oauth_error("invalid_client", "Unknown client")
            if response_type != "code":
                return self._oauth_error("unsupported_response_type", "Only code is supported")
            if code_challenge is not None and code_challenge_method != "S256":
                return self._oauth_error("invalid_request", "Only S256 challenges are supported")

            code = secrets.token_urlsafe(16)
            self.codes[code] = {
                "scopes": [s for s in scope.split(" ") if s],
                "redirect_uri": redirect_uri,
                "code_challenge": code_challenge,
            }
            location = f"{redirect_uri}?{urlencode({'code': code, 'state': state})}"
            return RedirectResponse(location, status_code=302)

        @self.app.post("/v2/oauth/token")
        async def token_endpoint(
            grant_type: str = Form(...),
            code: Optional[str] = Form(None),
            redirect_uri: Optional[str] = Form(None),
            refresh_token: Optional[str] = Form(None),
            client_id: Optional[str] = Form(None),
            client_secret: Optional[str] = Form(None),
            code_verifier: Optional[str] = Form(None),
            authorization: Optional[str] = Header(None),
        ):
            """Token endpoint for both grants."""
            self.token_requests += 1

            client_ok = self._authenticate_client(authorization, client_id, client_secret)
            if not client_ok:
                return self._oauth_error("invalid_client", "Client authentication failed", status_code=401)

            if grant_type == "authorization_code":
                return self._handle_authorization_code(code, redirect_uri, code_verifier)
            if grant_type == "refresh_token":
                return self._handle_refresh_token(refresh_token)
            return self._oauth_error("unsupported_grant_type", f"Grant type {grant_type} is not supported")

        @self.app.get("/esi/latest/characters/{character_id}/wallet/")
        async def character_wallet(character_id: int, authorization: Optional[str] = Header(None)):
            """Authenticated ESI route."""
            claims = self._bearer_claims(authorization)
            if claims is None or claims["sub"] != f"CHARACTER:EVE:{character_id}":
                return self._esi_response({"error": "authentication failure"}, status_code=401)
            return self._esi_response(1337.5)

        @self.app.get("/esi/latest/status/")
        async def server_status():
            """Public ESI route."""
            return self._esi_response({"players": 20000, "server_version": "2500000", "start_time": "2026-10-19T11:00:00Z"})

    def _authenticate_client(
        self,
        authorization: Optional[str],
        client_id: Optional[str],
        client_secret: Optional[str],
    ) -> bool:
        if authorization and authorization.startswith("Basic "):
            decoded = base64.b64decode(authorization[len("Basic "):]).decode()
            basic_id, _, basic_secret = decoded.partition(":")
            return basic_id == self.client_id and basic_secret == self.client_secret
        if client_id != self.client_id:
            return False
        if client_secret is not None:
            return client_secret == self.client_secret
        # Public client: PKCE verifier or refresh grant by client id only
        return self.client_secret is None

    def _handle_authorization_code(
        self,
        code: Optional[str],
        redirect_uri: Optional[str],
        code_verifier: Optional[str],
    ):
        grant = self.codes.pop(code, None) if code else None
        if grant is None:
            return self._oauth_error("invalid_grant", "Authorization code is invalid or already used")
        if redirect_uri is not None and redirect_uri != grant["redirect_uri"]:
            return self._oauth_error("invalid_grant", "redirect_uri does not match")
        if grant["code_challenge"] is not None:
            if not code_verifier or challenge_for(code_verifier) != grant["code_challenge"]:
                return self._oauth_error("invalid_grant", "PKCE verification failed")
        return self._issue_tokens(grant["scopes"])

    def _handle_refresh_token(self, refresh_token: Optional[str]):
        scopes = self.refresh_tokens.pop(refresh_token, None) if refresh_token else None
        if scopes is None:
            return self._oauth_error("invalid_grant", "Refresh token is invalid or revoked")
        return self._issue_tokens(scopes)

    def _issue_tokens(self, scopes: List[str]) -> Dict[str, Any]:
        refresh_token = secrets.token_urlsafe(24)
        self.refresh_tokens[refresh_token] = scopes
        self.logger.info("Issued token pair", scopes=scopes)
        return self.tokens.generate_token_response(
            self.character,
            scopes=scopes,
            expires_in=self.access_ttl,
            refresh_token=refresh_token,
        )

    def _bearer_claims(self, authorization: Optional[str]) -> Optional[Dict[str, Any]]:
        if not authorization or not authorization.startswith("Bearer "):
            return None
        token = authorization[len("Bearer "):]
        try:
            kid = jwt.get_unverified_header(token).get("kid")
            key = next((k for k in self.published_keys if k.kid == kid), None)
            if key is None:
                return None
            return jwt.decode(
                token,
                jwt.PyJWK(key.public_jwk()).key,
                algorithms=["RS256"],
                audience=self.client_id,
                issuer=self.tokens.issuer,
            )
        except jwt.InvalidTokenError:
            return None

    def _esi_response(self, content: Any, status_code: int = 200) -> JSONResponse:
        if status_code >= 400:
            self.error_limit_remain = max(self.error_limit_remain - 1, 0)
        return JSONResponse(
            content=content,
            status_code=status_code,
            headers={
                "x-esi-error-limit-remain": str(self.error_limit_remain),
                "x-esi-error-limit-reset": str(self.error_limit_reset),
            },
        )

    @staticmethod
    def _oauth_error(error: str, description: str, status_code: int = 400) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"error": error, "error_description": description})

    def rotate_signing_key(self) -> SigningKey:
        """Sign new tokens with a fresh key, keeping the old one published."""
        new_key = SigningKey()
        self.published_keys.append(new_key)
        self.tokens.signing_key = new_key
        return new_key

    def revoke_all(self) -> None:
        self.refresh_tokens.clear()
