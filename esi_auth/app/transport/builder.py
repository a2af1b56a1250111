"""
Attaches the session's bearer credential to outbound requests.
"""

from typing import AsyncGenerator, Dict, Generator, Optional

import httpx

from shared.logging import get_logger
from ..session.manager import Session


class AuthenticatedRequestBuilder(httpx.Auth):
    """Authorizes requests with a Session's current access token.

    Usable directly via ``authorize()`` or as the ``auth=`` of an
    ``httpx.AsyncClient`` request. Any AuthError raised while making the
    token valid propagates before the request is sent.
    """

    requires_request_body = False
    requires_response_body = False

    def __init__(self, session: Session):
        self.session = session
        self.logger = get_logger("esi_auth.transport")

    async def authorize(self, request: httpx.Request) -> httpx.Request:
        token = await self.session.ensure_valid()
        request.headers["Authorization"] = token.authorization_header
        self.logger.debug("Request authorized", method=request.method, path=request.url.path)
        return request

    async def headers(self, headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Return ``headers`` with the Authorization header added."""
        token = await self.session.ensure_valid()
        result = dict(headers or {})
        result["Authorization"] = token.authorization_header
        return result

    async def async_auth_flow(self, request: httpx.Request) -> AsyncGenerator[httpx.Request, httpx.Response]:
        yield await self.authorize(request)

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        raise RuntimeError("AuthenticatedRequestBuilder requires an httpx.AsyncClient")
