"""
ESI API client with error-limit tracking.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

import httpx

from shared.config import EsiSettings
from shared.errors import ApiError, ErrorLimited, NetworkError, ReauthRequired
from shared.logging import get_logger
from .session.manager import Session
from .transport.builder import AuthenticatedRequestBuilder

ERROR_LIMIT_REMAIN_HEADER = "x-esi-error-limit-remain"
ERROR_LIMIT_RESET_HEADER = "x-esi-error-limit-reset"

QueryParams = Union[Dict[str, Any], Sequence[Tuple[str, Any]]]


@dataclass(frozen=True)
class ErrorLimitState:
    remaining: int
    expires_at_ms: int


class EsiClient:
    """Sends public and authenticated requests to the ESI API.

    ESI reports its error budget on every response. Once the budget reaches
    zero the client refuses to send anything until the reported window ends.
    """

    def __init__(
        self,
        settings: EsiSettings,
        session: Optional[Session] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.session = session
        self.clock = clock
        self.logger = get_logger("esi_auth.client")

        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(
            timeout=settings.http_timeout,
            headers={"User-Agent": settings.user_agent},
        )
        self._builder = AuthenticatedRequestBuilder(session) if session else None
        self._error_limit: Optional[ErrorLimitState] = None

    def attach_session(self, session: Session) -> None:
        """Use ``session`` for authenticated requests from now on."""
        self.session = session
        self._builder = AuthenticatedRequestBuilder(session)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "EsiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def error_limited_for(self) -> int:
        """Milliseconds until the error budget resets; 0 when not limited."""
        state = self._error_limit
        if state is None or state.remaining > 0:
            return 0
        remaining_ms = state.expires_at_ms - self._now_ms()
        return max(remaining_ms, 0)

    @property
    def is_error_limited(self) -> bool:
        return self.error_limited_for() > 0

    async def query(
        self,
        method: str,
        endpoint: str,
        *,
        authenticated: bool = False,
        params: Optional[QueryParams] = None,
        json: Any = None,
    ) -> Any:
        """Send a request to ``endpoint`` under the API base URL and return the decoded body."""
        retry_after_ms = self.error_limited_for()
        if retry_after_ms > 0:
            self.logger.warning("Request refused, error limited", endpoint=endpoint, retry_after_ms=retry_after_ms)
            raise ErrorLimited(retry_after_ms, details={"endpoint": endpoint})

        url = self._url_for(endpoint)
        request = self.client.build_request(method.upper(), url, params=params, json=json)

        if authenticated:
            if self._builder is None:
                raise ReauthRequired("Authenticated request made without a session")
            request = await self._builder.authorize(request)

        self.logger.debug("Sending ESI request", method=request.method, endpoint=endpoint, authenticated=authenticated)
        try:
            response = await self.client.send(request)
        except httpx.HTTPError as e:
            self.logger.error("ESI request failed", method=request.method, endpoint=endpoint, error=str(e))
            raise NetworkError("ESI request failed", details={"endpoint": endpoint, "http_error": str(e)}) from e

        self._process_error_limit_headers(response)

        if not response.is_success:
            self.logger.warning("ESI returned error status", endpoint=endpoint, status_code=response.status_code)
            raise ApiError(response.status_code, details={"endpoint": endpoint})

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(response.status_code, "Response body is not valid JSON", details={"endpoint": endpoint}) from e

    def _url_for(self, endpoint: str) -> str:
        return f"{self.settings.api_base_url.rstrip('/')}/{endpoint.lstrip('/')}"

    def _process_error_limit_headers(self, response: httpx.Response) -> None:
        remain = response.headers.get(ERROR_LIMIT_REMAIN_HEADER)
        reset = response.headers.get(ERROR_LIMIT_RESET_HEADER)
        if remain is None or reset is None:
            return

        try:
            remaining = int(remain)
            resets_in = int(reset)
        except ValueError as e:
            raise ApiError(
                response.status_code,
                "Could not parse error limit headers",
                details={"remain": remain, "reset": reset},
            ) from e

        self._error_limit = ErrorLimitState(remaining=remaining, expires_at_ms=self._now_ms() + resets_in * 1000)
        if remaining <= 0:
            self.logger.warning("ESI error limit reached", resets_in=resets_in)

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)
