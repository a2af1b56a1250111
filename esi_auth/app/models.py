"""
Value types shared by the SSO flow, the session manager and the verifier.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def normalize_scopes(scopes: Union[str, List[str], Tuple[str, ...], None], delimiter: str = " ") -> List[str]:
    """Normalize scope input to an ordered, de-duplicated list."""
    if scopes is None:
        return []
    if isinstance(scopes, str):
        scopes = scopes.split(delimiter)
    seen: List[str] = []
    for scope in scopes:
        scope = scope.strip()
        if scope and scope not in seen:
            seen.append(scope)
    return seen


class TokenResponse(BaseModel):
    """Token endpoint success body."""

    access_token: str = Field(min_length=1)
    token_type: str = "Bearer"
    expires_in: int = Field(gt=0)
    refresh_token: Optional[str] = None
    scope: Optional[str] = None


@dataclass(frozen=True)
class Token:
    """An access/refresh token pair. Replaced wholesale on refresh."""

    access_value: str = field(repr=False)
    expires_at: datetime
    refresh_value: Optional[str] = field(default=None, repr=False)
    scopes: FrozenSet[str] = frozenset()
    issued_at: datetime = field(default_factory=utcnow)
    token_type: str = "Bearer"

    def __post_init__(self) -> None:
        if not self.access_value:
            raise ValueError("access_value must not be empty")
        if self.expires_at.tzinfo is None or self.issued_at.tzinfo is None:
            raise ValueError("Token timestamps must be timezone-aware")
        if self.expires_at < self.issued_at:
            raise ValueError("Token cannot expire before it was issued")

    @classmethod
    def from_response(
        cls,
        response: TokenResponse,
        now: Optional[datetime] = None,
        fallback_refresh: Optional[str] = None,
        fallback_scopes: Optional[FrozenSet[str]] = None,
    ) -> "Token":
        """Build a Token from a token endpoint response received at ``now``.

        Servers may omit ``refresh_token`` or ``scope`` on a refresh grant;
        the previous values carry over through the fallbacks.
        """
        issued = now or utcnow()
        scopes = frozenset(normalize_scopes(response.scope))
        return cls(
            access_value=response.access_token,
            refresh_value=response.refresh_token or fallback_refresh,
            expires_at=issued + timedelta(seconds=response.expires_in),
            scopes=scopes or (fallback_scopes or frozenset()),
            issued_at=issued,
            token_type=response.token_type or "Bearer",
        )

    @property
    def has_refresh(self) -> bool:
        return bool(self.refresh_value)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def expires_within(self, margin: Union[int, float, timedelta], now: Optional[datetime] = None) -> bool:
        """True when the token expires within ``margin`` of ``now``."""
        if not isinstance(margin, timedelta):
            margin = timedelta(seconds=margin)
        return self.expires_at - (now or utcnow()) <= margin

    @property
    def authorization_header(self) -> str:
        return f"Bearer {self.access_value}"


@dataclass(frozen=True)
class AuthorizationRequest:
    """One pending authorization attempt; its state is single-use."""

    url: str
    state: str = field(repr=False)
    scopes: Tuple[str, ...]
    redirect_uri: str
    code_verifier: Optional[str] = field(default=None, repr=False)
    created_at: datetime = field(default_factory=utcnow)


class TokenClaims(BaseModel):
    """Decoded claim set of a verified SSO access token.

    Advisory metadata only; the opaque access value remains the credential.
    """

    sub: str
    iss: str
    aud: List[str] = []
    exp: int
    iat: Optional[int] = None
    nbf: Optional[int] = None
    jti: Optional[str] = None
    kid: Optional[str] = None
    azp: Optional[str] = None
    name: Optional[str] = None
    owner: Optional[str] = None
    tenant: Optional[str] = None
    tier: Optional[str] = None
    region: Optional[str] = None
    scopes: List[str] = Field(default_factory=list, alias="scp")
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    model_config = {"populate_by_name": True}

    @field_validator("aud", mode="before")
    @classmethod
    def _aud_as_list(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return list(value)

    @field_validator("scopes", mode="before")
    @classmethod
    def _scopes_as_list(cls, value: Any) -> List[str]:
        return normalize_scopes(value)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TokenClaims":
        return cls.model_validate({**payload, "raw": payload})

    @property
    def character_id(self) -> Optional[int]:
        """Character id from a ``CHARACTER:EVE:<id>`` subject."""
        parts = self.sub.split(":")
        if len(parts) == 3 and parts[0] == "CHARACTER" and parts[2].isdigit():
            return int(parts[2])
        return None

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)
