"""
Shared configuration management for the ESI SSO client.
"""

from typing import List, Optional

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SSO_URL = "https://login.eveonline.com"
DEFAULT_API_URL = "https://esi.evetech.net/latest/"


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ESI_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # HTTP
    user_agent: str = "esi-auth/0.1"
    http_timeout: float = 10.0


class EsiSettings(BaseConfig):
    """Settings consumed by the SSO core and the API client."""

    # Authorization server
    sso_base_url: str = DEFAULT_SSO_URL
    authorize_path: str = "/v2/oauth/authorize"
    token_path: str = "/v2/oauth/token"
    # When unset the key endpoint is discovered from the server metadata.
    jwks_path: Optional[str] = "/oauth/jwks"
    metadata_path: str = "/.well-known/oauth-authorization-server"

    # API
    api_base_url: str = DEFAULT_API_URL

    # Application credentials
    client_id: Optional[str] = None
    client_secret: Optional[SecretStr] = None
    callback_url: Optional[str] = None
    application_auth: bool = False
    token_auth_method: str = Field(default="client_secret_basic", pattern="^client_secret_(basic|post)$")

    # Scopes
    known_scopes: Optional[List[str]] = None
    scope_delimiter: str = " "

    # Token policy
    verify_tokens: bool = True
    clock_skew_seconds: int = Field(default=5, ge=0)
    refresh_margin_seconds: int = Field(default=5, ge=0)
    accepted_issuers: List[str] = ["login.eveonline.com", "https://login.eveonline.com"]
    expected_audience: Optional[str] = "EVE Online"
    allowed_algorithms: List[str] = ["RS256", "ES256"]

    @model_validator(mode="after")
    def check_auth_flow(self) -> "EsiSettings":
        """Exactly one of a client secret or application (PKCE) auth must be configured."""
        if self.client_id is None:
            return self
        if self.client_secret is None and not self.application_auth:
            raise ValueError("Authentication flow information missing: set client_secret or enable application_auth")
        if self.client_secret is not None and self.application_auth:
            raise ValueError("client_secret and application_auth are mutually exclusive")
        return self

    @property
    def authorize_url(self) -> str:
        return f"{self.sso_base_url.rstrip('/')}{self.authorize_path}"

    @property
    def token_url(self) -> str:
        return f"{self.sso_base_url.rstrip('/')}{self.token_path}"

    @property
    def metadata_url(self) -> str:
        return f"{self.sso_base_url.rstrip('/')}{self.metadata_path}"

    @property
    def jwks_url(self) -> Optional[str]:
        if not self.jwks_path:
            return None
        return f"{self.sso_base_url.rstrip('/')}{self.jwks_path}"

    @property
    def uses_pkce(self) -> bool:
        return self.application_auth and self.client_secret is None


def get_config(**overrides) -> EsiSettings:
    """Load settings from the environment, applying explicit overrides."""
    return EsiSettings(**overrides)
