"""
Authorization flow initiation: authorization URLs, CSRF state and PKCE.
"""

from .authorize import AuthorizationFlow
from .scopes import ESI_SCOPES

__all__ = ["AuthorizationFlow", "ESI_SCOPES"]
