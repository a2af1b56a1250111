"""
Unit tests for token value types.
"""

import pytest
from datetime import datetime, timedelta, timezone
from pydantic import ValidationError

from esi_auth.app.models import Token, TokenClaims, TokenResponse, normalize_scopes


NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


class TestNormalizeScopes:
    """Test cases for scope normalization."""

    def test_splits_string(self):
        assert normalize_scopes("a b  c") == ["a", "b", "c"]

    def test_custom_delimiter(self):
        assert normalize_scopes("a,b", delimiter=",") == ["a", "b"]

    def test_deduplicates_preserving_order(self):
        assert normalize_scopes(["b", "a", "b"]) == ["b", "a"]

    def test_none_is_empty(self):
        assert normalize_scopes(None) == []


class TestToken:
    """Test cases for Token."""

    def test_rejects_empty_access_value(self):
        with pytest.raises(ValueError):
            Token(access_value="", expires_at=NOW, issued_at=NOW)

    def test_rejects_naive_timestamps(self):
        with pytest.raises(ValueError):
            Token(access_value="abc", expires_at=datetime(2026, 1, 1), issued_at=NOW)

    def test_rejects_expiry_before_issue(self):
        with pytest.raises(ValueError):
            Token(access_value="abc", expires_at=NOW - timedelta(seconds=1), issued_at=NOW)

    def test_from_response(self):
        response = TokenResponse(access_token="abc", expires_in=1200, refresh_token="def", scope="x y")

        token = Token.from_response(response, now=NOW)

        assert token.access_value == "abc"
        assert token.refresh_value == "def"
        assert token.expires_at == NOW + timedelta(seconds=1200)
        assert token.issued_at == NOW
        assert token.scopes == frozenset({"x", "y"})
        assert token.has_refresh

    def test_from_response_keeps_previous_refresh_and_scopes(self):
        response = TokenResponse(access_token="abc", expires_in=60)

        token = Token.from_response(response, now=NOW, fallback_refresh="old", fallback_scopes=frozenset({"s"}))

        assert token.refresh_value == "old"
        assert token.scopes == frozenset({"s"})

    def test_expiry_checks(self):
        token = Token(access_value="abc", expires_at=NOW + timedelta(seconds=2), issued_at=NOW)

        assert token.expires_within(5, now=NOW)
        assert not token.expires_within(1, now=NOW)
        assert not token.is_expired(now=NOW)
        assert token.is_expired(now=NOW + timedelta(seconds=2))

    def test_repr_hides_credentials(self):
        token = Token(access_value="secret-access", refresh_value="secret-refresh", expires_at=NOW, issued_at=NOW)

        assert "secret-access" not in repr(token)
        assert "secret-refresh" not in repr(token)

    def test_authorization_header(self):
        token = Token(access_value="abc", expires_at=NOW, issued_at=NOW)
        assert token.authorization_header == "Bearer abc"


class TestTokenResponse:
    """Test cases for TokenResponse."""

    def test_refresh_token_optional(self):
        response = TokenResponse.model_validate({"access_token": "abc", "expires_in": 1000, "refresh_token": None})
        assert response.refresh_token is None

    def test_rejects_empty_access_token(self):
        with pytest.raises(ValidationError):
            TokenResponse.model_validate({"access_token": "", "expires_in": 1000})

    def test_rejects_missing_expiry(self):
        with pytest.raises(ValidationError):
            TokenResponse.model_validate({"access_token": "abc"})

    def test_rejects_zero_lifetime(self):
        with pytest.raises(ValidationError):
            TokenResponse.model_validate({"access_token": "abc", "expires_in": 0})


class TestTokenClaims:
    """Test cases for TokenClaims."""

    def test_from_payload(self):
        payload = {
            "sub": "CHARACTER:EVE:2112625428",
            "iss": "login.eveonline.com",
            "aud": "test-client",
            "exp": 1700000000,
            "scp": "esi-skills.read_skills.v1",
            "name": "Test Pilot",
        }

        claims = TokenClaims.from_payload(payload)

        assert claims.aud == ["test-client"]
        assert claims.scopes == ["esi-skills.read_skills.v1"]
        assert claims.character_id == 2112625428
        assert claims.name == "Test Pilot"
        assert claims.raw == payload
        assert claims.expires_at == datetime.fromtimestamp(1700000000, tz=timezone.utc)

    def test_non_character_subject(self):
        claims = TokenClaims(sub="CORPORATION:EVE:1", iss="x", exp=1)
        assert claims.character_id is None
