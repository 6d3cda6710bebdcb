"""Tests for token records and authorization contexts."""

import base64
import hashlib
from datetime import datetime, timedelta, timezone

import pytest

from oauthflow.oauth.context import (
    MIN_STATE_LENGTH,
    AuthContext,
    code_challenge_for,
    generate_code_verifier,
    generate_state,
)
from oauthflow.oauth.tokens import ClientCredentials, TokenRecord

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestTokenRecord:
    """Tests for TokenRecord."""

    def test_empty_access_token_rejected(self) -> None:
        """Test that a record cannot hold an empty token."""
        with pytest.raises(ValueError):
            TokenRecord(access_token="")

    def test_auth_header(self) -> None:
        """Test the Authorization header value."""
        assert TokenRecord(access_token="abc").get_auth_header() == "Bearer abc"

    def test_expiry(self) -> None:
        """Test expiry checks against a fixed clock."""
        record = TokenRecord(access_token="x", expires_at=NOW + timedelta(seconds=5))
        assert not record.is_expired(NOW)
        assert record.is_expired(NOW + timedelta(seconds=5))

    def test_usable_without_expiry_follows_policy(self) -> None:
        """Test that tokens without expiry are usable only if assumed unexpired."""
        record = TokenRecord(access_token="x")
        assert record.is_usable(assume_unexpired=True)
        assert not record.is_usable(assume_unexpired=False)

    def test_usable_with_expiry_ignores_policy(self) -> None:
        """Test that a known expiry decides regardless of the policy."""
        record = TokenRecord(access_token="x", expires_at=NOW - timedelta(seconds=1))
        assert not record.is_usable(assume_unexpired=True, now=NOW)

    def test_dict_round_trip(self) -> None:
        """Test serialization for storage."""
        record = TokenRecord(
            access_token="x",
            expires_at=NOW,
            refresh_token="r",
            scope="read",
            raw_parameters={"access_token": "x", "extra": "1"},
            issued_at=NOW,
        )
        assert TokenRecord.from_dict(record.to_dict()) == record

    def test_from_dict_minimal(self) -> None:
        """Test loading a record with only the access token."""
        record = TokenRecord.from_dict({"access_token": "x"})
        assert record.token_type == "bearer"
        assert record.expires_at is None
        assert not record.has_refresh_token()


class TestClientCredentials:
    """Tests for ClientCredentials."""

    def test_to_dict_omits_empty(self) -> None:
        """Test that absent fields are not serialized."""
        assert ClientCredentials(client_id="abc").to_dict() == {"client_id": "abc"}

    def test_from_dict(self) -> None:
        """Test loading stored client credentials."""
        client = ClientCredentials.from_dict(
            {"client_id": "abc", "client_secret": "def", "endpoint_auth_method": "client_secret_post"}
        )
        assert client.client_secret == "def"
        assert client.endpoint_auth_method == "client_secret_post"


class TestState:
    """Tests for CSRF state generation."""

    def test_state_length(self) -> None:
        """Test that states are long enough to be unguessable."""
        assert len(generate_state()) >= MIN_STATE_LENGTH

    def test_state_differs_per_call(self) -> None:
        """Test that every attempt gets a new state."""
        assert generate_state() != generate_state()

    def test_begin_creates_fresh_state(self) -> None:
        """Test that each new context has its own state."""
        first = AuthContext.begin("oauth2://callback")
        second = AuthContext.begin("oauth2://callback")
        assert first.state != second.state
        assert first.is_awaiting_redirect

    def test_matches_state_exactly(self) -> None:
        """Test exact state comparison."""
        context = AuthContext(state="abcdefgh12345678")
        assert context.matches_state("abcdefgh12345678")
        assert not context.matches_state("ABCDEFGH12345678")
        assert not context.matches_state(None)

    def test_reset_state(self) -> None:
        """Test that a consumed state no longer matches."""
        context = AuthContext.begin("oauth2://callback")
        state = context.state
        context.reset_state()
        assert not context.is_awaiting_redirect
        assert not context.matches_state(state)
        assert context.redirect_url == "oauth2://callback"

    def test_invalidate(self) -> None:
        """Test that invalidation clears the whole context."""
        context = AuthContext.begin("oauth2://callback", use_pkce=True)
        context.invalidate()
        assert context == AuthContext()


class TestPKCE:
    """Tests for PKCE values."""

    def test_verifier_length(self) -> None:
        """Test that verifiers are within 43-128 characters."""
        verifier = generate_code_verifier()
        assert 43 <= len(verifier) <= 128

    def test_challenge_is_s256(self) -> None:
        """Test that the challenge is BASE64URL(SHA256(verifier)) without padding."""
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        expected = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).rstrip(b"=")
        assert code_challenge_for(verifier) == expected.decode()
        assert code_challenge_for(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_context_challenge(self) -> None:
        """Test that PKCE contexts expose a challenge and plain ones don't."""
        assert AuthContext.begin("oauth2://callback", use_pkce=True).code_challenge is not None
        assert AuthContext.begin("oauth2://callback").code_challenge is None
