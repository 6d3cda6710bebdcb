"""Per-attempt authorization context: CSRF state, redirect and PKCE verifier.

The state is a cryptographically random token generated for every
authorize URL. A redirect is only accepted if it echoes the state back
exactly; once matched, or once the attempt is cancelled, the state is
cleared so the same redirect can never complete a second flow.

PKCE values (RFC 7636) are treated as opaque strings: a random verifier is
produced and its S256 challenge is derived from it.
"""

import base64
import hashlib
import hmac
import secrets
from dataclasses import dataclass

MIN_STATE_LENGTH = 8

# RFC 7636 section 4.1 bounds the verifier to 43-128 characters
VERIFIER_BYTES = 48


def generate_state() -> str:
    """Generate a random CSRF state token (32 hex characters)."""
    return secrets.token_hex(16)


def generate_code_verifier() -> str:
    """Generate a random PKCE code verifier (64 URL-safe characters)."""
    return secrets.token_urlsafe(VERIFIER_BYTES)


def code_challenge_for(verifier: str) -> str:
    """Derive the S256 code challenge: BASE64URL(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


@dataclass
class AuthContext:
    """Mutable state of one authorization attempt.

    Attributes:
        state: CSRF token expected back in the redirect, None when no
            redirect is expected
        redirect_url: The redirect URI sent in the authorize URL
        code_verifier: PKCE verifier, if the attempt uses PKCE
    """

    state: str | None = None
    redirect_url: str | None = None
    code_verifier: str | None = None

    @classmethod
    def begin(cls, redirect_url: str, use_pkce: bool = False) -> "AuthContext":
        """Start a fresh attempt with a new random state."""
        return cls(
            state=generate_state(),
            redirect_url=redirect_url,
            code_verifier=generate_code_verifier() if use_pkce else None,
        )

    @property
    def code_challenge(self) -> str | None:
        if self.code_verifier is None:
            return None
        return code_challenge_for(self.code_verifier)

    @property
    def is_awaiting_redirect(self) -> bool:
        return bool(self.state)

    def matches_state(self, state: str | None) -> bool:
        """Exact, constant-time comparison against the expected state."""
        if not self.state or state is None:
            return False
        return hmac.compare_digest(self.state.encode("utf-8"), state.encode("utf-8"))

    def reset_state(self) -> None:
        """Consume the state once a redirect has been validated."""
        self.state = None

    def invalidate(self) -> None:
        """Discard everything, e.g. when the attempt is cancelled."""
        self.state = None
        self.redirect_url = None
        self.code_verifier = None
