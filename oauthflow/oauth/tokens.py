"""Token and client credential records.

``TokenRecord`` is the normalized result of a successful token response.
It is created by the token response parser, owned by the ``OAuth2``
orchestrator, and serialized through ``to_dict``/``from_dict`` when a
storage collaborator persists it.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class TokenRecord:
    """A bearer access token with its metadata.

    Attributes:
        access_token: The access token string, never empty
        token_type: Always "bearer"
        expires_at: Absolute expiry (UTC), None if the server sent no expires_in
        refresh_token: Refresh token, if any
        id_token: OpenID Connect ID token, if any
        scope: Granted scope as returned by the server
        raw_parameters: Every field of the token response, verbatim
        issued_at: When the record was created (UTC)
    """

    access_token: str
    token_type: str = "bearer"
    expires_at: datetime | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str | None = None
    raw_parameters: dict[str, Any] = field(default_factory=dict)
    issued_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not self.access_token:
            raise ValueError("access_token must not be empty")

    def is_expired(self, now: datetime | None = None) -> bool:
        """True if the record has an expiry and it has passed."""
        if self.expires_at is None:
            return False
        return (now or _utcnow()) >= self.expires_at

    def is_usable(self, assume_unexpired: bool, now: datetime | None = None) -> bool:
        """Whether the access token may be sent without refreshing first.

        Args:
            assume_unexpired: Policy for tokens the server gave no expiry for
            now: Clock override
        """
        if self.expires_at is None:
            return assume_unexpired
        return not self.is_expired(now)

    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token)

    def get_auth_header(self) -> str:
        """Value for the ``Authorization`` header."""
        return f"Bearer {self.access_token}"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "issued_at": self.issued_at.isoformat(),
        }
        if self.expires_at:
            data["expires_at"] = self.expires_at.isoformat()
        if self.refresh_token:
            data["refresh_token"] = self.refresh_token
        if self.id_token:
            data["id_token"] = self.id_token
        if self.scope:
            data["scope"] = self.scope
        if self.raw_parameters:
            data["raw_parameters"] = self.raw_parameters
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenRecord":
        return cls(
            access_token=data["access_token"],
            token_type=data.get("token_type", "bearer"),
            expires_at=_parse_timestamp(data.get("expires_at")),
            refresh_token=data.get("refresh_token"),
            id_token=data.get("id_token"),
            scope=data.get("scope"),
            raw_parameters=dict(data.get("raw_parameters") or {}),
            issued_at=_parse_timestamp(data.get("issued_at")) or _utcnow(),
        )


@dataclass
class ClientCredentials:
    """Client id and secret obtained through dynamic client registration.

    ``endpoint_auth_method`` is the ``token_endpoint_auth_method`` the server
    assigned, kept so a restored client authenticates the same way.
    """

    client_id: str
    client_secret: str | None = None
    endpoint_auth_method: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"client_id": self.client_id}
        if self.client_secret:
            data["client_secret"] = self.client_secret
        if self.endpoint_auth_method:
            data["endpoint_auth_method"] = self.endpoint_auth_method
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClientCredentials":
        return cls(
            client_id=data["client_id"],
            client_secret=data.get("client_secret"),
            endpoint_auth_method=data.get("endpoint_auth_method"),
        )
