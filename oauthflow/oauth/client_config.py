"""Client configuration: credentials, endpoints and auth-placement policy."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EndpointAuthMethod(str, Enum):
    """How the client authenticates against the token endpoint (RFC 7591)."""

    NONE = "none"
    CLIENT_SECRET_POST = "client_secret_post"
    CLIENT_SECRET_BASIC = "client_secret_basic"


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _as_optional_str(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value)
    return value or None


@dataclass
class ClientConfiguration:
    """Client credentials, endpoint URLs, scope and client-auth policy.

    Attributes:
        client_id: The client identifier (may be filled in by registration)
        client_secret: Optional client secret
        client_name: Name sent during dynamic client registration
        authorize_url: Authorization endpoint
        token_url: Token endpoint, defaults to ``authorize_url`` if unset
        registration_url: Dynamic client registration endpoint
        logo_url: Logo sent during dynamic client registration
        scope: Space-separated scopes to request
        redirect_uris: Registered redirect URIs, the first one is the default
        custom_parameters: Extra parameters added to every authorize URL
        secret_in_body: Send client credentials in the request body instead
            of a Basic ``Authorization`` header
        access_token_assume_unexpired: Treat tokens without expiry as valid
        ignore_missing_token_type: Accept token responses without ``token_type``
        endpoint_auth_method: Explicit ``token_endpoint_auth_method``
        keychain: Persist tokens through the storage collaborator
        verbose: Log protocol steps at debug level
    """

    client_id: str | None = None
    client_secret: str | None = None
    client_name: str | None = None
    authorize_url: str | None = None
    token_url: str | None = None
    registration_url: str | None = None
    logo_url: str | None = None
    scope: str | None = None
    redirect_uris: list[str] = field(default_factory=list)
    custom_parameters: dict[str, str] = field(default_factory=dict)
    secret_in_body: bool = False
    access_token_assume_unexpired: bool = True
    ignore_missing_token_type: bool = False
    endpoint_auth_method: EndpointAuthMethod | None = None
    keychain: bool = True
    verbose: bool = False

    @property
    def token_endpoint(self) -> str | None:
        """The URL token requests are sent to."""
        return self.token_url or self.authorize_url

    @property
    def redirect(self) -> str | None:
        """The default redirect URI (first configured one)."""
        return self.redirect_uris[0] if self.redirect_uris else None

    @property
    def storage_key(self) -> str:
        """Key under which tokens and client credentials are persisted."""
        return self.authorize_url or self.token_url or self.registration_url or ""

    def has_secret(self) -> bool:
        return bool(self.client_secret)

    def effective_auth_method(self) -> EndpointAuthMethod:
        """The token endpoint auth method implied by this configuration."""
        if self.endpoint_auth_method is not None:
            return self.endpoint_auth_method
        if not self.has_secret():
            return EndpointAuthMethod.NONE
        if self.secret_in_body:
            return EndpointAuthMethod.CLIENT_SECRET_POST
        return EndpointAuthMethod.CLIENT_SECRET_BASIC

    def apply_auth_method(self, method: str | None) -> None:
        """Adopt the auth method an authorization server assigned us."""
        if not method:
            return
        try:
            self.endpoint_auth_method = EndpointAuthMethod(method)
        except ValueError:
            logger.warning(f"Ignoring unknown token_endpoint_auth_method '{method}'")
            return
        if self.endpoint_auth_method is EndpointAuthMethod.CLIENT_SECRET_POST:
            self.secret_in_body = True
        elif self.endpoint_auth_method is EndpointAuthMethod.CLIENT_SECRET_BASIC:
            self.secret_in_body = False

    def forget_client(self) -> None:
        """Drop the client credentials, e.g. before re-registering."""
        self.client_id = None
        self.client_secret = None

    @classmethod
    def from_settings(cls, settings: dict[str, Any]) -> ClientConfiguration:
        """Build a configuration from a settings mapping.

        Recognized keys: ``client_id``, ``client_secret``, ``client_name``,
        ``authorize_uri``, ``token_uri``, ``registration_uri``, ``logo_uri``,
        ``scope``, ``redirect_uris``, ``parameters``, ``secret_in_body``,
        ``token_assume_unexpired``, ``ignore_missing_token_type``,
        ``token_endpoint_auth_method``, ``keychain`` and ``verbose``.
        """
        redirect_uris = settings.get("redirect_uris") or []
        if isinstance(redirect_uris, str):
            redirect_uris = [redirect_uris]

        parameters = settings.get("parameters") or {}
        auth_method = settings.get("token_endpoint_auth_method")

        config = cls(
            client_id=_as_optional_str(settings.get("client_id")),
            client_secret=_as_optional_str(settings.get("client_secret")),
            client_name=_as_optional_str(settings.get("client_name")),
            authorize_url=_as_optional_str(settings.get("authorize_uri")),
            token_url=_as_optional_str(settings.get("token_uri")),
            registration_url=_as_optional_str(settings.get("registration_uri")),
            logo_url=_as_optional_str(settings.get("logo_uri")),
            scope=_as_optional_str(settings.get("scope")),
            redirect_uris=[str(uri) for uri in redirect_uris],
            custom_parameters={str(k): str(v) for k, v in parameters.items()},
            secret_in_body=_as_bool(settings.get("secret_in_body"), False),
            access_token_assume_unexpired=_as_bool(
                settings.get("token_assume_unexpired"), True
            ),
            ignore_missing_token_type=_as_bool(
                settings.get("ignore_missing_token_type"), False
            ),
            keychain=_as_bool(settings.get("keychain"), True),
            verbose=_as_bool(settings.get("verbose"), False),
        )
        if auth_method:
            config.apply_auth_method(str(auth_method))
        return config
