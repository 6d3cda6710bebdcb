"""Grant strategies, one per OAuth2 grant type.

Each strategy builds the grant-specific token request and knows how to
obtain a token once the ``OAuth2`` orchestrator delegates to it:

- ``AuthorizationCodeGrant``: authorize URL, redirect with ``code``, token request
- ``ImplicitGrant``: authorize URL, token delivered in the redirect fragment
- ``PasswordGrant``: direct token request with the resource owner's credentials
- ``ClientCredentialsGrant``: direct token request with the client's credentials
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import urlparse

from .client_config import ClientConfiguration
from .context import AuthContext
from .errors import (
    InvalidRedirectURL,
    InvalidState,
    MissingState,
    NoClientId,
    NoClientSecret,
    NoPassword,
    NoRedirectURL,
    NoUsername,
    PrerequisiteFailed,
    ResponseError,
)
from .request import OOB_REDIRECT, AuthRequest, params_from_query, require_tls
from .response import assure_no_error

if TYPE_CHECKING:
    from .orchestrator import OAuth2

logger = logging.getLogger(__name__)


class GrantType(str, Enum):
    """The closed set of supported grant types."""

    AUTHORIZATION_CODE = "authorization_code"
    IMPLICIT = "implicit"
    PASSWORD = "password"
    CLIENT_CREDENTIALS = "client_credentials"

    @property
    def response_type(self) -> str | None:
        """``response_type`` for the authorize URL, None for direct grants."""
        return {
            GrantType.AUTHORIZATION_CODE: "code",
            GrantType.IMPLICIT: "token",
        }.get(self)

    @property
    def uses_redirect(self) -> bool:
        return self.response_type is not None

    @property
    def required_settings(self) -> tuple[str, ...]:
        """ClientConfiguration attributes the grant cannot work without."""
        if self is GrantType.CLIENT_CREDENTIALS:
            return ("client_id", "client_secret", "token_endpoint")
        if self is GrantType.PASSWORD:
            return ("token_endpoint",)
        return ("authorize_url",)


class GrantStrategy(Protocol):
    grant_type: GrantType
    response_type: str | None

    def authorize_params(self, context: AuthContext) -> dict[str, str]:
        """Grant-specific parameters for the authorize URL."""
        ...

    async def begin_authorization(
        self, oauth2: OAuth2, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Obtain a fresh token, returning the token response parameters."""
        ...

    async def handle_redirect(self, oauth2: OAuth2, url: str) -> dict[str, Any]:
        """Complete the flow from the URL the user was redirected to."""
        ...


def _token_endpoint(config: ClientConfiguration) -> str:
    url = config.token_endpoint
    if not url:
        raise PrerequisiteFailed("No token or authorize URL configured")
    return url


def _check_redirect_target(context: AuthContext, url: str) -> None:
    expected = context.redirect_url
    if not expected:
        raise NoRedirectURL()
    if url.startswith(expected) or url.startswith(OOB_REDIRECT):
        return
    if urlparse(url).hostname == "localhost":
        return
    raise InvalidRedirectURL(url)


def _check_state(context: AuthContext, params: dict[str, str]) -> None:
    state = params.get("state")
    if not state:
        raise MissingState()
    if not context.matches_state(state):
        raise InvalidState()
    context.reset_state()


def redirect_payload(
    context: AuthContext,
    url: str,
    use_fragment: bool,
    check_target: bool = False,
) -> dict[str, str]:
    """Validate a redirect URL and return its decoded payload.

    Checks, in order: an attempt is awaiting a redirect, the URL targets the
    expected redirect (if ``check_target``), the payload is not empty, the
    payload carries no error, and the state matches.
    """
    if not context.is_awaiting_redirect:
        raise NoRedirectURL()
    if check_target:
        _check_redirect_target(context, url)

    parsed = urlparse(url)
    component = parsed.fragment if use_fragment else parsed.query
    if not component:
        raise InvalidRedirectURL(url)

    params = params_from_query(component)
    assure_no_error(params)
    _check_state(context, params)
    return params


class AuthorizationCodeGrant:
    """Authorization code grant (RFC 6749 section 4.1).

    Args:
        use_pkce: Send an S256 code challenge and the matching verifier
        form_encoded_response: The token endpoint answers with a form-encoded
            body instead of JSON
    """

    grant_type = GrantType.AUTHORIZATION_CODE
    response_type: str | None = "code"

    def __init__(self, use_pkce: bool = False, form_encoded_response: bool = False):
        self.use_pkce = use_pkce
        self.form_encoded_response = form_encoded_response

    def authorize_params(self, context: AuthContext) -> dict[str, str]:
        challenge = context.code_challenge
        if challenge is None:
            return {}
        return {"code_challenge": challenge, "code_challenge_method": "S256"}

    def access_token_request(
        self,
        config: ClientConfiguration,
        context: AuthContext,
        code: str,
        params: dict[str, Any] | None = None,
    ) -> AuthRequest:
        """Build the request exchanging ``code`` for a token.

        Raises:
            PrerequisiteFailed: If ``code`` is empty
            NoClientId: If no client id is configured
            NoRedirectURL: If no redirect was recorded for this attempt
            NotUsingTLS: If the token endpoint is not https
        """
        if not code:
            raise PrerequisiteFailed("I don't have a code to exchange, let the user authorize first")
        if not config.client_id:
            raise NoClientId()
        if not context.redirect_url:
            raise NoRedirectURL()

        url = _token_endpoint(config)
        require_tls(url)

        request = AuthRequest(url=url)
        request.params["code"] = code
        request.params["grant_type"] = self.grant_type.value
        request.params["redirect_uri"] = context.redirect_url
        request.params["client_id"] = config.client_id
        if context.code_verifier:
            request.params["code_verifier"] = context.code_verifier
        request.add_params(params)
        return request

    async def begin_authorization(
        self, oauth2: OAuth2, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        url = oauth2.authorize_url(params=params)
        return await oauth2.await_redirect(url)

    async def handle_redirect(self, oauth2: OAuth2, url: str) -> dict[str, Any]:
        payload = redirect_payload(oauth2.context, url, use_fragment=False, check_target=True)
        code = payload.get("code")
        if not code:
            raise ResponseError('No "code" received')

        logger.debug("Received authorization code, exchanging it for a token")
        request = self.access_token_request(oauth2.config, oauth2.context, code)
        return await oauth2.request_access_token(
            request, form_encoded=self.form_encoded_response
        )


class ImplicitGrant:
    """Implicit grant (RFC 6749 section 4.2).

    Args:
        params_in_query: The provider puts the token in the query instead of
            the fragment
    """

    grant_type = GrantType.IMPLICIT
    response_type: str | None = "token"

    def __init__(self, params_in_query: bool = False):
        self.params_in_query = params_in_query

    def authorize_params(self, context: AuthContext) -> dict[str, str]:
        return {}

    async def begin_authorization(
        self, oauth2: OAuth2, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        url = oauth2.authorize_url(params=params)
        return await oauth2.await_redirect(url)

    async def handle_redirect(self, oauth2: OAuth2, url: str) -> dict[str, Any]:
        payload = redirect_payload(
            oauth2.context, url, use_fragment=not self.params_in_query
        )
        return oauth2.accept_token_params(payload)


class PasswordGrant:
    """Resource owner password credentials grant (RFC 6749 section 4.3).

    Args:
        username: The resource owner's username
        password: The resource owner's password
        headers: Extra headers some providers require on the token request
    """

    grant_type = GrantType.PASSWORD
    response_type: str | None = None

    def __init__(
        self,
        username: str | None = None,
        password: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.username = username
        self.password = password
        self.headers = dict(headers or {})

    def authorize_params(self, context: AuthContext) -> dict[str, str]:
        return {}

    def access_token_request(
        self,
        config: ClientConfiguration,
        params: dict[str, Any] | None = None,
    ) -> AuthRequest:
        if not self.username:
            raise NoUsername()
        if not self.password:
            raise NoPassword()

        request = AuthRequest(url=_token_endpoint(config))
        request.params["grant_type"] = self.grant_type.value
        request.params["username"] = self.username
        request.params["password"] = self.password
        if config.client_id:
            request.params["client_id"] = config.client_id
        if config.scope:
            request.params["scope"] = config.scope
        request.headers.update(self.headers)
        request.add_params(params)
        return request

    async def begin_authorization(
        self, oauth2: OAuth2, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        request = self.access_token_request(oauth2.config, params)
        return await oauth2.request_access_token(request, password_grant=True)

    async def handle_redirect(self, oauth2: OAuth2, url: str) -> dict[str, Any]:
        raise PrerequisiteFailed("The password grant does not use redirects")


class ClientCredentialsGrant:
    """Client credentials grant (RFC 6749 section 4.4)."""

    grant_type = GrantType.CLIENT_CREDENTIALS
    response_type: str | None = None

    def authorize_params(self, context: AuthContext) -> dict[str, str]:
        return {}

    def access_token_request(
        self,
        config: ClientConfiguration,
        params: dict[str, Any] | None = None,
    ) -> AuthRequest:
        if not config.client_id:
            raise NoClientId()
        if not config.client_secret:
            raise NoClientSecret()

        request = AuthRequest(url=_token_endpoint(config))
        request.params["grant_type"] = self.grant_type.value
        if config.scope:
            request.params["scope"] = config.scope
        request.add_params(params)
        return request

    async def begin_authorization(
        self, oauth2: OAuth2, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        request = self.access_token_request(oauth2.config, params)
        return await oauth2.request_access_token(request)

    async def handle_redirect(self, oauth2: OAuth2, url: str) -> dict[str, Any]:
        raise PrerequisiteFailed("The client credentials grant does not use redirects")


GRANTS: dict[GrantType, type] = {
    GrantType.AUTHORIZATION_CODE: AuthorizationCodeGrant,
    GrantType.IMPLICIT: ImplicitGrant,
    GrantType.PASSWORD: PasswordGrant,
    GrantType.CLIENT_CREDENTIALS: ClientCredentialsGrant,
}


def grant_for(grant_type: GrantType | str, **options: Any) -> GrantStrategy:
    """Create the strategy for ``grant_type`` with grant-specific options.

    Raises:
        ValueError: If ``grant_type`` is not a supported grant
    """
    strategy: GrantStrategy = GRANTS[GrantType(grant_type)](**options)
    return strategy
