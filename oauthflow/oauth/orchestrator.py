"""The ``OAuth2`` orchestrator: decides how to obtain a usable access token.

``authorize()`` walks a fixed decision path:

1. reuse the current access token if it is still usable
2. otherwise try the refresh token
3. otherwise register the client if it has no id yet
4. delegate to the grant strategy to obtain a fresh token

Progress is tracked by an explicit ``AuthState`` machine. At most one
attempt runs per instance; concurrent callers join the running attempt.
Every attempt completes exactly once, either returning the token response
parameters or raising an ``OAuth2Error``, and the completion hooks fire
exactly once with the same outcome.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable

from .callback import AuthorizationPresenter
from .client_config import ClientConfiguration
from .context import AuthContext
from .errors import (
    Generic,
    NoClientId,
    NoRedirectURL,
    NoRefreshToken,
    NoRegistrationURL,
    OAuth2Error,
    PrerequisiteFailed,
    RequestCancelled,
)
from .grants import AuthorizationCodeGrant, GrantStrategy, GrantType, grant_for
from .registration import DynamicRegistrar
from .request import AuthRequest, HTTPMethod, WireRequest, require_tls
from .response import TokenResponseParser, decode_token_response
from .store import TokenStorage, TokenStoreError
from .tokens import ClientCredentials, TokenRecord
from .transport import HttpxTransport, Transport

logger = logging.getLogger(__name__)


class AuthState(str, Enum):
    IDLE = "idle"
    CHECKING_TOKEN = "checking_token"
    REFRESHING = "refreshing"
    REGISTERING = "registering"
    EXCHANGING_TOKEN = "exchanging_token"
    AWAITING_REDIRECT = "awaiting_redirect"
    DONE = "done"
    FAILED = "failed"


_FROM_RESTING = frozenset(
    {
        AuthState.CHECKING_TOKEN,
        AuthState.REFRESHING,
        AuthState.REGISTERING,
        AuthState.AWAITING_REDIRECT,
        AuthState.EXCHANGING_TOKEN,
        AuthState.DONE,
        AuthState.FAILED,
    }
)

TRANSITIONS: dict[AuthState, frozenset[AuthState]] = {
    AuthState.IDLE: _FROM_RESTING,
    AuthState.DONE: _FROM_RESTING,
    AuthState.FAILED: _FROM_RESTING,
    AuthState.CHECKING_TOKEN: frozenset(
        {
            AuthState.DONE,
            AuthState.REFRESHING,
            AuthState.REGISTERING,
            AuthState.AWAITING_REDIRECT,
            AuthState.EXCHANGING_TOKEN,
            AuthState.FAILED,
        }
    ),
    AuthState.REFRESHING: frozenset(
        {
            AuthState.DONE,
            AuthState.REGISTERING,
            AuthState.AWAITING_REDIRECT,
            AuthState.EXCHANGING_TOKEN,
            AuthState.FAILED,
        }
    ),
    AuthState.REGISTERING: frozenset(
        {
            AuthState.DONE,
            AuthState.AWAITING_REDIRECT,
            AuthState.EXCHANGING_TOKEN,
            AuthState.FAILED,
        }
    ),
    AuthState.AWAITING_REDIRECT: frozenset(
        {AuthState.EXCHANGING_TOKEN, AuthState.DONE, AuthState.FAILED}
    ),
    AuthState.EXCHANGING_TOKEN: frozenset({AuthState.DONE, AuthState.FAILED}),
}

AuthorizeCallback = Callable[[dict[str, Any]], None]
FailureCallback = Callable[[OAuth2Error], None]
CompletionCallback = Callable[[dict[str, Any] | None, OAuth2Error | None], None]


class OAuth2:
    """OAuth2 client for one client configuration and one grant type.

    Args:
        config: A ``ClientConfiguration`` or a settings mapping for
            ``ClientConfiguration.from_settings``
        grant: Grant strategy, or a ``GrantType`` to build the default one
        transport: HTTP collaborator, defaults to ``HttpxTransport``
        storage: Optional credential store, seeded from and written to
        presenter: Optional collaborator that shows the authorize URL and
            returns the redirect; without one, ``authorize()`` waits for
            ``handle_redirect_url()``
        registrar: Dynamic client registration settings

    Attributes:
        on_authorize: Called with the token response parameters on success
        on_failure: Called with the error on failure
        after_authorize_or_fail: Called with ``(params, error)`` after either
        on_before_dynamic_client_registration: Given the registration URL,
            may return a customized ``DynamicRegistrar``
    """

    def __init__(
        self,
        config: ClientConfiguration | dict[str, Any],
        grant: GrantStrategy | GrantType | str = GrantType.AUTHORIZATION_CODE,
        transport: Transport | None = None,
        storage: TokenStorage | None = None,
        presenter: AuthorizationPresenter | None = None,
        registrar: DynamicRegistrar | None = None,
    ):
        if isinstance(config, dict):
            config = ClientConfiguration.from_settings(config)
        if isinstance(grant, (GrantType, str)):
            grant = grant_for(grant)

        self.config = config
        self.grant: GrantStrategy = grant
        self.transport: Transport = transport or HttpxTransport()
        self.storage = storage
        self.presenter = presenter
        self.registrar = registrar or DynamicRegistrar()
        self.parser = TokenResponseParser(config)
        self.context = AuthContext()

        self.tokens: TokenRecord | None = None
        self._refresh_token: str | None = None

        self.on_authorize: AuthorizeCallback | None = None
        self.on_failure: FailureCallback | None = None
        self.after_authorize_or_fail: CompletionCallback | None = None
        self.on_before_dynamic_client_registration: (
            Callable[[str], DynamicRegistrar | None] | None
        ) = None

        self._state = AuthState.IDLE
        self._inflight: asyncio.Future[dict[str, Any]] | None = None
        self._redirect_waiter: asyncio.Future[dict[str, Any]] | None = None
        self._aborting = False
        self.pending_authorize_url: str | None = None

        if config.verbose:
            logging.getLogger("oauthflow").setLevel(logging.DEBUG)
        if self.storage is not None and config.keychain:
            self._load_from_storage(self.storage)

    # State machine

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def is_authorizing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def _transition(self, new_state: AuthState) -> None:
        if new_state not in TRANSITIONS[self._state]:
            raise PrerequisiteFailed(
                f"Cannot move from {self._state.value} to {new_state.value}"
            )
        logger.debug(f"{self._state.value} -> {new_state.value}")
        self._state = new_state

    def _complete(self, params: dict[str, Any] | None, error: OAuth2Error | None) -> None:
        if error is None:
            self._transition(AuthState.DONE)
            logger.info("Authorization succeeded")
            if self.on_authorize is not None:
                self.on_authorize(params or {})
        else:
            self._transition(AuthState.FAILED)
            logger.debug(f"Authorization failed: {error}")
            if self.on_failure is not None:
                self.on_failure(error)
        if self.after_authorize_or_fail is not None:
            self.after_authorize_or_fail(params if error is None else None, error)

    # Token state

    @property
    def access_token(self) -> str | None:
        return self.tokens.access_token if self.tokens else None

    @property
    def refresh_token(self) -> str | None:
        return self._refresh_token

    def has_unexpired_access_token(self) -> bool:
        """True if the access token can be used without refreshing.

        A token without expiry counts as unexpired only when
        ``access_token_assume_unexpired`` is set.
        """
        if self.tokens is None:
            return False
        return self.tokens.is_usable(self.config.access_token_assume_unexpired)

    def accept_token_params(self, params: dict[str, Any]) -> dict[str, Any]:
        """Parse a token response and make it the current token.

        Returns:
            ``params`` unchanged
        """
        record = self.parser.parse_access_token_response(params, previous=self.tokens)
        if record.refresh_token is None:
            record.refresh_token = self._refresh_token
        self.tokens = record
        self._refresh_token = record.refresh_token
        self._store_tokens()
        return params

    def clear_access_token(self) -> None:
        """Drop the access token but keep the refresh token."""
        self.tokens = None

    def sign(self, request: WireRequest) -> WireRequest:
        """Attach the bearer token to an outgoing request.

        Raises:
            PrerequisiteFailed: If there is no access token
        """
        if self.tokens is None:
            raise PrerequisiteFailed("No access token available, authorize first")
        return request.with_header("Authorization", self.tokens.get_auth_header())

    # Authorization

    async def authorize(self, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Obtain a usable access token.

        Joins the running attempt if there is one.

        Returns:
            The token response parameters, empty if the current token was reused

        Raises:
            OAuth2Error: If no token could be obtained
        """
        if self._inflight is not None and not self._inflight.done():
            logger.debug("Authorization already in progress, joining it")
            return await asyncio.shield(self._inflight)

        self._aborting = False
        self._inflight = asyncio.ensure_future(self._run_authorize(params))
        return await self._inflight

    async def _run_authorize(self, params: dict[str, Any] | None) -> dict[str, Any]:
        try:
            result = await self._authorize_flow(params)
        except asyncio.CancelledError:
            self.context.invalidate()
            cancelled = RequestCancelled()
            self._complete(None, cancelled)
            if self._aborting:
                raise cancelled from None
            raise
        except OAuth2Error as e:
            self._complete(None, e)
            raise
        except Exception as e:
            error = Generic(f"{type(e).__name__}: {e}")
            self._complete(None, error)
            raise error from e
        self._complete(result, None)
        return result

    async def _authorize_flow(self, params: dict[str, Any] | None) -> dict[str, Any]:
        self._transition(AuthState.CHECKING_TOKEN)
        if self.has_unexpired_access_token():
            logger.debug("Access token is still usable")
            return {}

        if self._refresh_token:
            self._transition(AuthState.REFRESHING)
            try:
                return await self._refresh(params)
            except OAuth2Error as e:
                logger.debug(f"Refreshing failed, authorizing again: {e}")

        if not self.config.client_id:
            if not self.config.registration_url:
                raise NoClientId()
            self._transition(AuthState.REGISTERING)
            await self._register()

        return await self.grant.begin_authorization(self, params)

    def authorize_url(
        self,
        redirect: str | None = None,
        scope: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> str:
        """Build the authorize URL and start a new attempt context.

        Raises:
            PrerequisiteFailed: If no authorize URL is configured
            NotUsingTLS: If the authorize URL is not https
            NoClientId: If there is no client id
            NoRedirectURL: If no redirect is given or configured
        """
        url = self.config.authorize_url
        if not url:
            raise PrerequisiteFailed("No authorize URL configured")
        require_tls(url)
        if not self.config.client_id:
            raise NoClientId()
        redirect = redirect or self.config.redirect
        if not redirect:
            raise NoRedirectURL()

        use_pkce = isinstance(self.grant, AuthorizationCodeGrant) and self.grant.use_pkce
        self.context = AuthContext.begin(redirect, use_pkce=use_pkce)

        request = AuthRequest(url=url, method=HTTPMethod.GET)
        request.params["redirect_uri"] = redirect
        request.params["client_id"] = self.config.client_id
        request.params["state"] = self.context.state
        scope = scope or self.config.scope
        if scope:
            request.params["scope"] = scope
        if self.grant.response_type:
            request.params["response_type"] = self.grant.response_type
        request.add_params(self.grant.authorize_params(self.context))
        request.add_params(self.config.custom_parameters)
        request.add_params(params)
        return request.as_url()

    async def await_redirect(self, url: str) -> dict[str, Any]:
        """Let the user visit ``url`` and finish the flow from the redirect."""
        self._transition(AuthState.AWAITING_REDIRECT)
        self.pending_authorize_url = url
        try:
            if self.presenter is not None:
                redirect = await self.presenter.present(url, self.context.redirect_url or "")
                return await self.grant.handle_redirect(self, redirect)

            self._redirect_waiter = asyncio.get_running_loop().create_future()
            logger.debug("Waiting for handle_redirect_url()")
            return await self._redirect_waiter
        finally:
            self._redirect_waiter = None
            self.pending_authorize_url = None

    async def handle_redirect_url(self, url: str) -> dict[str, Any]:
        """Complete an attempt from the URL the user was redirected to.

        If ``authorize()`` is waiting for this redirect, it completes with
        the same outcome.

        Raises:
            NoRedirectURL: If no attempt is awaiting a redirect
            InvalidRedirectURL: If the URL is not the expected redirect or
                carries no payload
            InvalidState: If the state does not match
            MissingState: If the redirect carries no state
            OAuth2Error: Errors reported by the server or the token exchange
        """
        waiter = self._redirect_waiter
        if waiter is not None and waiter.done():
            waiter = None
        try:
            params = await self.grant.handle_redirect(self, url)
        except OAuth2Error as e:
            self._fail_redirect(waiter, e)
            raise
        except Exception as e:
            error = Generic(f"{type(e).__name__}: {e}")
            self._fail_redirect(waiter, error)
            raise error from e

        if waiter is None:
            self._complete(params, None)
        elif not waiter.done():
            waiter.set_result(params)
        return params

    def _fail_redirect(
        self, waiter: asyncio.Future[dict[str, Any]] | None, error: OAuth2Error
    ) -> None:
        # No authorize() is waiting, so this call is the completion
        if waiter is None:
            self._complete(None, error)
        elif not waiter.done():
            waiter.set_exception(error)

    async def request_access_token(
        self,
        request: AuthRequest,
        form_encoded: bool = False,
        password_grant: bool = False,
    ) -> dict[str, Any]:
        """Send a token request and adopt the token it returns."""
        self._transition(AuthState.EXCHANGING_TOKEN)
        response = await self.transport.send(request.as_wire_request(self.config))
        params = decode_token_response(
            response.status_code,
            response.body,
            form_encoded=form_encoded,
            password_grant=password_grant,
        )
        logger.debug("Received a new access token")
        return self.accept_token_params(params)

    def abort_authorization(self) -> None:
        """Cancel the running attempt.

        The attempt fails once with ``RequestCancelled`` and the context
        state is invalidated, so a late redirect cannot complete it.
        """
        self.context.invalidate()
        waiter = self._redirect_waiter
        if waiter is not None and not waiter.done():
            waiter.set_exception(RequestCancelled())
        elif self._inflight is not None and not self._inflight.done():
            self._aborting = True
            self._inflight.cancel()

    # Refresh

    def token_request_for_refresh(self, params: dict[str, Any] | None = None) -> AuthRequest:
        """Build the refresh token request.

        Raises:
            NoClientId: If there is no client id
            NoRefreshToken: If there is no refresh token
        """
        if not self.config.client_id:
            raise NoClientId()
        if not self._refresh_token:
            raise NoRefreshToken()
        url = self.config.token_endpoint
        if not url:
            raise PrerequisiteFailed("No token or authorize URL configured")

        request = AuthRequest(url=url)
        request.params["grant_type"] = "refresh_token"
        request.params["refresh_token"] = self._refresh_token
        request.params["client_id"] = self.config.client_id
        request.add_params(params)
        return request

    async def refresh(self, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Exchange the refresh token for a new access token."""
        self._transition(AuthState.REFRESHING)
        try:
            result = await self._refresh(params)
        except OAuth2Error:
            self._transition(AuthState.FAILED)
            raise
        self._transition(AuthState.DONE)
        return result

    async def _refresh(self, params: dict[str, Any] | None) -> dict[str, Any]:
        request = self.token_request_for_refresh(params)
        response = await self.transport.send(request.as_wire_request(self.config))
        data = decode_token_response(response.status_code, response.body)
        result = self.accept_token_params(data)
        logger.info("Refreshed access token")
        return result

    # Registration

    async def register_client_if_needed(self) -> dict[str, Any]:
        """Register the client unless it already has an id.

        Raises:
            NoRegistrationURL: If registration is needed but not configured
        """
        if self.config.client_id:
            return {}
        self._transition(AuthState.REGISTERING)
        try:
            result = await self._register()
        except OAuth2Error:
            self._transition(AuthState.FAILED)
            raise
        self._transition(AuthState.DONE)
        return result

    async def _register(self) -> dict[str, Any]:
        url = self.config.registration_url
        if not url:
            raise NoRegistrationURL()
        registrar = self.registrar
        if self.on_before_dynamic_client_registration is not None:
            registrar = self.on_before_dynamic_client_registration(url) or registrar
        return await registrar.register(self)

    # Storage

    def _load_from_storage(self, storage: TokenStorage) -> None:
        key = self.config.storage_key
        try:
            client = None if self.config.client_id else storage.load_client(key)
            record = storage.load_tokens(key)
        except TokenStoreError as e:
            logger.warning(f"Cannot read stored credentials, starting without them: {e}")
            return

        if client is not None:
            logger.debug(f"Using stored client {client.client_id}")
            self.config.client_id = client.client_id
            self.config.client_secret = client.client_secret
            self.config.apply_auth_method(client.endpoint_auth_method)

        if record is not None:
            self._refresh_token = record.refresh_token
            if record.is_usable(self.config.access_token_assume_unexpired):
                self.tokens = record
            else:
                logger.debug("Stored access token has expired, not using it")

    def _store_tokens(self) -> None:
        if self.storage is None or not self.config.keychain or self.tokens is None:
            return
        try:
            self.storage.store_tokens(self.config.storage_key, self.tokens)
        except TokenStoreError as e:
            logger.warning(f"Could not store tokens: {e}")

    def store_client(self, client: ClientCredentials) -> None:
        """Persist registered client credentials."""
        if self.storage is None or not self.config.keychain:
            return
        try:
            self.storage.store_client(self.config.storage_key, client)
        except TokenStoreError as e:
            logger.warning(f"Could not store client credentials: {e}")

    def forget_tokens(self) -> None:
        """Drop the access and refresh tokens, here and in storage."""
        self.tokens = None
        self._refresh_token = None
        if self.storage is not None:
            self.storage.delete_tokens(self.config.storage_key)

    def forget_client(self) -> None:
        """Drop the client id and secret, here and in storage."""
        self.config.forget_client()
        if self.storage is not None:
            self.storage.delete_client(self.config.storage_key)
