"""Dynamic client registration (RFC 7591).

Registers the client with the authorization server when no client id is
configured, then feeds the issued credentials back into the
``ClientConfiguration`` and the storage collaborator.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .errors import NoRegistrationURL, ResponseError
from .request import AuthRequest, ContentType
from .response import assure_no_error, decode_token_response
from .tokens import ClientCredentials

if TYPE_CHECKING:
    from .orchestrator import OAuth2

logger = logging.getLogger(__name__)


class DynamicRegistrar:
    """Builds, sends and interprets client registration requests.

    Args:
        extra_headers: Headers added to the registration request, e.g. an
            initial access token
        allow_refresh_tokens: Also ask for the ``refresh_token`` grant type
    """

    def __init__(
        self,
        extra_headers: dict[str, str] | None = None,
        allow_refresh_tokens: bool = True,
    ):
        self.extra_headers = dict(extra_headers or {})
        self.allow_refresh_tokens = allow_refresh_tokens

    def registration_body(self, oauth2: OAuth2) -> dict[str, Any]:
        """Client metadata sent to the registration endpoint."""
        config = oauth2.config
        body: dict[str, Any] = {}
        if config.client_name:
            body["client_name"] = config.client_name
        if config.redirect_uris:
            body["redirect_uris"] = list(config.redirect_uris)
        if config.logo_url:
            body["logo_uri"] = config.logo_url
        if config.scope:
            body["scope"] = config.scope

        grant_types = [oauth2.grant.grant_type.value]
        if self.allow_refresh_tokens:
            grant_types.append("refresh_token")
        body["grant_types"] = grant_types

        if oauth2.grant.response_type:
            body["response_types"] = [oauth2.grant.response_type]
        body["token_endpoint_auth_method"] = config.effective_auth_method().value
        return body

    def registration_request(self, oauth2: OAuth2) -> AuthRequest:
        """Build the JSON registration request.

        Raises:
            NoRegistrationURL: If no registration endpoint is configured
        """
        url = oauth2.config.registration_url
        if not url:
            raise NoRegistrationURL()

        request = AuthRequest(url=url, content_type=ContentType.JSON)
        request.params = self.registration_body(oauth2)
        request.headers.update(self.extra_headers)
        return request

    async def register(self, oauth2: OAuth2) -> dict[str, Any]:
        """Register the client and adopt the issued credentials.

        Returns:
            The registration response parameters
        """
        request = self.registration_request(oauth2)
        logger.debug(f"Registering client at {request.url}")

        # No client credentials exist yet, so nothing is placed in the request
        wire = request.as_wire_request(oauth2.config)
        response = await oauth2.transport.send(wire)
        params = decode_token_response(response.status_code, response.body)
        assure_no_error(params)

        self.did_register_with(oauth2, params)
        return params

    def did_register_with(self, oauth2: OAuth2, params: dict[str, Any]) -> None:
        """Feed a registration response into the client configuration.

        Raises:
            ResponseError: If the response carries no ``client_id``
        """
        client_id = params.get("client_id")
        if not client_id:
            raise ResponseError("No client_id in the registration response")

        config = oauth2.config
        config.client_id = str(client_id)
        secret = params.get("client_secret")
        config.client_secret = str(secret) if secret else None
        config.apply_auth_method(params.get("token_endpoint_auth_method"))

        logger.info(f"Registered client {config.client_id}")
        oauth2.store_client(
            ClientCredentials(
                client_id=config.client_id,
                client_secret=config.client_secret,
                endpoint_auth_method=params.get("token_endpoint_auth_method"),
            )
        )
