"""Tests for dynamic client registration."""

import json

import pytest

from oauthflow.oauth.client_config import ClientConfiguration, EndpointAuthMethod
from oauthflow.oauth.errors import InvalidRequest, NoRegistrationURL, ResponseError
from oauthflow.oauth.grants import AuthorizationCodeGrant
from oauthflow.oauth.orchestrator import OAuth2
from oauthflow.oauth.registration import DynamicRegistrar


@pytest.fixture
def config() -> ClientConfiguration:
    return ClientConfiguration(
        client_name="Demo App",
        authorize_url="https://auth.example.com/authorize",
        registration_url="https://auth.example.com/register",
        logo_url="https://app.example.com/logo.png",
        redirect_uris=["http://127.0.0.1:8400/callback"],
        scope="openid profile",
    )


class TestRegistrationRequest:
    """Tests for building the registration request."""

    def test_body(self, config: ClientConfiguration, transport) -> None:
        """Test the client metadata sent for registration."""
        oauth2 = OAuth2(config, grant=AuthorizationCodeGrant(), transport=transport)

        body = DynamicRegistrar().registration_body(oauth2)

        assert body == {
            "client_name": "Demo App",
            "redirect_uris": ["http://127.0.0.1:8400/callback"],
            "logo_uri": "https://app.example.com/logo.png",
            "scope": "openid profile",
            "grant_types": ["authorization_code", "refresh_token"],
            "response_types": ["code"],
            "token_endpoint_auth_method": "none",
        }

    def test_without_refresh_tokens(self, config: ClientConfiguration, transport) -> None:
        """Test that refresh tokens can be left out of the grant types."""
        oauth2 = OAuth2(config, transport=transport)
        body = DynamicRegistrar(allow_refresh_tokens=False).registration_body(oauth2)
        assert body["grant_types"] == ["authorization_code"]

    def test_request_is_json(self, config: ClientConfiguration, transport) -> None:
        """Test that the registration request is a JSON POST."""
        oauth2 = OAuth2(config, transport=transport)
        registrar = DynamicRegistrar(extra_headers={"Authorization": "Bearer initial"})

        wire = registrar.registration_request(oauth2).as_wire_request(config)

        assert wire.method == "POST"
        assert wire.url == "https://auth.example.com/register"
        assert wire.headers["Content-Type"] == "application/json"
        assert wire.headers["Authorization"] == "Bearer initial"
        assert json.loads(wire.body)["client_name"] == "Demo App"

    def test_requires_registration_url(self, config: ClientConfiguration, transport) -> None:
        """Test that a registration URL is required."""
        config.registration_url = None
        with pytest.raises(NoRegistrationURL):
            DynamicRegistrar().registration_request(OAuth2(config, transport=transport))


class TestRegister:
    """Tests for sending the registration and adopting the result."""

    @pytest.mark.asyncio
    async def test_adopts_credentials(self, config: ClientConfiguration, transport, storage) -> None:
        """Test that issued credentials update configuration and storage."""
        oauth2 = OAuth2(config, transport=transport, storage=storage)
        transport.queue_json(
            201,
            {
                "client_id": "s6BhdRkqt3",
                "client_secret": "cf136dc3c1fc93f31185e5885805d",
                "token_endpoint_auth_method": "client_secret_post",
            },
        )

        params = await oauth2.register_client_if_needed()

        assert params["client_id"] == "s6BhdRkqt3"
        assert config.client_id == "s6BhdRkqt3"
        assert config.client_secret == "cf136dc3c1fc93f31185e5885805d"
        assert config.endpoint_auth_method is EndpointAuthMethod.CLIENT_SECRET_POST
        assert config.secret_in_body
        stored = storage.clients[config.storage_key]
        assert stored.endpoint_auth_method == "client_secret_post"

    @pytest.mark.asyncio
    async def test_missing_client_id(self, config: ClientConfiguration, transport) -> None:
        """Test that a response without client id is an error."""
        oauth2 = OAuth2(config, transport=transport)
        transport.queue_json(201, {"client_secret": "x"})

        with pytest.raises(ResponseError):
            await oauth2.register_client_if_needed()
        assert config.client_id is None

    @pytest.mark.asyncio
    async def test_server_error(self, config: ClientConfiguration, transport) -> None:
        """Test that a registration error surfaces as the named error."""
        oauth2 = OAuth2(config, transport=transport)
        transport.queue_json(400, {"error": "invalid_request", "error_description": "Bad redirect"})

        with pytest.raises(InvalidRequest) as exc_info:
            await oauth2.register_client_if_needed()
        assert exc_info.value.description == "Bad redirect"
