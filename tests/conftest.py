"""Shared fixtures and utilities for oauthflow tests."""

import json
from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from cryptography.fernet import Fernet

from oauthflow.oauth.client_config import ClientConfiguration
from oauthflow.oauth.request import WireRequest
from oauthflow.oauth.tokens import ClientCredentials, TokenRecord
from oauthflow.oauth.transport import TransportResponse


# ============================================================================
# Collaborator Fakes
# ============================================================================


class FakeTransport:
    """Transport that records requests and answers from a queue.

    Queued items are ``TransportResponse`` objects, exceptions to raise, or
    callables taking the ``WireRequest`` and returning either.
    """

    def __init__(self) -> None:
        self.requests: list[WireRequest] = []
        self.responses: list[Any] = []

    def queue(self, item: Any) -> None:
        self.responses.append(item)

    def queue_json(self, status_code: int, data: Any) -> None:
        self.responses.append(
            TransportResponse(status_code=status_code, body=json.dumps(data).encode("utf-8"))
        )

    async def send(self, request: WireRequest) -> TransportResponse:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"Unexpected request: {request.method} {request.url}")
        item = self.responses.pop(0)
        if callable(item) and not isinstance(item, TransportResponse):
            item = item(request)
        if isinstance(item, BaseException):
            raise item
        return item

    @property
    def last_body(self) -> str:
        body = self.requests[-1].body
        return body.decode("utf-8") if body else ""


class MemoryStorage:
    """In-memory TokenStorage."""

    def __init__(self) -> None:
        self.tokens: dict[str, TokenRecord] = {}
        self.clients: dict[str, ClientCredentials] = {}

    def load_tokens(self, key: str) -> TokenRecord | None:
        return self.tokens.get(key)

    def store_tokens(self, key: str, record: TokenRecord) -> None:
        self.tokens[key] = record

    def delete_tokens(self, key: str) -> bool:
        return self.tokens.pop(key, None) is not None

    def load_client(self, key: str) -> ClientCredentials | None:
        return self.clients.get(key)

    def store_client(self, key: str, client: ClientCredentials) -> None:
        self.clients[key] = client

    def delete_client(self, key: str) -> bool:
        return self.clients.pop(key, None) is not None


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def fake_keyring() -> Generator[MagicMock, None, None]:
    """Keep tests away from the real OS keyring."""
    key = Fernet.generate_key().decode("ascii")
    with patch("oauthflow.oauth.store.keyring") as mock_keyring:
        mock_keyring.get_password.return_value = key
        yield mock_keyring


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def code_config() -> ClientConfiguration:
    """Configuration for a confidential client using the authorization code grant."""
    return ClientConfiguration(
        client_id="abc",
        client_secret="def",
        authorize_url="https://auth.example.com/authorize",
        token_url="https://auth.example.com/token",
        redirect_uris=["https://app.example.com/callback"],
        scope="login",
    )


@pytest.fixture
def public_config() -> ClientConfiguration:
    """Configuration for a public client without a secret."""
    return ClientConfiguration(
        client_id="abc",
        authorize_url="https://auth.example.com/authorize",
        token_url="https://auth.example.com/token",
        redirect_uris=["oauth2://callback"],
    )


@pytest.fixture
def token_payload() -> dict[str, Any]:
    return {
        "access_token": "2YotnFZFEjr1zCsicMWpAA",
        "token_type": "bearer",
        "expires_in": 3600,
        "refresh_token": "tGzv3JOkF0XG5Qx2TlKWIA",
    }
