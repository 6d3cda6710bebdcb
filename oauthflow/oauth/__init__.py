"""OAuth2 client engine.

Main Components:
    OAuth2: Decides how to obtain a usable access token and runs that path
    GrantType / grant_for: The supported grants and their strategies
    DataLoader: Sends API requests with the bearer token, authorizing first
    ClientConfiguration: Client credentials, endpoints and auth policy
    TokenStore: Encrypted credential storage

Quick Start:
    from oauthflow.oauth import OAuth2, DataLoader, WireRequest

    oauth2 = OAuth2(
        {
            "client_id": "abc",
            "client_secret": "def",
            "authorize_uri": "https://auth.example.com/token",
            "scope": "read",
        },
        grant="client_credentials",
    )
    loader = DataLoader(oauth2)
    response = await loader.perform(WireRequest("GET", "https://api.example.com/me"))
"""

from .callback import (
    AuthorizationPresenter,
    BrowserPresenter,
    CallbackError,
    CallbackTimeoutError,
    LocalhostCallbackServer,
)
from .client_config import ClientConfiguration, EndpointAuthMethod
from .context import AuthContext
from .errors import (
    AccessDenied,
    Forbidden,
    Generic,
    InvalidRedirectURL,
    InvalidRequest,
    InvalidScope,
    InvalidState,
    JSONParserError,
    MissingState,
    NetworkError,
    NoClientId,
    NoClientSecret,
    NoDataInResponse,
    NoPassword,
    NoRedirectURL,
    NoRefreshToken,
    NoRegistrationURL,
    NoTokenType,
    NotUsingTLS,
    NoUsername,
    OAuth2Error,
    PrerequisiteFailed,
    RequestCancelled,
    ResponseError,
    ServerError,
    TemporarilyUnavailable,
    UnableToOpenAuthorizeURL,
    UnauthorizedClient,
    UnsupportedResponseType,
    UnsupportedTokenType,
    WrongUsernamePassword,
)
from .grants import (
    AuthorizationCodeGrant,
    ClientCredentialsGrant,
    GrantStrategy,
    GrantType,
    ImplicitGrant,
    PasswordGrant,
    grant_for,
)
from .loader import DataLoader
from .orchestrator import AuthState, OAuth2
from .registration import DynamicRegistrar
from .request import AuthRequest, ContentType, HTTPMethod, WireRequest
from .response import TokenResponseParser
from .store import TokenDecryptionError, TokenStorage, TokenStore, TokenStoreError
from .tokens import ClientCredentials, TokenRecord
from .transport import HttpxTransport, Transport, TransportResponse

__all__ = [
    # Orchestration
    "OAuth2",
    "AuthState",
    "DataLoader",
    "DynamicRegistrar",
    # Grants
    "GrantType",
    "GrantStrategy",
    "grant_for",
    "AuthorizationCodeGrant",
    "ImplicitGrant",
    "PasswordGrant",
    "ClientCredentialsGrant",
    # Data
    "ClientConfiguration",
    "EndpointAuthMethod",
    "AuthContext",
    "TokenRecord",
    "ClientCredentials",
    "AuthRequest",
    "WireRequest",
    "HTTPMethod",
    "ContentType",
    "TokenResponseParser",
    # Collaborators
    "Transport",
    "TransportResponse",
    "HttpxTransport",
    "AuthorizationPresenter",
    "BrowserPresenter",
    "LocalhostCallbackServer",
    "CallbackError",
    "CallbackTimeoutError",
    "TokenStorage",
    "TokenStore",
    "TokenStoreError",
    "TokenDecryptionError",
    # Errors
    "OAuth2Error",
    "Generic",
    "NetworkError",
    "NoClientId",
    "NoClientSecret",
    "NoRedirectURL",
    "NoUsername",
    "NoPassword",
    "InvalidRedirectURL",
    "NoRefreshToken",
    "NoRegistrationURL",
    "NotUsingTLS",
    "UnableToOpenAuthorizeURL",
    "RequestCancelled",
    "NoTokenType",
    "UnsupportedTokenType",
    "NoDataInResponse",
    "PrerequisiteFailed",
    "InvalidState",
    "MissingState",
    "JSONParserError",
    "WrongUsernamePassword",
    "Forbidden",
    "InvalidRequest",
    "UnauthorizedClient",
    "AccessDenied",
    "UnsupportedResponseType",
    "InvalidScope",
    "ServerError",
    "TemporarilyUnavailable",
    "ResponseError",
]
