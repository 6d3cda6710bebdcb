"""Error taxonomy for OAuth2 client operations.

Every failure the engine can produce is an ``OAuth2Error`` subclass carrying
a stable ``code`` and a human-readable ``description``. Standard error codes
returned by authorization servers (RFC 6749 section 4.1.2.1 and 5.2) map to
their own classes via ``OAuth2Error.from_response_error``.
"""

from __future__ import annotations

from typing import Any


class OAuth2Error(Exception):
    """Base class for all OAuth2 errors.

    Attributes:
        code: Stable identifier for the error kind
        description: Human-readable message
        retryable: True if repeating the operation may succeed
    """

    code = "generic"
    default_description = "OAuth2 error"
    retryable = False

    def __init__(self, description: str | None = None):
        self.description = description or self.default_description
        super().__init__(self.description)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, OAuth2Error):
            return NotImplemented
        return type(self) is type(other) and self.description == other.description

    def __hash__(self) -> int:
        return hash((type(self), self.description))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.description!r})"

    @classmethod
    def from_response_error(cls, code: str, fallback: str | None = None) -> OAuth2Error:
        """Map a standard OAuth2 ``error`` code to its error class.

        Args:
            code: The ``error`` value returned by the server
            fallback: Description to use when the code is not a standard one

        Returns:
            The matching error instance, or ``ResponseError`` for unknown codes
        """
        error_class = STANDARD_ERRORS.get(code)
        if error_class is None:
            return ResponseError(fallback or f"Authorization error: {code}")
        return error_class(fallback) if fallback else error_class()

    @classmethod
    def from_response(cls, params: dict[str, Any]) -> OAuth2Error | None:
        """Extract an error from a token endpoint or redirect payload.

        Returns None if the payload carries neither ``error`` nor
        ``error_description``.
        """
        code = params.get("error")
        description = params.get("error_description")
        if isinstance(description, str):
            description = description.replace("+", " ").strip() or None
        if isinstance(code, str) and code:
            return cls.from_response_error(code, description)
        if description:
            return ResponseError(description)
        return None


class Generic(OAuth2Error):
    """Catch-all error with a free-form message."""

    code = "generic"
    default_description = "Unknown error"


class NetworkError(Generic):
    """The transport failed to deliver a request or receive a response."""

    code = "network_error"
    default_description = "The network request failed"
    retryable = True


class NoClientId(OAuth2Error):
    code = "no_client_id"
    default_description = "Client id not set"


class NoClientSecret(OAuth2Error):
    code = "no_client_secret"
    default_description = "Client secret not set"


class NoRedirectURL(OAuth2Error):
    code = "no_redirect_url"
    default_description = "Redirect URL not set"


class NoUsername(OAuth2Error):
    code = "no_username"
    default_description = "No username"


class NoPassword(OAuth2Error):
    code = "no_password"
    default_description = "No password"


class InvalidRedirectURL(OAuth2Error):
    """The redirect URL could not be used."""

    code = "invalid_redirect_url"

    def __init__(self, url: str = ""):
        self.url = url
        super().__init__(f"Invalid redirect URL: {url}")


class NoRefreshToken(OAuth2Error):
    code = "no_refresh_token"
    default_description = "I don't have a refresh token, not trying to refresh"


class NoRegistrationURL(OAuth2Error):
    code = "no_registration_url"
    default_description = "No registration URL defined"


class NotUsingTLS(OAuth2Error):
    code = "not_using_tls"
    default_description = "You MUST use HTTPS/SSL/TLS"


class UnableToOpenAuthorizeURL(OAuth2Error):
    code = "unable_to_open_authorize_url"
    default_description = "Cannot open authorize URL"


class RequestCancelled(OAuth2Error):
    code = "request_cancelled"
    default_description = "The request has been cancelled"


class NoTokenType(OAuth2Error):
    code = "no_token_type"
    default_description = "No token type received, will not use the token"


class UnsupportedTokenType(OAuth2Error):
    """The server issued a token type other than bearer."""

    code = "unsupported_token_type"

    def __init__(self, token_type: str = ""):
        self.token_type = token_type
        super().__init__(
            f'Only "bearer" token is supported, but received "{token_type}"'
        )


class NoDataInResponse(OAuth2Error):
    code = "no_data_in_response"
    default_description = "No data in the response"


class PrerequisiteFailed(OAuth2Error):
    code = "prerequisite_failed"
    default_description = "A prerequisite failed"


class InvalidState(OAuth2Error):
    code = "invalid_state"
    default_description = "The state parameter did not check out"


class MissingState(OAuth2Error):
    code = "missing_state"
    default_description = "The state parameter was missing in the response"


class JSONParserError(OAuth2Error):
    code = "json_parser_error"
    default_description = "Error parsing JSON"


class WrongUsernamePassword(OAuth2Error):
    code = "wrong_username_password"
    default_description = "The username or password is incorrect"


class Forbidden(OAuth2Error):
    code = "forbidden"
    default_description = "Forbidden"


class InvalidRequest(OAuth2Error):
    code = "invalid_request"
    default_description = (
        "The request is missing a required parameter, includes an invalid "
        "parameter value, includes a parameter more than once, or is "
        "otherwise malformed."
    )


class UnauthorizedClient(OAuth2Error):
    code = "unauthorized_client"
    default_description = (
        "The client is not authorized to request an access token using this method."
    )


class AccessDenied(OAuth2Error):
    code = "access_denied"
    default_description = "The resource owner or authorization server denied the request."


class UnsupportedResponseType(OAuth2Error):
    code = "unsupported_response_type"
    default_description = (
        "The authorization server does not support obtaining an access token "
        "using this method."
    )


class InvalidScope(OAuth2Error):
    code = "invalid_scope"
    default_description = "The requested scope is invalid, unknown, or malformed."


class ServerError(OAuth2Error):
    code = "server_error"
    default_description = (
        "The authorization server encountered an unexpected condition that "
        "prevented it from fulfilling the request."
    )


class TemporarilyUnavailable(OAuth2Error):
    code = "temporarily_unavailable"
    default_description = (
        "The authorization server is currently unable to handle the request "
        "due to a temporary overloading or maintenance of the server."
    )
    retryable = True


class ResponseError(OAuth2Error):
    """The server returned an error not covered by a more specific class."""

    code = "response_error"
    default_description = "The server returned an error"


STANDARD_ERRORS: dict[str, type[OAuth2Error]] = {
    "invalid_request": InvalidRequest,
    "unauthorized_client": UnauthorizedClient,
    "access_denied": AccessDenied,
    "unsupported_response_type": UnsupportedResponseType,
    "invalid_scope": InvalidScope,
    "server_error": ServerError,
    "temporarily_unavailable": TemporarilyUnavailable,
}
