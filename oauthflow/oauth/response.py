"""Token endpoint response handling.

Decodes the response body, maps HTTP failures to typed errors and turns a
token payload into a ``TokenRecord``.
"""

from __future__ import annotations

import json
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any

from .client_config import ClientConfiguration
from .errors import (
    Forbidden,
    Generic,
    JSONParserError,
    NoDataInResponse,
    NoTokenType,
    OAuth2Error,
    UnsupportedTokenType,
    WrongUsernamePassword,
)
from .request import params_from_query
from .tokens import TokenRecord

logger = logging.getLogger(__name__)

_LATEST_EXPIRY = datetime.max.replace(tzinfo=timezone.utc)
_EARLIEST_EXPIRY = datetime.min.replace(tzinfo=timezone.utc)


def parse_json(body: bytes | str | None) -> dict[str, Any]:
    """Decode a JSON object body.

    Raises:
        NoDataInResponse: If the body is empty
        JSONParserError: If the body is not a JSON object
    """
    if not body:
        raise NoDataInResponse()
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise JSONParserError(f"Error parsing JSON: {e}") from e
    if not isinstance(data, dict):
        raise JSONParserError("Expected a JSON object in the response")
    return data


def parse_form(body: bytes | str | None) -> dict[str, Any]:
    """Decode a form-encoded body, as sent by providers that do not return JSON."""
    if not body:
        raise NoDataInResponse()
    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise Generic("Unable to decode response body as UTF-8") from e
    return params_from_query(body)


def assure_no_error(params: dict[str, Any]) -> None:
    """Raise the error carried by an ``error``/``error_description`` payload."""
    error = OAuth2Error.from_response(params)
    if error is not None:
        raise error


def raise_for_status(
    status_code: int,
    params: dict[str, Any],
    password_grant: bool = False,
) -> None:
    """Map an HTTP failure status to a typed error.

    A status of 400 or above is a failure whatever the body says. The
    password grant reports rejected credentials (401 and 403) as
    ``WrongUsernamePassword``; otherwise 403 is ``Forbidden``, a standard
    OAuth2 error code in the body maps to its class, and anything else
    becomes ``Generic("<status>")``.
    """
    if status_code < 400:
        return
    if password_grant and status_code in (401, 403):
        raise WrongUsernamePassword()
    if status_code == 403:
        raise Forbidden()
    error = OAuth2Error.from_response(params)
    if error is not None:
        raise error
    raise Generic(str(status_code))


def decode_token_response(
    status_code: int,
    body: bytes | None,
    form_encoded: bool = False,
    password_grant: bool = False,
) -> dict[str, Any]:
    """Decode a token endpoint response and raise for failures.

    Failure bodies are allowed to be empty or malformed; the status decides.
    """
    decode = parse_form if form_encoded else parse_json
    try:
        params = decode(body)
    except (JSONParserError, NoDataInResponse):
        if status_code < 400:
            raise
        params = {}
    raise_for_status(status_code, params, password_grant=password_grant)
    return params


def _expiry_from(value: Any, now: datetime) -> datetime | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring non-numeric expires_in: {value!r}")
        return None
    if math.isnan(seconds):
        logger.debug(f"Ignoring non-numeric expires_in: {value!r}")
        return None
    try:
        return now + timedelta(seconds=seconds)
    except OverflowError:
        logger.debug(f"expires_in out of range, clamping: {value!r}")
        return _LATEST_EXPIRY if seconds > 0 else _EARLIEST_EXPIRY


class TokenResponseParser:
    """Validates token payloads and normalizes them into ``TokenRecord``s."""

    def __init__(self, config: ClientConfiguration):
        self.config = config

    def parse_access_token_response(
        self,
        params: dict[str, Any],
        previous: TokenRecord | None = None,
        now: datetime | None = None,
    ) -> TokenRecord:
        """Turn a token payload into a ``TokenRecord``.

        Args:
            params: Decoded token response (JSON object or redirect fragment)
            previous: The record being replaced, its refresh token is kept
                when the response carries none
            now: Clock override, the same params and clock give equal records

        Raises:
            OAuth2Error: ``ResponseError`` or a named error for error payloads,
                ``NoDataInResponse``, ``NoTokenType`` or ``UnsupportedTokenType``
        """
        assure_no_error(params)

        access_token = params.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise NoDataInResponse("No access token in the response")

        token_type = params.get("token_type")
        if token_type is None or token_type == "":
            if not self.config.ignore_missing_token_type:
                raise NoTokenType()
            logger.debug("No token_type in response, assuming bearer")
        elif str(token_type).lower() != "bearer":
            raise UnsupportedTokenType(str(token_type))

        now = now or datetime.now(timezone.utc)

        refresh_token = params.get("refresh_token") or None
        if refresh_token is None and previous is not None:
            refresh_token = previous.refresh_token

        return TokenRecord(
            access_token=access_token,
            token_type="bearer",
            expires_at=_expiry_from(params.get("expires_in"), now),
            refresh_token=refresh_token,
            id_token=params.get("id_token"),
            scope=params.get("scope"),
            raw_parameters=dict(params),
            issued_at=now,
        )

