"""Request building: encoding, TLS enforcement and client authentication.

An ``AuthRequest`` is an abstract request against an OAuth2 endpoint. It is
converted exactly once, via ``as_wire_request``, into a ``WireRequest`` that
a transport can send.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any
from urllib.parse import parse_qsl, quote_plus, urlencode, urlparse

from .client_config import ClientConfiguration
from .errors import NotUsingTLS

logger = logging.getLogger(__name__)

OOB_REDIRECT = "urn:ietf:wg:oauth:2.0:oob"
LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded; charset=utf-8"
JSON_CONTENT_TYPE = "application/json"


class HTTPMethod(str, Enum):
    GET = "GET"
    POST = "POST"


class ContentType(str, Enum):
    """Body encoding of a POST request."""

    WWW_FORM = "www_form"
    JSON = "json"

    @property
    def mime_type(self) -> str:
        if self is ContentType.JSON:
            return JSON_CONTENT_TYPE
        return FORM_CONTENT_TYPE


def form_encode(value: str) -> str:
    """Percent-encode a value the www-form way (spaces become ``+``)."""
    return quote_plus(value, safe="")


def params_from_query(query: str) -> dict[str, str]:
    """Decode a form-encoded query or fragment into a dict.

    The first occurrence of a repeated key wins.
    """
    params: dict[str, str] = {}
    for key, value in parse_qsl(query, keep_blank_values=True):
        params.setdefault(key, value)
    return params


def is_loopback_or_oob(url: str) -> bool:
    """True for the redirect targets that may be used without TLS."""
    if url.startswith(OOB_REDIRECT):
        return True
    return (urlparse(url).hostname or "") in LOOPBACK_HOSTS


def require_tls(url: str) -> None:
    """Raise ``NotUsingTLS`` unless ``url`` is https, loopback or oob."""
    if urlparse(url).scheme.lower() == "https":
        return
    if is_loopback_or_oob(url):
        return
    raise NotUsingTLS()


def basic_authorization(client_id: str, client_secret: str) -> str:
    """``Basic`` header value; both parts are form-encoded first (RFC 6749 2.3.1)."""
    credentials = f"{form_encode(client_id)}:{form_encode(client_secret)}"
    return "Basic " + base64.b64encode(credentials.encode("utf-8")).decode("ascii")


def _has_header(headers: dict[str, str], name: str) -> bool:
    return any(key.lower() == name.lower() for key in headers)


@dataclass
class WireRequest:
    """A fully encoded HTTP request, ready for a transport."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None

    def with_header(self, name: str, value: str) -> WireRequest:
        """Copy of this request with ``name`` set, replacing any existing value."""
        headers = {k: v for k, v in self.headers.items() if k.lower() != name.lower()}
        headers[name] = value
        return replace(self, headers=headers)


@dataclass
class AuthRequest:
    """Abstract request against an OAuth2 endpoint.

    Attributes:
        url: Target endpoint
        method: GET (params go into the query) or POST (params form the body)
        params: Request parameters, keys are unique
        headers: Caller-set headers, these always win over computed ones
        content_type: Body encoding for POST requests
    """

    url: str
    method: HTTPMethod = HTTPMethod.POST
    params: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    content_type: ContentType = ContentType.WWW_FORM

    def add_params(self, params: dict[str, Any] | None) -> None:
        if params:
            self.params.update(params)

    def set_header(self, name: str, value: str) -> None:
        self.headers[name] = value

    def encoded_params(self) -> str:
        return urlencode({k: v for k, v in self.params.items() if v is not None})

    def as_url(self) -> str:
        """The target URL with all params appended to its query."""
        query = self.encoded_params()
        if not query:
            return self.url
        separator = "&" if urlparse(self.url).query else "?"
        if self.url.endswith(("?", "&")):
            separator = ""
        return f"{self.url}{separator}{query}"

    def _apply_client_auth(
        self, config: ClientConfiguration, headers: dict[str, str]
    ) -> dict[str, Any]:
        params = dict(self.params)
        client_id = config.client_id
        secret = config.client_secret
        if not client_id:
            return params

        if config.secret_in_body:
            params["client_id"] = client_id
            if secret:
                params["client_secret"] = secret
        elif secret:
            if not _has_header(self.headers, "Authorization"):
                headers["Authorization"] = basic_authorization(client_id, secret)
                params.pop("client_id", None)
                params.pop("client_secret", None)
            else:
                logger.debug("Authorization header set explicitly, not adding Basic auth")
        return params

    def as_wire_request(self, config: ClientConfiguration) -> WireRequest:
        """Encode this request, placing client credentials per ``config``.

        Raises:
            NotUsingTLS: If the target is neither https nor a loopback/oob URL
        """
        require_tls(self.url)

        headers: dict[str, str] = {"Accept": "application/json"}
        params = self._apply_client_auth(config, headers)
        params = {k: v for k, v in params.items() if v is not None}

        body: bytes | None = None
        url = self.url
        if self.method is HTTPMethod.GET:
            url = replace(self, params=params).as_url()
        else:
            headers["Content-Type"] = self.content_type.mime_type
            if self.content_type is ContentType.JSON:
                body = json.dumps(params).encode("utf-8")
            else:
                body = urlencode(params).encode("utf-8")

        for name, value in self.headers.items():
            for existing in [k for k in headers if k.lower() == name.lower()]:
                del headers[existing]
            headers[name] = value

        return WireRequest(method=self.method.value, url=url, headers=headers, body=body)
