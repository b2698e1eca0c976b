"""Abstract requests against authorize, token and device endpoints.

An ``AuthRequest`` describes what to send; ``as_http_request`` turns it into
a concrete ``httpx.Request`` and is the single place where client
authentication is attached.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from urllib.parse import urlsplit, urlunsplit

import httpx

from grantflow.models.config import ClientConfig
from grantflow.models.errors import NoClientIdError, NotUsingTLSError
from grantflow.primitives.params import RequestParams, form_encode

logger = logging.getLogger(__name__)


class HTTPMethod(str, Enum):
    GET = "GET"
    POST = "POST"


class ContentType(str, Enum):
    WWW_FORM = "application/x-www-form-urlencoded; charset=utf-8"
    JSON = "application/json"


@dataclass
class AuthRequest:
    """Endpoint URL, method, content type and parameters of one request.

    GET requests carry their parameters in the query string, POST requests
    in the body.
    """

    url: str
    method: HTTPMethod = HTTPMethod.POST
    content_type: ContentType = ContentType.WWW_FORM
    params: RequestParams = field(default_factory=RequestParams)
    header_authorize: str | None = None

    def add_params(self, params: dict[str, str] | RequestParams | None) -> None:
        if params:
            self.params.update(params)

    def as_url(self) -> str:
        """Resolve the final URL, with the query for GET requests.

        Raises:
            NotUsingTLSError: If the URL is not ``https``
        """
        parts = urlsplit(self.url)
        if parts.scheme.lower() != "https":
            raise NotUsingTLSError()

        if self.method != HTTPMethod.GET or not len(self.params):
            return self.url

        query = self.params.percent_encoded_query_string()
        if parts.query:
            query = f"{parts.query}&{query}"
        return urlunsplit(
            (parts.scheme, parts.netloc, parts.path, query, parts.fragment)
        )

    def as_http_request(self, config: ClientConfig) -> httpx.Request:
        """Build the concrete request, authenticating the client.

        With a client secret, the id and secret go into the body when
        ``config.secret_in_body`` is set and into a Basic ``Authorization``
        header otherwise.

        Raises:
            NotUsingTLSError: If the URL is not ``https``
            NoClientIdError: If a secret is configured without a client id
        """
        url = self.as_url()
        params = RequestParams(self.params.to_dict())
        headers = {
            "Content-Type": self.content_type.value,
            "Accept": "application/json",
        }

        if config.client_secret:
            if not config.client_id:
                raise NoClientIdError()
            if config.secret_in_body:
                logger.debug("Adding client id and secret to request body")
                params["client_id"] = config.client_id
                params["client_secret"] = config.client_secret
            else:
                logger.debug("Adding client id and secret to Authorization header")
                client_id = form_encode(config.client_id)
                secret = form_encode(config.client_secret)
                pair = f"{client_id}:{secret}"
                encoded = base64.b64encode(pair.encode("utf-8")).decode("ascii")
                headers["Authorization"] = f"Basic {encoded}"
                params.remove("client_id")
                params.remove("client_secret")

        if self.header_authorize:
            headers["Authorization"] = self.header_authorize

        if self.method == HTTPMethod.GET:
            url = replace(self, params=params).as_url()
            return httpx.Request("GET", url, headers=headers)

        if self.content_type == ContentType.JSON:
            body = json.dumps(params.to_dict()).encode("utf-8")
        else:
            body = params.utf8_encoded_data()
        return httpx.Request("POST", url, headers=headers, content=body)
