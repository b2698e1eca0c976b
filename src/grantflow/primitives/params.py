"""Ordered request parameters with WWW-form encoding.

Parameters keep insertion order. Encoding follows the WHATWG
``application/x-www-form-urlencoded`` algorithm: alphanumerics and ``-._*``
pass through, a space becomes ``+`` and everything else is percent-encoded.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from urllib.parse import quote_plus, unquote_plus

logger = logging.getLogger(__name__)


def form_encode(value: str) -> str:
    """WWW-form encode a single key or value."""
    # quote_plus always leaves "~" alone; the form algorithm escapes it
    return quote_plus(value, safe="*").replace("~", "%7E")


def form_decode(value: str) -> str:
    """Decode a WWW-form encoded key or value."""
    return unquote_plus(value)


def params_from_query(query: str) -> dict[str, str]:
    """Decode a query string or form body into a dictionary.

    Segments that do not split into exactly one key and one value are
    skipped.

    Args:
        query: Encoded string such as ``a=1&b=two+words``

    Returns:
        Decoded key/value pairs in the order they appear
    """
    params: dict[str, str] = {}
    for segment in query.split("&"):
        if not segment:
            continue
        parts = segment.split("=")
        if len(parts) != 2:
            logger.debug(f"Skipping malformed query segment '{segment}'")
            continue
        params[form_decode(parts[0])] = form_decode(parts[1])
    return params


class RequestParams:
    """Ordered string key/value collection sent with a request."""

    def __init__(self, params: Mapping[str, str] | None = None):
        self._params: dict[str, str] = {}
        if params:
            self.update(params)

    def __getitem__(self, key: str) -> str:
        return self._params[key]

    def __setitem__(self, key: str, value: str) -> None:
        self._params[key] = value

    def __contains__(self, key: object) -> bool:
        return key in self._params

    def __iter__(self) -> Iterator[str]:
        return iter(self._params)

    def __len__(self) -> int:
        return len(self._params)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RequestParams):
            return self._params == other._params
        if isinstance(other, Mapping):
            return self._params == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"RequestParams({self._params!r})"

    def get(self, key: str, default: str | None = None) -> str | None:
        return self._params.get(key, default)

    def items(self):
        return self._params.items()

    def update(self, params: Mapping[str, str]) -> None:
        """Set every pair of ``params``, overwriting existing keys."""
        for key, value in params.items():
            self._params[key] = value

    def remove(self, key: str) -> str | None:
        """Remove ``key`` and return its value, if it was present."""
        return self._params.pop(key, None)

    def to_dict(self) -> dict[str, str]:
        return dict(self._params)

    def percent_encoded_query_string(self) -> str:
        """Encode the parameters in insertion order, joined with ``&``."""
        return "&".join(
            f"{form_encode(key)}={form_encode(value)}"
            for key, value in self._params.items()
        )

    def utf8_encoded_data(self) -> bytes:
        """The encoded query string as a UTF-8 request body."""
        return self.percent_encoded_query_string().encode("utf-8")
