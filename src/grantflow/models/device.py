"""Device authorization response (RFC 8628 Section 3.2)."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from grantflow.models.errors import GenericError

# RFC 8628 grant type URN
DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

DEFAULT_POLLING_INTERVAL = 5


@dataclass(frozen=True)
class DeviceAuthorization:
    """A pending device authorization.

    The user visits ``verification_uri`` and enters ``user_code`` while the
    device polls the token endpoint with ``device_code``.
    """

    device_code: str
    user_code: str
    verification_uri: str
    expires_in: int
    interval: int = DEFAULT_POLLING_INTERVAL
    verification_uri_complete: str | None = None

    @property
    def expires_minutes(self) -> int:
        return self.expires_in // 60

    @classmethod
    def from_response(cls, params: Mapping[str, Any]) -> DeviceAuthorization:
        """Parse a device authorization response.

        Raises:
            GenericError: If a required field is missing or malformed
        """
        missing = [
            key
            for key in ("device_code", "user_code", "verification_uri", "expires_in")
            if params.get(key) in (None, "")
        ]
        if missing:
            raise GenericError(
                f"Device authorization response missing {', '.join(missing)}"
            )

        try:
            expires_in = int(params["expires_in"])
            interval = int(params.get("interval") or DEFAULT_POLLING_INTERVAL)
        except (TypeError, ValueError) as e:
            raise GenericError(f"Invalid device authorization response: {e}") from e

        return cls(
            device_code=str(params["device_code"]),
            user_code=str(params["user_code"]),
            verification_uri=str(params["verification_uri"]),
            expires_in=expires_in,
            interval=interval,
            verification_uri_complete=params.get("verification_uri_complete"),
        )
