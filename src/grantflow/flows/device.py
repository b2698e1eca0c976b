"""OAuth 2.0 Device Authorization Grant (RFC 8628).

The device obtains a user code, the user enters it on a second device, and
the device polls the token endpoint until the user has decided.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from typing import Any

from grantflow.flows.base import OAuth2Flow, unexpected_error
from grantflow.models.device import DEVICE_CODE_GRANT_TYPE, DeviceAuthorization
from grantflow.models.errors import (
    AuthorizationPendingError,
    GenericError,
    NoClientIdError,
    NoDeviceCodeURLError,
    OAuth2Error,
    SlowDownError,
)
from grantflow.models.requests import AuthRequest

# RFC 8628 Section 3.5
SLOW_DOWN_INCREMENT = 5

DeviceAuthorizationCallback = Callable[[DeviceAuthorization], Any]


class OAuth2DeviceGrant(OAuth2Flow):
    """Device authorization grant.

    ``authorize()`` requests a device code, hands the ``DeviceAuthorization``
    to ``on_device_authorization`` so the user code can be shown, then polls
    until the user has authorized. ``start()`` does the same but returns the
    ``DeviceAuthorization`` right away and polls in the background.
    """

    grant_type = DEVICE_CODE_GRANT_TYPE

    def __init__(self, settings: Mapping[str, Any], **kwargs: Any):
        super().__init__(settings, **kwargs)
        self.on_device_authorization: DeviceAuthorizationCallback | None = None
        self._poll_task: asyncio.Task | None = None

    def device_authorization_request(
        self, params: Mapping[str, str] | None = None
    ) -> AuthRequest:
        """Build the request for a device and user code.

        Raises:
            NoClientIdError: If no client id is configured
            NoDeviceCodeURLError: If no device authorize URL is configured
        """
        client_id = self.client_config.client_id
        if not client_id:
            raise NoClientIdError()
        device_url = self.client_config.device_authorize_url
        if not device_url:
            raise NoDeviceCodeURLError()

        request = AuthRequest(url=device_url)
        request.params["client_id"] = client_id
        if self.client_config.scope:
            request.params["scope"] = self.client_config.scope
        request.add_params(params)
        return request

    def device_access_token_request(self, device_code: str) -> AuthRequest:
        client_id = self.client_config.client_id
        if not client_id:
            raise NoClientIdError()

        request = AuthRequest(url=self.client_config.token_endpoint)
        request.params["grant_type"] = self.grant_type
        request.params["device_code"] = device_code
        request.params["client_id"] = client_id
        return request

    async def authorize_device(
        self, params: Mapping[str, str] | None = None
    ) -> DeviceAuthorization:
        """Obtain a device code and user code.

        Raises:
            OAuth2Error: If the request fails or the response is incomplete
        """
        request = self.device_authorization_request(params).as_http_request(
            self.client_config
        )
        self.logger.debug(f"Obtaining device code from {request.url}")
        response = await self.perform_request(request)
        self.raise_for_status(response)
        result = self.parse_json(response.body)
        self.assure_no_error_in_response(result)
        return DeviceAuthorization.from_response(result)

    async def poll_for_access_token(
        self, device: DeviceAuthorization
    ) -> dict[str, Any]:
        """Poll the token endpoint until the user has decided.

        ``authorization_pending`` waits another interval, ``slow_down`` adds
        five seconds to the interval first. Any other outcome ends polling.

        Raises:
            OAuth2Error: If authorization failed or was aborted
        """
        interval = device.interval
        while True:
            request = self.device_access_token_request(
                device.device_code
            ).as_http_request(self.client_config)
            response = await self.perform_request(request)
            try:
                self.raise_for_status(response)
                return self.parse_access_token_response_data(response.body)
            except AuthorizationPendingError:
                self.logger.debug(
                    f"Authorization pending, repeating in {interval} seconds"
                )
            except SlowDownError:
                interval += SLOW_DOWN_INCREMENT
                self.logger.debug(f"Slow down, repeating in {interval} seconds")
            await self._sleep(interval)

    async def do_authorize(self, params: Mapping[str, str] | None = None) -> None:
        device = await self.authorize_device(params)
        self._notify_device_authorization(device)
        result = await self.poll_for_access_token(device)
        self._did_authorize(result)

    async def start(
        self,
        params: Mapping[str, str] | None = None,
        use_non_textual_transmission: bool = False,
    ) -> DeviceAuthorization:
        """Obtain a device authorization and poll for the token in the background.

        The outcome of polling is delivered through the flow's callbacks.

        Args:
            params: Extra parameters for the device authorization request
            use_non_textual_transmission: Open ``verification_uri_complete``
                (e.g. to render a QR code) through the authorization handler

        Raises:
            GenericError: If an authorization is already running
            OAuth2Error: If no device authorization could be obtained; the
                failure callback has been invoked as well
        """
        if self._is_authorizing:
            raise GenericError("Already authorizing, not starting another poll")

        self._begin_authorizing()
        try:
            device = await self.authorize_device(params)
            if use_non_textual_transmission and device.verification_uri_complete:
                await self.authorizer.handle_authorization(
                    device.verification_uri_complete, None
                )
        except OAuth2Error as e:
            self._did_fail(e)
            raise
        except Exception as e:
            error = unexpected_error(e)
            self._did_fail(error)
            raise error from e

        self._poll_task = asyncio.ensure_future(self._poll_in_background(device))
        return device

    async def _poll_in_background(self, device: DeviceAuthorization) -> None:
        try:
            result = await self.poll_for_access_token(device)
        except OAuth2Error as e:
            self._did_fail(e)
            return
        except Exception as e:
            self.logger.exception("Unexpected error while polling")
            self._did_fail(unexpected_error(e))
            return
        self._did_authorize(result)

    def _notify_device_authorization(self, device: DeviceAuthorization) -> None:
        self.logger.info(
            f"Visit {device.verification_uri} and enter code {device.user_code}"
        )
        if self.on_device_authorization is not None:
            self.on_device_authorization(device)
