"""HTTPS transport bound to a single bridge.

A bridge is addressed by IP, but its certificate is issued for its bridge id.
When the handle carries an id, every request goes to ``https://<ip>:<port>``
with ``Host`` and the TLS server name set to the id, which is the same effect
as resolving ``<id>`` to ``<ip>`` for this client only.

Bridges ship self-signed certificates, so verification is off unless a CA
bundle is configured.
"""

from __future__ import annotations

import ssl
from typing import Any

import httpx
from loguru import logger

from huelink.bridge.errors import DecodeError, DeviceRejectedError, TransportError
from huelink.bridge.models import UnauthBridge
from huelink.config.schema import SessionConfig

APPLICATION_KEY_HEADER = "hue-application-key"


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs: Any,
) -> Any:
    """Send one request and decode the JSON body.

    Maps ``httpx`` failures onto the bridge error taxonomy: unreachable →
    :class:`TransportError`, non-2xx → :class:`DeviceRejectedError`,
    unparsable body → :class:`DecodeError`.
    """
    try:
        response = await client.request(method, url, **kwargs)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise DeviceRejectedError(
            f"{method} {exc.request.url} returned {exc.response.status_code}",
            status_code=exc.response.status_code,
        ) from exc
    except httpx.HTTPError as exc:
        raise TransportError(f"{method} {url} failed: {exc!r}") from exc

    try:
        return response.json()
    except ValueError as exc:
        raise DecodeError(f"{method} {url} returned a non-JSON body") from exc


class Session:
    """HTTPS session exclusively owned by one bridge handle.

    Parameters
    ----------
    device:
        The bridge this session talks to.
    timeout:
        Per-request timeout in seconds.
    verify_tls:
        Verify the bridge certificate against the system trust store.
    ca_bundle:
        Path to a PEM bundle; when given, verification uses it instead.
    transport:
        Optional ``httpx`` transport override (tests inject a mock here).
    """

    def __init__(
        self,
        device: UnauthBridge,
        timeout: float = 10.0,
        verify_tls: bool = False,
        ca_bundle: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.host = device.host
        self.base_url = f"https://{device.address}:{device.port}"

        verify: ssl.SSLContext | bool = verify_tls
        if ca_bundle:
            try:
                verify = ssl.create_default_context(cafile=ca_bundle)
            except (OSError, ssl.SSLError) as exc:
                raise TransportError(f"cannot load CA bundle {ca_bundle!r}: {exc}") from exc

        headers: dict[str, str] = {}
        self._extensions: dict[str, Any] = {}
        if device.id:
            headers["Host"] = self.host
            self._extensions["sni_hostname"] = self.host

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            verify=verify,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        device: UnauthBridge,
        config: SessionConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> Session:
        return cls(
            device,
            timeout=config.timeout,
            verify_tls=config.verify_tls,
            ca_bundle=config.ca_bundle,
            transport=transport,
        )

    # -- requests ------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        application_key: str | None = None,
    ) -> Any:
        headers = {APPLICATION_KEY_HEADER: application_key} if application_key else None
        logger.debug("[Bridge/Session] {} {}{} (host={})", method, self.base_url, path, self.host)
        return await request_json(
            self._client,
            method,
            path,
            json=json,
            headers=headers,
            extensions=self._extensions,
        )

    async def get(self, path: str, application_key: str | None = None) -> Any:
        return await self.request("GET", path, application_key=application_key)

    async def post(self, path: str, body: Any, application_key: str | None = None) -> Any:
        return await self.request("POST", path, json=body, application_key=application_key)

    # -- lifecycle -----------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._client.is_closed

    async def aclose(self) -> None:
        await self._client.aclose()
