"""Application key issuance (pairing) against an authenticated bridge.

Handshake
---------
1. The user presses the physical link button on the bridge.
2. ``POST /api`` with ``{"devicetype": "<app>#<instance>", "generateclientkey": true}``.
3. The first element of the response array decides the outcome:
   ``success`` carries the new key as ``username``; ``error`` carries
   ``{type, address, description}`` (type 101: link button not pressed).

The handshake is not retried here.  On a 101 the caller should prompt the
user to press the button and call :func:`issue_key` again with the bridge it
got back from :class:`ProvisioningError`.
"""

from __future__ import annotations

from loguru import logger

from huelink.bridge.errors import BridgeError, KeyIssuanceError, ProvisioningError
from huelink.bridge.models import (
    Bridge,
    DeviceType,
    KeyIssuanceFailure,
    parse_key_outcome,
)
from huelink.config.schema import ProvisioningConfig

API_PATH = "/api"


async def issue_key(bridge: Bridge, app_name: str, instance_name: str) -> tuple[Bridge, str]:
    """Request a new application key from *bridge*.

    Returns ``(keyed_bridge, key)`` where *key* is the token the bridge
    returned and *keyed_bridge* is a new handle taking over the session.
    Raises :class:`ProvisioningError` wrapping a :class:`KeyIssuanceError`
    (or a transport/decode error) with *bridge* untouched.

    A bridge that already holds a key is rejected with ``ValueError`` before
    any request is sent.
    """
    if bridge.is_keyed:
        raise ValueError(f"bridge {bridge.bridge_id} already holds an application key")
    body = DeviceType(app_name=app_name, instance_name=instance_name).to_dict()
    try:
        data = await bridge.session.post(API_PATH, body)
        outcome = parse_key_outcome(data)
    except BridgeError as exc:
        logger.warning(
            "[Bridge/Provisioning] key request to {} failed: {}", bridge.address, exc.message,
        )
        raise ProvisioningError(bridge, exc) from exc

    if isinstance(outcome, KeyIssuanceFailure):
        error = KeyIssuanceError(outcome.type, outcome.address, outcome.description)
        if error.link_button_not_pressed:
            logger.info(
                "[Bridge/Provisioning] {} rejected key request: link button not pressed",
                bridge.address,
            )
        else:
            logger.warning(
                "[Bridge/Provisioning] {} rejected key request: type={} {}",
                bridge.address, outcome.type, outcome.description,
            )
        raise ProvisioningError(bridge, error)

    logger.info(
        "[Bridge/Provisioning] key issued by {} for {}#{}",
        bridge.bridge_id, app_name, instance_name,
    )
    return bridge.with_application_key(outcome.username), outcome.username


async def issue_key_from_config(
    bridge: Bridge,
    config: ProvisioningConfig | None = None,
) -> tuple[Bridge, str]:
    """:func:`issue_key` with the application identity taken from *config*."""
    config = config or ProvisioningConfig()
    return await issue_key(bridge, config.app_name, config.instance_name)
