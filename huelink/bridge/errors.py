"""Error taxonomy for bridge discovery, authentication and provisioning.

Every recoverable failure is a :class:`BridgeError` with a machine-readable
``kind`` so callers can tell an unreachable bridge from one that answered and
refused, and both from the "link button not pressed" pairing rejection.

Transition failures wrap their cause and hand back the handle the caller
passed in:

- :class:`AuthenticationError` carries the untouched ``UnauthBridge``.
- :class:`ProvisioningError` carries the untouched ``Bridge``.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from huelink.bridge.models import Bridge, UnauthBridge

# Hue API error type reported when the pairing button has not been pressed.
LINK_BUTTON_NOT_PRESSED = 101


class ErrorKind(str, Enum):
    """Coarse classification of a bridge failure."""

    TRANSPORT = "transport"          # connect / TLS / timeout
    ADDRESS_PARSE = "address_parse"
    DISCOVERY = "discovery"          # multicast subsystem failure
    REJECTED = "rejected"            # reachable, answered with non-2xx
    DECODE = "decode"                # body not in the documented shape
    LINK_BUTTON = "link_button"
    KEY_ISSUANCE = "key_issuance"


class BridgeError(Exception):
    """Base class for all recoverable bridge errors."""

    kind: ErrorKind = ErrorKind.TRANSPORT

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message}


class TransportError(BridgeError):
    """The device (or cloud endpoint) could not be reached."""

    kind = ErrorKind.TRANSPORT


class DeviceRejectedError(BridgeError):
    """The device answered but refused the request."""

    kind = ErrorKind.REJECTED

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["status_code"] = self.status_code
        return d


class DecodeError(BridgeError):
    """A response body did not match the expected wire schema."""

    kind = ErrorKind.DECODE


class AddressParseError(BridgeError, ValueError):
    """Text could not be parsed as an IPv4 address."""

    kind = ErrorKind.ADDRESS_PARSE


class DiscoveryError(BridgeError):
    """The multicast discovery subsystem failed."""

    kind = ErrorKind.DISCOVERY


class KeyIssuanceError(BridgeError):
    """Structured error returned by the bridge during key issuance.

    Mirrors the wire object ``{"type": int, "address": str, "description": str}``;
    ``description`` is kept verbatim.
    """

    def __init__(self, code: int, address: str, description: str) -> None:
        super().__init__(description)
        self.code = code
        self.address = address
        self.description = description

    @property
    def kind(self) -> ErrorKind:  # type: ignore[override]
        if self.code == LINK_BUTTON_NOT_PRESSED:
            return ErrorKind.LINK_BUTTON
        return ErrorKind.KEY_ISSUANCE

    @property
    def link_button_not_pressed(self) -> bool:
        return self.code == LINK_BUTTON_NOT_PRESSED

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d.update(type=self.code, address=self.address, description=self.description)
        return d


# ---------------------------------------------------------------------------
# Transition failures
# ---------------------------------------------------------------------------

class AuthenticationError(BridgeError):
    """Authentication of ``device`` failed with ``error``.

    ``device`` is the exact handle that was passed in, ready for a retry.
    """

    def __init__(self, device: UnauthBridge, error: BridgeError) -> None:
        super().__init__(f"authentication of {device.address} failed: {error.message}")
        self.device = device
        self.error = error

    @property
    def kind(self) -> ErrorKind:  # type: ignore[override]
        return self.error.kind


class ProvisioningError(BridgeError):
    """Application key issuance against ``bridge`` failed with ``error``."""

    def __init__(self, bridge: Bridge, error: BridgeError) -> None:
        super().__init__(f"key issuance on {bridge.address} failed: {error.message}")
        self.bridge = bridge
        self.error = error

    @property
    def kind(self) -> ErrorKind:  # type: ignore[override]
        return self.error.kind
