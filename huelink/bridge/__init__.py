"""Hue bridge discovery, authentication and application key provisioning."""

from huelink.bridge.auth import Authenticator, authenticate, authenticate_all
from huelink.bridge.discovery import (
    Discoverer,
    DiscoveryBroker,
    DiscoveryEndpoint,
    Manual,
    Mdns,
)
from huelink.bridge.errors import (
    AddressParseError,
    AuthenticationError,
    BridgeError,
    DecodeError,
    DeviceRejectedError,
    DiscoveryError,
    ErrorKind,
    KeyIssuanceError,
    ProvisioningError,
    TransportError,
)
from huelink.bridge.models import (
    AuthFailure,
    AuthResults,
    Bridge,
    BridgeConfig,
    Bridges,
    UnauthBridge,
    UnauthBridges,
)
from huelink.bridge.provisioning import issue_key, issue_key_from_config
from huelink.bridge.session import Session

__all__ = [
    "AddressParseError",
    "AuthFailure",
    "AuthResults",
    "AuthenticationError",
    "Authenticator",
    "Bridge",
    "BridgeConfig",
    "BridgeError",
    "Bridges",
    "DecodeError",
    "DeviceRejectedError",
    "Discoverer",
    "DiscoveryBroker",
    "DiscoveryEndpoint",
    "DiscoveryError",
    "ErrorKind",
    "KeyIssuanceError",
    "Manual",
    "Mdns",
    "ProvisioningError",
    "Session",
    "TransportError",
    "UnauthBridge",
    "UnauthBridges",
    "authenticate",
    "authenticate_all",
    "issue_key",
    "issue_key_from_config",
]
