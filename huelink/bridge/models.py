"""Data model for bridges before and after authentication.

Lifecycle
---------
``UnauthBridge`` (address only) → authenticate → ``Bridge`` (config snapshot,
no key) → issue_key → ``Bridge`` (keyed).  Handles are never upgraded in
place; each transition yields a new value.

Wire formats
------------
Cloud discovery endpoint::

    [{"id": "001788fffe123456", "internalipaddress": "192.168.1.2", "port": 443}]

Bridge config (``GET /api/0/config``)::

    {"name": "...", "datastoreversion": "...", "swversion": "...",
     "apiversion": "...", "mac": "...", "bridgeid": "...",
     "factorynew": false, "replacebridgeid": null, "modelid": "...",
     "starterkitid": ""}

Key issuance (``POST /api``), first array element::

    {"success": {"username": "...", "clientkey": "..."}}
    {"error": {"type": 101, "address": "", "description": "link button not pressed"}}
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Iterable, Iterator

from huelink.bridge.errors import AddressParseError, BridgeError, DecodeError

if TYPE_CHECKING:
    from huelink.bridge.session import Session

DEFAULT_PORT = 443


def parse_ipv4(text: str) -> ipaddress.IPv4Address:
    """Parse *text* as an IPv4 address, raising :class:`AddressParseError`."""
    try:
        return ipaddress.IPv4Address(text.strip())
    except (ipaddress.AddressValueError, AttributeError) as exc:
        raise AddressParseError(f"invalid IPv4 address: {text!r}") from exc


def parse_port(value: Any, default: int = DEFAULT_PORT) -> int:
    """Decode a wire port; absent means *default*, anything else must be 1-65535."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise DecodeError(f"invalid port: {value!r}")
    try:
        port = int(value)
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"invalid port: {value!r}") from exc
    if not 0 < port <= 65535:
        raise DecodeError(f"port out of range: {port}")
    return port


def _strict_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise DecodeError(f"{name} must be a JSON boolean, got {value!r}")
    return value


# ---------------------------------------------------------------------------
# Unauthenticated handles
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UnauthBridge:
    """A bridge known only by its network location."""

    address: ipaddress.IPv4Address
    port: int = DEFAULT_PORT
    id: str | None = None  # only the cloud endpoint reliably supplies it

    def __post_init__(self) -> None:
        if not isinstance(self.address, ipaddress.IPv4Address):
            object.__setattr__(self, "address", parse_ipv4(str(self.address)))

    @property
    def host(self) -> str:
        """Hostname used for TLS / ``Host``: the bridge id if known, else the IP."""
        return self.id.lower() if self.id else str(self.address)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "internalipaddress": str(self.address),
            "port": self.port,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any], default_port: int = DEFAULT_PORT) -> UnauthBridge:
        try:
            address = d["internalipaddress"]
        except (KeyError, TypeError) as exc:
            raise DecodeError(f"discovery entry missing internalipaddress: {d!r}") from exc
        return cls(
            address=parse_ipv4(address),
            port=parse_port(d.get("port"), default_port),
            id=d.get("id") or None,
        )


class UnauthBridges:
    """Ordered bridges as returned by a discovery response."""

    def __init__(self, bridges: Iterable[UnauthBridge] = ()) -> None:
        self._bridges: list[UnauthBridge] = list(bridges)

    def __iter__(self) -> Iterator[UnauthBridge]:
        return iter(self._bridges)

    def __len__(self) -> int:
        return len(self._bridges)

    def __getitem__(self, index: int) -> UnauthBridge:
        return self._bridges[index]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, UnauthBridges):
            return self._bridges == other._bridges
        return NotImplemented

    def __repr__(self) -> str:
        return f"UnauthBridges({self._bridges!r})"

    def append(self, bridge: UnauthBridge) -> None:
        self._bridges.append(bridge)

    def to_list(self) -> list[dict[str, Any]]:
        return [b.to_dict() for b in self._bridges]

    @classmethod
    def from_list(cls, data: Any, default_port: int = DEFAULT_PORT) -> UnauthBridges:
        """Decode the cloud endpoint's JSON array."""
        if not isinstance(data, list):
            raise DecodeError(f"expected a JSON array of bridges, got {type(data).__name__}")
        return cls(UnauthBridge.from_dict(entry, default_port) for entry in data)


# ---------------------------------------------------------------------------
# Bridge configuration snapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BridgeConfig:
    """Metadata fetched once from ``/api/0/config`` during authentication."""

    name: str
    datastoreversion: str
    swversion: str
    apiversion: str
    mac: str
    bridgeid: str
    factorynew: bool
    modelid: str
    replacebridgeid: str | None = None
    starterkitid: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "datastoreversion": self.datastoreversion,
            "swversion": self.swversion,
            "apiversion": self.apiversion,
            "mac": self.mac,
            "bridgeid": self.bridgeid,
            "factorynew": self.factorynew,
            "replacebridgeid": self.replacebridgeid,
            "modelid": self.modelid,
            "starterkitid": self.starterkitid,
        }

    @classmethod
    def from_dict(cls, d: Any) -> BridgeConfig:
        if not isinstance(d, dict):
            raise DecodeError(f"expected a JSON object for bridge config, got {type(d).__name__}")
        try:
            return cls(
                name=str(d["name"]),
                datastoreversion=str(d["datastoreversion"]),
                swversion=str(d["swversion"]),
                apiversion=str(d["apiversion"]),
                mac=str(d["mac"]),
                bridgeid=str(d["bridgeid"]),
                factorynew=_strict_bool(d["factorynew"], "factorynew"),
                modelid=str(d["modelid"]),
                replacebridgeid=d.get("replacebridgeid"),
                starterkitid=d.get("starterkitid"),
            )
        except KeyError as exc:
            raise DecodeError(f"bridge config missing field {exc.args[0]!r}") from exc


# ---------------------------------------------------------------------------
# Authenticated handles
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Bridge:
    """An authenticated bridge owning its transport session."""

    address: ipaddress.IPv4Address
    port: int
    session: Session = field(repr=False, compare=False)
    config: BridgeConfig
    id: str | None = None
    application_key: str | None = field(default=None, repr=False)

    @property
    def bridge_id(self) -> str:
        """Canonical identity going forward: the id the bridge reports itself."""
        return self.config.bridgeid

    @property
    def is_keyed(self) -> bool:
        return self.application_key is not None

    def with_application_key(self, key: str) -> Bridge:
        """Return a copy holding *key*; the session is handed over, not shared.

        The key is set once; a keyed bridge raises ``ValueError``.
        """
        if self.application_key is not None:
            raise ValueError("bridge already holds an application key")
        return replace(self, application_key=key)

    async def get(self, path: str) -> Any:
        """GET *path* with the application key header injected."""
        return await self.session.get(path, application_key=self.application_key)

    async def aclose(self) -> None:
        await self.session.aclose()


class Bridges:
    """Ordered collection of authenticated bridges."""

    def __init__(self, bridges: Iterable[Bridge] = ()) -> None:
        self._bridges: list[Bridge] = list(bridges)

    def __iter__(self) -> Iterator[Bridge]:
        return iter(self._bridges)

    def __len__(self) -> int:
        return len(self._bridges)

    def __getitem__(self, index: int) -> Bridge:
        return self._bridges[index]

    def __repr__(self) -> str:
        return f"Bridges({self._bridges!r})"

    def append(self, bridge: Bridge) -> None:
        self._bridges.append(bridge)

    def single(self) -> Bridge:
        """Return the only bridge.

        Raises ``ValueError`` when the collection is empty or holds more than
        one bridge; picking one arbitrarily would hide a caller bug.
        """
        if len(self._bridges) != 1:
            raise ValueError(
                f"expected exactly one authenticated bridge, found {len(self._bridges)}"
            )
        return self._bridges[0]

    async def aclose(self) -> None:
        for bridge in self._bridges:
            await bridge.aclose()


# ---------------------------------------------------------------------------
# Batch authentication result
# ---------------------------------------------------------------------------

@dataclass
class AuthFailure:
    """A bridge that failed authentication, paired with the cause."""

    device: UnauthBridge
    error: BridgeError


@dataclass
class AuthResults:
    """Partition of a batch: every input lands in exactly one list."""

    successes: Bridges = field(default_factory=Bridges)
    failures: list[AuthFailure] = field(default_factory=list)

    def __iter__(self) -> Iterator[Any]:
        # ``bridges, failed = results``
        return iter((self.successes, self.failures))

    @property
    def total(self) -> int:
        return len(self.successes) + len(self.failures)


# ---------------------------------------------------------------------------
# Key issuance
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DeviceType:
    """Request body identifying the application asking for a key."""

    app_name: str
    instance_name: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "devicetype": f"{self.app_name}#{self.instance_name}",
            "generateclientkey": True,
        }


@dataclass(frozen=True)
class KeyIssuanceSuccess:
    """The bridge issued a key; ``username`` is the application key."""

    username: str
    clientkey: str | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"username": self.username}
        if self.clientkey is not None:
            body["clientkey"] = self.clientkey
        return {"success": body}


@dataclass(frozen=True)
class KeyIssuanceFailure:
    """Structured error element of a key issuance response."""

    type: int
    address: str
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "type": self.type,
                "address": self.address,
                "description": self.description,
            }
        }


KeyIssuanceOutcome = KeyIssuanceSuccess | KeyIssuanceFailure


def parse_key_outcome(data: Any) -> KeyIssuanceOutcome:
    """Decode the first element of a key issuance response array."""
    if not isinstance(data, list) or not data:
        raise DecodeError("key issuance response must be a non-empty JSON array")
    first = data[0]
    if not isinstance(first, dict):
        raise DecodeError(f"unexpected key issuance element: {first!r}")

    if "success" in first:
        body = first["success"]
        if not isinstance(body, dict):
            raise DecodeError(f"key issuance success is not an object: {body!r}")
        username = body.get("username")
        if not username:
            raise DecodeError("key issuance success without a username")
        return KeyIssuanceSuccess(username=username, clientkey=body.get("clientkey"))

    if "error" in first:
        body = first["error"]
        if not isinstance(body, dict):
            raise DecodeError(f"key issuance error is not an object: {body!r}")
        try:
            return KeyIssuanceFailure(
                type=int(body["type"]),
                address=str(body.get("address", "")),
                description=str(body.get("description", "")),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise DecodeError(f"malformed key issuance error: {body!r}") from exc

    raise DecodeError(f"unexpected key issuance element: {first!r}")
