"""Discover one or more Hue bridges on the local network.

Protocols
---------
======================  ============================================  ===========
Protocol                Characteristics                               Priority
======================  ============================================  ===========
mDNS                    Purely local, no request limit.               first
Discovery endpoint      Cloud dependent; callers must keep to one     second
                        request every 15 minutes.
Manual                  Caller supplies the IPv4 address.             fallback
======================  ============================================  ===========

The broker binds one protocol at construction.  Falling back from one
protocol to the next is left to the caller:

>>> broker = DiscoveryBroker.mdns()
>>> bridges = await broker.discover()
>>> if not bridges:
...     bridges = await DiscoveryBroker.discovery_endpoint().discover()

Known limitation: mDNS discovery returns after the first answering bridge,
so additional bridges that answer later are missed.  Call again, or use the
discovery endpoint, when every bridge must be found.
"""

from __future__ import annotations

import abc
import asyncio
import ipaddress
from typing import Any, Callable, Generic, TypeVar

import httpx
from loguru import logger
from zeroconf import Error as ZeroconfError
from zeroconf import IPVersion, ServiceStateChange
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from huelink.bridge.errors import DiscoveryError
from huelink.bridge.models import (
    DEFAULT_PORT,
    UnauthBridge,
    UnauthBridges,
    parse_ipv4,
)
from huelink.bridge.session import request_json
from huelink.config.schema import DiscoveryConfig

HUE_SERVICE = "_hue._tcp.local."
DISCOVERY_ENDPOINT = "https://discovery.meethue.com"

D = TypeVar("D", UnauthBridge, UnauthBridges)


class Discoverer(abc.ABC, Generic[D]):
    """Interchangeable discovery protocol for :class:`DiscoveryBroker`."""

    @abc.abstractmethod
    async def discover(self) -> D:
        """Locate bridge(s); raises a ``BridgeError`` on failure."""


# ---------------------------------------------------------------------------
# mDNS
# ---------------------------------------------------------------------------

def first_ipv4(addresses: list[str]) -> ipaddress.IPv4Address | None:
    """Return the first IPv4 address in *addresses*; IPv6 entries are skipped."""
    for text in addresses:
        try:
            addr = ipaddress.ip_address(text)
        except ValueError:
            continue
        if isinstance(addr, ipaddress.IPv4Address):
            return addr
    return None


def _txt_bridge_id(properties: dict[Any, Any]) -> str | None:
    raw = properties.get(b"bridgeid") or properties.get("bridgeid")
    if not raw:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="ignore")
    return raw or None


class Mdns(Discoverer[UnauthBridges]):
    """Discovers bridges through multicast DNS (``_hue._tcp.local``).

    Parameters
    ----------
    service_type:
        DNS-SD service to browse.
    timeout:
        Total seconds to wait for the first answer.  No answer is not an
        error: an empty collection is returned.
    query_interval:
        Seconds between multicast queries while waiting.
    port:
        Port assigned to discovered bridges; DNS-SD answers are not trusted for it.
    zeroconf_factory:
        Callable returning an ``AsyncZeroconf`` (tests inject a fake).
    """

    def __init__(
        self,
        service_type: str = HUE_SERVICE,
        timeout: float = 1.5,
        query_interval: float = 0.15,
        port: int = DEFAULT_PORT,
        zeroconf_factory: Callable[[], AsyncZeroconf] | None = None,
    ) -> None:
        self.service_type = service_type
        self.timeout = timeout
        self.query_interval = query_interval
        self.port = port
        self._zeroconf_factory = zeroconf_factory or (
            lambda: AsyncZeroconf(ip_version=IPVersion.V4Only)
        )

    @classmethod
    def from_config(cls, config: DiscoveryConfig) -> Mdns:
        return cls(
            service_type=config.mdns_service,
            timeout=config.mdns_timeout,
            query_interval=config.mdns_query_interval,
            port=config.default_port,
        )

    async def discover(self) -> UnauthBridges:
        bridges = UnauthBridges()
        try:
            aiozc = self._zeroconf_factory()
        except (OSError, ZeroconfError) as exc:
            raise DiscoveryError(f"mDNS unavailable: {exc}") from exc

        loop = asyncio.get_running_loop()
        first: asyncio.Future[str] = loop.create_future()

        def on_change(
            zeroconf: Any, service_type: str, name: str, state_change: ServiceStateChange,
        ) -> None:
            if state_change is ServiceStateChange.Added:
                loop.call_soon_threadsafe(_resolve_once, name)

        def _resolve_once(name: str) -> None:
            if not first.done():
                first.set_result(name)

        browser: AsyncServiceBrowser | None = None
        try:
            browser = AsyncServiceBrowser(
                aiozc.zeroconf,
                [self.service_type],
                handlers=[on_change],
                delay=int(self.query_interval * 1000),
            )
            try:
                name = await asyncio.wait_for(first, self.timeout)
            except asyncio.TimeoutError:
                logger.debug("[Bridge/Discovery] no mDNS answer within {}s", self.timeout)
                return bridges

            info = AsyncServiceInfo(self.service_type, name)
            await info.async_request(aiozc.zeroconf, int(self.timeout * 1000))
            bridge = self._bridge_from_info(name, info)
            if bridge is not None:
                bridges.append(bridge)
        except (OSError, ZeroconfError) as exc:
            raise DiscoveryError(f"mDNS discovery failed: {exc}") from exc
        finally:
            if browser is not None:
                await browser.async_cancel()
            await aiozc.async_close()

        return bridges

    def _bridge_from_info(self, name: str, info: Any) -> UnauthBridge | None:
        addresses = info.parsed_addresses(IPVersion.All)
        addr = first_ipv4(addresses)
        if addr is None:
            if addresses:
                logger.warning(
                    "[Bridge/Discovery] {} only advertises IPv6 ({}), ignoring",
                    name, ", ".join(addresses),
                )
            else:
                logger.warning("[Bridge/Discovery] {} advertises no address", name)
            return None
        bridge = UnauthBridge(
            address=addr,
            port=self.port,
            id=_txt_bridge_id(info.properties or {}),
        )
        logger.info("[Bridge/Discovery] mDNS found bridge @ {}", addr)
        return bridge


# ---------------------------------------------------------------------------
# Cloud discovery endpoint
# ---------------------------------------------------------------------------

class DiscoveryEndpoint(Discoverer[UnauthBridges]):
    """Discovers bridges through the vendor cloud endpoint.

    The endpoint tolerates one request every 15 minutes per client; this
    class does not throttle, so the caller (or an HTTP middleware) must.
    """

    def __init__(
        self,
        url: str = DISCOVERY_ENDPOINT,
        timeout: float = 10.0,
        default_port: int = DEFAULT_PORT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.default_port = default_port
        self._transport = transport

    @classmethod
    def from_config(cls, config: DiscoveryConfig) -> DiscoveryEndpoint:
        return cls(
            url=config.endpoint_url,
            timeout=config.endpoint_timeout,
            default_port=config.default_port,
        )

    async def discover(self) -> UnauthBridges:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            data = await request_json(client, "GET", self.url)
        bridges = UnauthBridges.from_list(data, self.default_port)
        logger.info("[Bridge/Discovery] endpoint returned {} bridge(s)", len(bridges))
        return bridges


# ---------------------------------------------------------------------------
# Manual
# ---------------------------------------------------------------------------

class Manual(Discoverer[UnauthBridge]):
    """A bridge at a caller-supplied IPv4 address; performs no I/O."""

    def __init__(self, address: ipaddress.IPv4Address, port: int = DEFAULT_PORT) -> None:
        if not isinstance(address, ipaddress.IPv4Address):
            raise TypeError(f"expected IPv4Address, got {type(address).__name__}")
        self.address = address
        self.port = port

    @classmethod
    def parse(cls, text: str, port: int = DEFAULT_PORT) -> Manual:
        return cls(parse_ipv4(text), port)

    async def discover(self) -> UnauthBridge:
        return UnauthBridge(address=self.address, port=self.port, id=None)


# ---------------------------------------------------------------------------
# Broker
# ---------------------------------------------------------------------------

class DiscoveryBroker(Generic[D]):
    """Binds exactly one discovery protocol and exposes ``discover()``.

    ======================  ==========================================
    Protocol                Constructor
    ======================  ==========================================
    mDNS                    :meth:`DiscoveryBroker.mdns`
    Discovery endpoint      :meth:`DiscoveryBroker.discovery_endpoint`
    Manual                  :meth:`DiscoveryBroker.manual` / :meth:`parse`
    ======================  ==========================================
    """

    def __init__(self, discoverer: Discoverer[D]) -> None:
        self._discoverer = discoverer

    @property
    def discoverer(self) -> Discoverer[D]:
        return self._discoverer

    def __repr__(self) -> str:
        return f"DiscoveryBroker({type(self._discoverer).__name__})"

    async def discover(self) -> D:
        """Run the bound protocol; network and mDNS errors propagate."""
        return await self._discoverer.discover()

    # -- constructors --------------------------------------------------------

    @staticmethod
    def mdns(config: DiscoveryConfig | None = None) -> DiscoveryBroker[UnauthBridges]:
        return DiscoveryBroker(Mdns.from_config(config or DiscoveryConfig()))

    @staticmethod
    def discovery_endpoint(
        config: DiscoveryConfig | None = None,
    ) -> DiscoveryBroker[UnauthBridges]:
        return DiscoveryBroker(DiscoveryEndpoint.from_config(config or DiscoveryConfig()))

    @staticmethod
    def manual(
        address: ipaddress.IPv4Address | str,
        config: DiscoveryConfig | None = None,
    ) -> DiscoveryBroker[UnauthBridge]:
        """Bind a manual address; the port comes from ``config.default_port``."""
        port = (config or DiscoveryConfig()).default_port
        if not isinstance(address, ipaddress.IPv4Address):
            address = parse_ipv4(address)
        return DiscoveryBroker(Manual(address, port))

    @staticmethod
    def parse(
        text: str,
        config: DiscoveryConfig | None = None,
    ) -> DiscoveryBroker[UnauthBridge]:
        """Build a manual broker from a textual IPv4 address."""
        port = (config or DiscoveryConfig()).default_port
        return DiscoveryBroker(Manual.parse(text, port))
