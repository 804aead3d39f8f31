"""Tests for bridge discovery protocols and the discovery broker."""

import ipaddress
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from zeroconf import ServiceStateChange

from huelink.bridge.discovery import (
    DiscoveryBroker,
    DiscoveryEndpoint,
    Manual,
    Mdns,
    first_ipv4,
)
from huelink.bridge.errors import (
    AddressParseError,
    BridgeError,
    DecodeError,
    DeviceRejectedError,
    DiscoveryError,
    ErrorKind,
    TransportError,
)
from huelink.bridge.models import UnauthBridge, UnauthBridges
from huelink.config.schema import DiscoveryConfig

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _fake_zeroconf() -> MagicMock:
    aiozc = MagicMock()
    aiozc.async_close = AsyncMock()
    return aiozc


def _browser_factory(fire_name: str | None, created: list):
    """Build an AsyncServiceBrowser stand-in that optionally announces one service."""

    def factory(zc, types, handlers, delay):
        browser = MagicMock()
        browser.async_cancel = AsyncMock()
        created.append(browser)
        if fire_name is not None:
            for handler in handlers:
                handler(
                    zeroconf=zc,
                    service_type=types[0],
                    name=fire_name,
                    state_change=ServiceStateChange.Added,
                )
        return browser

    return factory


def _service_info(addresses: list[str], properties: dict | None = None) -> MagicMock:
    info = MagicMock()
    info.async_request = AsyncMock(return_value=True)
    info.parsed_addresses = MagicMock(return_value=addresses)
    info.properties = properties or {}
    return info


# ---------------------------------------------------------------------------
# mDNS
# ---------------------------------------------------------------------------


class TestFirstIPv4:

    def test_skips_ipv6(self):
        assert first_ipv4(["fe80::1", "192.168.1.20"]) == ipaddress.IPv4Address("192.168.1.20")

    def test_ipv6_only(self):
        assert first_ipv4(["fe80::1", "2001:db8::2"]) is None

    def test_first_wins(self):
        assert first_ipv4(["10.0.0.1", "10.0.0.2"]) == ipaddress.IPv4Address("10.0.0.1")

    def test_garbage_ignored(self):
        assert first_ipv4(["not-an-ip"]) is None


class TestMdns:

    @pytest.mark.asyncio
    async def test_no_answer_returns_empty(self):
        aiozc = _fake_zeroconf()
        created: list = []
        mdns = Mdns(timeout=0.05, zeroconf_factory=lambda: aiozc)
        with patch(
            "huelink.bridge.discovery.AsyncServiceBrowser",
            side_effect=_browser_factory(None, created),
        ):
            bridges = await mdns.discover()

        assert isinstance(bridges, UnauthBridges)
        assert len(bridges) == 0
        created[0].async_cancel.assert_awaited_once()
        aiozc.async_close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_first_answer_ipv4(self):
        aiozc = _fake_zeroconf()
        created: list = []
        info = _service_info(["fe80::1", "192.168.1.20"])
        mdns = Mdns(timeout=1.0, zeroconf_factory=lambda: aiozc)
        with patch(
            "huelink.bridge.discovery.AsyncServiceBrowser",
            side_effect=_browser_factory("Hue Bridge._hue._tcp.local.", created),
        ), patch("huelink.bridge.discovery.AsyncServiceInfo", return_value=info):
            bridges = await mdns.discover()

        assert len(bridges) == 1
        bridge = bridges[0]
        assert bridge.address == ipaddress.IPv4Address("192.168.1.20")
        assert bridge.port == 443
        assert bridge.id is None
        info.async_request.assert_awaited_once()
        aiozc.async_close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_txt_bridge_id_used(self):
        aiozc = _fake_zeroconf()
        info = _service_info(["192.168.1.20"], {b"bridgeid": b"001788fffe123456"})
        mdns = Mdns(timeout=1.0, zeroconf_factory=lambda: aiozc)
        with patch(
            "huelink.bridge.discovery.AsyncServiceBrowser",
            side_effect=_browser_factory("Hue Bridge._hue._tcp.local.", []),
        ), patch("huelink.bridge.discovery.AsyncServiceInfo", return_value=info):
            bridges = await mdns.discover()

        assert bridges[0].id == "001788fffe123456"

    @pytest.mark.asyncio
    async def test_ipv6_only_answer_ignored(self):
        aiozc = _fake_zeroconf()
        info = _service_info(["fe80::1"])
        mdns = Mdns(timeout=1.0, zeroconf_factory=lambda: aiozc)
        with patch(
            "huelink.bridge.discovery.AsyncServiceBrowser",
            side_effect=_browser_factory("Hue Bridge._hue._tcp.local.", []),
        ), patch("huelink.bridge.discovery.AsyncServiceInfo", return_value=info):
            bridges = await mdns.discover()

        assert len(bridges) == 0

    @pytest.mark.asyncio
    async def test_zeroconf_startup_failure(self):
        def broken():
            raise OSError("no multicast interface")

        mdns = Mdns(timeout=0.05, zeroconf_factory=broken)
        with pytest.raises(DiscoveryError) as exc_info:
            await mdns.discover()
        assert exc_info.value.kind is ErrorKind.DISCOVERY

    @pytest.mark.asyncio
    async def test_browser_failure_closes_zeroconf(self):
        aiozc = _fake_zeroconf()
        mdns = Mdns(timeout=0.05, zeroconf_factory=lambda: aiozc)
        with patch(
            "huelink.bridge.discovery.AsyncServiceBrowser",
            side_effect=OSError("socket closed"),
        ):
            with pytest.raises(DiscoveryError):
                await mdns.discover()
        aiozc.async_close.assert_awaited_once()

    def test_from_config(self):
        cfg = DiscoveryConfig(mdns_timeout=3.0, mdns_query_interval=0.2)
        mdns = Mdns.from_config(cfg)
        assert mdns.timeout == 3.0
        assert mdns.query_interval == 0.2
        assert mdns.service_type == "_hue._tcp.local."
        assert mdns.port == 443

    @pytest.mark.asyncio
    async def test_configured_default_port(self):
        aiozc = _fake_zeroconf()
        info = _service_info(["192.168.1.20"])
        mdns = Mdns.from_config(DiscoveryConfig(mdns_timeout=1.0, default_port=8443))
        mdns._zeroconf_factory = lambda: aiozc
        with patch(
            "huelink.bridge.discovery.AsyncServiceBrowser",
            side_effect=_browser_factory("Hue Bridge._hue._tcp.local.", []),
        ), patch("huelink.bridge.discovery.AsyncServiceInfo", return_value=info):
            bridges = await mdns.discover()

        assert bridges[0].port == 8443


# ---------------------------------------------------------------------------
# Cloud endpoint
# ---------------------------------------------------------------------------


class TestDiscoveryEndpoint:

    @pytest.mark.asyncio
    async def test_decodes_bridges_in_order(self):
        payload = [
            {"id": "001788fffe000001", "internalipaddress": "192.168.1.2", "port": 443},
            {"id": "001788fffe000002", "internalipaddress": "192.168.1.3", "port": 8443},
        ]
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=payload)

        endpoint = DiscoveryEndpoint(transport=httpx.MockTransport(handler))
        bridges = await endpoint.discover()

        assert len(seen) == 1
        assert str(seen[0].url).startswith("https://discovery.meethue.com")
        assert [b.id for b in bridges] == ["001788fffe000001", "001788fffe000002"]
        assert bridges[1].address == ipaddress.IPv4Address("192.168.1.3")
        assert bridges[1].port == 8443

    @pytest.mark.asyncio
    async def test_empty_array(self):
        endpoint = DiscoveryEndpoint(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[]))
        )
        assert len(await endpoint.discover()) == 0

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        endpoint = DiscoveryEndpoint(
            transport=httpx.MockTransport(lambda r: httpx.Response(429, text="slow down"))
        )
        with pytest.raises(DeviceRejectedError) as exc_info:
            await endpoint.discover()
        assert exc_info.value.status_code == 429
        assert exc_info.value.kind is ErrorKind.REJECTED

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("network down", request=request)

        endpoint = DiscoveryEndpoint(transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError):
            await endpoint.discover()

    @pytest.mark.asyncio
    async def test_unexpected_body(self):
        endpoint = DiscoveryEndpoint(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"oops": 1}))
        )
        with pytest.raises(DecodeError):
            await endpoint.discover()

    @pytest.mark.asyncio
    async def test_non_numeric_port(self):
        payload = [{"id": "a", "internalipaddress": "10.0.0.1", "port": "https"}]
        endpoint = DiscoveryEndpoint(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json=payload))
        )
        with pytest.raises(BridgeError) as exc_info:
            await endpoint.discover()
        assert isinstance(exc_info.value, DecodeError)

    @pytest.mark.asyncio
    async def test_missing_port_uses_configured_default(self):
        payload = [{"id": "a", "internalipaddress": "10.0.0.1"}]
        cfg = DiscoveryConfig(default_port=8443)
        endpoint = DiscoveryEndpoint.from_config(cfg)
        endpoint._transport = httpx.MockTransport(lambda r: httpx.Response(200, json=payload))
        bridges = await endpoint.discover()
        assert bridges[0].port == 8443


# ---------------------------------------------------------------------------
# Manual
# ---------------------------------------------------------------------------


class TestManual:

    @pytest.mark.asyncio
    async def test_yields_single_bridge(self):
        manual = Manual(ipaddress.IPv4Address("192.168.50.173"))
        bridge = await manual.discover()
        assert bridge == UnauthBridge(
            address=ipaddress.IPv4Address("192.168.50.173"), port=443, id=None,
        )

    @pytest.mark.asyncio
    async def test_deterministic(self):
        manual = Manual.parse("192.168.50.173")
        assert await manual.discover() == await manual.discover()

    def test_parse_error(self):
        with pytest.raises(AddressParseError) as exc_info:
            Manual.parse("192.168.50")
        assert exc_info.value.kind is ErrorKind.ADDRESS_PARSE
        assert isinstance(exc_info.value, ValueError)

    def test_rejects_ipv6(self):
        with pytest.raises(AddressParseError):
            Manual.parse("fe80::1")


# ---------------------------------------------------------------------------
# Broker
# ---------------------------------------------------------------------------


class TestDiscoveryBroker:

    @pytest.mark.asyncio
    async def test_manual_broker_no_network(self):
        broker = DiscoveryBroker.parse("192.168.50.173")
        with patch("httpx.AsyncClient") as client_cls:
            bridge = await broker.discover()
        client_cls.assert_not_called()
        assert bridge.address == ipaddress.IPv4Address("192.168.50.173")
        assert bridge.port == 443
        assert bridge.id is None

    def test_manual_from_address_value(self):
        broker = DiscoveryBroker.manual(ipaddress.IPv4Address("10.0.0.5"))
        assert isinstance(broker.discoverer, Manual)
        assert broker.discoverer.address == ipaddress.IPv4Address("10.0.0.5")

    def test_manual_from_text(self):
        broker = DiscoveryBroker.manual("10.0.0.5")
        assert broker.discoverer.address == ipaddress.IPv4Address("10.0.0.5")

    @pytest.mark.asyncio
    async def test_manual_port_from_config(self):
        cfg = DiscoveryConfig(default_port=8443)
        assert (await DiscoveryBroker.manual("10.0.0.5", cfg).discover()).port == 8443
        assert (await DiscoveryBroker.parse("10.0.0.5", cfg).discover()).port == 8443

    def test_parse_error(self):
        with pytest.raises(AddressParseError):
            DiscoveryBroker.parse("bridge.local")

    def test_constructors_bind_protocol(self):
        assert isinstance(DiscoveryBroker.mdns().discoverer, Mdns)
        assert isinstance(DiscoveryBroker.discovery_endpoint().discoverer, DiscoveryEndpoint)

    def test_endpoint_from_config(self):
        cfg = DiscoveryConfig(endpoint_url="https://example.test/discover")
        broker = DiscoveryBroker.discovery_endpoint(cfg)
        assert broker.discoverer.url == "https://example.test/discover"

    @pytest.mark.asyncio
    async def test_discover_delegates(self):
        discoverer = MagicMock()
        expected = UnauthBridges([UnauthBridge(address=ipaddress.IPv4Address("10.0.0.9"))])
        discoverer.discover = AsyncMock(return_value=expected)
        broker = DiscoveryBroker(discoverer)
        assert await broker.discover() is expected
        discoverer.discover.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        discoverer = MagicMock()
        discoverer.discover = AsyncMock(side_effect=TransportError("down"))
        broker = DiscoveryBroker(discoverer)
        with pytest.raises(TransportError):
            await broker.discover()
