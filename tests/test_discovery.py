"""Tests for SSDP discovery (DeviceScanner) and the setup wizard."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from joku.client import ECPClient
from joku.discovery.scanner import (
    DeviceScanner,
    build_search_request,
    fallback_name,
    location_addr,
    parse_device_name,
    parse_response,
)
from joku.discovery.wizard import run_setup
from joku.errors import (
    DeviceUnreachableError,
    DiscoveryError,
    MalformedResponseError,
    NoResponseError,
)
from joku.registry import Device

from conftest import APPS_XML, DEVICE_INFO_XML


def ssdp_reply(location: str, serial: str = "X004000AAAAA") -> bytes:
    return (
        "HTTP/1.1 200 OK\r\n"
        "Cache-Control: max-age=3600\r\n"
        "ST: roku:ecp\r\n"
        f"Location: {location}\r\n"
        f"USN: uuid:roku:ecp:{serial}\r\n"
        "\r\n"
    ).encode()


def _device_info(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, text=DEVICE_INFO_XML)


class TestParsing:
    def test_search_request(self):
        request = build_search_request().decode()
        assert request.startswith("M-SEARCH * HTTP/1.1\r\n")
        assert "HOST: 239.255.255.250:1900\r\n" in request
        assert 'MAN: "ssdp:discover"\r\n' in request
        assert "ST: roku:ecp\r\n" in request
        assert request.endswith("\r\n\r\n")

    def test_parse_reply(self):
        headers = parse_response(ssdp_reply("http://192.168.1.3:8060/"))
        assert headers["location"] == "http://192.168.1.3:8060/"
        assert headers["usn"] == "uuid:roku:ecp:X004000AAAAA"

    @pytest.mark.parametrize(
        "data",
        [
            b"",
            b"\xff\xfe",
            b"NOTIFY * HTTP/1.1\r\nLocation: http://10.0.0.2:8060/\r\n\r\n",
            b"HTTP/1.1 500 Oops\r\nLocation: http://10.0.0.2:8060/\r\n\r\n",
            b"HTTP/1.1 200 OK\r\nST: roku:ecp\r\n\r\n",
            b"HTTP/1.1 200 OK\r\nLocation: ftp://10.0.0.2/\r\n\r\n",
            b"HTTP/1.1 200 OK\r\nLocation: http://10.0.0.2:notaport/\r\n\r\n",
            b"HTTP/1.1 200 OK\r\nthis line has no colon\r\n\r\n",
        ],
    )
    def test_malformed_replies(self, data):
        with pytest.raises(MalformedResponseError):
            parse_response(data)

    def test_location_addr_default_port(self):
        assert location_addr("http://10.0.0.2/") == "10.0.0.2:8060"

    def test_fallback_name(self):
        assert fallback_name({"usn": "uuid:roku:ecp:P0A070000007"}, "h:8060") == "Roku P0A070000007"
        assert fallback_name({}, "h:8060") == "Roku at h:8060"

    def test_parse_device_name(self):
        assert parse_device_name(DEVICE_INFO_XML) == "Living Room"
        assert parse_device_name("<device-info><model-name>Roku Express</model-name></device-info>") == "Roku Express"
        assert parse_device_name("garbage<") is None


class TestDeviceScanner:
    async def test_no_replies(self):
        scanner = DeviceScanner(timeout=0.01)
        with patch.object(scanner, "_search", new=AsyncMock(return_value=[])):
            with pytest.raises(NoResponseError):
                await scanner.discover()

    async def test_all_replies_malformed(self):
        scanner = DeviceScanner(timeout=0.01)
        replies = [b"junk", b"HTTP/1.1 200 OK\r\n\r\n"]
        with patch.object(scanner, "_search", new=AsyncMock(return_value=replies)):
            with pytest.raises(MalformedResponseError):
                await scanner.discover()

    async def test_malformed_replies_are_skipped(self, recording_transport):
        transport, _ = recording_transport(_device_info)
        scanner = DeviceScanner(timeout=0.01, transport=transport)
        replies = [b"junk", ssdp_reply("http://192.168.1.3:8060/")]
        with patch.object(scanner, "_search", new=AsyncMock(return_value=replies)):
            devices = await scanner.discover()
        assert devices == [Device(name="Living Room", addr="192.168.1.3:8060")]

    async def test_candidates_in_arrival_order_without_duplicates(self, recording_transport):
        names = {"192.168.1.9": "Bedroom", "192.168.1.3": "Living Room"}

        def handler(request):
            name = names[request.url.host]
            return httpx.Response(
                200, text=f"<device-info><friendly-device-name>{name}</friendly-device-name></device-info>"
            )

        transport, seen = recording_transport(handler)
        scanner = DeviceScanner(timeout=0.01, transport=transport)
        replies = [
            ssdp_reply("http://192.168.1.9:8060/", "B"),
            ssdp_reply("http://192.168.1.3:8060/", "A"),
            ssdp_reply("http://192.168.1.9:8060/", "B"),
        ]
        with patch.object(scanner, "_search", new=AsyncMock(return_value=replies)):
            devices = await scanner.discover()
        assert [d.name for d in devices] == ["Bedroom", "Living Room"]
        assert len(seen) == 2
        assert all(r.url.path == "/query/device-info" for r in seen)

    async def test_name_lookup_failure_keeps_candidate(self, recording_transport):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        transport, _ = recording_transport(refuse)
        scanner = DeviceScanner(timeout=0.01, transport=transport)
        replies = [ssdp_reply("http://192.168.1.3:8060/", "YH00AB123456")]
        with patch.object(scanner, "_search", new=AsyncMock(return_value=replies)):
            devices = await scanner.discover()
        assert devices == [Device(name="Roku YH00AB123456", addr="192.168.1.3:8060")]

    async def test_lookup_disabled(self):
        scanner = DeviceScanner(timeout=0.01, lookup_names=False)
        replies = [ssdp_reply("http://192.168.1.3:8060/", "S1")]
        with patch.object(scanner, "_search", new=AsyncMock(return_value=replies)):
            devices = await scanner.discover()
        assert devices[0].name == "Roku S1"

    async def test_real_search_is_bounded(self):
        scanner = DeviceScanner(timeout=0.2, lookup_names=False)
        try:
            await asyncio.wait_for(scanner.discover(), timeout=5)
        except DiscoveryError:
            pass

    async def test_socket_setup_failure_closes_socket(self):
        sock = MagicMock()
        sock.bind.side_effect = PermissionError("multicast not permitted")
        scanner = DeviceScanner(timeout=0.01, lookup_names=False)
        with patch("joku.discovery.scanner.socket.socket", return_value=sock):
            with pytest.raises(DiscoveryError) as info:
                await scanner.discover()
        assert isinstance(info.value.__cause__, PermissionError)
        sock.close.assert_called_once()

    async def test_endpoint_failure_closes_socket(self):
        sock = MagicMock()
        scanner = DeviceScanner(timeout=0.01, lookup_names=False)
        loop = asyncio.get_running_loop()
        with patch("joku.discovery.scanner.socket.socket", return_value=sock), \
                patch.object(
                    loop, "create_datagram_endpoint", new=AsyncMock(side_effect=OSError("no route"))
                ):
            with pytest.raises(DiscoveryError):
                await scanner.discover()
        sock.close.assert_called_once()


class _FakeScanner:
    def __init__(self, devices):
        self.devices = devices

    async def discover(self):
        return list(self.devices)


class TestRunSetup:
    async def test_single_device_saved_with_apps(self, registry, device, recording_transport):
        transport, _ = recording_transport(lambda req: httpx.Response(200, text=APPS_XML))
        async with ECPClient(transport=transport) as client:
            store = await run_setup(registry, client, _FakeScanner([device]))
        assert store.device == device
        assert registry.load() == store
        assert len(store.apps) == 4

    async def test_multiple_devices_use_chooser(self, registry, recording_transport):
        transport, _ = recording_transport(lambda req: httpx.Response(200, text="<apps/>"))
        first = Device(name="Bedroom", addr="192.168.1.9:8060")
        second = Device(name="Living Room", addr="192.168.1.3:8060")
        async with ECPClient(transport=transport) as client:
            store = await run_setup(
                registry,
                client,
                _FakeScanner([first, second]),
                choose=lambda candidates: candidates[1],
            )
        assert store.device == second

    async def test_non_interactive_takes_first(self, registry, recording_transport):
        transport, _ = recording_transport(lambda req: httpx.Response(200, text="<apps/>"))
        first = Device(name="Bedroom", addr="192.168.1.9:8060")
        second = Device(name="Living Room", addr="192.168.1.3:8060")

        def never(candidates):
            raise AssertionError("prompted in non-interactive mode")

        async with ECPClient(transport=transport) as client:
            store = await run_setup(
                registry, client, _FakeScanner([first, second]), non_interactive=True, choose=never
            )
        assert store.device == first

    async def test_prompt_selection(self, registry, monkeypatch, recording_transport):
        transport, _ = recording_transport(lambda req: httpx.Response(200, text="<apps/>"))
        answers = iter(["7", "2"])
        monkeypatch.setattr("builtins.input", lambda prompt: next(answers))
        first = Device(name="Bedroom", addr="192.168.1.9:8060")
        second = Device(name="Living Room", addr="192.168.1.3:8060")
        async with ECPClient(transport=transport) as client:
            store = await run_setup(registry, client, _FakeScanner([first, second]))
        assert store.device == second

    async def test_prompt_end_of_input_saves_nothing(self, registry, monkeypatch):
        def closed(prompt):
            raise EOFError

        monkeypatch.setattr("builtins.input", closed)
        first = Device(name="Bedroom", addr="192.168.1.9:8060")
        second = Device(name="Living Room", addr="192.168.1.3:8060")
        async with ECPClient() as client:
            with pytest.raises(DiscoveryError):
                await run_setup(registry, client, _FakeScanner([first, second]))
        assert not registry.path.exists()

    async def test_failed_app_fetch_saves_nothing(self, registry, device, recording_transport):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        transport, _ = recording_transport(refuse)
        async with ECPClient(transport=transport) as client:
            with pytest.raises(DeviceUnreachableError):
                await run_setup(registry, client, _FakeScanner([device]))
        assert not registry.path.exists()

    async def test_discovery_error_propagates(self, registry):
        scanner = DeviceScanner(timeout=0.01)
        with patch.object(scanner, "_search", new=AsyncMock(return_value=[])):
            async with ECPClient() as client:
                with pytest.raises(NoResponseError):
                    await run_setup(registry, client, scanner)
        assert not registry.path.exists()
