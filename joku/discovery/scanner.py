"""SSDP scanner: finds Roku devices on the local network.

Sends one ``M-SEARCH`` for ``ST: roku:ecp`` to the SSDP multicast group,
collects every reply that arrives inside a fixed window, then asks each
responding device for its friendly name via ``GET /query/device-info``.

No prior knowledge of the device address is needed; the window is bounded
so discovery never blocks indefinitely.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import xml.etree.ElementTree as ET
from urllib.parse import urlparse

import httpx

from joku.config import DEFAULT_DISCOVERY_TIMEOUT
from joku.errors import DiscoveryError, MalformedResponseError, NoResponseError
from joku.registry import ECP_PORT, Device

logger = logging.getLogger(__name__)

SSDP_GROUP = ("239.255.255.250", 1900)
ROKU_SEARCH_TARGET = "roku:ecp"

# device-info elements tried in order for a display name.
NAME_FIELDS = ("friendly-device-name", "user-device-name", "model-name")


def build_search_request(search_target: str = ROKU_SEARCH_TARGET, mx: int = 1) -> bytes:
    return (
        "M-SEARCH * HTTP/1.1\r\n"
        f"HOST: {SSDP_GROUP[0]}:{SSDP_GROUP[1]}\r\n"
        'MAN: "ssdp:discover"\r\n'
        f"MX: {mx}\r\n"
        f"ST: {search_target}\r\n"
        "\r\n"
    ).encode("ascii")


def parse_response(data: bytes) -> dict[str, str]:
    """Parse an SSDP reply into a header dict with lower-cased keys.

    Raises:
        MalformedResponseError: Not an ``HTTP/1.x 200`` reply with a usable LOCATION.
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedResponseError(f"Reply is not UTF-8: {exc}") from exc

    lines = text.replace("\r\n", "\n").split("\n")
    status = lines[0].split() if lines else []
    if len(status) < 2 or not status[0].upper().startswith("HTTP/") or status[1] != "200":
        raise MalformedResponseError(f"Unexpected status line: {lines[0]!r}")

    headers: dict[str, str] = {}
    for line in lines[1:]:
        if not line.strip():
            continue
        key, sep, value = line.partition(":")
        if not sep:
            raise MalformedResponseError(f"Bad header line: {line!r}")
        headers[key.strip().lower()] = value.strip()

    if "location" not in headers:
        raise MalformedResponseError("Reply has no LOCATION header")
    location_addr(headers["location"])
    return headers


def location_addr(location: str) -> str:
    """``http://192.168.1.3:8060/`` -> ``192.168.1.3:8060``."""
    url = urlparse(location)
    if url.scheme not in ("http", "https") or not url.hostname:
        raise MalformedResponseError(f"Unusable LOCATION: {location!r}")
    try:
        port = url.port or ECP_PORT
    except ValueError as exc:
        raise MalformedResponseError(f"Unusable LOCATION: {location!r}") from exc
    host = f"[{url.hostname}]" if ":" in url.hostname else url.hostname
    return f"{host}:{port}"


def fallback_name(headers: dict[str, str], addr: str) -> str:
    """Serial number from ``USN: uuid:roku:ecp:<serial>``, else a generic label."""
    usn = headers.get("usn", "")
    serial = usn.rsplit(":", 1)[-1] if usn else ""
    return f"Roku {serial}" if serial else f"Roku at {addr}"


def parse_device_name(xml_text: str) -> str | None:
    """Return the first non-empty name field of a device-info document."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError:
        return None
    for tag in NAME_FIELDS:
        value = root.findtext(tag)
        if value and value.strip():
            return value.strip()
    return None


class _Collector(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        self.replies: list[bytes] = []

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        logger.debug("SSDP reply from %s:%d (%d bytes)", addr[0], addr[1], len(data))
        self.replies.append(data)

    def error_received(self, exc: Exception) -> None:
        logger.debug("SSDP socket error: %s", exc)


class DeviceScanner:
    """Multicast discovery of Roku devices.

    Args:
        timeout:       Collection window in seconds.
        search_target: SSDP ``ST`` value.
        lookup_names:  Query ``/query/device-info`` for each device's name.
        transport:     Optional httpx transport for the name lookups.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
        search_target: str = ROKU_SEARCH_TARGET,
        lookup_names: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.search_target = search_target
        self.lookup_names = lookup_names
        self._transport = transport

    # ------------------------------------------------------------------ #
    # Public API                                                           #
    # ------------------------------------------------------------------ #

    async def discover(self) -> list[Device]:
        """Return every Roku that answered, de-duplicated, in arrival order.

        Malformed replies are skipped.

        Raises:
            NoResponseError:        Nothing answered within the window.
            MalformedResponseError: Replies arrived but none was usable.
        """
        replies = await self._search()
        if not replies:
            raise NoResponseError(f"No SSDP replies within {self.timeout}s")

        found: dict[str, dict[str, str]] = {}
        malformed = 0
        for data in replies:
            try:
                headers = parse_response(data)
            except MalformedResponseError as exc:
                malformed += 1
                logger.debug("Skipping malformed SSDP reply: %s", exc)
                continue
            found.setdefault(location_addr(headers["location"]), headers)

        if not found:
            raise MalformedResponseError(
                f"{malformed} SSDP repl{'y' if malformed == 1 else 'ies'}, none usable"
            )

        names = await self._lookup_names(list(found))
        devices = [
            Device(name=names.get(addr) or fallback_name(headers, addr), addr=addr)
            for addr, headers in found.items()
        ]
        logger.info(
            "Discovery found %d device(s), skipped %d malformed repl(ies)",
            len(devices),
            malformed,
        )
        return devices

    # ------------------------------------------------------------------ #
    # Internal helpers                                                     #
    # ------------------------------------------------------------------ #

    async def _search(self) -> list[bytes]:
        """Send one M-SEARCH and collect raw replies until the window closes."""
        loop = asyncio.get_running_loop()
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        except OSError as exc:
            raise DiscoveryError(f"Cannot open a UDP socket for discovery: {exc}") from exc
        try:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 2)
            sock.bind(("", 0))
            transport, protocol = await loop.create_datagram_endpoint(_Collector, sock=sock)
        except BaseException as exc:
            # The transport owns the socket only once the endpoint exists.
            sock.close()
            if isinstance(exc, OSError):
                raise DiscoveryError(f"Cannot set up multicast discovery: {exc}") from exc
            raise
        try:
            transport.sendto(build_search_request(self.search_target), SSDP_GROUP)
            logger.debug("M-SEARCH sent for %s, waiting %.1fs", self.search_target, self.timeout)
            await asyncio.sleep(self.timeout)
        finally:
            transport.close()
        return list(protocol.replies)

    async def _lookup_names(self, addrs: list[str]) -> dict[str, str]:
        if not self.lookup_names or not addrs:
            return {}
        async with httpx.AsyncClient(
            timeout=min(self.timeout, 2.0), transport=self._transport
        ) as client:
            results = await asyncio.gather(*(self._lookup_name(client, a) for a in addrs))
        return {addr: name for addr, name in zip(addrs, results) if name}

    @staticmethod
    async def _lookup_name(client: httpx.AsyncClient, addr: str) -> str | None:
        """Friendly name from device-info, or ``None`` if the device won't say."""
        url = f"http://{addr}/query/device-info"
        try:
            resp = await client.get(url)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.debug("device-info lookup failed for %s: %s", addr, exc)
            return None
        return parse_device_name(resp.text)
