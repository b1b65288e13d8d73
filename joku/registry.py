"""Device registry: persists the active Roku device and its installed apps.

The configuration file is TOML::

    [device]
    name = "Living Room"
    addr = "192.168.1.3:8060"

    [[apps]]
    id = "12"
    type = "appl"
    version = "4.1.218"
    name = "Netflix"

It is always rewritten as a whole, through a temp file in the same directory
followed by :func:`os.replace`, so an interrupted save leaves the previous
file untouched.
"""

from __future__ import annotations

import logging
import os
import tempfile
import tomllib
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import tomli_w

from joku.commands import CommandName, encode
from joku.errors import (
    ConfigCorruptError,
    ConfigIOError,
    ConfigNotFoundError,
    ECPProtocolError,
)

if TYPE_CHECKING:
    from joku.client import ECPClient

logger = logging.getLogger(__name__)

ECP_PORT = 8060


def split_addr(addr: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``) and validate the port."""
    host, sep, port_text = addr.strip().rpartition(":")
    if not sep or not host or not port_text.isdigit():
        raise ValueError(f"Address must be host:port, got {addr!r}")
    port = int(port_text)
    if not 0 < port < 65536:
        raise ValueError(f"Port out of range in {addr!r}")
    return host, port


@dataclass(frozen=True)
class Device:
    """The Roku a command is sent to."""

    name: str
    addr: str

    def __post_init__(self) -> None:
        split_addr(self.addr)

    @property
    def base_url(self) -> str:
        return f"http://{self.addr}/"

    def __str__(self) -> str:
        return f"{self.name} ({self.addr})"


@dataclass(frozen=True)
class Application:
    """An installed app as reported by ``GET /query/apps``."""

    id: str
    type: str
    version: str
    name: str


@dataclass(frozen=True)
class ConfigurationStore:
    """One device plus its ordered application list."""

    device: Device
    apps: tuple[Application, ...] = field(default_factory=tuple)

    def with_apps(self, apps: list[Application] | tuple[Application, ...]) -> ConfigurationStore:
        return ConfigurationStore(device=self.device, apps=tuple(apps))

    def to_dict(self) -> dict[str, Any]:
        return {
            "device": {"name": self.device.name, "addr": self.device.addr},
            "apps": [
                {"id": a.id, "type": a.type, "version": a.version, "name": a.name}
                for a in self.apps
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConfigurationStore:
        """Validate a parsed TOML document.

        Raises:
            ConfigCorruptError: The document does not have the expected shape.
        """
        device_table = data.get("device")
        if not isinstance(device_table, dict):
            raise ConfigCorruptError("Missing [device] table")
        name = device_table.get("name")
        addr = device_table.get("addr")
        if not isinstance(name, str) or not isinstance(addr, str):
            raise ConfigCorruptError("[device] needs string 'name' and 'addr'")
        try:
            device = Device(name=name, addr=addr)
        except ValueError as exc:
            raise ConfigCorruptError(str(exc)) from exc

        raw_apps = data.get("apps", [])
        if not isinstance(raw_apps, list):
            raise ConfigCorruptError("'apps' must be an array of tables")
        apps: list[Application] = []
        for index, entry in enumerate(raw_apps):
            if not isinstance(entry, dict):
                raise ConfigCorruptError(f"apps[{index}] is not a table")
            values = {key: entry.get(key, "") for key in ("id", "type", "version", "name")}
            if not all(isinstance(v, str) for v in values.values()):
                raise ConfigCorruptError(f"apps[{index}] fields must be strings")
            # Devices may report an app with no display name; only id is required.
            if not values["id"]:
                raise ConfigCorruptError(f"apps[{index}] needs an 'id'")
            apps.append(Application(**values))
        return cls(device=device, apps=tuple(apps))


def parse_apps(xml_text: str) -> list[Application]:
    """Parse the ``/query/apps`` XML body, keeping document order.

    Raises:
        ECPProtocolError: The body is not the expected ``<apps>`` document.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise ECPProtocolError(200, f"Unparseable app list from device: {exc}") from exc
    if root.tag != "apps":
        raise ECPProtocolError(200, f"Unexpected app list root element <{root.tag}>")

    apps: list[Application] = []
    for el in root.findall("app"):
        app_id = el.get("id")
        if not app_id:
            logger.debug("Skipping <app> without id: %r", ET.tostring(el))
            continue
        apps.append(
            Application(
                id=app_id,
                type=el.get("type", ""),
                version=el.get("version", ""),
                name=(el.text or "").strip(),
            )
        )
    return apps


class DeviceRegistry:
    """Load/save the configuration file and refresh its app list.

    Args:
        path: Location of ``config.toml``.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> ConfigurationStore:
        """Read the configuration file.

        Raises:
            ConfigNotFoundError: No file yet; the caller should run setup.
            ConfigCorruptError:  The file exists but is not valid.
            ConfigIOError:       The file could not be read.
        """
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            raise ConfigNotFoundError(f"No configuration at {self.path}") from None
        except OSError as exc:
            raise ConfigIOError(f"Cannot read {self.path}: {exc}") from exc

        try:
            data = tomllib.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
            raise ConfigCorruptError(f"{self.path} is not valid TOML: {exc}") from exc
        store = ConfigurationStore.from_dict(data)
        logger.debug("Loaded %s with %d app(s)", store.device, len(store.apps))
        return store

    def save(self, store: ConfigurationStore) -> None:
        """Atomically replace the configuration file with *store*.

        Raises:
            ConfigIOError: The file could not be written.  The previous file,
                if any, is left as it was.
        """
        payload = store.to_dict()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
        except OSError as exc:
            raise ConfigIOError(f"Cannot write {self.path}: {exc}") from exc

        try:
            with os.fdopen(fd, "wb") as fh:
                tomli_w.dump(payload, fh)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except BaseException as exc:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            if isinstance(exc, OSError):
                raise ConfigIOError(f"Cannot write {self.path}: {exc}") from exc
            raise
        logger.info("Saved %s with %d app(s) to %s", store.device, len(store.apps), self.path)

    async def refresh_apps(self, device: Device, client: ECPClient) -> list[Application]:
        """Fetch the installed apps from *device*.

        Nothing is written here; the caller decides whether to persist the
        result (``save(store.with_apps(apps))``) or fall back to the cache.
        ECP errors propagate unchanged.
        """
        response = await client.execute(encode(CommandName.LIST_APPS), device)
        apps = parse_apps(response.text)
        logger.info("Device %s reports %d app(s)", device, len(apps))
        return apps
