"""pytest configuration and shared fixtures for joku tests."""

from __future__ import annotations

from typing import Callable

import httpx
import pytest

from joku.registry import Application, ConfigurationStore, Device, DeviceRegistry

APPS_XML = """<?xml version="1.0" encoding="UTF-8" ?>
<apps>
  <app id="31012" type="menu" version="1.0.0">FandangoNOW Movies &amp; TV</app>
  <app id="12" type="appl" version="4.1.218">Netflix</app>
  <app id="837" type="appl" version="1.0.80000286">YouTube</app>
  <app id="551012" type="appl" version="1.4.12">Apple TV</app>
</apps>
"""

DEVICE_INFO_XML = """<?xml version="1.0" encoding="UTF-8" ?>
<device-info>
  <udn>29380001-0800-1024-8053-d4e22f6e0dd3</udn>
  <serial-number>X004000AAAAA</serial-number>
  <model-name>Roku Ultra</model-name>
  <friendly-device-name>Living Room</friendly-device-name>
  <user-device-name>Living Room</user-device-name>
</device-info>
"""


@pytest.fixture
def device() -> Device:
    return Device(name="Living Room", addr="192.168.1.3:8060")


@pytest.fixture
def apps() -> tuple[Application, ...]:
    return (
        Application(id="12", type="appl", version="4.1.218", name="Netflix"),
        Application(id="837", type="appl", version="1.0.80000286", name="YouTube"),
        Application(id="551012", type="appl", version="1.4.12", name="Apple TV"),
        Application(id="2285", type="appl", version="6.2.1", name="Roku TV"),
    )


@pytest.fixture
def store(device, apps) -> ConfigurationStore:
    return ConfigurationStore(device=device, apps=apps)


@pytest.fixture
def registry(tmp_path) -> DeviceRegistry:
    return DeviceRegistry(tmp_path / "joku" / "config.toml")


@pytest.fixture
def recording_transport() -> Callable[..., tuple[httpx.MockTransport, list[httpx.Request]]]:
    """Build a MockTransport that records every request it sees.

    The handler may return an :class:`httpx.Response` or raise an httpx error.
    """

    def factory(handler: Callable[[httpx.Request], httpx.Response]):
        seen: list[httpx.Request] = []

        def _handle(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return handler(request)

        return httpx.MockTransport(_handle), seen

    return factory
