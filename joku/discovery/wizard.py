"""Setup wizard: discovers a Roku, lets the user pick one and saves it."""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from joku.client import ECPClient
from joku.discovery.scanner import DeviceScanner
from joku.errors import DiscoveryError
from joku.registry import ConfigurationStore, Device, DeviceRegistry

logger = logging.getLogger(__name__)

Chooser = Callable[[Sequence[Device]], Device]

# ─── CLI helpers ────────────────────────────────────────────────────────────


def _print(msg: str = "") -> None:
    print(msg, flush=True)


def _input(prompt: str) -> str:
    return input(prompt).strip()


def prompt_for_device(candidates: Sequence[Device]) -> Device:
    """Ask the user to pick one of several devices (Enter picks the first).

    Raises:
        DiscoveryError: Input ended before a device was chosen.
    """
    _print("\nMore than one Roku answered:")
    for index, device in enumerate(candidates, start=1):
        _print(f"  [{index}] {device}")
    while True:
        try:
            raw = _input(f"Use which device? [1-{len(candidates)}, default 1] ")
        except EOFError as exc:
            raise DiscoveryError(
                "Input ended before a device was chosen; "
                "re-run with --non-interactive to take the first one"
            ) from exc
        if not raw:
            return candidates[0]
        if raw.isdigit() and 1 <= int(raw) <= len(candidates):
            return candidates[int(raw) - 1]
        _print(f"  Please enter a number between 1 and {len(candidates)}.")


# ─── Wizard ─────────────────────────────────────────────────────────────────


async def run_setup(
    registry: DeviceRegistry,
    client: ECPClient,
    scanner: DeviceScanner,
    non_interactive: bool = False,
    choose: Chooser | None = None,
) -> ConfigurationStore:
    """Discover devices, pick one, fetch its apps and save the configuration.

    Steps:
      1. Multicast discovery via :class:`DeviceScanner`.
      2. Pick a device; *choose* is only consulted when several answered.
      3. Fetch the installed apps from the chosen device.
      4. Save device + apps in one atomic write.

    Nothing is written unless every step succeeds.

    Args:
        registry:        Where the configuration is saved.
        client:          ECP client for the app listing.
        scanner:         Discovery agent.
        non_interactive: Take the first device without prompting.
        choose:          Override the interactive prompt.

    Returns:
        The saved :class:`ConfigurationStore`.
    """
    _print("Searching the local network for Roku devices…")
    candidates = await scanner.discover()

    if len(candidates) == 1 or non_interactive:
        device = candidates[0]
    else:
        device = (choose or prompt_for_device)(candidates)
    _print(f"  ✓ Using {device}")

    apps = await registry.refresh_apps(device, client)
    store = ConfigurationStore(device=device, apps=tuple(apps))
    registry.save(store)
    _print(f"  ✓ Saved {len(apps)} app(s) to {registry.path}")
    return store
