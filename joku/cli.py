"""Command-line surface for joku.

Usage::

    joku discover [--non-interactive] [--timeout SECONDS]
    joku device-info
    joku list-apps [--cached]
    joku launch <app> [--content-id ID] [--media-type TYPE]
    joku search <keyword> [--type T] [--title T] [--season N] [--launch] ...
    joku up|down|left|right|select|back|home|play|pause|mute|volume-up|volume-down|power-off
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import xml.etree.ElementTree as ET
from typing import Any, Sequence

from joku import __version__
from joku.client import ECPClient
from joku.commands import KEYPRESS_KEYS, CommandName, encode
from joku.config import Settings
from joku.discovery import DeviceScanner, run_setup
from joku.errors import ECPProtocolError, JokuError
from joku.registry import DeviceRegistry
from joku.resolver import AppResolver

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="joku",
        description="Control a Roku from the terminal over the External Control Protocol",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        metavar="PATH",
        default=None,
        help="Configuration file (default: JOKU_CONFIG or ~/.config/joku/config.toml)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Per-request timeout (default: JOKU_HTTP_TIMEOUT or 3)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", metavar="COMMAND", required=True)

    discover = sub.add_parser("discover", help="Find a Roku on the network and save it")
    discover.add_argument(
        "--non-interactive",
        action="store_true",
        help="Use the first device that answers without prompting",
    )
    discover.add_argument(
        "--timeout",
        dest="discovery_timeout",
        type=float,
        default=None,
        metavar="SECONDS",
        help="How long to collect replies (default: JOKU_DISCOVERY_TIMEOUT or 3)",
    )

    sub.add_parser("device-info", help="Show the device's info fields")

    list_apps = sub.add_parser("list-apps", help="Refresh and show installed apps")
    list_apps.add_argument(
        "--cached", action="store_true", help="Show the saved list without asking the device"
    )

    launch = sub.add_parser("launch", help="Launch an installed app by name or id")
    launch.add_argument("app", help="App name (case-insensitive) or id")
    launch.add_argument("--content-id", default=None, help="Deep-link content id or YouTube URL")
    launch.add_argument("--media-type", default=None, help="Deep-link media type")

    search = sub.add_parser("search", help="Search for content across channels")
    search.add_argument("keyword", help="Text to search for")
    search.add_argument("--type", default=None, help="movie, tv-show, person, channel or game")
    search.add_argument("--title", default=None, help="Exact title to match")
    search.add_argument("--season", default=None, help="Season number for tv-show searches")
    search.add_argument("--tmsid", default=None, help="TMS id of the content")
    search.add_argument("--provider", default=None, help="Provider name(s) to prefer")
    search.add_argument("--provider-id", default=None, help="Provider channel id(s) to prefer")
    search.add_argument(
        "--launch",
        action="store_true",
        default=None,
        help="Launch the content on an exact match (unreliable on many devices)",
    )
    search.add_argument("--match-any", action="store_true", default=None)
    search.add_argument("--show-unavailable", action="store_true", default=None)

    for command in KEYPRESS_KEYS:
        sub.add_parser(command.value, help=f"Press {KEYPRESS_KEYS[command]}")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = Settings.from_env(
            config_path=args.config,
            http_timeout=args.timeout,
            discovery_timeout=getattr(args, "discovery_timeout", None),
        )
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_USAGE

    logging.basicConfig(
        level=logging.DEBUG if args.debug else settings.log_level,
        format="%(levelname)s: %(message)s",
    )

    try:
        return asyncio.run(run_command(args, settings))
    except JokuError as exc:
        print(f"error [{exc.kind}]: {exc}", file=sys.stderr)
        if exc.hint:
            print(f"  {exc.hint}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("\ncancelled", file=sys.stderr)
        return EXIT_INTERRUPTED


async def run_command(args: argparse.Namespace, settings: Settings) -> int:
    """Execute one parsed command; :class:`JokuError` propagates to :func:`main`."""
    registry = DeviceRegistry(settings.config_path)

    async with ECPClient(timeout=settings.http_timeout) as client:
        if args.command == "discover":
            scanner = DeviceScanner(timeout=settings.discovery_timeout)
            await run_setup(registry, client, scanner, non_interactive=args.non_interactive)
            return EXIT_OK

        command = CommandName(args.command)
        store = registry.load()
        device = store.device

        if command is CommandName.DEVICE_INFO:
            response = await client.execute(encode(command), device)
            for key, value in parse_device_info(response.text):
                print(f"{key}: {value}")
        elif command is CommandName.LIST_APPS:
            if not args.cached:
                apps = await registry.refresh_apps(device, client)
                store = store.with_apps(apps)
                registry.save(store)
            for app in store.apps:
                print(f"{app.id:>8}  {app.type:<6} {app.version:<12} {app.name}")
        elif command is CommandName.LAUNCH:
            resolver = AppResolver(store, registry, client)
            app = await resolver.resolve(args.app)
            request = encode(
                command,
                {"app": app, "content_id": args.content_id, "media_type": args.media_type},
            )
            await client.execute(request, device)
            print(f"Launched {app.name}")
        elif command is CommandName.SEARCH:
            await client.execute(encode(command, search_options(args)), device)
        else:
            await client.execute(encode(command), device)
    logger.info("%s sent to %s", command.value, device)
    return EXIT_OK


def search_options(args: argparse.Namespace) -> dict[str, Any]:
    options = {
        "keyword": args.keyword,
        "type": args.type,
        "title": args.title,
        "season": args.season,
        "tmsid": args.tmsid,
        "provider": args.provider,
        "provider_id": args.provider_id,
        "launch": args.launch,
        "match_any": args.match_any,
        "show_unavailable": args.show_unavailable,
    }
    return {key: value for key, value in options.items() if value is not None}


def parse_device_info(xml_text: str) -> list[tuple[str, str]]:
    """Flatten a ``<device-info>`` document into ``(tag, text)`` pairs."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise ECPProtocolError(200, f"Unparseable device-info from device: {exc}") from exc
    return [(child.tag, (child.text or "").strip()) for child in root]
