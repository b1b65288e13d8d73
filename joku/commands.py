"""Command encoder: maps the fixed command vocabulary to ECP requests.

Usage::

    from joku.commands import CommandName, encode

    encode(CommandName.UP)
    # CommandRequest(command=<CommandName.UP: 'up'>, method='POST', path='keypress/Up', params=())

    encode(CommandName.SEARCH, {"keyword": "the office", "type": "tv-show"})

See https://developer.roku.com/docs/developer-program/dev-tools/external-control-api.md
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping
from urllib.parse import parse_qs, quote, urlencode, urlparse

from joku.errors import EncodingError, UnrecognizedOptionError, UnresolvedReferenceError


class CommandName(str, Enum):
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"
    SELECT = "select"
    BACK = "back"
    HOME = "home"
    PLAY = "play"
    PAUSE = "pause"
    MUTE = "mute"
    VOLUME_UP = "volume-up"
    VOLUME_DOWN = "volume-down"
    POWER_OFF = "power-off"
    DEVICE_INFO = "device-info"
    LIST_APPS = "list-apps"
    LAUNCH = "launch"
    SEARCH = "search"


# ECP key names for every /keypress command.
KEYPRESS_KEYS: dict[CommandName, str] = {
    CommandName.UP: "Up",
    CommandName.DOWN: "Down",
    CommandName.LEFT: "Left",
    CommandName.RIGHT: "Right",
    CommandName.SELECT: "Select",
    CommandName.BACK: "Back",
    CommandName.HOME: "Home",
    CommandName.PLAY: "Play",
    CommandName.PAUSE: "Pause",
    CommandName.MUTE: "VolumeMute",
    CommandName.VOLUME_UP: "VolumeUp",
    CommandName.VOLUME_DOWN: "VolumeDown",
    CommandName.POWER_OFF: "PowerOff",
}

QUERY_PATHS: dict[CommandName, str] = {
    CommandName.DEVICE_INFO: "query/device-info",
    CommandName.LIST_APPS: "query/apps",
}

# Commands that may be sent a second time after a connection-level failure.
# Launch, power-off and search change device state in ways a duplicate
# would make worse, so they are absent.
IDEMPOTENT_COMMANDS: frozenset[CommandName] = frozenset(
    {
        CommandName.UP,
        CommandName.DOWN,
        CommandName.LEFT,
        CommandName.RIGHT,
        CommandName.SELECT,
        CommandName.BACK,
        CommandName.HOME,
        CommandName.PLAY,
        CommandName.PAUSE,
        CommandName.MUTE,
        CommandName.VOLUME_UP,
        CommandName.VOLUME_DOWN,
        CommandName.DEVICE_INFO,
        CommandName.LIST_APPS,
    }
)

# Search parameters in the order they are emitted.
SEARCH_OPTIONS: tuple[str, ...] = (
    "keyword",
    "title",
    "type",
    "tmsid",
    "season",
    "show-unavailable",
    "match-any",
    "provider-id",
    "provider",
    "launch",
)

LAUNCH_OPTIONS: tuple[str, ...] = ("app", "app-id", "app-type", "content-id", "media-type")


def is_idempotent(command: CommandName) -> bool:
    """Return ``True`` if *command* is safe to retry once."""
    return command in IDEMPOTENT_COMMANDS


@dataclass(frozen=True)
class CommandRequest:
    """A ready-to-send ECP request; ``path`` is relative to the device root."""

    command: CommandName
    method: str
    path: str
    params: tuple[tuple[str, str], ...] = ()

    @property
    def idempotent(self) -> bool:
        return is_idempotent(self.command)

    @property
    def target(self) -> str:
        """Path plus query string, as sent on the wire."""
        if not self.params:
            return self.path
        return f"{self.path}?{urlencode(self.params)}"


def encode(
    name: CommandName | str,
    params: Mapping[str, Any] | None = None,
) -> CommandRequest:
    """Build the :class:`CommandRequest` for *name*.

    Pure: the same name and parameters always give an equal request.

    Raises:
        ValueError:               *name* is not part of the vocabulary.
        UnresolvedReferenceError: ``launch`` was given a bare app name.
        UnrecognizedOptionError:  An option key is not understood by the command.
        EncodingError:            A required parameter is missing.
    """
    command = CommandName(name)
    options = _normalize_keys(params or {})

    if command in KEYPRESS_KEYS:
        _reject_unknown(options, ())
        return CommandRequest(command, "POST", f"keypress/{KEYPRESS_KEYS[command]}")
    if command in QUERY_PATHS:
        _reject_unknown(options, ())
        return CommandRequest(command, "GET", QUERY_PATHS[command])
    if command is CommandName.LAUNCH:
        return _encode_launch(options)
    if command is CommandName.SEARCH:
        return _encode_search(options)
    raise AssertionError(f"Unhandled command: {command!r}")


# ------------------------------------------------------------------ #
# Internal helpers                                                     #
# ------------------------------------------------------------------ #


def _normalize_keys(params: Mapping[str, Any]) -> dict[str, Any]:
    return {key.replace("_", "-").lower(): value for key, value in params.items()}


def _reject_unknown(options: Mapping[str, Any], allowed: tuple[str, ...]) -> None:
    unknown = [key for key in options if key not in allowed]
    if unknown:
        raise UnrecognizedOptionError(unknown, allowed)


def _encode_launch(options: dict[str, Any]) -> CommandRequest:
    _reject_unknown(options, LAUNCH_OPTIONS)

    app = options.get("app")
    app_id = options.get("app-id")
    app_type = options.get("app-type")
    if app is not None:
        if isinstance(app, str):
            raise UnresolvedReferenceError(
                f"'{app}' is an app name; resolve it to an installed app first"
            )
        app_id = getattr(app, "id", None)
        app_type = getattr(app, "type", None)
    if not app_id or not app_type:
        raise UnresolvedReferenceError("Launch requires both an app id and an app type")

    params: list[tuple[str, str]] = []
    content_id = options.get("content-id")
    if content_id:
        params.append(("contentId", _content_id(str(content_id))))
    media_type = options.get("media-type")
    if media_type:
        params.append(("mediaType", str(media_type)))
    return CommandRequest(
        CommandName.LAUNCH, "POST", f"launch/{quote(str(app_id), safe='')}", tuple(params)
    )


def _content_id(raw: str) -> str:
    """Pull the video id out of YouTube links; pass anything else through."""
    url = urlparse(raw)
    host = (url.hostname or "").lower()
    if host == "youtu.be":
        return url.path.lstrip("/") or raw
    if host.endswith("youtube.com"):
        video = parse_qs(url.query).get("v")
        if video:
            return video[0]
    return raw


def _encode_search(options: dict[str, Any]) -> CommandRequest:
    if "query" in options:
        if "keyword" in options:
            raise EncodingError("Pass the search text as either 'query' or 'keyword', not both")
        options["keyword"] = options.pop("query")
    _reject_unknown(options, SEARCH_OPTIONS + ("query",))

    keyword = options.get("keyword")
    if keyword is None or not str(keyword).strip():
        raise EncodingError("Search needs a keyword")

    params: list[tuple[str, str]] = []
    for key in SEARCH_OPTIONS:
        value = options.get(key)
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        params.append((key, str(value)))
    return CommandRequest(CommandName.SEARCH, "GET", "search/browse", tuple(params))
