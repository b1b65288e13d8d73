"""Error taxonomy for joku.

Every failure the core can produce is a :class:`JokuError`.  Each family
(discovery, registry, encoding, ECP, resolution) has its own base class so
callers can catch as broadly or as narrowly as they need, and every leaf
carries a stable ``kind`` string plus a user-facing ``hint``.
"""

from __future__ import annotations

from typing import Any, Sequence


class JokuError(Exception):
    """Base error for everything raised by the joku core."""

    kind: str = "JokuError"
    hint: str = ""


# ------------------------------------------------------------------ #
# Discovery                                                            #
# ------------------------------------------------------------------ #


class DiscoveryError(JokuError):
    """Raised when no usable Roku device could be located."""

    kind = "DiscoveryError"


class NoResponseError(DiscoveryError):
    kind = "DiscoveryError.NoResponse"
    hint = "No Roku device found on the network. Check that it is on and on the same Wi-Fi."


class MalformedResponseError(DiscoveryError):
    kind = "DiscoveryError.MalformedResponse"
    hint = "Devices answered discovery but none of the replies could be understood."


# ------------------------------------------------------------------ #
# Registry                                                             #
# ------------------------------------------------------------------ #


class RegistryError(JokuError):
    """Raised when the persisted configuration cannot be read or written."""

    kind = "RegistryError"


class ConfigNotFoundError(RegistryError):
    kind = "RegistryError.NotFound"
    hint = "No device configured yet. Run `joku discover` first."


class ConfigCorruptError(RegistryError):
    kind = "RegistryError.Corrupt"
    hint = "The configuration file is unreadable. Re-run `joku discover` to rebuild it."


class ConfigIOError(RegistryError):
    kind = "RegistryError.IOFailure"
    hint = "Check permissions and free space for the configuration directory."


# ------------------------------------------------------------------ #
# Encoding                                                             #
# ------------------------------------------------------------------ #


class EncodingError(JokuError):
    """Raised when a command cannot be turned into an ECP request."""

    kind = "EncodingError"


class UnresolvedReferenceError(EncodingError):
    kind = "EncodingError.UnresolvedReference"
    hint = "Launch needs an installed app (id and type), not a bare name."


class UnrecognizedOptionError(EncodingError):
    kind = "EncodingError.UnrecognizedOption"
    hint = "Check the spelling of the option names passed to the command."

    def __init__(self, options: Sequence[str], allowed: Sequence[str]) -> None:
        self.options = list(options)
        self.allowed = list(allowed)
        super().__init__(
            f"Unrecognized option(s): {', '.join(self.options)}. "
            f"Allowed: {', '.join(self.allowed)}"
        )


# ------------------------------------------------------------------ #
# ECP transport                                                        #
# ------------------------------------------------------------------ #


class ECPError(JokuError):
    """Raised when a request to the device fails."""

    kind = "ECPError"


class DeviceUnreachableError(ECPError):
    kind = "ECPError.Unreachable"
    hint = "The Roku did not answer. It may be off or its address may have changed (`joku discover`)."


class ECPProtocolError(ECPError):
    kind = "ECPError.ProtocolError"

    def __init__(self, status_code: int, message: str = "") -> None:
        self.status_code = status_code
        super().__init__(message or f"Device responded with HTTP {status_code}")

    @property
    def hint(self) -> str:  # type: ignore[override]
        if self.status_code == 404:
            return "Device did not accept the reference. The app may have been uninstalled (`joku list-apps`)."
        if self.status_code == 403:
            return "Device refused the command. Enable 'Control by mobile apps' in the Roku network settings."
        return "Device rejected the command."


class ECPTimeoutError(ECPError):
    kind = "ECPError.Timeout"
    hint = "The Roku took too long to answer. Try again or raise JOKU_HTTP_TIMEOUT."


# ------------------------------------------------------------------ #
# App resolution                                                       #
# ------------------------------------------------------------------ #


class ResolutionError(JokuError):
    """Raised when an app name cannot be mapped to a single installed app."""

    kind = "ResolutionError"


class AmbiguousAppError(ResolutionError):
    kind = "ResolutionError.Ambiguous"
    hint = "Use a more specific name or the app id."

    def __init__(self, query: str, candidates: Sequence[Any]) -> None:
        self.query = query
        self.candidates = list(candidates)
        names = ", ".join(f"{c.name} ({c.id})" for c in self.candidates)
        super().__init__(f"'{query}' matches several apps: {names}")


class AppNotFoundError(ResolutionError):
    kind = "ResolutionError.NotFound"
    hint = "Run `joku list-apps` to see what is installed."
