"""App resolver: turns a user-typed app name into an installed :class:`Application`."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from joku.errors import AmbiguousAppError, AppNotFoundError
from joku.registry import Application, ConfigurationStore, DeviceRegistry

if TYPE_CHECKING:
    from joku.client import ECPClient

logger = logging.getLogger(__name__)


def match_app(query: str, apps: tuple[Application, ...] | list[Application]) -> Application:
    """Pick one app from *apps* for *query* without touching the network.

    Order of preference: exact id, a single case-insensitive exact name,
    then a unique case-insensitive substring match.  Repeated exact names
    fall through to the substring match and so are reported as ambiguous.

    Raises:
        AmbiguousAppError: Several apps matched and none was exact and unique.
        AppNotFoundError:  Nothing matched.
    """
    needle = query.strip().casefold()
    if not needle:
        raise AppNotFoundError("Empty app name")

    for app in apps:
        if app.id == query.strip():
            return app

    exact = [app for app in apps if app.name.casefold() == needle]
    if len(exact) == 1:
        return exact[0]

    partial = [app for app in apps if needle in app.name.casefold()]
    if len(partial) == 1:
        return partial[0]
    if partial:
        raise AmbiguousAppError(query, partial)
    raise AppNotFoundError(f"No installed app matches '{query}'")


class AppResolver:
    """Resolve app names against the cached list, refreshing an empty cache once.

    Args:
        store:    The loaded configuration.
        registry: Used to refresh and persist the app list.
        client:   ECP client used for the refresh.
    """

    def __init__(
        self,
        store: ConfigurationStore,
        registry: DeviceRegistry,
        client: ECPClient,
    ) -> None:
        self.store = store
        self.registry = registry
        self.client = client

    async def resolve(self, name_or_query: str) -> Application:
        """Return the single installed app *name_or_query* refers to.

        Raises:
            AmbiguousAppError: Several apps match; nothing is guessed.
            AppNotFoundError:  No app matches, even after a refresh.
            ECPError:          The refresh of an empty cache failed.
        """
        if not self.store.apps:
            logger.info("App cache is empty; fetching the list from %s", self.store.device)
            apps = await self.registry.refresh_apps(self.store.device, self.client)
            self.store = self.store.with_apps(apps)
            self.registry.save(self.store)
        return match_app(name_or_query, self.store.apps)
