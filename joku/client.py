"""ECP client: sends :class:`~joku.commands.CommandRequest` objects to a Roku.

Uses httpx for async HTTP.  Every request is bounded by a timeout; commands
classified as idempotent are retried once after a connection-level failure,
everything else is sent exactly once.
"""

from __future__ import annotations

import logging

import httpx

from joku.commands import CommandRequest
from joku.config import DEFAULT_HTTP_TIMEOUT
from joku.errors import DeviceUnreachableError, ECPProtocolError, ECPTimeoutError
from joku.registry import Device

logger = logging.getLogger(__name__)

RETRY_ATTEMPTS = 1


class ECPClient:
    """Thin async wrapper around the Roku External Control Protocol.

    A single :class:`httpx.AsyncClient` is reused across calls.  Call
    :meth:`aclose` (or use as an async context manager) when done.

    Args:
        timeout:   Per-request timeout in seconds.
        transport: Optional httpx transport (tests pass a ``MockTransport``).
    """

    def __init__(
        self,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        """Close the underlying HTTP client and free resources."""
        await self._client.aclose()

    async def __aenter__(self) -> "ECPClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def execute(self, request: CommandRequest, device: Device) -> httpx.Response:
        """Send *request* to *device* and return the successful response.

        Raises:
            DeviceUnreachableError: Connection refused/reset, or the device is gone.
            ECPTimeoutError:        No answer within the timeout.
            ECPProtocolError:       The device answered with a non-2xx status.
        """
        url = f"{device.base_url}{request.target}"
        retries = RETRY_ATTEMPTS if request.idempotent else 0

        attempt = 0
        while True:
            attempt += 1
            logger.debug("%s %s (attempt %d)", request.method, url, attempt)
            try:
                response = await self._client.request(request.method, url)
                break
            except httpx.TimeoutException as exc:
                error: Exception = ECPTimeoutError(
                    f"{device} did not answer {request.command.value} within {self.timeout}s"
                )
                cause: Exception = exc
            except httpx.TransportError as exc:
                error = DeviceUnreachableError(f"Cannot reach {device}: {exc}")
                cause = exc
            if attempt > retries:
                raise error from cause
            logger.warning(
                "%s failed (%s); retrying %s once", request.command.value, cause, device
            )

        if not response.is_success:
            raise ECPProtocolError(
                response.status_code,
                f"{device} rejected {request.command.value}: HTTP {response.status_code}",
            )
        return response
