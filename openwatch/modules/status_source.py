"""Status source and announcer collaborators for the monitor.

The monitor only needs ``poll() -> {"open": bool}`` and
``announce(is_open, prediction_text)``. HttpStatusSource polls a JSON
endpoint over aiohttp; announcers either log or POST the new state to a
webhook.
"""

import logging
from typing import Any, Protocol

import aiohttp

from openwatch.errors import StatusFetchError

logger = logging.getLogger(__name__)


class StatusSource(Protocol):
    async def poll(self) -> dict[str, bool]: ...


class Announcer(Protocol):
    async def announce(self, is_open: bool, prediction_text: str | None) -> None: ...


def parse_status_payload(data: Any) -> dict[str, bool]:
    """Extract the open flag from a status response.

    Accepts ``{"payload": {"open": 1}}`` as well as a bare ``{"open": true}``.
    """
    if not isinstance(data, dict):
        raise StatusFetchError(f"Unexpected status payload: {data!r}")
    payload = data.get("payload", data)
    if not isinstance(payload, dict) or "open" not in payload:
        raise StatusFetchError(f"Status payload has no 'open' field: {data!r}")
    value = payload["open"]
    if isinstance(value, bool):
        return {"open": value}
    if value in (0, 1):
        return {"open": value == 1}
    raise StatusFetchError(f"Unrecognised open value: {value!r}")


class HttpStatusSource:
    """Polls a JSON status endpoint with a shared aiohttp session."""

    def __init__(self, url: str, timeout_s: float = 10.0):
        self.url = url
        self.timeout_s = timeout_s
        self._http_session: aiohttp.ClientSession | None = None

    async def poll(self) -> dict[str, bool]:
        """Fetch the current state. Any failure surfaces as StatusFetchError."""
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession()
        try:
            async with self._http_session.get(
                self.url, timeout=aiohttp.ClientTimeout(total=self.timeout_s)
            ) as resp:
                if resp.status != 200:
                    raise StatusFetchError(f"Status source returned HTTP {resp.status}")
                data = await resp.json(content_type=None)
        except (TimeoutError, aiohttp.ClientError, ValueError) as e:
            raise StatusFetchError(f"Status fetch failed: {e}") from e
        return parse_status_payload(data)

    async def close(self):
        if self._http_session:
            await self._http_session.close()
            self._http_session = None


class LoggingAnnouncer:
    """Announces state changes to the log only."""

    async def announce(self, is_open: bool, prediction_text: str | None) -> None:
        state = "open" if is_open else "closed"
        if prediction_text:
            logger.info("Resource is now %s (%s)", state, prediction_text)
        else:
            logger.info("Resource is now %s", state)


class WebhookAnnouncer:
    """POSTs each state change as JSON to a webhook URL."""

    def __init__(self, url: str, timeout_s: float = 10.0):
        self.url = url
        self.timeout_s = timeout_s

    async def announce(self, is_open: bool, prediction_text: str | None) -> None:
        body = {"open": is_open, "prediction": prediction_text}
        async with aiohttp.ClientSession() as session, session.post(
            self.url, json=body, timeout=aiohttp.ClientTimeout(total=self.timeout_s)
        ) as resp:
            if resp.status >= 400:
                raise RuntimeError(f"Webhook returned HTTP {resp.status}")
