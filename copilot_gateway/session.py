"""Session token exchange and background refresh.

The Copilot session token is short-lived and embeds its expiry as an
``exp=<unix seconds>`` field. A single SessionTokenCell holds the current
credential for the whole process; the SessionRefresher is its only writer.
"""

import asyncio
import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Optional

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, wait_random

from copilot_gateway.client import UpstreamClient
from copilot_gateway.config import SessionConfig
from copilot_gateway.errors import GatewayError

_logger = logging.getLogger("gateway")

_EXPIRY_PATTERN = re.compile(r"exp=(\d+)")


class SessionTokenError(GatewayError):
    """Raised when a session token carries no parsable expiry."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__("Error parsing token: {}".format(detail))


@dataclass(frozen=True)
class SessionCredential:
    """A session token and the unix time at which it expires."""

    token: str
    expires_at: int

    @property
    def is_expired(self) -> bool:
        return time.time() >= self.expires_at


def parse_expiry(token: str) -> int:
    """Extract the ``exp=<digits>`` timestamp embedded in a session token.

    Raises:
        SessionTokenError: If the token has no ``exp=`` field.
    """
    match = _EXPIRY_PATTERN.search(token)
    if match is None:
        raise SessionTokenError("no exp field in session token")
    return int(match.group(1))


async def exchange_session_token(
    client: UpstreamClient, access_token: str
) -> SessionCredential:
    """Derive a fresh session credential from the long-lived access token."""
    response = await client.get_session_token(access_token)
    return SessionCredential(token=response.token, expires_at=parse_expiry(response.token))


class SessionTokenCell:
    """Holds the current session credential.

    Readers always see either the previous or the new credential, never a
    mix: the whole object is swapped under a lock.
    """

    def __init__(self, credential: Optional[SessionCredential] = None) -> None:
        self._lock = threading.Lock()
        self._credential = credential

    def get(self) -> Optional[SessionCredential]:
        with self._lock:
            return self._credential

    def set(self, credential: SessionCredential) -> None:
        with self._lock:
            self._credential = credential


class SessionRefresher:
    """Re-derives the session credential on a fixed period.

    Each refresh is retried with exponential backoff. When every attempt
    fails the error is logged and the next period tries again, so the loop
    only stops when it is cancelled.
    """

    def __init__(
        self,
        client: UpstreamClient,
        access_token: str,
        cell: SessionTokenCell,
        config: SessionConfig,
    ) -> None:
        self.client = client
        self.access_token = access_token
        self.cell = cell
        self.config = config
        self._task: Optional["asyncio.Task[None]"] = None

    async def refresh_once(self) -> SessionCredential:
        """Fetch a new credential (with retries) and store it in the cell."""
        retrying = AsyncRetrying(
            wait=wait_exponential(
                multiplier=self.config.retry_initial_seconds,
                max=self.config.retry_max_seconds,
            )
            + wait_random(0, self.config.retry_initial_seconds),
            stop=stop_after_attempt(max(1, self.config.retry_attempts)),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                credential = await exchange_session_token(self.client, self.access_token)
        self.cell.set(credential)
        _logger.info("Session token refreshed (expires_at=%d)", credential.expires_at)
        return credential

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.config.refresh_interval_seconds)
            _logger.info("Refreshing session token")
            try:
                await self.refresh_once()
            except GatewayError as exc:
                _logger.error("Error getting session token: %s", exc)

    def start(self) -> "asyncio.Task[None]":
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
