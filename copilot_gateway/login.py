"""GitHub device-code login.

Requests a device code, asks the user to approve it out of band, then polls
the token endpoint until an access token is granted.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from copilot_gateway.client import UpstreamClient
from copilot_gateway.credentials import CredentialStore
from copilot_gateway.errors import GatewayError
from copilot_gateway.models import LoginResponse

_logger = logging.getLogger("gateway")

DEFAULT_POLL_INTERVAL = 5

# Poll errors that mean "not yet", as opposed to a denied or expired code.
_PENDING_ERRORS = {"authorization_pending", "slow_down"}


class DeviceLoginError(GatewayError):
    """Raised when the device code is denied or expires before approval."""

    def __init__(self, error: str, description: Optional[str] = None) -> None:
        self.error = error
        self.description = description
        super().__init__(
            "Device login failed: {}{}".format(
                error, " ({})".format(description) if description else ""
            )
        )


Sleep = Callable[[float], Awaitable[None]]
Notify = Callable[[LoginResponse], None]


def _announce(login: LoginResponse) -> None:
    _logger.info(
        "Please visit %s to authenticate and enter the code: %s",
        login.verification_uri,
        login.user_code,
    )


async def device_login(
    client: UpstreamClient,
    store: CredentialStore,
    notify: Optional[Notify] = None,
    sleep: Sleep = asyncio.sleep,
) -> str:
    """Run the device flow to completion and persist the access token.

    Waits ``interval + 1`` seconds between polls, as the upstream asks. A
    zero interval in a poll response falls back to DEFAULT_POLL_INTERVAL.

    Returns:
        The granted access token.
    """
    login = await client.login()
    (notify or _announce)(login)

    await sleep(login.interval + 1)
    while True:
        auth = await client.authenticate(login)
        if auth.access_token:
            _logger.info("Authenticated successfully!")
            break
        if auth.error and auth.error not in _PENDING_ERRORS:
            raise DeviceLoginError(auth.error, auth.error_description)
        interval = auth.interval or DEFAULT_POLL_INTERVAL
        await sleep(interval + 1)

    store.write(auth.access_token)
    return auth.access_token
