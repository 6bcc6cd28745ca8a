"""On-disk storage for the long-lived GitHub access token.

The token file holds a single line. Only the first line is read.
"""

import logging
import os
from pathlib import Path
from typing import Union

from copilot_gateway.errors import GatewayError

_logger = logging.getLogger("gateway")


class CredentialNotFoundError(GatewayError):
    """Raised when the token file is missing or empty."""

    def __init__(self, path: Path, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__("{}: {}".format(detail, path))


class CredentialStore:
    """Reads, writes and deletes the access token file."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> str:
        """Return the stored access token.

        Raises:
            CredentialNotFoundError: If the file is absent or its first line is blank.
        """
        if not self.path.exists():
            raise CredentialNotFoundError(
                self.path, "Token file does not exist, please run login first"
            )
        with open(self.path, "r") as f:
            token = f.readline().strip()
        if not token:
            raise CredentialNotFoundError(self.path, "Token file is empty")
        return token

    def write(self, token: str) -> None:
        os.makedirs(self.path.parent, exist_ok=True)
        with open(self.path, "w") as f:
            f.write(token)
        try:
            os.chmod(self.path, 0o600)
        except OSError as exc:
            _logger.warning("Could not restrict permissions on %s: %s", self.path, exc)

    def delete(self) -> bool:
        """Remove the token file; return False if there was nothing to remove."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        return True
