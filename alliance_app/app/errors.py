"""Error taxonomy shared by the controller, the gateway and the interaction handlers."""
from __future__ import annotations


class UserError(Exception):
    """Invalid input, wrong context, missing rights or wrong lifecycle state.

    The message is shown to the invoking user as a private reply.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StorageError(Exception):
    """A database operation failed. Already logged and rolled back when raised."""


class GatewayError(Exception):
    """A chat-platform call failed in a way that is not a clean delete outcome."""

    def __init__(self, status: int, message: str = ""):
        super().__init__(f"{status} {message}".strip())
        self.status = status
        self.message = message

    @property
    def rate_limited(self) -> bool:
        return self.status == 429
