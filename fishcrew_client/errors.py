# =============================================================================
# FishCrew Client -- Error Types
# =============================================================================

from __future__ import annotations

from typing import Any


class FishCrewError(Exception):
    """Base exception for all FishCrew client errors."""


class AuthExpiredError(FishCrewError):
    """Session is gone (refresh failed or no token). Sign in again."""

    def __init__(self, message: str = "Authentication expired") -> None:
        super().__init__(message)


class SelfMessagingError(FishCrewError):
    """Attempt to open or send a conversation with oneself."""

    def __init__(self, message: str = "You cannot message yourself") -> None:
        super().__init__(message)


class NetworkError(FishCrewError):
    """Transient network failure (unreachable server, dropped request)."""


class RequestTimeoutError(NetworkError):
    """REST call exceeded its timeout."""


class ApiError(FishCrewError):
    """Non-auth HTTP error status returned by the backend."""

    def __init__(
        self,
        status: int,
        message: str | None = None,
        *,
        code: str | None = None,
        body: Any = None,
    ) -> None:
        self.status = status
        self.code = code
        self.body = body
        super().__init__(message or f"Request failed with status {status}")


class TransportConnectionError(FishCrewError):
    """Realtime connection could not be established or was lost."""


class HandshakeTimeoutError(TransportConnectionError):
    """Handshake did not complete within the handshake timeout."""


class ProtocolError(FishCrewError):
    """Malformed Engine.IO / Socket.IO packet."""


class MalformedPayloadError(FishCrewError):
    """Backend returned data of an unexpected shape."""


class ValidationError(FishCrewError):
    """Client-side input validation failed; nothing was sent."""


class InvalidRecipientError(ValidationError):
    """Counterpart id is missing or not a valid user id."""


class EmptyMessageError(ValidationError):
    """Message text is empty after trimming."""


class SendMessageError(FishCrewError):
    """Sending a message failed; the unsent text is kept in ``draft``."""

    def __init__(self, draft: str, cause: Exception | None = None) -> None:
        self.draft = draft
        self.cause = cause
        super().__init__("Message could not be sent. Please try again.")
