# =============================================================================
# FishCrew Client -- Type Definitions
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from .constants import (
    DEFAULT_ROLE,
    RECONNECT_BASE_DELAY,
    RECONNECT_MAX_ATTEMPTS,
    RECONNECT_MAX_DELAY,
    SUPERVISOR_BASE_DELAY,
    SUPERVISOR_MAX_ATTEMPTS,
)
from .errors import MalformedPayloadError

T = TypeVar("T")


class ConnectionState(str, Enum):
    """Realtime connection lifecycle state.

    One attempt cycle: DISCONNECTED -> CONNECTING -> (CONNECTED | ERROR).
    CONNECTED -> DISCONNECTED on drop, ERROR -> CONNECTING on retry.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class NotificationType(str, Enum):
    NEW_APPLICATION = "new_application"
    APPLICATION_STATUS_UPDATE = "application_status_update"
    NEW_MESSAGE = "new_message"
    NEW_REVIEW = "new_review"
    PAYMENT_INITIATED = "payment_initiated"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"


class MessageStatus(str, Enum):
    """PENDING until the server returns the authoritative id."""

    PENDING = "pending"
    CONFIRMED = "confirmed"


# -- Parsing helpers ----------------------------------------------------------


def parse_id(value: Any) -> int | None:
    """Normalize an id (int or numeric string) to ``int``.

    Returns ``None`` for missing, boolean or non-numeric values.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def parse_timestamp(value: Any) -> datetime:
    """Parse a backend timestamp into an aware ``datetime``.

    Accepts ISO-8601 strings (``Z`` suffix allowed), epoch milliseconds
    and ``datetime`` objects. Naive values are taken as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=UTC)
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise MalformedPayloadError(f"Invalid timestamp: {value!r}") from exc
    else:
        raise MalformedPayloadError(f"Invalid timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _require_mapping(payload: Any, kind: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise MalformedPayloadError(f"{kind} payload is not an object: {payload!r}")
    return payload


# -- Domain objects -----------------------------------------------------------


@dataclass(frozen=True, slots=True)
class User:
    """Authenticated user identity.

    Attributes:
        id: Backend user id.
        name: Display name.
        role: Backend ``user_type`` (``boat_owner``, ``fisherman``, ``admin``).
        profile: Raw profile payload, persisted as-is.
    """

    id: int
    name: str
    role: str = DEFAULT_ROLE
    profile: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_payload(cls, payload: Any) -> User:
        data = _require_mapping(payload, "User")
        user_id = parse_id(data.get("id", data.get("user_id")))
        if user_id is None:
            raise MalformedPayloadError(f"User payload has no valid id: {data!r}")
        return cls(
            id=user_id,
            name=str(data.get("name") or ""),
            role=str(data.get("user_type") or data.get("role") or DEFAULT_ROLE),
            profile=dict(data),
        )

    def to_payload(self) -> dict[str, Any]:
        payload = dict(self.profile)
        payload.update({"id": self.id, "name": self.name, "user_type": self.role})
        return payload


@dataclass(frozen=True, slots=True)
class Notification:
    """A notification row as delivered by REST or ``new_notification``."""

    id: int
    type: NotificationType | str
    message: str
    link: str | None = None
    is_read: bool = False
    created_at: datetime | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> Notification:
        data = _require_mapping(payload, "Notification")
        notification_id = parse_id(data.get("id"))
        if notification_id is None:
            raise MalformedPayloadError(f"Notification payload has no valid id: {data!r}")
        raw_type = str(data.get("type") or "")
        try:
            ntype: NotificationType | str = NotificationType(raw_type)
        except ValueError:
            ntype = raw_type
        created = data.get("created_at")
        return cls(
            id=notification_id,
            type=ntype,
            message=str(data.get("message") or ""),
            link=data.get("link"),
            is_read=bool(data.get("is_read", False)),
            created_at=parse_timestamp(created) if created is not None else None,
        )

    def mark_read(self) -> Notification:
        return self if self.is_read else replace(self, is_read=True)


@dataclass(frozen=True, slots=True)
class Message:
    """A chat message.

    Attributes:
        id: Server id, ``None`` while PENDING.
        sender_id: Author user id.
        recipient_id: Receiving user id.
        text: Message body.
        timestamp: Creation time (aware).
        read: Read flag.
        status: PENDING for optimistic local copies, CONFIRMED otherwise.
        local_id: Client-side handle for PENDING messages.
        client_id: Idempotency key sent with the request, echoed back when
            the server supports it.
    """

    id: int | None
    sender_id: int
    recipient_id: int
    text: str
    timestamp: datetime
    read: bool = False
    status: MessageStatus = MessageStatus.CONFIRMED
    local_id: str | None = None
    client_id: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == MessageStatus.PENDING

    @classmethod
    def from_payload(cls, payload: Any) -> Message:
        data = _require_mapping(payload, "Message")
        sender = parse_id(data.get("senderId", data.get("sender_id")))
        recipient = parse_id(data.get("recipientId", data.get("recipient_id")))
        if sender is None or recipient is None:
            raise MalformedPayloadError(f"Message payload missing ids: {data!r}")
        raw_id = data.get("id")
        msg_id = parse_id(raw_id)
        return cls(
            id=msg_id,
            sender_id=sender,
            recipient_id=recipient,
            text=str(data.get("text", data.get("message_text")) or ""),
            timestamp=parse_timestamp(data.get("timestamp", data.get("created_at"))),
            read=bool(data.get("read", data.get("is_read", False))),
            status=MessageStatus.CONFIRMED,
            client_id=data.get("clientMessageId"),
        )

    def involves(self, user_id: int) -> bool:
        return self.sender_id == user_id or self.recipient_id == user_id


@dataclass(frozen=True, slots=True)
class ConversationSummary:
    """One row of ``GET /api/messages/conversations``."""

    counterpart_id: int
    counterpart_name: str
    counterpart_avatar: str | None
    last_message: str
    timestamp: datetime | None
    unread_count: int = 0

    @classmethod
    def from_payload(cls, payload: Any) -> ConversationSummary:
        data = _require_mapping(payload, "Conversation")
        counterpart = parse_id(data.get("recipientId"))
        if counterpart is None:
            raise MalformedPayloadError(f"Conversation payload has no id: {data!r}")
        ts = data.get("timestamp")
        return cls(
            counterpart_id=counterpart,
            counterpart_name=str(data.get("recipientName") or ""),
            counterpart_avatar=data.get("recipientProfileImage"),
            last_message=str(data.get("lastMessage") or ""),
            timestamp=parse_timestamp(ts) if ts is not None else None,
            unread_count=int(data.get("unreadCount") or 0),
        )


@dataclass(frozen=True, slots=True)
class MessageGroup:
    """Messages of one calendar day, labelled for display."""

    label: str
    day: date
    messages: tuple[Message, ...]


@dataclass(frozen=True, slots=True)
class Outcome(Generic[T]):
    """Result of a confirm-after-optimistic-update REST call."""

    ok: bool
    value: T | None = None
    error: Exception | None = None

    @classmethod
    def success(cls, value: T | None = None) -> Outcome[T]:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: Exception) -> Outcome[T]:
        return cls(ok=False, error=error)


# -- Configuration ------------------------------------------------------------


@dataclass
class ReconnectConfig:
    """Handshake retry policy inside one ``connect()`` call.

    Attributes:
        max_attempts: Handshake attempts before giving up (default 15).
        base_delay: Delay unit in seconds; attempt *n* waits ``n * base_delay``.
        max_delay: Cap on a single delay.
    """

    max_attempts: int = RECONNECT_MAX_ATTEMPTS
    base_delay: float = RECONNECT_BASE_DELAY
    max_delay: float = RECONNECT_MAX_DELAY

    def delay_for(self, attempt: int) -> float:
        return min(attempt * self.base_delay, self.max_delay)


@dataclass
class SupervisorConfig:
    """Application-level retry policy applied after ``connect()`` gives up.

    Attributes:
        max_attempts: Outer reconnect cycles (default 3).
        base_delay: Cycle *n* waits ``n * base_delay`` seconds (default 3).
    """

    max_attempts: int = SUPERVISOR_MAX_ATTEMPTS
    base_delay: float = SUPERVISOR_BASE_DELAY
