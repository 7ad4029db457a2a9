"""FishCrew realtime messaging and notification client.

Async usage::

    from fishcrew_client import ClientConfig, FishCrewClient

    async with FishCrewClient(ClientConfig.from_env()) as client:
        await client.sign_in("skipper@example.com", "secret")
        client.notifications.subscribe(lambda snap: print(snap.unread_count))
        await client.messages.load_history(None, 42)
        await client.messages.send(None, 42, "Boat leaves at 5")

Optional extras::

    pip install fishcrew-client[fast]   # orjson packet decoding
"""

from ._version import __version__
from .client import FishCrewClient
from .config import ClientConfig
from .connection import ConnectionManager
from .errors import (
    ApiError,
    AuthExpiredError,
    EmptyMessageError,
    FishCrewError,
    HandshakeTimeoutError,
    InvalidRecipientError,
    MalformedPayloadError,
    NetworkError,
    ProtocolError,
    RequestTimeoutError,
    SelfMessagingError,
    SendMessageError,
    TransportConnectionError,
    ValidationError,
)
from .events import Subscription
from .messages import ConversationSnapshot, MessageStore, group_by_day
from .notifications import NotificationSnapshot, NotificationStore
from .polling import PollingSocket
from .rooms import RoomMembership
from .session import SessionManager
from .storage import CredentialStore, FileCredentialStore, MemoryCredentialStore
from .supervisor import ReconnectSupervisor
from .types import (
    ConnectionState,
    ConversationSummary,
    Message,
    MessageGroup,
    MessageStatus,
    Notification,
    NotificationType,
    Outcome,
    ReconnectConfig,
    SupervisorConfig,
    User,
)

__all__ = [
    "__version__",
    "FishCrewClient",
    "ClientConfig",
    "SessionManager",
    "ConnectionManager",
    "PollingSocket",
    "ReconnectSupervisor",
    "RoomMembership",
    "NotificationStore",
    "NotificationSnapshot",
    "MessageStore",
    "ConversationSnapshot",
    "group_by_day",
    "Subscription",
    "CredentialStore",
    "MemoryCredentialStore",
    "FileCredentialStore",
    "ConnectionState",
    "ConversationSummary",
    "Message",
    "MessageGroup",
    "MessageStatus",
    "Notification",
    "NotificationType",
    "Outcome",
    "ReconnectConfig",
    "SupervisorConfig",
    "User",
    "FishCrewError",
    "AuthExpiredError",
    "SelfMessagingError",
    "NetworkError",
    "RequestTimeoutError",
    "ApiError",
    "TransportConnectionError",
    "HandshakeTimeoutError",
    "ProtocolError",
    "MalformedPayloadError",
    "ValidationError",
    "InvalidRecipientError",
    "EmptyMessageError",
    "SendMessageError",
]
