# =============================================================================
# FishCrew Client -- Constants
# =============================================================================
#
# Values match the mobile app's axios / socket.io-client setup and the
# backend routes in FishCrewConnect-backend.
# =============================================================================

# -- Timing (seconds) --------------------------------------------------------

DEFAULT_API_URL = "http://localhost:3001"

REQUEST_TIMEOUT = 10.0
HANDSHAKE_TIMEOUT = 20.0

# -- Transport reconnection ---------------------------------------------------

RECONNECT_MAX_ATTEMPTS = 15
RECONNECT_BASE_DELAY = 2.0
RECONNECT_MAX_DELAY = 30.0

# -- Supervisor (outer retry policy) -----------------------------------------

SUPERVISOR_MAX_ATTEMPTS = 3
SUPERVISOR_BASE_DELAY = 3.0

# -- Message reconciliation ---------------------------------------------------

RECONCILE_WINDOW = 60.0  # seconds between optimistic and pushed copy
RELAY_ID_TOLERANCE = 5.0  # seconds; relayed copies carry the relay time in ms as id

# -- REST endpoints -----------------------------------------------------------

PATH_SIGNIN = "/api/auth/signin"
PATH_REFRESH = "/api/auth/refresh"
PATH_PROFILE = "/api/users/me"
PATH_NOTIFICATIONS = "/api/notifications"
PATH_NOTIFICATION_READ = "/api/notifications/{id}/read"
PATH_NOTIFICATIONS_READ_ALL = "/api/notifications/read-all"
PATH_CONVERSATIONS = "/api/messages/conversations"
PATH_MESSAGES = "/api/messages"
PATH_MESSAGE_HISTORY = "/api/messages/{user_id}"
PATH_MESSAGES_READ = "/api/messages/read"

# -- Transport events ---------------------------------------------------------

EVENT_JOIN_ROOM = "join_room"
EVENT_SEND_MESSAGE = "send_message"
EVENT_NEW_NOTIFICATION = "new_notification"
EVENT_NEW_MESSAGE = "new_message"

# Lifecycle events emitted locally by the connection manager
EVENT_CONNECT = "connect"
EVENT_DISCONNECT = "disconnect"
EVENT_CONNECT_ERROR = "connect_error"
EVENT_RECONNECT_FAILED = "reconnect_failed"
EVENT_STATE = "state"

LIFECYCLE_EVENTS = frozenset(
    {
        EVENT_CONNECT,
        EVENT_DISCONNECT,
        EVENT_CONNECT_ERROR,
        EVENT_RECONNECT_FAILED,
        EVENT_STATE,
    }
)

# -- Wire protocol (Engine.IO v4 / Socket.IO v4) ------------------------------

ENGINEIO_VERSION = 4
SOCKETIO_PATH = "/socket.io/"
DEFAULT_NAMESPACE = "/"

TRANSPORT_WEBSOCKET = "websocket"
TRANSPORT_POLLING = "polling"
# Tried in order; a failed attempt moves the failing transport to the back
DEFAULT_TRANSPORTS = (TRANSPORT_WEBSOCKET, TRANSPORT_POLLING)

# Separates packets inside one long-polling HTTP body
PAYLOAD_SEPARATOR = "\x1e"

EIO_OPEN = "0"
EIO_CLOSE = "1"
EIO_PING = "2"
EIO_PONG = "3"
EIO_MESSAGE = "4"
EIO_UPGRADE = "5"
EIO_NOOP = "6"

SIO_CONNECT = "0"
SIO_DISCONNECT = "1"
SIO_EVENT = "2"
SIO_ACK = "3"
SIO_CONNECT_ERROR = "4"

DEFAULT_PING_INTERVAL = 25.0
DEFAULT_PING_TIMEOUT = 20.0
MAX_MESSAGE_SIZE = 1_048_576  # 1 MB

# -- Persistence --------------------------------------------------------------

STORAGE_KEY_TOKEN = "token"
STORAGE_KEY_USER = "user"

# -- Backend error codes ------------------------------------------------------

CODE_SELF_MESSAGING = "SELF_MESSAGING_NOT_ALLOWED"

DEFAULT_ROLE = "fisherman"
