# =============================================================================
# FishCrew Client -- Wire Protocol Codec
# =============================================================================
#
# Socket.IO v4 packets carried in Engine.IO v4 text frames (one per
# websocket message, or several per long-polling body separated by 0x1E):
#
#   Engine.IO:  <type>[<data>]          0 open, 1 close, 2 ping, 3 pong,
#                                       4 message, 5 upgrade, 6 noop
#   Socket.IO:  <type>[/nsp,][<ack>][<json>]
#                                       0 connect, 1 disconnect, 2 event,
#                                       3 ack, 4 connect_error
#
# Binary attachments are not used by the FishCrewConnect backend and are
# rejected.
# =============================================================================

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from .constants import (
    DEFAULT_NAMESPACE,
    DEFAULT_PING_INTERVAL,
    DEFAULT_PING_TIMEOUT,
    EIO_MESSAGE,
    EIO_OPEN,
    EIO_PONG,
    MAX_MESSAGE_SIZE,
    PAYLOAD_SEPARATOR,
    SIO_CONNECT,
    SIO_EVENT,
)
from .errors import ProtocolError

try:
    import orjson

    def _json_loads(data: str | bytes) -> Any:
        return orjson.loads(data)

    def _json_dumps(obj: Any) -> str:
        return orjson.dumps(obj).decode()

except ImportError:

    def _json_loads(data: str | bytes) -> Any:
        return json.loads(data)

    def _json_dumps(obj: Any) -> str:
        return json.dumps(obj, separators=(",", ":"))


@dataclass(frozen=True, slots=True)
class EnginePacket:
    type: str
    data: str = ""


@dataclass(frozen=True, slots=True)
class SocketPacket:
    type: str
    namespace: str = DEFAULT_NAMESPACE
    data: Any = None
    ack_id: int | None = None

    @property
    def event(self) -> str | None:
        """Event name for EVENT packets."""
        if self.type == SIO_EVENT and isinstance(self.data, list) and self.data:
            name = self.data[0]
            return name if isinstance(name, str) else None
        return None

    @property
    def args(self) -> list[Any]:
        if self.type == SIO_EVENT and isinstance(self.data, list):
            return self.data[1:]
        return []


@dataclass(frozen=True, slots=True)
class OpenInfo:
    """Engine.IO handshake parameters (seconds)."""

    sid: str
    ping_interval: float = DEFAULT_PING_INTERVAL
    ping_timeout: float = DEFAULT_PING_TIMEOUT
    max_payload: int = MAX_MESSAGE_SIZE


class PacketCodec:
    """Encode and decode Engine.IO / Socket.IO text frames."""

    def __init__(self, namespace: str = DEFAULT_NAMESPACE) -> None:
        self._namespace = namespace

    @property
    def namespace(self) -> str:
        return self._namespace

    # -- Engine.IO ------------------------------------------------------------

    def decode_frame(self, frame: str | bytes) -> EnginePacket:
        if isinstance(frame, bytes):
            raise ProtocolError("Binary frames are not supported")
        if not frame:
            raise ProtocolError("Empty frame")
        ptype = frame[0]
        if not ptype.isdigit() or int(ptype) > 6:
            raise ProtocolError(f"Unknown Engine.IO packet type: {ptype!r}")
        return EnginePacket(ptype, frame[1:])

    def decode_open(self, packet: EnginePacket) -> OpenInfo:
        if packet.type != EIO_OPEN:
            raise ProtocolError(f"Expected OPEN packet, got type {packet.type}")
        try:
            data = _json_loads(packet.data)
        except ValueError as exc:
            raise ProtocolError(f"Invalid OPEN payload: {packet.data!r}") from exc
        if not isinstance(data, dict) or "sid" not in data:
            raise ProtocolError(f"OPEN payload has no sid: {packet.data!r}")
        return OpenInfo(
            sid=str(data["sid"]),
            ping_interval=float(data.get("pingInterval", DEFAULT_PING_INTERVAL * 1000)) / 1000.0,
            ping_timeout=float(data.get("pingTimeout", DEFAULT_PING_TIMEOUT * 1000)) / 1000.0,
            max_payload=int(data.get("maxPayload", MAX_MESSAGE_SIZE)),
        )

    def encode_pong(self, data: str = "") -> str:
        return EIO_PONG + data

    def decode_payload(self, body: str) -> list[str]:
        """Split a long-polling response body into frames."""
        return [frame for frame in body.split(PAYLOAD_SEPARATOR) if frame]

    # -- Socket.IO ------------------------------------------------------------

    def decode_socket(self, payload: str) -> SocketPacket:
        """Decode the body of an Engine.IO MESSAGE packet."""
        if not payload:
            raise ProtocolError("Empty Socket.IO packet")
        ptype = payload[0]
        if ptype not in "0123456":
            raise ProtocolError(f"Unknown Socket.IO packet type: {ptype!r}")
        if ptype in "56":
            raise ProtocolError("Binary Socket.IO packets are not supported")

        rest = payload[1:]
        namespace = DEFAULT_NAMESPACE
        if rest.startswith("/"):
            end = rest.find(",")
            if end == -1:
                namespace, rest = rest, ""
            else:
                namespace, rest = rest[:end], rest[end + 1 :]

        ack_digits = ""
        while rest and rest[0].isdigit():
            ack_digits += rest[0]
            rest = rest[1:]
        ack_id = int(ack_digits) if ack_digits else None

        data: Any = None
        if rest:
            try:
                data = _json_loads(rest)
            except ValueError as exc:
                raise ProtocolError(f"Invalid Socket.IO payload: {rest[:80]!r}") from exc

        return SocketPacket(ptype, namespace, data, ack_id)

    def encode_connect(self, auth: dict[str, Any] | None = None) -> str:
        body = _json_dumps(auth) if auth else ""
        return EIO_MESSAGE + SIO_CONNECT + self._namespace_prefix(bool(body)) + body

    def encode_event(self, event: str, *args: Any) -> str:
        body = _json_dumps([event, *args])
        return EIO_MESSAGE + SIO_EVENT + self._namespace_prefix(True) + body

    def _namespace_prefix(self, has_body: bool) -> str:
        if self._namespace == DEFAULT_NAMESPACE:
            return ""
        return self._namespace + ("," if has_body else "")