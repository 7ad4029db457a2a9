"""Tests for the Engine.IO / Socket.IO packet codec."""

import json

import pytest

from fishcrew_client.errors import ProtocolError
from fishcrew_client.protocol import PacketCodec


class TestEngineFrames:
    def test_decode_ping(self):
        packet = PacketCodec().decode_frame("2")
        assert packet.type == "2"
        assert packet.data == ""

    def test_decode_message_keeps_body(self):
        packet = PacketCodec().decode_frame('42["new_message",{"id":1}]')
        assert packet.type == "4"
        assert packet.data == '2["new_message",{"id":1}]'

    def test_binary_frame_rejected(self):
        with pytest.raises(ProtocolError):
            PacketCodec().decode_frame(b"\x04abc")

    def test_empty_frame_rejected(self):
        with pytest.raises(ProtocolError):
            PacketCodec().decode_frame("")

    def test_unknown_type_rejected(self):
        with pytest.raises(ProtocolError):
            PacketCodec().decode_frame("9hello")

    def test_pong_echoes_probe(self):
        assert PacketCodec().encode_pong() == "3"
        assert PacketCodec().encode_pong("probe") == "3probe"

    def test_polling_payload_split(self):
        body = '0{"sid":"a"}\x1e2\x1e42["new_message",{"id":1}]'
        assert PacketCodec().decode_payload(body) == [
            '0{"sid":"a"}',
            "2",
            '42["new_message",{"id":1}]',
        ]
        assert PacketCodec().decode_payload("") == []


class TestOpenPacket:
    def test_intervals_converted_to_seconds(self):
        codec = PacketCodec()
        info = codec.decode_open(
            codec.decode_frame('0{"sid":"abc","pingInterval":25000,"pingTimeout":5000,"maxPayload":100}')
        )
        assert info.sid == "abc"
        assert info.ping_interval == 25.0
        assert info.ping_timeout == 5.0
        assert info.max_payload == 100

    def test_defaults_when_missing(self):
        codec = PacketCodec()
        info = codec.decode_open(codec.decode_frame('0{"sid":"abc"}'))
        assert info.ping_interval == 25.0
        assert info.ping_timeout == 20.0

    def test_wrong_type(self):
        codec = PacketCodec()
        with pytest.raises(ProtocolError):
            codec.decode_open(codec.decode_frame("2"))

    def test_missing_sid(self):
        codec = PacketCodec()
        with pytest.raises(ProtocolError):
            codec.decode_open(codec.decode_frame('0{"pingInterval":1}'))

    def test_invalid_json(self):
        codec = PacketCodec()
        with pytest.raises(ProtocolError):
            codec.decode_open(codec.decode_frame("0{not json"))


class TestSocketPackets:
    def test_event(self):
        sio = PacketCodec().decode_socket('2["new_notification",{"id":3,"type":"new_review"}]')
        assert sio.type == "2"
        assert sio.namespace == "/"
        assert sio.event == "new_notification"
        assert sio.args == [{"id": 3, "type": "new_review"}]
        assert sio.ack_id is None

    def test_event_with_ack_id(self):
        sio = PacketCodec().decode_socket('212["ping"]')
        assert sio.ack_id == 12
        assert sio.event == "ping"
        assert sio.args == []

    def test_namespaced_connect(self):
        sio = PacketCodec().decode_socket('0/admin,{"sid":"x"}')
        assert sio.namespace == "/admin"
        assert sio.data == {"sid": "x"}

    def test_namespace_without_body(self):
        sio = PacketCodec().decode_socket("1/admin")
        assert sio.namespace == "/admin"
        assert sio.data is None

    def test_connect_error(self):
        sio = PacketCodec().decode_socket('4{"message":"Not authorized"}')
        assert sio.type == "4"
        assert sio.data["message"] == "Not authorized"
        assert sio.event is None

    def test_binary_event_rejected(self):
        with pytest.raises(ProtocolError):
            PacketCodec().decode_socket('51-["upload",{"_placeholder":true,"num":0}]')

    def test_invalid_json_rejected(self):
        with pytest.raises(ProtocolError):
            PacketCodec().decode_socket("2[oops")

    def test_empty_rejected(self):
        with pytest.raises(ProtocolError):
            PacketCodec().decode_socket("")


class TestEncoding:
    def test_connect_without_auth(self):
        assert PacketCodec().encode_connect() == "40"

    def test_connect_with_auth(self):
        frame = PacketCodec().encode_connect({"token": "abc"})
        assert frame.startswith("40")
        assert json.loads(frame[2:]) == {"token": "abc"}

    def test_event(self):
        frame = PacketCodec().encode_event("join_room", 7)
        assert frame.startswith("42")
        assert json.loads(frame[2:]) == ["join_room", 7]

    def test_namespaced_event(self):
        frame = PacketCodec("/chat").encode_event("send_message", {"text": "hi"})
        assert frame.startswith("42/chat,")
        assert json.loads(frame[len("42/chat,"):]) == ["send_message", {"text": "hi"}]

    def test_namespaced_connect_without_auth(self):
        assert PacketCodec("/chat").encode_connect() == "40/chat"

    def test_event_decodes_back(self):
        codec = PacketCodec()
        frame = codec.encode_event("send_message", {"recipientId": 2, "text": "hello"})
        sio = codec.decode_socket(codec.decode_frame(frame).data)
        assert sio.event == "send_message"
        assert sio.args == [{"recipientId": 2, "text": "hello"}]
