"""Tests for payload parsing and value types."""

from datetime import UTC, datetime

import pytest

from fishcrew_client.errors import MalformedPayloadError
from fishcrew_client.types import (
    ConversationSummary,
    Message,
    MessageStatus,
    Notification,
    NotificationType,
    Outcome,
    ReconnectConfig,
    User,
    parse_id,
    parse_timestamp,
)


class TestParseId:
    @pytest.mark.parametrize("value,expected", [(7, 7), ("7", 7), (" 12 ", 12), ("-3", -3)])
    def test_valid(self, value, expected):
        assert parse_id(value) == expected

    @pytest.mark.parametrize("value", [None, True, "", "abc", "7a", 1.5, [7]])
    def test_invalid(self, value):
        assert parse_id(value) is None


class TestParseTimestamp:
    def test_iso_with_z(self):
        assert parse_timestamp("2026-10-01T08:00:00.000Z") == datetime(2026, 10, 1, 8, tzinfo=UTC)

    def test_naive_taken_as_utc(self):
        assert parse_timestamp("2026-10-01 08:00:00").tzinfo is UTC

    def test_epoch_millis(self):
        assert parse_timestamp(1_759_305_600_000) == datetime(2025, 10, 1, 8, tzinfo=UTC)

    @pytest.mark.parametrize("value", [None, "", "yesterday", True])
    def test_invalid(self, value):
        with pytest.raises(MalformedPayloadError):
            parse_timestamp(value)


class TestUser:
    def test_from_sign_in_payload(self):
        user = User.from_payload({"id": "7", "name": "Amina", "user_type": "boat_owner", "email": "a@x"})
        assert user.id == 7
        assert user.role == "boat_owner"
        assert user.to_payload()["email"] == "a@x"

    def test_user_id_alias_and_default_role(self):
        user = User.from_payload({"user_id": 3, "name": "Juma"})
        assert user.id == 3
        assert user.role == "fisherman"

    def test_missing_id(self):
        with pytest.raises(MalformedPayloadError):
            User.from_payload({"name": "nobody"})


class TestMessage:
    def test_backend_fields(self):
        msg = Message.from_payload(
            {
                "id": 4,
                "senderId": "9",
                "recipientId": 7,
                "text": "hi",
                "timestamp": "2026-10-01T08:00:00Z",
                "read": 1,
                "clientMessageId": "abc",
            }
        )
        assert (msg.id, msg.sender_id, msg.recipient_id) == (4, 9, 7)
        assert msg.read is True
        assert msg.client_id == "abc"
        assert msg.status is MessageStatus.CONFIRMED
        assert msg.involves(9) and msg.involves(7) and not msg.involves(1)

    def test_database_field_names(self):
        msg = Message.from_payload(
            {
                "id": 4,
                "sender_id": 9,
                "recipient_id": 7,
                "message_text": "hi",
                "created_at": "2026-10-01T08:00:00Z",
                "is_read": 0,
            }
        )
        assert msg.text == "hi"
        assert msg.read is False

    def test_missing_timestamp(self):
        with pytest.raises(MalformedPayloadError):
            Message.from_payload({"id": 1, "senderId": 1, "recipientId": 2, "text": "x"})


class TestNotification:
    def test_known_type(self):
        n = Notification.from_payload({"id": 1, "type": "payment_completed", "message": "Paid"})
        assert n.type is NotificationType.PAYMENT_COMPLETED
        assert n.created_at is None

    def test_mark_read_returns_copy(self):
        n = Notification.from_payload({"id": 1, "type": "new_review", "message": "x"})
        read = n.mark_read()
        assert read.is_read and not n.is_read
        assert read.mark_read() is read


class TestConversationSummary:
    def test_from_payload(self):
        summary = ConversationSummary.from_payload(
            {
                "recipientId": 9,
                "recipientName": "Skipper",
                "recipientProfileImage": None,
                "lastMessage": "hi",
                "timestamp": "2026-10-01T08:00:00Z",
                "unreadCount": "3",
            }
        )
        assert summary.counterpart_id == 9
        assert summary.unread_count == 3


class TestConfigTypes:
    def test_reconnect_delay_linear_and_capped(self):
        cfg = ReconnectConfig(base_delay=2.0, max_delay=5.0)
        assert [cfg.delay_for(n) for n in (1, 2, 3)] == [2.0, 4.0, 5.0]

    def test_outcome(self):
        assert Outcome.success(1).ok
        failure = Outcome.failure(ValueError("x"))
        assert not failure.ok
        assert isinstance(failure.error, ValueError)
