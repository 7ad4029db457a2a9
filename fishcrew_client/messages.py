# =============================================================================
# FishCrew Client -- Message Store
# =============================================================================
#
# History of the open conversation, merged with pushed messages and
# optimistic sends. Every mutation is a synchronous reducer step over an
# immutable tuple kept in ascending timestamp order.
# =============================================================================

from __future__ import annotations

import asyncio
import bisect
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta, tzinfo
from typing import Any, Iterable
from uuid import uuid4

from ._logging import logger
from .connection import ConnectionManager
from .constants import (
    CODE_SELF_MESSAGING,
    EVENT_NEW_MESSAGE,
    EVENT_SEND_MESSAGE,
    PATH_CONVERSATIONS,
    PATH_MESSAGE_HISTORY,
    PATH_MESSAGES,
    PATH_MESSAGES_READ,
    RECONCILE_WINDOW,
    RELAY_ID_TOLERANCE,
)
from .errors import (
    ApiError,
    AuthExpiredError,
    EmptyMessageError,
    FishCrewError,
    InvalidRecipientError,
    MalformedPayloadError,
    SelfMessagingError,
    SendMessageError,
)
from .events import EventEmitter, Handler, Subscription
from .session import SessionManager
from .types import (
    ConversationSummary,
    Message,
    MessageGroup,
    MessageStatus,
    Outcome,
    parse_id,
)

_EVENT_CHANGE = "change"


def is_relay_copy(message: Message) -> bool:
    """True for the unsaved copy the socket relay forwards to the recipient.

    The relay stamps it with an id equal to its send time in milliseconds
    and no client message id. The stored row arrives separately.
    """
    if message.id is None or message.client_id or message.is_pending:
        return False
    sent_ms = message.timestamp.timestamp() * 1000
    return abs(message.id - sent_ms) <= RELAY_ID_TOLERANCE * 1000


def group_by_day(
    messages: Iterable[Message],
    *,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> list[MessageGroup]:
    """Partition messages into day groups labelled Today / Yesterday / date.

    Messages are ordered by timestamp within and across groups. The input
    is not modified. *tz* defaults to the local timezone.
    """
    ordered = sorted(messages, key=lambda m: m.timestamp)
    today = (now or datetime.now(UTC)).astimezone(tz).date()
    yesterday = today - timedelta(days=1)

    groups: list[tuple[Any, list[Message]]] = []
    for message in ordered:
        day = message.timestamp.astimezone(tz).date()
        if groups and groups[-1][0] == day:
            groups[-1][1].append(message)
        else:
            groups.append((day, [message]))

    result = []
    for day, items in groups:
        if day == today:
            label = "Today"
        elif day == yesterday:
            label = "Yesterday"
        else:
            label = day.isoformat()
        result.append(MessageGroup(label=label, day=day, messages=tuple(items)))
    return result


def _is_self_messaging_rejection(exc: ApiError) -> bool:
    if exc.code == CODE_SELF_MESSAGING:
        return True
    return exc.status == 400 and "yourself" in str(exc).lower()


@dataclass(frozen=True, slots=True)
class ConversationSnapshot:
    """Immutable view of the open conversation."""

    counterpart_id: int | None
    messages: tuple[Message, ...]
    draft: str = ""
    loading: bool = False
    error: Exception | None = None


class MessageStore:
    """Per-conversation history, live updates and optimistic send.

    Args:
        session: REST access; also supplies the default self id.
        connection: Source of ``new_message`` pushes and sink for
            ``send_message``; optional.
        reconcile_window: Seconds within which a pushed copy without id or
            idempotency key is matched to a pending send.
    """

    def __init__(
        self,
        session: SessionManager,
        connection: ConnectionManager | None = None,
        *,
        reconcile_window: float = RECONCILE_WINDOW,
    ) -> None:
        self._session = session
        self._connection = connection
        self._reconcile_window = timedelta(seconds=reconcile_window)

        self._counterpart_id: int | None = None
        self._messages: tuple[Message, ...] = ()
        self._draft = ""
        self._loading = False
        self._error: Exception | None = None

        self._generation = 0
        self._history_task: asyncio.Task[Any] | None = None
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._listeners = EventEmitter("messages")
        self._push_subscription: Subscription | None = None

    # -- State ----------------------------------------------------------------

    @property
    def counterpart_id(self) -> int | None:
        return self._counterpart_id

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._messages

    @property
    def draft(self) -> str:
        return self._draft

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> Exception | None:
        return self._error

    @property
    def snapshot(self) -> ConversationSnapshot:
        return ConversationSnapshot(
            self._counterpart_id,
            self._messages,
            self._draft,
            self._loading,
            self._error,
        )

    def groups(
        self, *, now: datetime | None = None, tz: tzinfo | None = None
    ) -> list[MessageGroup]:
        return group_by_day(self._messages, now=now, tz=tz)

    def subscribe(self, listener: Handler) -> Subscription:
        """``listener(snapshot)`` after every change."""
        return self._listeners.on(_EVENT_CHANGE, listener)

    def set_draft(self, text: str) -> None:
        self._draft = text
        self._notify()

    # -- Push wiring ----------------------------------------------------------

    def attach(self) -> None:
        if self._connection is None or self._push_subscription is not None:
            return
        self._push_subscription = self._connection.on(EVENT_NEW_MESSAGE, self.on_push)

    def detach(self) -> None:
        if self._push_subscription is not None:
            self._push_subscription.unsubscribe()
            self._push_subscription = None

    # -- Operations -----------------------------------------------------------

    async def load_conversations(
        self, self_id: int | str | None = None
    ) -> list[ConversationSummary]:
        """Conversation list, without any entry whose counterpart is the user."""
        me = self._resolve_self_id(self_id)
        data = await self._session.request("GET", PATH_CONVERSATIONS)
        if not isinstance(data, list):
            logger.warning("Conversations data is not a list")
            self._error = MalformedPayloadError("Conversations data is not a list")
            self._notify()
            return []

        summaries = []
        for raw in data:
            try:
                summary = ConversationSummary.from_payload(raw)
            except MalformedPayloadError as exc:
                logger.warning("Skipping malformed conversation: %s", exc)
                continue
            if summary.counterpart_id == me:
                logger.warning("Dropping self conversation for user %s", me)
                continue
            summaries.append(summary)
        return summaries

    async def load_history(
        self,
        self_id: int | str | None,
        counterpart_id: int | str,
    ) -> tuple[Message, ...]:
        """Open the conversation with *counterpart_id* and fetch its history.

        A fetch still running for a previous conversation is cancelled, and
        results for a superseded conversation are discarded.

        Raises:
            SelfMessagingError: *self_id* equals *counterpart_id* (no request
                is made) or the server rejected it as such.
            InvalidRecipientError: Counterpart id is not a valid id.
        """
        me, other = self._resolve_pair(self_id, counterpart_id)

        if other != self._counterpart_id:
            self._cancel_history()
            self._counterpart_id = other
            self._messages = ()
        self._generation += 1
        generation = self._generation

        self._loading = True
        self._error = None
        self._notify()

        task = asyncio.ensure_future(
            self._session.request("GET", PATH_MESSAGE_HISTORY.format(user_id=other))
        )
        self._history_task = task
        try:
            data = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                logger.debug("History fetch for %s cancelled", other)
                return self._messages
            self._loading = False
            self._notify()
            raise
        except ApiError as exc:
            if generation != self._generation:
                return self._messages
            error: FishCrewError = exc
            if _is_self_messaging_rejection(exc):
                error = SelfMessagingError()
            self._fail(error)
            if error is exc:
                raise
            raise error from exc
        except FishCrewError as exc:
            if generation != self._generation:
                return self._messages
            self._fail(exc)
            raise
        finally:
            if self._history_task is task:
                self._history_task = None

        if generation != self._generation:
            return self._messages

        if not isinstance(data, list):
            logger.warning("Message history for %s is not a list", other)
            self._messages = ()
            self._fail(MalformedPayloadError("Message history is not a list"))
            return self._messages

        history: list[Message] = []
        for raw in data:
            try:
                history.append(Message.from_payload(raw))
            except MalformedPayloadError as exc:
                logger.warning("Skipping malformed message: %s", exc)
        history.sort(key=lambda m: m.timestamp)

        pending = [m for m in self._messages if m.is_pending]
        self._messages = tuple(history)
        for message in pending:
            self._merge(message)
        self._loading = False
        self._error = None
        self._notify()
        logger.debug("Loaded %d messages with user %s", len(history), other)
        return self._messages

    async def send(
        self,
        self_id: int | str | None,
        counterpart_id: int | str,
        text: str,
    ) -> Message:
        """Send *text*, showing it immediately and confirming via REST.

        Raises:
            SelfMessagingError: Sending to oneself.
            InvalidRecipientError: Counterpart id is not a valid id.
            EmptyMessageError: Nothing to send.
            AuthExpiredError: Session lost; the text is kept in ``draft``.
            SendMessageError: Any other failure; the text is kept in
                ``draft`` for a retry.
        """
        me, other = self._resolve_pair(self_id, counterpart_id)
        body = text.strip() if isinstance(text, str) else ""
        if not body:
            raise EmptyMessageError("Message text is required")

        client_id = uuid4().hex
        pending = Message(
            id=None,
            sender_id=me,
            recipient_id=other,
            text=body,
            timestamp=datetime.now(UTC),
            status=MessageStatus.PENDING,
            local_id=f"local-{client_id}",
            client_id=client_id,
        )
        if other == self._counterpart_id:
            self._merge(pending)
        self._draft = ""
        self._notify()

        try:
            data = await self._session.request(
                "POST",
                PATH_MESSAGES,
                json={"recipientId": other, "text": body, "clientMessageId": client_id},
            )
            confirmed = Message.from_payload(data)
        except AuthExpiredError:
            self._drop_pending(pending, restore=body)
            raise
        except ApiError as exc:
            self._drop_pending(pending, restore=body)
            if _is_self_messaging_rejection(exc):
                raise SelfMessagingError() from exc
            self._error = SendMessageError(body, exc)
            self._notify()
            raise self._error from exc
        except FishCrewError as exc:
            logger.warning("Sending message to %s failed: %s", other, exc)
            self._drop_pending(pending, restore=body)
            self._error = SendMessageError(body, exc)
            self._notify()
            raise self._error from exc

        if confirmed.client_id is None:
            confirmed = replace(confirmed, client_id=client_id)
        self._confirm_pending(pending, confirmed)

        if self._connection is not None:
            await self._connection.emit(
                EVENT_SEND_MESSAGE,
                {
                    "recipientId": other,
                    "senderId": me,
                    "text": body,
                    "clientMessageId": client_id,
                },
            )
        return confirmed

    def on_push(self, payload: Message | dict[str, Any]) -> bool:
        """Merge a pushed message into the open conversation.

        Returns True when it was appended as a new entry.
        """
        try:
            message = (
                payload if isinstance(payload, Message) else Message.from_payload(payload)
            )
        except MalformedPayloadError as exc:
            logger.warning("Ignoring malformed message push: %s", exc)
            return False

        counterpart = self._counterpart_id
        if counterpart is None or not message.involves(counterpart):
            return False

        appended = self._merge(message)
        self._notify()
        if (
            appended
            and message.sender_id == counterpart
            and message.id is not None
            and not is_relay_copy(message)
        ):
            self._fire_task(self._mark_pushed_read(message.id))
        return appended

    async def mark_read(self, message_ids: list[int]) -> Outcome[Any]:
        if not message_ids:
            return Outcome.success(None)
        try:
            result = await self._session.request(
                "PUT", PATH_MESSAGES_READ, json={"messageIds": list(message_ids)}
            )
        except FishCrewError as exc:
            logger.warning("Failed to mark messages %s as read: %s", message_ids, exc)
            return Outcome.failure(exc)
        ids = set(message_ids)
        self._messages = tuple(
            replace(m, read=True) if m.id in ids and not m.read else m
            for m in self._messages
        )
        self._notify()
        return Outcome.success(result)

    async def close(self) -> None:
        """Leave the open conversation, abandoning any history fetch."""
        self._generation += 1
        self._cancel_history()
        self._counterpart_id = None
        self._messages = ()
        self._loading = False
        self._error = None
        self._notify()

    async def aclose(self) -> None:
        self.detach()
        await self.close()
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._listeners.aclose()

    # -- Internal: reducers ---------------------------------------------------

    def _merge(self, incoming: Message) -> bool:
        """Insert or reconcile one message. Returns True if newly shown."""
        messages = list(self._messages)
        for index, existing in enumerate(messages):
            if incoming.id is not None and existing.id == incoming.id:
                if incoming.read and not existing.read:
                    messages[index] = replace(existing, read=True)
                    self._messages = tuple(messages)
                return False
            if incoming.client_id and existing.client_id == incoming.client_id:
                if not incoming.is_pending:
                    del messages[index]
                    self._messages = tuple(messages)
                    self._insert(incoming)
                return False

        if not incoming.is_pending:
            for index, existing in enumerate(messages):
                if existing.is_pending and self._same_content(existing, incoming):
                    del messages[index]
                    self._messages = tuple(messages)
                    self._insert(replace(incoming, client_id=existing.client_id))
                    return False

        if not incoming.is_pending and not incoming.client_id:
            relayed = is_relay_copy(incoming)
            for index, existing in enumerate(messages):
                if existing.is_pending or not self._same_content(existing, incoming):
                    continue
                if relayed and not is_relay_copy(existing):
                    logger.debug("Dropping relayed copy of message %s", existing.id)
                    return False
                if not relayed and is_relay_copy(existing):
                    # Stored row supersedes the relayed copy shown so far
                    del messages[index]
                    self._messages = tuple(messages)
                    self._insert(incoming)
                    return True

        self._insert(incoming)
        return True

    def _insert(self, message: Message) -> None:
        index = bisect.bisect_right(
            self._messages, message.timestamp, key=lambda m: m.timestamp
        )
        self._messages = self._messages[:index] + (message,) + self._messages[index:]

    def _same_content(self, existing: Message, incoming: Message) -> bool:
        return (
            existing.sender_id == incoming.sender_id
            and existing.recipient_id == incoming.recipient_id
            and existing.text == incoming.text
            and abs(incoming.timestamp - existing.timestamp) <= self._reconcile_window
        )

    def _confirm_pending(self, pending: Message, confirmed: Message) -> None:
        self._messages = tuple(m for m in self._messages if m.local_id != pending.local_id)
        if self._counterpart_id is not None and confirmed.involves(self._counterpart_id):
            self._merge(confirmed)
        self._error = None
        self._notify()

    def _drop_pending(self, pending: Message, *, restore: str) -> None:
        self._messages = tuple(m for m in self._messages if m.local_id != pending.local_id)
        self._draft = restore
        self._notify()

    def _fail(self, error: Exception) -> None:
        self._loading = False
        self._error = error
        self._notify()

    def _notify(self) -> None:
        self._listeners.emit(_EVENT_CHANGE, self.snapshot)

    # -- Internal: helpers ----------------------------------------------------

    def _resolve_self_id(self, self_id: int | str | None) -> int:
        if self_id is None and self._session.user is not None:
            return self._session.user.id
        me = parse_id(self_id)
        if me is None:
            raise AuthExpiredError("You must be logged in to view messages")
        return me

    def _resolve_pair(
        self, self_id: int | str | None, counterpart_id: int | str
    ) -> tuple[int, int]:
        me = self._resolve_self_id(self_id)
        other = parse_id(counterpart_id)
        if other is None:
            raise InvalidRecipientError(f"Invalid recipient ID: {counterpart_id!r}")
        if me == other:
            logger.error("Attempted to message self (user %s)", me)
            raise SelfMessagingError()
        return me, other

    def _cancel_history(self) -> None:
        task, self._history_task = self._history_task, None
        if task is not None and not task.done():
            task.cancel()

    async def _mark_pushed_read(self, message_id: int) -> None:
        outcome = await self.mark_read([message_id])
        if not outcome.ok:
            logger.debug("Best-effort mark-read for %s failed", message_id)

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
