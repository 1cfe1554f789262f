"""
Event dispatcher: validate, persist, resolve targets, push.

One operation per event kind:

    kind            persisted      targets
    chat message    Message        recipient's connections (+ ack to origin)
    typing          no             counterpart's connections
    notification    Notification   every connection of the owner

If persistence fails nothing is forwarded and the originator gets a
message-error frame with a retryable flag. The dispatcher never retries.
A recipient with no live connection is only logged; the stored record is
fetched on the next load.

Persistence runs in a worker thread so only the event being stored waits
on the database. Events read from a single socket are dispatched one after
another, which keeps delivery FIFO per sender/recipient pair.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from skillswap import storage
from skillswap.config import settings
from skillswap.errors import EventValidationError, PersistenceFailure
from skillswap.metrics import record_event_outcome
from skillswap.rooms import RoomRouter, room_for_user
from skillswap.schemas import (
    ChatMessageEvent,
    InboundEvent,
    MessageErrorPayload,
    MessageSentPayload,
    NewMessagePayload,
    NewNotificationPayload,
    NotificationEvent,
    TypingEvent,
    UserTypingPayload,
)
from skillswap.transport import Transport
from skillswap.utils import thread_key

logger = logging.getLogger(__name__)

_inbound_adapter = TypeAdapter(InboundEvent)


def parse_event(event_name: str, data: dict[str, Any]):
    """
    Build the tagged event variant for an inbound frame.

    Raises:
        EventValidationError: unknown event name or ill-shaped data
    """
    try:
        return _inbound_adapter.validate_python({**data, "event": event_name})
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:]) or event_name}: {err['msg']}"
            for err in e.errors()
        )
        raise EventValidationError(f"invalid {event_name} event: {errors}") from e


class EventDispatcher:
    def __init__(
        self,
        router: RoomRouter,
        transport: Transport,
        session_factory: Callable = storage.SessionLocal,
        persistence_timeout: float = settings.PERSISTENCE_TIMEOUT_SECONDS,
    ):
        self._router = router
        self._transport = transport
        self._session_factory = session_factory
        self._persistence_timeout = persistence_timeout

    async def dispatch(self, event, origin: Optional[str] = None):
        """Route a validated inbound event to the operation for its kind."""
        if isinstance(event, ChatMessageEvent):
            return await self.send_chat_message(event, origin)
        if isinstance(event, TypingEvent):
            return await self.send_typing(event)
        if isinstance(event, NotificationEvent):
            return await self.send_notification(event)
        raise EventValidationError(f"unsupported event: {type(event).__name__}")

    async def send_chat_message(
        self,
        event: ChatMessageEvent,
        origin: Optional[str] = None,
    ) -> NewMessagePayload:
        """
        Store a chat message and push it to the recipient.

        The originating connection, if any, gets a message-sent ack.

        Raises:
            PersistenceFailure: the message was not stored and not forwarded
        """
        kind = "chat_message"
        try:
            payload = await self._persist(
                storage.create_message,
                NewMessagePayload.model_validate,
                thread_key(event.sender, event.recipient),
                event.sender,
                event.recipient,
                event.content,
                event.type,
            )
        except PersistenceFailure as e:
            record_event_outcome(kind, "persistence_error")
            await self.reject(origin, "Failed to send message", retryable=e.retryable)
            raise

        # a note to self reaches the sender's other devices; origin only gets the ack
        targets = self._router.resolve_targets(event.recipient) - {origin}
        delivered = await self._fan_out(targets, "new-message", payload.to_wire())
        self._record_delivery(kind, event.recipient, delivered, payload.id)

        if origin is not None:
            ack = MessageSentPayload(id=payload.id, status=payload.status)
            await self._transport.push(origin, "message-sent", ack.to_wire())

        return payload

    async def send_typing(self, event: TypingEvent) -> int:
        """
        Forward a typing indicator to the counterpart. Not stored, not acked.

        Returns:
            Number of connections the indicator reached
        """
        payload = UserTypingPayload(sender=event.sender, is_typing=event.is_typing)
        targets = self._router.counterpart_targets(event.sender, event.recipient)
        delivered = await self._fan_out(targets, "user-typing", payload.to_wire())
        record_event_outcome("typing", "delivered" if delivered else "no_recipient")
        return delivered

    async def send_notification(self, event: NotificationEvent) -> NewNotificationPayload:
        """
        Store a notification and push the same payload to every device of
        the owner.

        Raises:
            PersistenceFailure: the notification was not stored
        """
        kind = "notification"
        try:
            payload = await self._persist(
                storage.create_notification,
                NewNotificationPayload.model_validate,
                event.user_id,
                event.type,
                event.title,
                event.message,
                event.data,
            )
        except PersistenceFailure:
            record_event_outcome(kind, "persistence_error")
            raise

        targets = self._router.resolve_targets(event.user_id)
        delivered = await self._fan_out(targets, "new-notification", payload.to_wire())
        self._record_delivery(kind, event.user_id, delivered, payload.id)
        return payload

    async def reject(self, origin: Optional[str], error: str, retryable: bool = False) -> None:
        """Tell the originating connection its event was not accepted."""
        if origin is None:
            return
        payload = MessageErrorPayload(error=error, retryable=retryable)
        await self._transport.push(origin, "message-error", payload.to_wire())

    async def _persist(self, write: Callable, convert: Callable, *args):
        """
        Run a storage write in a worker thread with its own session.

        The stored row is converted while the session is still open so the
        result does not depend on ORM state.
        """
        def run():
            with self._session_factory() as db:
                return convert(write(db, *args))

        try:
            return await asyncio.wait_for(
                asyncio.to_thread(run),
                timeout=self._persistence_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Persistence timed out after {self._persistence_timeout}s")
            raise PersistenceFailure("persistence timed out", retryable=True) from e
        except SQLAlchemyError as e:
            logger.error(f"Persistence failed: {e}")
            raise PersistenceFailure("persistence failed", retryable=True) from e

    async def _fan_out(self, targets: frozenset[str], event_name: str, payload: dict) -> int:
        if not targets:
            return 0
        results = await asyncio.gather(
            *(self._transport.push(connection_id, event_name, payload) for connection_id in sorted(targets))
        )
        return sum(1 for ok in results if ok)

    def _record_delivery(self, kind: str, user_id: str, delivered: int, record_id: int) -> None:
        if delivered:
            record_event_outcome(kind, "delivered")
            logger.debug(f"{kind} {record_id} pushed to {delivered} connection(s) in {room_for_user(user_id)}")
        else:
            record_event_outcome(kind, "no_recipient")
            logger.info(
                f"No live connection for {kind} {record_id}; stored for next fetch",
                extra={"user_id": user_id},
            )
