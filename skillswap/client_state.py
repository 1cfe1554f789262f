"""
Reference consumer of pushed socket events.

Keeps the local state a client derives from the server's frames: message
threads, per-counterpart unread counters, transient typing flags and the
notification list.
"""

import time
from typing import Any, Callable, Optional

from skillswap.config import settings


class ClientState:
    def __init__(
        self,
        user_id: str,
        typing_timeout: float = settings.TYPING_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.user_id = user_id
        self.typing_timeout = typing_timeout
        self._clock = clock

        self.threads: dict[str, list[dict[str, Any]]] = {}
        self.unread_by_counterpart: dict[str, int] = {}
        self.open_counterpart: Optional[str] = None

        self.notifications: list[dict[str, Any]] = []
        self.unread_notifications = 0
        self._notification_ids: set = set()

        # sender -> monotonic deadline of the typing flag
        self._typing_until: dict[str, float] = {}

    def handle(self, event_name: str, payload: dict[str, Any]) -> None:
        """Apply one pushed frame; unknown events are ignored."""
        handler = {
            "new-message": self.on_new_message,
            "user-typing": self.on_user_typing,
            "new-notification": self.on_new_notification,
        }.get(event_name)
        if handler is not None:
            handler(payload)

    def on_new_message(self, payload: dict[str, Any]) -> None:
        self.threads.setdefault(payload["threadId"], []).append(payload)

        sender = payload["sender"]
        # a message from someone ends their typing indicator
        self._typing_until.pop(sender, None)

        if sender == self.user_id or sender == self.open_counterpart:
            return
        self.unread_by_counterpart[sender] = self.unread_by_counterpart.get(sender, 0) + 1

    def on_user_typing(self, payload: dict[str, Any]) -> None:
        sender = payload["sender"]
        if payload.get("isTyping"):
            self._typing_until[sender] = self._clock() + self.typing_timeout
        else:
            self._typing_until.pop(sender, None)

    def on_new_notification(self, payload: dict[str, Any]) -> None:
        notification_id = payload["id"]
        if notification_id in self._notification_ids:
            return
        self._notification_ids.add(notification_id)
        self.notifications.insert(0, payload)
        if not payload.get("read", False):
            self.unread_notifications += 1

    def open_thread(self, counterpart: str) -> None:
        """The user is now looking at the conversation with counterpart."""
        self.open_counterpart = counterpart
        self.unread_by_counterpart.pop(counterpart, None)

    def close_thread(self) -> None:
        self.open_counterpart = None

    def is_typing(self, sender: str) -> bool:
        deadline = self._typing_until.get(sender)
        if deadline is None:
            return False
        if self._clock() >= deadline:
            del self._typing_until[sender]
            return False
        return True

    def typing_users(self) -> set[str]:
        return {sender for sender in list(self._typing_until) if self.is_typing(sender)}

    def mark_notification_read(self, notification_id: Any) -> None:
        for notification in self.notifications:
            if notification["id"] == notification_id and not notification.get("read", False):
                notification["read"] = True
                self.unread_notifications -= 1
                return
