"""
Notification producers.

Match-making, session scheduling and reviews live in other services; they
describe what happened and this module turns it into a stored, pushed
notification with a fixed title and body per type.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from skillswap.dispatcher import EventDispatcher
from skillswap.schemas import NewNotificationPayload, NotificationEvent

logger = logging.getLogger(__name__)


def _format_when(value: str) -> str:
    """Render an ISO-8601 timestamp for humans; leave anything else as is."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return parsed.strftime("%b %d, %Y %H:%M UTC")


class NotificationService:
    def __init__(self, dispatcher: EventDispatcher):
        self._dispatcher = dispatcher

    async def create_notification(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
    ) -> NewNotificationPayload:
        event = NotificationEvent(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            data=data or {},
        )
        return await self._dispatcher.send_notification(event)

    async def notify_message(self, recipient_id: str, sender_name: str, message_preview: str):
        return await self.create_notification(
            recipient_id,
            "message",
            "New Message",
            f"{sender_name}: {message_preview}",
            {"type": "message"},
        )

    async def notify_match_request(self, recipient_id: str, sender_name: str):
        return await self.create_notification(
            recipient_id,
            "match_request",
            "New Match Request",
            f"{sender_name} wants to connect with you!",
            {"type": "match_request"},
        )

    async def notify_match_accepted(self, recipient_id: str, sender_name: str):
        return await self.create_notification(
            recipient_id,
            "match_accepted",
            "Match Accepted!",
            f"{sender_name} accepted your match request",
            {"type": "match_accepted"},
        )

    async def notify_session_scheduled(self, recipient_id: str, session_title: str, scheduled_at: str):
        return await self.create_notification(
            recipient_id,
            "session_scheduled",
            "Session Scheduled",
            f'Your session "{session_title}" is scheduled for {_format_when(scheduled_at)}',
            {"type": "session_scheduled", "scheduledAt": scheduled_at},
        )

    async def notify_session_reminder(self, recipient_id: str, session_title: str, scheduled_at: str):
        return await self.create_notification(
            recipient_id,
            "session_reminder",
            "Session Reminder",
            f'Your session "{session_title}" starts at {_format_when(scheduled_at)}',
            {"type": "session_reminder", "scheduledAt": scheduled_at},
        )

    async def notify_review_received(self, recipient_id: str, reviewer_name: str, rating: int):
        return await self.create_notification(
            recipient_id,
            "review_received",
            "New Review",
            f"{reviewer_name} gave you a {rating}-star review!",
            {"type": "review_received", "rating": rating},
        )
