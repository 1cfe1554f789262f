"""
Pydantic schemas for events and HTTP request/response validation.

This module contains:
- Inbound event variants, one per event kind the dispatcher accepts
- Outbound event payloads pushed to client connections
- Request/response models for the REST API
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


MessageType = Literal["text", "image"]
MessageStatus = Literal["sent", "delivered", "read"]
NotificationType = Literal[
    "message",
    "match_request",
    "match_accepted",
    "session_scheduled",
    "session_reminder",
    "review_received",
]


class CamelModel(BaseModel):
    """Base for payloads that travel to clients with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# Inbound Event Variants
# =============================================================================

class ChatMessageEvent(CamelModel):
    """A user sends a chat message to another user."""
    event: Literal["send-message"] = "send-message"
    sender: str = Field(..., min_length=1)
    recipient: str = Field(..., min_length=1)
    content: str = Field(..., max_length=4096)
    type: MessageType = "text"

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("content must not be empty")
        return v

    @field_validator("sender", "recipient")
    @classmethod
    def no_key_separator(cls, v: str) -> str:
        # thread keys join the sorted pair with "-"
        if "-" in v:
            raise ValueError("user ids must not contain '-'")
        return v


class TypingEvent(CamelModel):
    """Typing indicator from sender, addressed to recipient."""
    event: Literal["typing-start", "typing-stop"]
    sender: str = Field(..., min_length=1)
    recipient: str = Field(..., min_length=1)

    @property
    def is_typing(self) -> bool:
        return self.event == "typing-start"


class NotificationEvent(CamelModel):
    """A producer service notifies user_id about something."""
    event: Literal["notification"] = "notification"
    user_id: str = Field(..., min_length=1)
    type: NotificationType
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=2000)
    data: dict[str, Any] = Field(default_factory=dict)


InboundEvent = Annotated[
    Union[ChatMessageEvent, TypingEvent, NotificationEvent],
    Field(discriminator="event"),
]


class JoinUserRequest(CamelModel):
    """Socket registration: an identity issued by the auth service."""
    user_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)


class SocketFrame(BaseModel):
    """Envelope of every socket frame in either direction."""
    event: str = Field(..., min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Outbound Event Payloads
# =============================================================================

class NewMessagePayload(CamelModel):
    id: int
    thread_id: str
    sender: str
    recipient: str
    content: str
    type: MessageType
    status: MessageStatus
    created_at: str

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class MessageSentPayload(CamelModel):
    id: int
    status: MessageStatus = "sent"


class MessageErrorPayload(CamelModel):
    error: str
    retryable: bool = False


class UserTypingPayload(CamelModel):
    sender: str
    is_typing: bool


class NewNotificationPayload(CamelModel):
    id: int
    type: NotificationType
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: str

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class UserJoinedPayload(CamelModel):
    user_id: str


# =============================================================================
# REST Request/Response Models
# =============================================================================

class SendMessageRequest(CamelModel):
    """Body of POST /api/messages; the sender is the authenticated caller."""
    recipient: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1, max_length=4096)
    type: MessageType = "text"


class MessageResponse(NewMessagePayload):
    """A stored message as returned by the REST API."""


class ConversationResponse(CamelModel):
    partner_id: str
    last_message: MessageResponse
    unread_count: int = Field(..., ge=0)


class ConversationsListResponse(BaseModel):
    data: list[ConversationResponse] = Field(default_factory=list)


class ThreadResponse(BaseModel):
    data: list[MessageResponse] = Field(default_factory=list)


class NotificationResponse(NewNotificationPayload):
    """A stored notification including its read flag."""
    read: bool = False


class NotificationsListResponse(CamelModel):
    notifications: list[NotificationResponse] = Field(default_factory=list)
    unread_count: int = Field(..., ge=0)


class StatusResponse(BaseModel):
    status: str = Field(default="ok", description="Operation status")
    updated: Optional[int] = Field(None, description="Number of records changed")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: Any = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
    connections: Optional[int] = Field(None, description="Registered socket connections")
