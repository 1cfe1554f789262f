import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import (
    Depends,
    FastAPI,
    Header,
    HTTPException,
    Query,
    Request,
    Response,
    WebSocket,
    status,
)
from pydantic import ValidationError
from sqlalchemy.orm import Session

from skillswap.config import settings
from skillswap.dispatcher import EventDispatcher, parse_event
from skillswap.errors import EventValidationError, NotFoundError, PersistenceFailure
from skillswap.logging_utils import (
    RequestLoggingMiddleware,
    connection_id_ctx,
    log_producer_data,
    setup_logging,
)
from skillswap.metrics import get_metrics, get_metrics_content_type, record_event_outcome
from skillswap.notifications import NotificationService
from skillswap.presence import PresenceRegistry
from skillswap.rooms import RoomRouter
from skillswap.schemas import (
    ChatMessageEvent,
    ConversationResponse,
    ConversationsListResponse,
    ErrorResponse,
    HealthResponse,
    JoinUserRequest,
    MessageResponse,
    NotificationEvent,
    NotificationResponse,
    NotificationsListResponse,
    SendMessageRequest,
    SocketFrame,
    StatusResponse,
    ThreadResponse,
    UserJoinedPayload,
)
from skillswap.storage import (
    check_db_health,
    delete_notification,
    get_conversations,
    get_db,
    get_thread_messages,
    init_db,
    list_notifications,
    mark_all_read,
    mark_notification_read,
    update_message_status,
)
from skillswap.transport import WebSocketTransport
from skillswap.utils import thread_key, verify_hmac_signature, verify_user_signature


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

SOCKET_EVENTS = ("send-message", "typing-start", "typing-stop")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: create tables, build the realtime components for this process
    - Shutdown: drop them so nothing outlives the app
    """
    init_db()

    presence = PresenceRegistry()
    transport = WebSocketTransport(presence)
    dispatcher = EventDispatcher(RoomRouter(presence), transport)

    app.state.presence = presence
    app.state.transport = transport
    app.state.dispatcher = dispatcher
    app.state.notifications = NotificationService(dispatcher)
    yield
    logger.info(f"Shutting down with {len(transport)} open connection(s)")


app = FastAPI(
    title="SkillSwap Realtime API",
    description="Chat, typing indicators and notifications for the SkillSwap exchange",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Dependencies
# =============================================================================

def get_dispatcher(request: Request) -> EventDispatcher:
    return request.app.state.dispatcher


def get_notification_service(request: Request) -> NotificationService:
    return request.app.state.notifications


async def get_current_user(
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
    x_user_signature: Annotated[str | None, Header(alias="X-User-Signature")] = None,
) -> str:
    """
    Identity of the caller as issued by the auth service.

    X-User-Signature is the hex HMAC-SHA256 of X-User-Id under AUTH_SECRET.
    """
    if not x_user_id or not verify_user_signature(x_user_id, x_user_signature or "", settings.AUTH_SECRET):
        logger.warning("Rejected request with missing or invalid identity")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid credentials"
        )
    return x_user_id


CurrentUser = Annotated[str, Depends(get_current_user)]


def persistence_error(e: PersistenceFailure) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"error": str(e), "retryable": e.retryable},
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(request: Request, response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. AUTH_SECRET and WEBHOOK_SECRET are set (non-empty)
    2. DB is reachable and schema is applied

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.AUTH_SECRET or not settings.WEBHOOK_SECRET:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="AUTH_SECRET or WEBHOOK_SECRET not configured"
        )

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready", connections=len(request.app.state.presence))


# =============================================================================
# Realtime Socket
# =============================================================================

@app.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    """
    Bidirectional event channel.

    A connection receives nothing until it sends join-user with an identity
    issued by the auth service. After that, send-message and typing events
    are attributed to that identity.
    """
    transport: WebSocketTransport = websocket.app.state.transport
    dispatcher: EventDispatcher = websocket.app.state.dispatcher
    connection_id = await transport.on_connect(websocket)
    token = connection_id_ctx.set(connection_id)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                # binary frames carry no event envelope
                logger.warning("Binary socket frame rejected")
                await dispatcher.reject(connection_id, "malformed frame")
                continue
            await handle_socket_frame(websocket, connection_id, raw)
    finally:
        transport.on_disconnect(connection_id)
        connection_id_ctx.reset(token)


async def handle_socket_frame(websocket: WebSocket, connection_id: str, raw: str) -> None:
    """Handle one inbound frame. Failures are reported to this connection only."""
    presence: PresenceRegistry = websocket.app.state.presence
    dispatcher: EventDispatcher = websocket.app.state.dispatcher

    try:
        frame = SocketFrame.model_validate_json(raw)
    except ValidationError:
        logger.warning("Malformed socket frame")
        await dispatcher.reject(connection_id, "malformed frame")
        return

    if frame.event == "join-user":
        await join_user(websocket, connection_id, frame.data)
        return

    if frame.event not in SOCKET_EVENTS:
        logger.warning(f"Unknown socket event: {frame.event}")
        await dispatcher.reject(connection_id, f"unknown event: {frame.event}")
        return

    kind = "chat_message" if frame.event == "send-message" else "typing"
    sender = presence.user_for(connection_id)
    try:
        if sender is None:
            raise EventValidationError("join-user required before sending events")
        claimed = frame.data.get("sender")
        if claimed is not None and claimed != sender:
            raise EventValidationError("sender does not match the joined user")
        event = parse_event(frame.event, {**frame.data, "sender": sender})
    except EventValidationError as e:
        logger.warning(f"Rejected {frame.event}: {e}")
        record_event_outcome(kind, "validation_error")
        await dispatcher.reject(connection_id, str(e), retryable=False)
        return

    try:
        await dispatcher.dispatch(event, origin=connection_id)
    except PersistenceFailure:
        # originator already received message-error
        pass
    except Exception:
        logger.exception(f"Unexpected failure handling {frame.event}")
        await dispatcher.reject(connection_id, "internal error", retryable=True)


async def join_user(websocket: WebSocket, connection_id: str, data: dict) -> None:
    presence: PresenceRegistry = websocket.app.state.presence
    dispatcher: EventDispatcher = websocket.app.state.dispatcher
    transport: WebSocketTransport = websocket.app.state.transport

    try:
        request = JoinUserRequest.model_validate(data)
    except ValidationError:
        await dispatcher.reject(connection_id, "join-user requires userId and signature")
        return

    if not verify_user_signature(request.user_id, request.signature, settings.AUTH_SECRET):
        logger.warning(f"Invalid identity signature for user {request.user_id}")
        await dispatcher.reject(connection_id, "invalid credentials")
        return

    presence.register(connection_id, request.user_id)
    logger.info(f"User {request.user_id} joined", extra={"user_id": request.user_id})
    await transport.push(connection_id, "user-joined", UserJoinedPayload(user_id=request.user_id).to_wire())


# =============================================================================
# Messages Routes
# =============================================================================

@app.get("/api/messages", response_model=ConversationsListResponse)
async def list_conversations(
    user_id: CurrentUser,
    db: Session = Depends(get_db)
) -> ConversationsListResponse:
    """
    Conversations of the caller, most recently active first, each with the
    last message and the number of unread messages from that partner.
    """
    conversations = get_conversations(db, user_id)
    logger.info(f"GET /api/messages: {len(conversations)} conversations")
    return ConversationsListResponse(
        data=[
            ConversationResponse(
                partner_id=conversation["partner_id"],
                last_message=MessageResponse.model_validate(conversation["last_message"]),
                unread_count=conversation["unread_count"],
            )
            for conversation in conversations
        ]
    )


@app.get("/api/messages/{partner_id}", response_model=ThreadResponse)
async def get_thread(
    partner_id: str,
    user_id: CurrentUser,
    db: Session = Depends(get_db)
) -> ThreadResponse:
    """
    The thread with partner_id, oldest first. Opening it marks the partner's
    unread messages to the caller as read.
    """
    try:
        updated = update_message_status(
            db,
            thread_key(user_id, partner_id),
            "read",
            sender=partner_id,
            recipient=user_id,
            status="sent",
        )
    except PersistenceFailure as e:
        raise persistence_error(e)

    messages = get_thread_messages(db, user_id, partner_id)
    logger.info(f"GET /api/messages/{partner_id}: {len(messages)} messages, {updated} marked read")
    return ThreadResponse(data=[MessageResponse.model_validate(m) for m in messages])


@app.post(
    "/api/messages",
    response_model=MessageResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
        422: {"description": "Validation error"},
        503: {"model": ErrorResponse, "description": "Message not stored"},
    }
)
async def send_message(
    body: SendMessageRequest,
    user_id: CurrentUser,
    dispatcher: EventDispatcher = Depends(get_dispatcher),
) -> MessageResponse:
    """
    Send a chat message as the caller. It is stored and pushed to the
    recipient's live connections only.
    """
    try:
        event = ChatMessageEvent(
            sender=user_id,
            recipient=body.recipient,
            content=body.content,
            type=body.type,
        )
    except ValidationError as e:
        record_event_outcome("chat_message", "validation_error")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[err["msg"] for err in e.errors()]
        )

    try:
        payload = await dispatcher.send_chat_message(event)
    except PersistenceFailure as e:
        raise persistence_error(e)

    return MessageResponse.model_validate(payload.model_dump())


# =============================================================================
# Notifications Routes
# =============================================================================

@app.get("/api/notifications", response_model=NotificationsListResponse)
async def get_notifications(
    user_id: CurrentUser,
    limit: Annotated[int, Query(ge=1, le=100, description="Maximum number of notifications to return")] = 50,
    offset: Annotated[int, Query(ge=0, description="Number of notifications to skip")] = 0,
    db: Session = Depends(get_db)
) -> NotificationsListResponse:
    """
    The caller's notifications, newest first, and the total unread count.
    """
    items, unread_count = list_notifications(db, user_id, limit=limit, offset=offset)
    return NotificationsListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in items],
        unread_count=unread_count,
    )


@app.put("/api/notifications/read-all", response_model=StatusResponse)
async def read_all_notifications(
    user_id: CurrentUser,
    db: Session = Depends(get_db)
) -> StatusResponse:
    try:
        updated = mark_all_read(db, user_id)
    except PersistenceFailure as e:
        raise persistence_error(e)
    return StatusResponse(status="ok", updated=updated)


@app.put(
    "/api/notifications/{notification_id}/read",
    response_model=NotificationResponse,
    responses={404: {"model": ErrorResponse, "description": "Notification not found"}},
)
async def read_notification(
    notification_id: int,
    user_id: CurrentUser,
    db: Session = Depends(get_db)
) -> NotificationResponse:
    try:
        notification = mark_notification_read(db, notification_id, user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PersistenceFailure as e:
        raise persistence_error(e)
    return NotificationResponse.model_validate(notification)


@app.delete(
    "/api/notifications/{notification_id}",
    response_model=StatusResponse,
    responses={404: {"model": ErrorResponse, "description": "Notification not found"}},
)
async def remove_notification(
    notification_id: int,
    user_id: CurrentUser,
    db: Session = Depends(get_db)
) -> StatusResponse:
    try:
        delete_notification(db, notification_id, user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PersistenceFailure as e:
        raise persistence_error(e)
    return StatusResponse(status="ok")


# =============================================================================
# Producer Webhook Route
# =============================================================================

@app.post(
    "/webhook/notifications",
    response_model=NotificationResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        422: {"description": "Validation error"},
        503: {"model": ErrorResponse, "description": "Notification not stored"},
    }
)
async def producer_notification(
    request: Request,
    x_signature: Annotated[str | None, Header(alias="X-Signature")] = None,
    service: NotificationService = Depends(get_notification_service),
) -> NotificationResponse:
    """
    Entry point for producer services (matching, scheduling, reviews).

    Headers:
        - Content-Type: application/json
        - X-Signature: hex HMAC-SHA256 of raw body using WEBHOOK_SECRET
    """
    raw_body = await request.body()

    if not x_signature or not verify_hmac_signature(raw_body, x_signature, settings.WEBHOOK_SECRET):
        logger.error("Invalid or missing producer signature")
        log_producer_data(request, result="invalid_signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid signature"
        )

    try:
        event = NotificationEvent.model_validate_json(raw_body)
    except ValidationError as e:
        logger.error(f"Validation error: {e}")
        record_event_outcome("notification", "validation_error")
        log_producer_data(request, result="validation_error")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[err["msg"] for err in e.errors()]
        )

    try:
        payload = await service.create_notification(
            event.user_id,
            event.type,
            event.title,
            event.message,
            event.data,
        )
    except PersistenceFailure as e:
        log_producer_data(request, result="persistence_error")
        raise persistence_error(e)

    log_producer_data(request, notification_id=payload.id, result="created")
    return NotificationResponse.model_validate(payload.model_dump())


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
