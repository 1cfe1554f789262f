import logging
from datetime import datetime, timezone
from typing import Any, Callable, Generator, Optional, Tuple

from sqlalchemy import create_engine, inspect, text, or_, and_
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from skillswap.config import settings
from skillswap.errors import NotFoundError, PersistenceFailure

logger = logging.getLogger(__name__)

# check_same_thread=False is required for SQLite because the dispatcher
# persists from worker threads
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=connect_args,
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()

REQUIRED_TABLES = ("messages", "notifications")


def utc_now_iso() -> str:
    """Server time as ISO-8601 UTC with millisecond precision."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from skillswap import models  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and every table exists, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
            existing = set(inspect(db.connection()).get_table_names())
            missing = [name for name in REQUIRED_TABLES if name not in existing]
            if missing:
                logger.error(f"Database schema not applied, missing tables: {missing}")
                return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


def _commit(db: Session, what: str, write: Optional[Callable[[], Any]] = None) -> Any:
    """
    Commit, rolling back and raising PersistenceFailure on error.

    write, when given, runs inside the same guard before the commit and its
    result is returned. Bulk updates execute immediately and go through write.
    """
    try:
        result = write() if write is not None else None
        db.commit()
        return result
    except IntegrityError as e:
        db.rollback()
        logger.error(f"Integrity error while saving {what}: {e}")
        raise PersistenceFailure(f"could not save {what}", retryable=False) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save {what}: {e}")
        raise PersistenceFailure(f"could not save {what}", retryable=True) from e


# =============================================================================
# Message Repository Functions
# =============================================================================

def create_message(
    db: Session,
    thread_id: str,
    sender: str,
    recipient: str,
    content: str,
    msg_type: str = "text",
):
    """
    Persist a new chat message with status 'sent'.

    Raises:
        PersistenceFailure: the write did not complete
    """
    from skillswap.models import Message

    logger.info(f"Creating message: thread={thread_id}, from={sender}, to={recipient}")

    message = Message(
        thread_id=thread_id,
        sender=sender,
        recipient=recipient,
        content=content,
        type=msg_type,
        status="sent",
        created_at=utc_now_iso(),
    )
    db.add(message)
    _commit(db, "message")
    db.refresh(message)

    logger.info(f"Message created successfully: {message.id}")
    return message


def update_message_status(
    db: Session,
    thread_id: str,
    new_status: str,
    sender: Optional[str] = None,
    recipient: Optional[str] = None,
    status: Optional[str] = None,
) -> int:
    """
    Move the messages of a thread that match the given filters to new_status.

    Returns:
        Number of messages updated
    """
    from skillswap.models import Message

    query = db.query(Message).filter(Message.thread_id == thread_id)
    if sender is not None:
        query = query.filter(Message.sender == sender)
    if recipient is not None:
        query = query.filter(Message.recipient == recipient)
    if status is not None:
        query = query.filter(Message.status == status)

    updated = _commit(
        db,
        "message status",
        lambda: query.update({Message.status: new_status}, synchronize_session=False),
    )

    logger.debug(f"Updated {updated} messages in {thread_id} to {new_status}")
    return updated


def get_thread_messages(db: Session, user_id: str, partner_id: str) -> list:
    """Messages exchanged between two users, oldest first."""
    from skillswap.models import Message

    return (
        db.query(Message)
        .filter(
            or_(
                and_(Message.sender == user_id, Message.recipient == partner_id),
                and_(Message.sender == partner_id, Message.recipient == user_id),
            )
        )
        .order_by(Message.created_at.asc(), Message.id.asc())
        .all()
    )


def get_conversations(db: Session, user_id: str) -> list[dict]:
    """
    Summarise every conversation the user takes part in.

    Returns:
        One dict per partner with partner_id, last_message and unread_count,
        most recently active conversation first
    """
    from skillswap.models import Message

    messages = (
        db.query(Message)
        .filter(or_(Message.sender == user_id, Message.recipient == user_id))
        .order_by(Message.created_at.desc(), Message.id.desc())
        .all()
    )

    conversations: dict[str, dict] = {}
    for message in messages:
        partner_id = message.recipient if message.sender == user_id else message.sender
        if partner_id not in conversations:
            conversations[partner_id] = {
                "partner_id": partner_id,
                "last_message": message,
                "unread_count": 0,
            }
        if message.recipient == user_id and message.status != "read":
            conversations[partner_id]["unread_count"] += 1

    logger.debug(f"Found {len(conversations)} conversations for {user_id}")
    return list(conversations.values())


# =============================================================================
# Notification Repository Functions
# =============================================================================

def create_notification(
    db: Session,
    user_id: str,
    notification_type: str,
    title: str,
    message: str,
    data: Optional[dict[str, Any]] = None,
):
    """
    Persist a new unread notification.

    Raises:
        PersistenceFailure: the write did not complete
    """
    from skillswap.models import Notification

    logger.info(f"Creating notification: user={user_id}, type={notification_type}")

    notification = Notification(
        user_id=user_id,
        type=notification_type,
        title=title,
        message=message,
        data=data or {},
        read=False,
        created_at=utc_now_iso(),
    )
    db.add(notification)
    _commit(db, "notification")
    db.refresh(notification)

    logger.info(f"Notification created successfully: {notification.id}")
    return notification


def _owned_notification(db: Session, notification_id: int, user_id: str):
    from skillswap.models import Notification

    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .first()
    )
    if notification is None:
        raise NotFoundError("Notification not found")
    return notification


def mark_notification_read(db: Session, notification_id: int, user_id: str):
    """
    Mark one of the user's notifications read. Marking it again is a no-op.

    Raises:
        NotFoundError: no such notification for this user
    """
    notification = _owned_notification(db, notification_id, user_id)
    if not notification.read:
        notification.read = True
        _commit(db, "notification")
        db.refresh(notification)
        logger.info(f"Notification {notification_id} marked read")
    return notification


def mark_all_read(db: Session, user_id: str) -> int:
    """
    Mark every unread notification of the user read.

    Returns:
        Number of notifications updated
    """
    from skillswap.models import Notification

    query = db.query(Notification).filter(Notification.user_id == user_id, Notification.read.is_(False))
    updated = _commit(
        db,
        "notifications",
        lambda: query.update({Notification.read: True}, synchronize_session=False),
    )

    logger.info(f"Marked {updated} notifications read for {user_id}")
    return updated


def list_notifications(
    db: Session,
    user_id: str,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[list, int]:
    """
    Page through the user's notifications, newest first.

    Returns:
        Tuple of (notifications page, unread count across all notifications)
    """
    from skillswap.models import Notification

    items = (
        db.query(Notification)
        .filter(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    unread_count = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read.is_(False))
        .count()
    )

    logger.debug(f"Listed {len(items)} notifications for {user_id}, unread={unread_count}")
    return items, unread_count


def delete_notification(db: Session, notification_id: int, user_id: str) -> None:
    """
    Delete one of the user's notifications.

    Raises:
        NotFoundError: no such notification for this user
    """
    notification = _owned_notification(db, notification_id, user_id)
    db.delete(notification)
    _commit(db, "notification deletion")
    logger.info(f"Notification {notification_id} deleted")
