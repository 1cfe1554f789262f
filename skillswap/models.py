"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic event and response schemas, see schemas.py.
"""

from sqlalchemy import JSON, Boolean, Column, Integer, String, Text

from skillswap.storage import Base


class Message(Base):
    """
    A chat message between two users.

    Table: messages
    thread_id is always the sorted pair of sender and recipient.
    Only status changes after creation (sent -> read).
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    thread_id = Column(String, nullable=False, index=True)
    sender = Column(String, nullable=False, index=True)
    recipient = Column(String, nullable=False, index=True)
    content = Column(Text, nullable=False)
    type = Column(String, nullable=False, default="text")
    status = Column(String, nullable=False, default="sent")
    created_at = Column(String, nullable=False, index=True)  # Server time ISO-8601


class Notification(Base):
    """
    A notification owned by one user.

    Table: notifications
    read only moves from False to True.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(String, nullable=False, index=True)
