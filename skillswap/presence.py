"""
Presence registry: which live connections belong to which user.

A user may hold several connections at once (tabs, devices). A connection
belongs to at most one user. The registry is mutated only from the event
loop that reads it, so it carries no locks.
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """Exact, in-process map between connection ids and user ids."""

    def __init__(self):
        self._user_by_connection: dict[str, str] = {}
        self._connections_by_user: dict[str, set[str]] = {}

    def register(self, connection_id: str, user_id: str) -> None:
        """
        Associate connection_id with user_id.

        Idempotent. Registering the same connection under a different user
        moves it to that user.
        """
        previous = self._user_by_connection.get(connection_id)
        if previous == user_id:
            return
        if previous is not None:
            self._discard(connection_id, previous)
            logger.info(f"Connection {connection_id} moved from user {previous} to {user_id}")

        self._user_by_connection[connection_id] = user_id
        self._connections_by_user.setdefault(user_id, set()).add(connection_id)
        logger.debug(f"Registered connection {connection_id} for user {user_id}")

    def unregister(self, connection_id: str) -> Optional[str]:
        """
        Drop any association for connection_id.

        Safe for connections that never registered.

        Returns:
            The user the connection belonged to, or None
        """
        user_id = self._user_by_connection.pop(connection_id, None)
        if user_id is not None:
            self._discard(connection_id, user_id)
            logger.debug(f"Unregistered connection {connection_id} of user {user_id}")
        return user_id

    def connections_for(self, user_id: str) -> frozenset[str]:
        """Current connections of user_id; empty for unknown users."""
        return frozenset(self._connections_by_user.get(user_id, ()))

    def user_for(self, connection_id: str) -> Optional[str]:
        return self._user_by_connection.get(connection_id)

    def is_online(self, user_id: str) -> bool:
        return bool(self._connections_by_user.get(user_id))

    def online_users(self) -> frozenset[str]:
        return frozenset(self._connections_by_user)

    def __len__(self) -> int:
        return len(self._user_by_connection)

    def _discard(self, connection_id: str, user_id: str) -> None:
        connections = self._connections_by_user.get(user_id)
        if connections is None:
            return
        connections.discard(connection_id)
        if not connections:
            # no empty rooms left behind
            del self._connections_by_user[user_id]
