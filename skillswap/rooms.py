"""
Room routing: resolve a logical recipient to its live connections.

A room is the set of connections registered to one user. An empty room is a
normal outcome ("deliver nothing now"); the durable record stays available.
"""

from skillswap.presence import PresenceRegistry


def room_for_user(user_id: str) -> str:
    return f"user-{user_id}"


class RoomRouter:
    def __init__(self, presence: PresenceRegistry):
        self._presence = presence

    def resolve_targets(self, recipient_user_id: str) -> frozenset[str]:
        """Connections that should receive an event addressed to the user."""
        return self._presence.connections_for(recipient_user_id)

    def counterpart_targets(self, sender: str, recipient: str) -> frozenset[str]:
        """
        Targets for conversation-scoped events such as typing indicators.

        Only the counterpart is addressed, never the sender, even when the
        sender names itself as recipient.
        """
        if sender == recipient:
            return frozenset()
        return self.resolve_targets(recipient)
