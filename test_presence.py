"""
Tests for the PresenceRegistry and RoomRouter.
"""

from skillswap.presence import PresenceRegistry
from skillswap.rooms import RoomRouter, room_for_user
from skillswap.utils import thread_key


class TestPresenceRegistry:
    def test_unknown_user_has_no_connections(self):
        assert PresenceRegistry().connections_for("nobody") == frozenset()

    def test_register_is_idempotent(self):
        registry = PresenceRegistry()
        registry.register("c1", "alice")
        registry.register("c1", "alice")

        assert registry.connections_for("alice") == {"c1"}
        assert len(registry) == 1

    def test_multiple_devices(self):
        registry = PresenceRegistry()
        registry.register("c1", "alice")
        registry.register("c2", "alice")

        assert registry.connections_for("alice") == {"c1", "c2"}

    def test_reregister_moves_connection(self):
        registry = PresenceRegistry()
        registry.register("c1", "alice")
        registry.register("c1", "bob")

        assert registry.connections_for("alice") == frozenset()
        assert registry.connections_for("bob") == {"c1"}
        assert registry.user_for("c1") == "bob"
        assert not registry.is_online("alice")

    def test_unregister_removes_immediately(self):
        registry = PresenceRegistry()
        registry.register("c1", "alice")
        registry.register("c2", "alice")

        assert registry.unregister("c1") == "alice"

        assert registry.connections_for("alice") == {"c2"}
        assert registry.user_for("c1") is None

    def test_unregister_unknown_is_noop(self):
        registry = PresenceRegistry()
        registry.register("c1", "alice")

        assert registry.unregister("never-registered") is None
        assert registry.connections_for("alice") == {"c1"}

    def test_last_connection_leaves_no_room(self):
        registry = PresenceRegistry()
        registry.register("c1", "alice")
        registry.unregister("c1")

        assert registry.online_users() == frozenset()
        assert len(registry) == 0

    def test_returned_set_is_a_snapshot(self):
        registry = PresenceRegistry()
        registry.register("c1", "alice")
        snapshot = registry.connections_for("alice")
        registry.register("c2", "alice")

        assert snapshot == {"c1"}


class TestRoomRouter:
    def test_resolve_targets(self):
        registry = PresenceRegistry()
        registry.register("c1", "bob")
        router = RoomRouter(registry)

        assert router.resolve_targets("bob") == {"c1"}
        assert router.resolve_targets("carol") == frozenset()

    def test_counterpart_never_includes_sender(self):
        registry = PresenceRegistry()
        registry.register("a1", "alice")
        registry.register("b1", "bob")
        router = RoomRouter(registry)

        assert router.counterpart_targets("alice", "bob") == {"b1"}
        assert router.counterpart_targets("alice", "alice") == frozenset()

    def test_room_name(self):
        assert room_for_user("42") == "user-42"


class TestThreadKey:
    def test_order_independent(self):
        assert thread_key("alice", "bob") == thread_key("bob", "alice") == "alice-bob"

    def test_sorted_lexicographically(self):
        assert thread_key("64f1b", "12ab0") == "12ab0-64f1b"
