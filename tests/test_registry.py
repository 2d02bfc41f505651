"""Tests for user get-or-create."""

import threading
from datetime import datetime, timedelta

import pytest

from wabot.errors import RegistryError
from wabot.models import User as UserRow
from wabot.registry import UserRegistry


T0 = datetime(2025, 1, 15, 10, 0, 0)


class TestResolve:

    def test_resolve_is_idempotent_get_or_create(self, db):
        """Two resolves give counts 1 then 2; first_seen fixed, last_seen advancing."""
        registry = UserRegistry(db)

        first = registry.resolve("A@c.us", "Alice", T0)
        second = registry.resolve("A@c.us", "Alice", T0 + timedelta(minutes=5))

        assert first.message_count == 1
        assert second.message_count == 2
        assert first.id == second.id
        assert first.first_seen == T0
        assert second.first_seen == T0
        assert first.last_seen == T0
        assert second.last_seen == T0 + timedelta(minutes=5)

        with db() as session:
            assert session.query(UserRow).count() == 1

    def test_new_user_defaults(self, db):
        user = UserRegistry(db).resolve("A@c.us", None, T0)

        assert user.sender_id == "A@c.us"
        assert user.name is None
        assert user.is_blocked is False

    def test_name_hint_fills_missing_name_only(self, db):
        registry = UserRegistry(db)

        registry.resolve("A@c.us", None, T0)
        assert registry.resolve("A@c.us", "Alice", T0).name == "Alice"
        assert registry.resolve("A@c.us", "Someone Else", T0).name == "Alice"

    def test_cancelled_resolve_creates_nothing(self, db):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(RegistryError):
            UserRegistry(db).resolve("A@c.us", "Alice", T0, cancel=cancel)

        with db() as session:
            assert session.query(UserRow).count() == 0

    def test_cancelled_resolve_leaves_counters(self, db):
        registry = UserRegistry(db)
        registry.resolve("A@c.us", None, T0)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(RegistryError):
            registry.resolve("A@c.us", "Alice", T0 + timedelta(minutes=1), cancel=cancel)

        user = registry.resolve("A@c.us", None, T0 + timedelta(minutes=2))
        assert user.message_count == 2
        assert user.name is None

    def test_storage_failure_raises_registry_error(self, broken_session_factory):
        """No user is fabricated when the users table is unreachable."""
        with pytest.raises(RegistryError):
            UserRegistry(broken_session_factory).resolve("A@c.us", None, T0)
