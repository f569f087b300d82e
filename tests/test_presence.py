# tests/test_presence.py
from __future__ import annotations

import pytest

from odali.core.presence import PresenceRegistry


@pytest.fixture
def registry():
    return PresenceRegistry()


@pytest.fixture
def s1(session_factory):
    return session_factory("s1")


@pytest.fixture
def s2(session_factory):
    return session_factory("s2")


def test_register_and_lookup(registry, s1):
    assert registry.register_session("alice", s1) is None
    assert registry.lookup("alice") is s1
    assert registry.is_online("alice")
    assert len(registry) == 1


def test_last_registration_wins(registry, s1, s2):
    registry.register_session("alice", s1)
    previous = registry.register_session("alice", s2)
    assert previous is s1
    assert registry.lookup("alice") is s2
    assert len(registry) == 1


def test_stale_disconnect_does_not_evict_newer_session(registry, s1, s2):
    """
    Guarded removal:
      - S1 registers, S2 re-registers the same user
      - S1's late disconnect must leave S2 mapped
      - S2's own disconnect removes the entry
    """
    registry.register_session("alice", s1)
    registry.register_session("alice", s2)

    assert registry.unregister_if_current("alice", s1) is False
    assert registry.lookup("alice") is s2

    assert registry.unregister_if_current("alice", s2) is True
    assert registry.lookup("alice") is None


def test_unregister_unknown_user_is_noop(registry, s1):
    assert registry.unregister_if_current("ghost", s1) is False
    assert len(registry) == 0
