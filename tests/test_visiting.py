# tests/test_visiting.py
"""
Tests for the cycle guard.
"""

import pytest

from memsize.reflect import Ref
from memsize.visiting import CycleGuard, is_equal_or_pointer_to


class Node:
    pass


class TestCompatibility:

    def test_identical_type(self):
        assert is_equal_or_pointer_to(list, list)

    def test_different_type(self):
        assert not is_equal_or_pointer_to(tuple, list)

    def test_reference_to_inflight_type(self):
        assert is_equal_or_pointer_to(Ref, Node, Node())
        assert not is_equal_or_pointer_to(Ref, Node, [])


class TestCycleGuard:

    def test_inactive_when_empty(self):
        guard = CycleGuard()
        assert not guard.is_active(0x1000, list)
        assert len(guard) == 0

    def test_same_address_same_type_is_cycle(self):
        guard = CycleGuard()
        guard.enter(0x1000, list)
        assert guard.is_active(0x1000, list)
        assert 0x1000 in guard

    def test_same_address_other_type_is_not_cycle(self):
        # a container and its first member can share an address
        guard = CycleGuard()
        guard.enter(0x1000, Node)
        assert not guard.is_active(0x1000, int)
        assert guard.is_active(0x1000, Ref, Node())

    def test_enter_returns_replaced_entry(self):
        guard = CycleGuard()
        assert guard.enter(0x1000, Node) is None
        previous = guard.enter(0x1000, int)
        assert previous is Node
        guard.leave(0x1000, previous)
        assert guard.inflight(0x1000) is Node
        guard.leave(0x1000)
        assert guard.inflight(0x1000) is None

    def test_guard_releases_on_exception(self):
        guard = CycleGuard()
        with pytest.raises(RuntimeError):
            with guard.guard(0x2000, list):
                assert guard.is_active(0x2000, list)
                raise RuntimeError("boom")
        assert len(guard) == 0

    def test_nested_guard_restores_outer_entry(self):
        guard = CycleGuard()
        with guard.guard(0x3000, Node):
            with guard.guard(0x3000, int):
                assert guard.inflight(0x3000) is int
            assert guard.inflight(0x3000) is Node
        assert 0x3000 not in guard
