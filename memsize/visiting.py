"""
memsize/visiting.py — Cycle guard
=================================

Tracks the addresses currently on the active scan path together with the
type being scanned at each of them.

An address alone is not enough to detect a cycle: a container and its first
member can start at the same address without being the same logical object.
A candidate ``(address, type)`` is therefore only treated as a cycle when the
type in flight at that address is identical to the candidate type, or the
candidate is a reference (``Ref``) whose target has that type.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from memsize.reflect import Ref


def is_equal_or_pointer_to(typ: type, inflight: type, target: Any = None) -> bool:
    """Whether *typ* is *inflight* or a reference to a value of that type.

    *target* is the referent when *typ* is ``Ref``.
    """
    if typ is inflight:
        return True
    return typ is Ref and target is not None and type(target) is inflight


class CycleGuard:
    """Address → type map for values whose subtree is being scanned."""

    __slots__ = ("_visiting",)

    def __init__(self) -> None:
        self._visiting: Dict[int, type] = {}

    def is_active(self, addr: int, typ: type, target: Any = None) -> bool:
        """True when scanning ``(addr, typ)`` now would close a cycle."""
        inflight = self._visiting.get(addr)
        if inflight is None:
            return False
        return is_equal_or_pointer_to(typ, inflight, target)

    def enter(self, addr: int, typ: type) -> Optional[type]:
        """Register ``(addr, typ)``; returns the entry it replaces, if any."""
        previous = self._visiting.get(addr)
        self._visiting[addr] = typ
        return previous

    def leave(self, addr: int, previous: Optional[type] = None) -> None:
        """Unregister *addr*, restoring *previous* when one was replaced."""
        if previous is None:
            self._visiting.pop(addr, None)
        else:
            self._visiting[addr] = previous

    def inflight(self, addr: int) -> Optional[type]:
        """Type currently being scanned at *addr*, if any."""
        return self._visiting.get(addr)

    @contextmanager
    def guard(self, addr: int, typ: type) -> Iterator[None]:
        """Register ``(addr, typ)`` for the duration of the block."""
        previous = self.enter(addr, typ)
        try:
            yield
        finally:
            self.leave(addr, previous)

    def __len__(self) -> int:
        return len(self._visiting)

    def __contains__(self, addr: object) -> bool:
        return addr in self._visiting

    def __repr__(self) -> str:
        return f"CycleGuard(depth={len(self._visiting)})"
