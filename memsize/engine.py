"""
memsize/engine.py — Traversal engine
====================================

``ScanContext.scan`` walks everything reachable from a value and returns the
*extra* bytes the value owns beyond its static size.  Values asked to be
billed are reported to the :class:`~memsize.sizes.Sizes` aggregator; values
that are merely walked through (fields, elements, map entries) fold their
extra size into the caller's total instead.

Per value:

  1. A value with a valid address is skipped if its first byte was already
     counted, or if the same ``(address, type)`` is already on the active
     path.  Otherwise it is registered with the cycle guard.
  2. Types that need scanning dispatch on their :class:`Kind` to compute the
     extra size.
  3. The value is unregistered and ``[addr, addr + static)`` is marked.
  4. If billed, ``static + extra`` is recorded for the value's type.

Execution model
---------------
The walk does not recurse in Python.  Each kind handler is a generator that
yields ``(addr, value, bill)`` requests for the values it reaches and is
sent back their extra sizes; its return value is its own extra size.  A
``_Frame`` per value in flight sits on an explicit stack, so the depth of
the object graph is bounded by memory only.

Every kind in :class:`Kind` has exactly one handler.  A kind without one is
an internal contract violation and aborts the scan.
"""

from __future__ import annotations

import gc
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generator, List, Optional, Tuple

from memsize.bitmap import Bitmap
from memsize.errors import ContractViolation, MemsizeErrorCodes, UnhandledKindError
from memsize.reflect import (
    EMPTY,
    INVALID_ADDR,
    WORD_SIZE,
    Ref,
    Slot,
    address_of,
    backing_of,
    buffer_address,
    instance_fields,
    static_size,
    text_payload,
    tuple_slot_address,
)
from memsize.sizes import Sizes
from memsize.typecache import Kind, TypeCache, default_cache
from memsize.unsafe import queue_buffer
from memsize.visiting import CycleGuard

Request = Tuple[int, Any, bool]
Walk = Generator[Request, int, int]
Handler = Callable[[int, Any], Walk]


@dataclass(slots=True)
class _Frame:
    """One value whose handler is running."""
    addr: int
    obj: Any
    bill: bool
    previous: Optional[type]
    walk: Walk


class ScanContext:
    """State of one scan: seen bytes, the active path and the running totals.

    A context is single-use.  The type cache may be shared between contexts.
    """

    def __init__(
        self,
        type_cache: Optional[TypeCache] = None,
        *,
        follow_view_base: bool = True,
        max_depth: Optional[int] = None,
    ) -> None:
        self.tc = type_cache if type_cache is not None else default_cache
        self.seen = Bitmap()
        self.visiting = CycleGuard()
        self.sizes = Sizes()
        self.follow_view_base = follow_view_base
        self.max_depth = max_depth
        self._frames: List[_Frame] = []
        self._handlers: Dict[Kind, Handler] = {
            Kind.SCALAR: self._scan_leaf,
            Kind.TEXT: self._scan_text,
            Kind.STRUCT: self._scan_struct,
            Kind.ARRAY: self._scan_array,
            Kind.POINTER: self._scan_pointer,
            Kind.SLICE: self._scan_slice,
            Kind.MAP: self._scan_map,
            Kind.VARIANT: self._scan_variant,
            Kind.QUEUE: self._scan_queue,
            Kind.OPAQUE: self._scan_leaf,
        }

    @property
    def depth(self) -> int:
        """Number of values whose handler is currently running."""
        return len(self._frames)

    # ------------------------------------------------------------------
    #  Core walk
    # ------------------------------------------------------------------

    def scan(self, addr: int, obj: Any, bill: bool) -> int:
        """Walk *obj* located at *addr* and return its extra size."""
        frames = self._frames
        base = len(frames)
        extra = self._enter(addr, obj, bill)
        try:
            while len(frames) > base:
                frame = frames[-1]
                try:
                    request = frame.walk.send(extra)
                except StopIteration as stop:
                    frames.pop()
                    extra = self._finish(frame, stop.value)
                else:
                    extra = self._enter(*request)
        except BaseException:
            while len(frames) > base:
                frame = frames.pop()
                frame.walk.close()
                if frame.addr != INVALID_ADDR:
                    self.visiting.leave(frame.addr, frame.previous)
            raise
        return extra

    def _enter(self, addr: int, obj: Any, bill: bool) -> Optional[int]:
        """Start on one value.

        Returns its extra size when it is finished on the spot, or ``None``
        after pushing a frame whose handler still has to run.
        """
        typ = type(obj)
        if addr != INVALID_ADDR:
            if self.seen.is_marked(addr):
                return 0
            target = obj.target if typ is Ref else None
            if self.visiting.is_active(addr, typ, target):
                return 0

        if self.max_depth is not None and len(self._frames) >= self.max_depth:
            raise ContractViolation(
                f"scan depth exceeded {self.max_depth} at {typ.__qualname__}",
                code=MemsizeErrorCodes.MAX_DEPTH_EXCEEDED,
                hint="raise ScanConfig.max_depth or leave it unset",
            )
        info = self.tc.info(typ)
        if not info.needs_scan:
            return self._account(addr, obj, bill, 0)
        handler = self._handlers.get(info.kind)
        if handler is None:
            raise UnhandledKindError(info.kind, typ)

        walk = handler(addr, obj)
        if info.has_fields:
            walk = self._with_fields(walk, obj)
        previous = None
        if addr != INVALID_ADDR:
            previous = self.visiting.enter(addr, typ)
        self._frames.append(_Frame(addr, obj, bill, previous, walk))
        return None

    def _finish(self, frame: _Frame, extra: int) -> int:
        if frame.addr != INVALID_ADDR:
            self.visiting.leave(frame.addr, frame.previous)
        return self._account(frame.addr, frame.obj, frame.bill, extra)

    def _account(self, addr: int, obj: Any, bill: bool, extra: int) -> int:
        size = static_size(obj)
        if addr != INVALID_ADDR:
            self.seen.mark_range(addr, size)
        if bill:
            self.sizes.add_value(type(obj), size + extra)
        return extra

    def _with_fields(self, walk: Walk, obj: Any) -> Walk:
        # attributes of a Python subclass of a builtin container
        extra = yield from walk
        for value in instance_fields(obj):
            extra += yield INVALID_ADDR, Slot(value), False
        return extra

    # ------------------------------------------------------------------
    #  Kind handlers
    # ------------------------------------------------------------------

    def _scan_leaf(self, addr: int, obj: Any) -> Walk:
        yield from ()
        return 0

    def _scan_text(self, addr: int, obj: Any) -> Walk:
        yield from ()
        payload = text_payload(obj)
        if type(obj) is not bytes or payload == 0:
            return payload
        # bytes export their payload, so views over it may have counted it
        start = buffer_address(obj)
        marked = self.seen.count_range(start, payload)
        self.seen.mark_range(start, payload)
        return payload - marked

    def _scan_struct(self, addr: int, obj: Any) -> Walk:
        cls = type(obj)
        extra = 0
        for field in gc.get_referents(obj):
            if field is cls:
                continue
            extra += yield INVALID_ADDR, Slot(field), False
        return extra

    def _scan_array(self, addr: int, obj: tuple) -> Walk:
        extra = 0
        for index, item in enumerate(tuple.__iter__(obj)):
            extra += yield tuple_slot_address(obj, index), Slot(item), False
        return extra

    def _scan_pointer(self, addr: int, obj: Ref) -> Walk:
        if not obj.is_nil:
            target = obj.target
            yield address_of(target), target, True
        return 0

    def _scan_slice(self, addr: int, obj: Any) -> Walk:
        backing = backing_of(obj, self.follow_view_base)
        if backing.owner is not EMPTY:
            yield INVALID_ADDR, Ref(backing.owner), False
        if backing.length <= 0:
            return 0

        if backing.address == INVALID_ADDR:
            extra = backing.length
        else:
            extra = backing.length - self.seen.count_range(
                backing.address, backing.length
            )

        if self.tc.needs_scan(backing.elem_type):
            for slot_addr, item in backing.elements():
                extra += yield slot_addr, Slot(item), False
        if backing.address != INVALID_ADDR:
            # after the walk: element slots are skipped once marked
            self.seen.mark_range(backing.address, backing.length)
        return extra

    def _scan_map(self, addr: int, obj: Any) -> Walk:
        extra = 0
        if isinstance(obj, dict):
            count = dict.__len__(obj)
            for key, value in dict.items(obj):
                extra += yield INVALID_ADDR, Slot(key), False
                extra += yield INVALID_ADDR, Slot(value), False
            return 2 * count * WORD_SIZE + extra
        base = set if isinstance(obj, set) else frozenset
        count = base.__len__(obj)
        for key in base.__iter__(obj):
            extra += yield INVALID_ADDR, Slot(key), False
        return count * WORD_SIZE + extra

    def _scan_variant(self, addr: int, obj: Slot) -> Walk:
        if obj.is_empty:
            return 0
        held = obj.held
        if self.tc.is_pointer_shaped(type(held)):
            yield INVALID_ADDR, Ref(held), False
            return 0
        # held inline: its storage lives in the slot holder
        return static_size(held) + (yield INVALID_ADDR, held, False)

    def _scan_queue(self, addr: int, obj: Any) -> Walk:
        buffer = queue_buffer(obj)
        extra = 0
        for item in buffer.items:
            extra += yield INVALID_ADDR, Slot(item), False
        return buffer.capacity * WORD_SIZE + extra
