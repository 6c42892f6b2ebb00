"""
memsize/unsafe.py — Queue buffer accessor
=========================================

This module is the only place where memsize reads the private storage of a
concurrent primitive.  ``collections.deque``, ``queue.Queue`` and
``asyncio.Queue`` keep their buffered items in an internal container that
other threads (or tasks) mutate under their own locks.  Iterating that
container while a producer appends to it is a race: CPython raises
``RuntimeError`` for a deque mutated during iteration, and the attribute names
used below are implementation details, not API.

Both concerns are only acceptable while the global pause from
:mod:`memsize.world` is held, so :func:`queue_buffer` checks that precondition
itself and refuses to run otherwise.
"""

from __future__ import annotations

import asyncio
import collections
import queue
from typing import Any, NamedTuple, Tuple

from memsize.errors import ContractViolation, MemsizeErrorCodes
from memsize.reflect import WORD_SIZE, out_of_line_size
from memsize.world import world_stopped


class QueueBuffer(NamedTuple):
    """Snapshot of a queue's internal ring.

    ``capacity`` is the number of element slots the buffer has allocated;
    ``items`` are the values currently buffered, oldest first.
    """

    capacity: int
    items: Tuple[Any, ...]


def _inner_container(obj: Any) -> Any:
    if isinstance(obj, collections.deque):
        return obj
    if isinstance(obj, queue.Queue):
        return obj.queue
    if isinstance(obj, asyncio.Queue):
        return obj._queue
    raise TypeError(f"{type(obj).__qualname__} is not a buffered queue")


def queue_buffer(obj: Any) -> QueueBuffer:
    """Read the internal buffer of *obj*.

    Raises :class:`ContractViolation` (``MEMSIZE-2003``) when called outside
    the global pause.
    """
    if not world_stopped():
        raise ContractViolation(
            f"read of {type(obj).__qualname__} buffer outside the global pause",
            code=MemsizeErrorCodes.UNPAUSED_ACCESS,
            hint="wrap the call in memsize.world.stopped_world()",
        )
    inner = _inner_container(obj)
    # deque blocks and list capacity are both whole pointer slots
    capacity = out_of_line_size(inner) // WORD_SIZE
    base = collections.deque if isinstance(inner, collections.deque) else list
    return QueueBuffer(capacity, tuple(base.__iter__(inner)))
