"""
memsize/world.py — Global pause
===============================

A scan must observe a frozen, internally consistent object graph.  CPython
offers no stop-the-world primitive, so the pause is assembled from the pieces
the interpreter does expose:

  • a process-wide lock serialises concurrent scans;
  • the cyclic garbage collector is disabled, so no finalizer runs mid-scan;
  • the GIL switch interval is raised far beyond any scan duration, so the
    scanning thread keeps the GIL for the whole walk.

The last point only holds while the scanning thread never blocks: I/O, lock
acquisition and sleeping all release the GIL.  Nothing executed inside the
pause may do any of those, which includes logging.

Usage
-----
    with stopped_world("heap census"):
        assert world_stopped()
        ...   # walk the graph
"""

from __future__ import annotations

import gc
import logging
import sys
import sysconfig
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

DEFAULT_SWITCH_INTERVAL: float = 1000.0

_world_lock = threading.Lock()
_owner: Optional[int] = None
_reason: str = ""
_warned_free_threading = False


def _free_threaded() -> bool:
    return bool(sysconfig.get_config_var("Py_GIL_DISABLED"))


def world_stopped() -> bool:
    """Whether the calling thread currently holds the global pause."""
    return _owner is not None and _owner == threading.get_ident()


def pause_reason() -> str:
    """Reason given by the current holder of the pause ('' when idle)."""
    return _reason


@contextmanager
def stopped_world(
    reason: str = "memsize scan",
    switch_interval: float = DEFAULT_SWITCH_INTERVAL,
    disable_gc: bool = True,
) -> Iterator[None]:
    """Suspend other Python execution for the duration of the block.

    Release is guaranteed on every exit path, including exceptions raised
    inside the block.  The pause is not re-entrant.
    """
    global _owner, _reason, _warned_free_threading

    if world_stopped():
        raise RuntimeError(f"global pause already held ({_reason})")
    if _free_threaded() and not _warned_free_threading:
        _warned_free_threading = True
        logger.warning(
            "Free-threaded interpreter: other threads keep running during "
            "'%s'; results may be inconsistent.", reason,
        )
    logger.debug("Stopping the world: %s", reason)

    with _world_lock:
        old_interval = sys.getswitchinterval()
        gc_was_enabled = gc.isenabled()
        if disable_gc:
            gc.disable()
        sys.setswitchinterval(switch_interval)
        _owner = threading.get_ident()
        _reason = reason
        try:
            yield
        finally:
            _owner = None
            _reason = ""
            sys.setswitchinterval(old_interval)
            if disable_gc and gc_was_enabled:
                gc.enable()

    logger.debug("World restarted: %s", reason)
