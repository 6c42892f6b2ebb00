"""
memsize/scan.py — Scan orchestrator
===================================

Public entry point::

    import memsize

    sizes = memsize.scan(my_cache)
    print(sizes.report())

``scan`` validates the root, pauses the rest of the interpreter, walks the
graph with a fresh :class:`~memsize.engine.ScanContext` and returns the
aggregated :class:`~memsize.sizes.Sizes`.

Configuration
-------------
``ScanConfig`` holds the tuning knobs.  ``ScanConfig.from_env()`` reads them
from the environment:

    MEMSIZE_SWITCH_INTERVAL    GIL switch interval while paused (seconds)
    MEMSIZE_DISABLE_GC         "0" keeps the cyclic GC enabled during a scan
    MEMSIZE_FOLLOW_VIEW_BASE   "0" stops views from billing their owner
    MEMSIZE_MAX_DEPTH          abort scans nested deeper than this
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Mapping, Optional

from memsize.engine import ScanContext
from memsize.errors import ConfigError, InvalidRootError, MemsizeErrorCodes
from memsize.reflect import INVALID_ADDR, Ref
from memsize.sizes import Sizes
from memsize.typecache import Kind, TypeCache, default_cache
from memsize.world import DEFAULT_SWITCH_INTERVAL, stopped_world

logger = logging.getLogger(__name__)

_ENV_PREFIX = "MEMSIZE_"
_FALSE_WORDS = frozenset({"0", "false", "no", "off"})
_TRUE_WORDS = frozenset({"1", "true", "yes", "on"})


# ===================================================================== #
#  Configuration                                                         #
# ===================================================================== #

@dataclass(frozen=True)
class ScanConfig:
    """Tuning knobs for a scan."""
    switch_interval: float = DEFAULT_SWITCH_INTERVAL
    disable_gc: bool = True
    follow_view_base: bool = True
    max_depth: Optional[int] = None

    def validate(self) -> List[str]:
        """Return a list of validation warnings (empty if valid)."""
        warnings: List[str] = []
        if self.switch_interval <= 0:
            warnings.append("switch_interval must be positive")
        if self.max_depth is not None and self.max_depth <= 0:
            warnings.append("max_depth must be positive")
        return warnings

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ScanConfig":
        """Build a config from ``MEMSIZE_*`` environment variables."""
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for f in fields(cls):
            raw = env.get(_ENV_PREFIX + f.name.upper())
            if raw is None or raw.strip() == "":
                continue
            values[f.name] = _parse_env(f.name, raw.strip(), f.default)
        config = cls(**values)
        problems = config.validate()
        if problems:
            raise ConfigError(
                "; ".join(problems),
                code=MemsizeErrorCodes.INVALID_CONFIG,
                hint="check the MEMSIZE_* environment variables",
            )
        return config


def _parse_env(name: str, raw: str, default: Any) -> Any:
    var = _ENV_PREFIX + name.upper()
    if isinstance(default, bool):
        lowered = raw.lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
        raise ConfigError(f"{var}={raw!r} is not a boolean")
    try:
        if isinstance(default, float):
            return float(raw)
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{var}={raw!r} is not a number", cause=exc) from exc


# ===================================================================== #
#  Entry point                                                           #
# ===================================================================== #

def _check_root(root: Any, tc: TypeCache) -> None:
    if root is None:
        raise InvalidRootError(
            "value to scan must not be None",
            code=MemsizeErrorCodes.NULL_ROOT,
        )
    if tc.kind(type(root)) is Kind.SCALAR:
        raise InvalidRootError(
            f"value to scan must reference storage, got {type(root).__qualname__}",
            code=MemsizeErrorCodes.NON_REFERENCE_ROOT,
            root_type=type(root),
            hint="scan the container holding the value instead",
        )


def scan(
    root: Any,
    *,
    config: Optional[ScanConfig] = None,
    type_cache: Optional[TypeCache] = None,
) -> Sizes:
    """Count the memory used by everything reachable from *root*, per type.

    Raises :class:`~memsize.errors.InvalidRootError` for a ``None`` or
    scalar root.  The global pause is released on every exit path.  The
    returned result is frozen.
    """
    config = config or ScanConfig()
    tc = type_cache if type_cache is not None else default_cache
    problems = config.validate()
    if problems:
        raise ConfigError("; ".join(problems))
    _check_root(root, tc)

    ctx = ScanContext(
        tc,
        follow_view_base=config.follow_view_base,
        max_depth=config.max_depth,
    )
    logger.debug("Scanning %s at %#x", type(root).__qualname__, id(root))
    started = time.perf_counter()

    with stopped_world(
        "memsize scan",
        switch_interval=config.switch_interval,
        disable_gc=config.disable_gc,
    ):
        ctx.scan(INVALID_ADDR, Ref(root), False)

    sizes = ctx.sizes.freeze(ctx.seen.size(), ctx.seen.utilization())
    logger.info(
        "Scanned %d values of %d types: %d bytes in %.3fs "
        "(bitmap %d bytes, %.1f%% used)",
        sizes.count, len(sizes.by_type), sizes.total,
        time.perf_counter() - started,
        sizes.bitmap_size, sizes.bitmap_utilization * 100.0,
    )
    return sizes
