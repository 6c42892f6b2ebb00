"""
memsize — Per-type memory usage of a live Python object graph
==============================================================

Walks everything reachable from one root object, counts every physical byte
once (shared objects, aliased buffers and cycles included) and reports the
totals per concrete type.

Core modules
------------
bitmap
    Paged bitmap recording which address ranges have been counted.
typecache
    Memoised classification of types into scan kinds.
reflect
    CPython layout helpers: addresses, static sizes, backing storage.
visiting
    Cycle guard over the active scan path.
sizes
    Per-type aggregation and the scan result.
engine
    The recursive, kind-directed traversal.
scan
    Orchestrator: root validation, global pause, configuration.
report
    Text, JSON and HTML presentation of a result.

Quick start
-----------
>>> import memsize
>>> sizes = memsize.scan({"key": [1, 2, 3]})
>>> sizes.total > 0
True
>>> print(sizes.report())          # doctest: +SKIP
"""

from __future__ import annotations

import importlib
import logging
import sys
from typing import Dict, List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"
__author__ = "memsize contributors"
__license__ = "MIT"
__all__: List[str] = []          # populated below

_log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Internal registry: module_name → names re-exported at package level
# ---------------------------------------------------------------------------

_CORE_MODULES: Dict[str, List[str]] = {
    "errors": [
        "MemsizeError",
        "ContractViolation",
        "InvalidRootError",
        "UnhandledKindError",
        "ConfigError",
        "ErrorCode",
        "MemsizeErrorCodes",
    ],
    "bitmap": ["Bitmap"],
    "reflect": ["Ref", "Slot", "EMPTY", "INVALID_ADDR", "WORD_SIZE"],
    "typecache": ["Kind", "TypeInfo", "TypeCache"],
    "visiting": ["CycleGuard"],
    "sizes": ["Sizes", "TypeSize"],
    "world": ["stopped_world", "world_stopped"],
    "engine": ["ScanContext"],
    "scan": ["scan", "ScanConfig"],
    "report": ["Report", "ReportLine", "human_size"],
}


def _import_names(module_rel_name: str, names: List[str]) -> None:
    """Import *names* from a submodule and bind them in the package namespace."""
    fq_name = f"{__name__}.{module_rel_name}"
    try:
        mod = importlib.import_module(fq_name)
    except ImportError as exc:
        raise ImportError(
            f"memsize: required submodule '{module_rel_name}' "
            f"failed to import: {exc}"
        ) from exc

    current_module = sys.modules[__name__]
    for name in names:
        if not hasattr(mod, name):
            raise AttributeError(f"memsize.{module_rel_name} does not export '{name}'")
        setattr(current_module, name, getattr(mod, name))
        __all__.append(name)
    _log.debug("Loaded memsize.%s", module_rel_name)


for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names)

del _mod, _names


def list_submodules() -> List[str]:
    """Names of the core submodules, in load order."""
    return list(_CORE_MODULES)
