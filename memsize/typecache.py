"""
typecache.py — Type classification for the scanner
===================================================

Answers two questions per distinct Python type, memoised:

``needs_scan(typ)``
    Can a value of this type reach further storage?  ``False`` lets the
    engine skip recursion entirely, e.g. for a large ``array('d')`` or a
    float numpy array.

``is_pointer_shaped(typ)``
    Is a value of this type held by a reference slot as a single machine
    word pointing to an independently allocated object?  Every ordinary
    Python object is; only types registered as *by-value* are not.

Classification resolves each type to exactly one :class:`Kind`.  The kind set
is closed and the engine's dispatch table mirrors it one-to-one.

Licence: No restrictions, use this as you need.
"""

from __future__ import annotations

import array
import asyncio
import collections
import enum
import logging
import queue
import types
import weakref
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

from memsize.errors import ConfigError, MemsizeErrorCodes
from memsize.reflect import TPFLAGS_HEAPTYPE, Ref, Slot

logger = logging.getLogger(__name__)

# Type flags (see Include/object.h)
_TPFLAGS_HAVE_GC = 1 << 14


class Kind(enum.Enum):
    """Closed set of value kinds the engine knows how to walk."""
    SCALAR   = "scalar"    # fixed-size data, no references
    TEXT     = "text"      # str / bytes payload
    STRUCT   = "struct"    # object with reference fields
    ARRAY    = "array"     # fixed-length sequence of inline slots
    POINTER  = "pointer"   # Ref
    SLICE    = "slice"     # growable sequence with backing storage
    MAP      = "map"       # dict / set
    VARIANT  = "variant"   # Slot
    QUEUE    = "queue"     # buffered queue
    OPAQUE   = "opaque"    # callables, modules, classes ...


@dataclass(frozen=True)
class TypeInfo:
    """Memoised classification of one type."""
    kind: Kind
    needs_scan: bool
    pointer_shaped: bool
    has_fields: bool = False


# ---------------------------------------------------------------------------
# Classification tables (first match wins)
# ---------------------------------------------------------------------------

_SCALAR_TYPES: Tuple[type, ...] = (
    type(None),
    bool,
    int,
    float,
    complex,
    type(Ellipsis),
    type(NotImplemented),
    np.generic,
)

_OPAQUE_TYPES: Tuple[type, ...] = (
    type,
    types.FunctionType,
    types.BuiltinFunctionType,
    types.MethodType,
    types.MethodWrapperType,
    types.WrapperDescriptorType,
    types.MethodDescriptorType,
    types.ClassMethodDescriptorType,
    types.GetSetDescriptorType,
    types.MemberDescriptorType,
    types.ModuleType,
    types.CodeType,
    types.FrameType,
    types.TracebackType,
    types.GeneratorType,
    types.CoroutineType,
    types.AsyncGeneratorType,
    property,
    staticmethod,
    classmethod,
    weakref.ref,
    weakref.ProxyType,
    weakref.CallableProxyType,
)

_KIND_TABLE: Tuple[Tuple[Tuple[type, ...], Kind], ...] = (
    ((Ref,), Kind.POINTER),
    ((Slot,), Kind.VARIANT),
    (_OPAQUE_TYPES, Kind.OPAQUE),
    ((str, bytes), Kind.TEXT),
    (_SCALAR_TYPES, Kind.SCALAR),
    ((tuple,), Kind.ARRAY),
    ((list, bytearray, array.array, memoryview, np.ndarray), Kind.SLICE),
    ((dict, set, frozenset), Kind.MAP),
    ((collections.deque, queue.Queue, asyncio.Queue), Kind.QUEUE),
)

_LEAF_KINDS = frozenset({Kind.SCALAR, Kind.OPAQUE})

# Kinds whose Python subclasses keep instance attributes beside the items.
_CONTAINER_KINDS = frozenset(
    {Kind.TEXT, Kind.ARRAY, Kind.SLICE, Kind.MAP, Kind.QUEUE}
)

# Python-level queues: their attributes are the lock and buffer themselves.
_PY_QUEUE_TYPES = (queue.Queue, asyncio.Queue)


def classify(typ: type) -> Kind:
    """Resolve *typ* to its :class:`Kind` without consulting any cache."""
    for bases, kind in _KIND_TABLE:
        if issubclass(typ, bases):
            return kind
    flags = typ.__flags__
    if flags & (TPFLAGS_HEAPTYPE | _TPFLAGS_HAVE_GC):
        # Python classes and GC-aware C types: fields via gc.get_referents
        return Kind.STRUCT
    return Kind.SCALAR


def has_instance_fields(typ: type, kind: Kind) -> bool:
    """Whether values of *typ* carry attributes the *kind* handler never sees."""
    return (
        kind in _CONTAINER_KINDS
        and bool(typ.__flags__ & TPFLAGS_HEAPTYPE)
        and not issubclass(typ, _PY_QUEUE_TYPES)
    )


class TypeCache:
    """Memoised type classifier.

    Entries never go stale: a type's shape does not change at runtime, so
    one cache may be shared by any number of scans.
    """

    def __init__(self) -> None:
        self._infos: Dict[type, TypeInfo] = {}

    def info(self, typ: type) -> TypeInfo:
        """Classification record for *typ*."""
        try:
            return self._infos[typ]
        except KeyError:
            pass
        kind = classify(typ)
        info = TypeInfo(
            kind=kind,
            needs_scan=kind not in _LEAF_KINDS,
            pointer_shaped=True,
            has_fields=has_instance_fields(typ, kind),
        )
        self._infos[typ] = info
        return info

    def kind(self, typ: type) -> Kind:
        return self.info(typ).kind

    def needs_scan(self, typ: type) -> bool:
        return self.info(typ).needs_scan

    def is_pointer_shaped(self, typ: type) -> bool:
        return self.info(typ).pointer_shaped

    def register(
        self,
        typ: type,
        kind: Kind,
        *,
        needs_scan: Optional[bool] = None,
        pointer_shaped: Optional[bool] = None,
    ) -> TypeInfo:
        """Pin the classification of *typ*.

        Use for C extension types the default rules misjudge, or to declare
        a type *by-value* (``pointer_shaped=False``): a slot holding such a
        value stores it inline and accounts for its static size itself.
        """
        if not isinstance(typ, type):
            raise ConfigError(
                f"can only register classes, got {typ!r}",
                code=MemsizeErrorCodes.INVALID_REGISTRATION,
            )
        if not isinstance(kind, Kind):
            raise ConfigError(
                f"unknown kind {kind!r}",
                code=MemsizeErrorCodes.INVALID_REGISTRATION,
                hint="use a memsize.Kind member",
            )
        if kind in (Kind.POINTER, Kind.VARIANT) and typ not in (Ref, Slot):
            raise ConfigError(
                f"{kind.name} is reserved for memsize's own reference types",
                code=MemsizeErrorCodes.INVALID_REGISTRATION,
            )
        info = TypeInfo(
            kind=kind,
            needs_scan=(kind not in _LEAF_KINDS) if needs_scan is None else needs_scan,
            pointer_shaped=True if pointer_shaped is None else pointer_shaped,
            has_fields=has_instance_fields(typ, kind),
        )
        self._infos[typ] = info
        logger.debug("Registered %s as %s", typ.__qualname__, info)
        return info

    def clear(self) -> None:
        self._infos.clear()

    def __contains__(self, typ: object) -> bool:
        return typ in self._infos

    def __len__(self) -> int:
        return len(self._infos)

    def __repr__(self) -> str:
        return f"TypeCache(types={len(self._infos)})"


# Shared by scan() when the caller does not supply a cache.
default_cache = TypeCache()
