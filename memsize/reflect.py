"""
memsize/reflect.py — Python object layout helpers
==================================================

The scanner reasons about values the way a C runtime would: every value has
an address, a static size, and possibly some out-of-line storage it owns.
This module maps CPython objects onto that model.

  Layer 0: ``Ref`` / ``Slot`` — the two synthetic value types the engine uses
           for a reference and for a dynamically typed reference slot.
  Layer 1: addresses and static sizes of ordinary objects.
  Layer 2: ``Backing`` — the storage view of a growable sequence (list,
           bytearray, array.array, memoryview, numpy.ndarray).

Addresses
---------
The address of an object is the start of its memory block: ``id(obj)``
minus the pre-header CPython allocates in front of GC-aware objects.  Zero
(``INVALID_ADDR``) is reserved for values that have no stable location.

Static size
-----------
``sys.getsizeof(obj)`` minus whatever storage the object owns out of line
(list capacity, dict table, text payload, owned numpy data ...).  The
out-of-line part is reported separately as *extra* size by the engine.
"""

from __future__ import annotations

import array
import collections
import struct
import sys
import types
from typing import Any, Callable, Iterable, Iterator, NamedTuple, Tuple

import numpy as np

WORD_SIZE: int = struct.calcsize("P")
INVALID_ADDR: int = 0

# Set on classes created by a class statement (see Include/object.h).
TPFLAGS_HEAPTYPE: int = 1 << 9

# Offset of the first item slot inside a tuple object.
TUPLE_ITEMS_OFFSET: int = tuple.__basicsize__

# Upper bound for a plausible allocator pre-header (GC head plus managed
# dict/weakref words).
_MAX_PREHEADER: int = 4 * WORD_SIZE


# ---------------------------------------------------------------------------
# 0. Synthetic value types
# ---------------------------------------------------------------------------

class _Empty:
    """Marker for a reference slot that holds nothing."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "<empty>"

    def __bool__(self) -> bool:
        return False


EMPTY = _Empty()


class Ref:
    """A reference to an object stored somewhere else in memory.

    ``Ref(EMPTY)`` is the null reference.
    """

    __slots__ = ("target",)

    def __init__(self, target: Any = EMPTY) -> None:
        self.target = target

    @property
    def is_nil(self) -> bool:
        return self.target is EMPTY

    def __repr__(self) -> str:
        if self.is_nil:
            return "Ref(nil)"
        return f"Ref({type(self.target).__qualname__} @ {id(self.target):#x})"


class Slot:
    """A dynamically typed reference slot: a tuple item, list item, dict
    entry, instance attribute or buffered queue element.

    ``Slot()`` is an empty slot.
    """

    __slots__ = ("held",)

    def __init__(self, held: Any = EMPTY) -> None:
        self.held = held

    @property
    def is_empty(self) -> bool:
        return self.held is EMPTY

    def __repr__(self) -> str:
        if self.is_empty:
            return "Slot(<empty>)"
        return f"Slot({type(self.held).__qualname__})"


# ---------------------------------------------------------------------------
# 1. Addresses and sizes
# ---------------------------------------------------------------------------

def _own_sizeof(obj: Any) -> int:
    return type(obj).__sizeof__(obj)


def preheader_size(obj: Any) -> int:
    """Bytes CPython allocates in front of ``id(obj)``."""
    pre = sys.getsizeof(obj) - _own_sizeof(obj)
    if 0 <= pre <= _MAX_PREHEADER:
        return pre
    return 0


def address_of(obj: Any) -> int:
    """Start address of the memory block holding *obj*."""
    return id(obj) - preheader_size(obj)


def text_payload(obj: Any) -> int:
    """Raw character bytes of a ``str`` or ``bytes`` value."""
    if isinstance(obj, bytes):
        return bytes.__len__(obj)
    length = str.__len__(obj)
    if not length or str.isascii(obj):
        return length
    widest = max(map(ord, str.__iter__(obj)))
    if widest < 0x100:
        width = 1
    elif widest < 0x10000:
        width = 2
    else:
        width = 4
    return length * width


_VAR_STORAGE_TYPES = (
    list,
    bytearray,
    array.array,
    collections.deque,
    dict,
    set,
    frozenset,
)


def out_of_line_size(obj: Any) -> int:
    """Bytes of storage *obj* owns beyond its fixed header."""
    if isinstance(obj, (str, bytes)):
        return text_payload(obj)
    if isinstance(obj, np.ndarray):
        return obj.nbytes if obj.flags.owndata else 0
    if isinstance(obj, _VAR_STORAGE_TYPES):
        return max(0, _own_sizeof(obj) - type(obj).__basicsize__)
    return 0


def static_size(obj: Any) -> int:
    """Fixed footprint of *obj*, independent of out-of-line storage."""
    if isinstance(obj, (Ref, Slot)):
        return WORD_SIZE
    return sys.getsizeof(obj) - out_of_line_size(obj)


def tuple_slot_address(tup: tuple, index: int) -> int:
    """Address of item slot *index* inside *tup*."""
    return id(tup) + TUPLE_ITEMS_OFFSET + index * WORD_SIZE


def _slot_names(cls: type) -> Iterator[str]:
    slots = cls.__dict__.get("__slots__", ())
    if isinstance(slots, str):
        slots = (slots,)
    for name in slots:
        if name in ("__dict__", "__weakref__"):
            continue
        if name.startswith("__") and not name.endswith("__"):
            name = f"_{cls.__name__.lstrip('_')}{name}"
        yield name


def instance_fields(obj: Any) -> Iterator[Any]:
    """Values held by *obj*'s own ``__slots__`` members and its ``__dict__``.

    Only classes defined in Python contribute slots.  Unset slots and an
    empty ``__dict__`` are skipped.  Attribute access goes through the
    member descriptors and ``object.__getattribute__`` so no user
    ``__getattr__`` runs.
    """
    cls = type(obj)
    for klass in cls.__mro__:
        if not klass.__flags__ & TPFLAGS_HEAPTYPE:
            continue
        for name in _slot_names(klass):
            member = klass.__dict__.get(name)
            if not isinstance(member, types.MemberDescriptorType):
                continue
            try:
                yield member.__get__(obj, cls)
            except AttributeError:
                continue
    try:
        namespace = object.__getattribute__(obj, "__dict__")
    except AttributeError:
        return
    if namespace:
        yield namespace


# ---------------------------------------------------------------------------
# 2. Backing storage of growable sequences
# ---------------------------------------------------------------------------

ElementIter = Callable[[], Iterable[Tuple[int, Any]]]


def _no_elements() -> Iterator[Tuple[int, Any]]:
    return iter(())


class Backing(NamedTuple):
    """Storage view of a growable sequence.

    ``address`` is ``INVALID_ADDR`` when the storage is not exposed (lists).
    ``elements`` yields ``(slot_address, item)`` pairs and is only consulted
    when ``elem_type`` needs scanning.  ``owner`` is the object a view
    borrows its storage from, or ``EMPTY``.
    """

    address: int
    length: int
    elem_type: type
    elements: ElementIter = _no_elements
    owner: Any = EMPTY


def buffer_address(obj: Any) -> int:
    """Address of the first byte of a contiguous buffer export."""
    view = np.frombuffer(obj, dtype=np.uint8)
    if view.size == 0:
        return INVALID_ADDR
    return view.__array_interface__["data"][0]


def byte_bounds(arr: np.ndarray) -> Tuple[int, int]:
    """``(low, length)`` of the memory spanned by *arr*."""
    low = high = arr.__array_interface__["data"][0]
    if arr.size == 0:
        return low, 0
    for extent, stride in zip(arr.shape, arr.strides):
        if stride < 0:
            low += (extent - 1) * stride
        else:
            high += (extent - 1) * stride
    return low, high - low + arr.itemsize


def _list_backing(obj: list) -> Backing:
    return Backing(
        address=INVALID_ADDR,
        length=out_of_line_size(obj),
        elem_type=Slot,
        elements=lambda: ((INVALID_ADDR, item) for item in list.__iter__(obj)),
    )


def _bytearray_backing(obj: bytearray) -> Backing:
    capacity = out_of_line_size(obj)
    address = buffer_address(obj) if len(obj) else INVALID_ADDR
    return Backing(address, capacity, int)


def _array_backing(obj: array.array) -> Backing:
    address, _ = obj.buffer_info()
    return Backing(address or INVALID_ADDR, out_of_line_size(obj), int)


def _memoryview_backing(obj: memoryview) -> Backing:
    try:
        nbytes = obj.nbytes
    except ValueError:
        # released view: exports nothing
        return Backing(INVALID_ADDR, 0, int)
    if nbytes == 0:
        return Backing(INVALID_ADDR, 0, int, owner=obj.obj)
    if obj.c_contiguous:
        return Backing(buffer_address(obj), nbytes, int, owner=obj.obj)
    low, length = byte_bounds(np.asarray(obj))
    return Backing(low, length, int, owner=obj.obj)


def _object_leaves(dtype: np.dtype, value: Any) -> Iterator[Any]:
    """Python objects stored in object-typed fields of a structured record."""
    for index, name in enumerate(dtype.names or ()):
        field_dtype = dtype.fields[name][0]
        if field_dtype == np.dtype(object):
            yield value[index]
        elif field_dtype.names:
            yield from _object_leaves(field_dtype, value[index])


def _ndarray_elements(arr: np.ndarray, base: int) -> ElementIter:
    if arr.dtype == np.dtype(object):
        def object_slots() -> Iterator[Tuple[int, Any]]:
            strides = arr.strides
            for index in np.ndindex(arr.shape):
                offset = sum(i * s for i, s in zip(index, strides))
                yield base + offset, arr[index]
        return object_slots

    def record_fields() -> Iterator[Tuple[int, Any]]:
        for index in np.ndindex(arr.shape):
            for leaf in _object_leaves(arr.dtype, arr[index].item()):
                yield INVALID_ADDR, leaf
    return record_fields


def _ndarray_backing(arr: np.ndarray, follow_base: bool) -> Backing:
    owner = arr.base if (follow_base and arr.base is not None) else EMPTY
    data = arr.__array_interface__["data"][0]
    low, length = byte_bounds(arr)
    if not data or length == 0:
        return Backing(INVALID_ADDR, 0, arr.dtype.type, owner=owner)
    if arr.dtype.hasobject:
        return Backing(low, length, Slot, _ndarray_elements(arr, data), owner)
    return Backing(low, length, arr.dtype.type, owner=owner)


def backing_of(obj: Any, follow_base: bool = True) -> Backing:
    """Resolve the full backing storage of a growable sequence."""
    if isinstance(obj, list):
        return _list_backing(obj)
    if isinstance(obj, np.ndarray):
        return _ndarray_backing(obj, follow_base)
    if isinstance(obj, bytearray):
        return _bytearray_backing(obj)
    if isinstance(obj, array.array):
        return _array_backing(obj)
    if isinstance(obj, memoryview):
        backing = _memoryview_backing(obj)
        return backing if follow_base else backing._replace(owner=EMPTY)
    raise TypeError(f"{type(obj).__qualname__} has no backing storage")
