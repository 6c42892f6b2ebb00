# tests/test_engine.py
"""
Tests for the traversal engine: dedup, cycles, per-kind dispatch.
"""

import array
import asyncio
import collections
import queue
import sys

import numpy as np
import pytest

from memsize.engine import ScanContext
from memsize.errors import ContractViolation, MemsizeErrorCodes, UnhandledKindError
from memsize.reflect import (
    INVALID_ADDR,
    WORD_SIZE,
    Ref,
    Slot,
    address_of,
    out_of_line_size,
    static_size,
)
from memsize.sizes import TypeSize
from memsize.typecache import Kind
from memsize.world import stopped_world


class Target:
    __slots__ = ("value",)


class Holder:
    __slots__ = ("left", "right")

    def __init__(self, left=None, right=None):
        self.left = left
        self.right = right


class Node:
    __slots__ = ("other",)


class Record:
    __slots__ = ("name", "data")

    def __init__(self, name, data):
        self.name = name
        self.data = data


class Point:
    __slots__ = ("x", "y")

    def __init__(self, x, y):
        self.x = x
        self.y = y


class Plain:
    def __init__(self):
        self.items = [1, 2]


class Settings(dict):
    pass


class Items(list):
    pass


class Label(str):
    pass


class Batch(list):
    __slots__ = ("__owner", "label")

    def __init__(self, items, owner):
        super().__init__(items)
        self.__owner = owner


def _refuse(self, *args):
    raise AssertionError("user code ran during the scan")


class GuardedDict(dict):
    items = keys = values = __iter__ = __len__ = _refuse


class GuardedList(list):
    __iter__ = __len__ = __getitem__ = _refuse


class GuardedSet(set):
    __iter__ = __len__ = _refuse


class GuardedTuple(tuple):
    __iter__ = __len__ = __getitem__ = _refuse


class GuardedDeque(collections.deque):
    __iter__ = __len__ = _refuse


class TestSharing:

    def test_shared_target_billed_once(self, walk):
        target = Target()
        holder = Holder(target, target)
        sizes = walk(holder)
        assert sizes[Target] == TypeSize(sys.getsizeof(target), 1)
        assert sizes[Holder] == TypeSize(sys.getsizeof(holder), 1)
        assert sizes.total == sys.getsizeof(target) + sys.getsizeof(holder)

    def test_reference_types_are_never_billed(self, walk):
        sizes = walk(Holder([1], (2,)))
        assert Ref not in sizes
        assert Slot not in sizes

    def test_root_is_marked(self, ctx, walk):
        root = [1, 2, 3]
        walk(root)
        assert ctx.seen.is_marked(address_of(root))
        assert len(ctx.visiting) == 0

    def test_rescan_with_fresh_context_is_identical(self, type_cache):
        root = {"a": [1, 2, 3], "b": ("x", b"y"), "c": Holder("z")}
        results = []
        for _ in range(2):
            ctx = ScanContext(type_cache)
            with stopped_world("test"):
                ctx.scan(INVALID_ADDR, Ref(root), False)
            results.append(ctx.sizes)
        assert results[0].total == results[1].total
        assert results[0].as_dict() == results[1].as_dict()


class TestCycles:

    def test_self_referencing_list(self, walk):
        lst = []
        lst.append(lst)
        sizes = walk(lst)
        assert sizes[list] == TypeSize(sys.getsizeof(lst), 1)

    def test_mutually_referencing_instances(self, walk):
        a, b = Node(), Node()
        a.other = b
        b.other = a
        sizes = walk(a)
        assert sizes[Node] == TypeSize(2 * sys.getsizeof(a), 2)

    def test_dict_containing_itself(self, walk):
        d = {}
        d["self"] = d
        sizes = walk(d)
        assert sizes[dict] == TypeSize(static_size(d) + 2 * WORD_SIZE, 1)


class TestReferences:

    def test_null_ref_contributes_nothing(self, ctx):
        assert ctx.scan(INVALID_ADDR, Ref(), False) == 0
        assert ctx.sizes.count == 0

    def test_empty_slot_contributes_nothing(self, ctx):
        assert ctx.scan(INVALID_ADDR, Slot(), False) == 0
        assert ctx.sizes.count == 0

    def test_unset_attribute_slot_is_skipped(self, walk):
        node = Node()
        sizes = walk(node)
        assert list(sizes.by_type) == [Node]

    def test_pointer_shaped_slot_adds_nothing(self, ctx):
        p = Point(1, 2)
        assert ctx.scan(INVALID_ADDR, Slot(p), False) == 0
        assert ctx.sizes[Point] == TypeSize(sys.getsizeof(p), 1)

    def test_by_value_slot_adds_static_size(self, ctx, type_cache):
        type_cache.register(Point, Kind.STRUCT, pointer_shaped=False)
        p = Point(1, 2)
        assert ctx.scan(INVALID_ADDR, Slot(p), False) == sys.getsizeof(p)
        assert Point not in ctx.sizes
        assert int in ctx.sizes


class TestText:

    def test_str_payload(self, ctx):
        assert ctx.scan(INVALID_ADDR, "hello", False) == 5

    def test_bytes_payload(self, ctx):
        payload = b"hello"
        assert ctx.scan(address_of(payload), payload, True) == 5
        assert ctx.sizes[bytes] == TypeSize(sys.getsizeof(payload), 1)

    @pytest.mark.parametrize("view_first", [True, False])
    def test_memoryview_over_bytes_counted_once(self, type_cache, view_first):
        payload = bytes(range(64))
        view = memoryview(payload)
        root = [view, payload] if view_first else [payload, view]
        ctx = ScanContext(type_cache)
        with stopped_world("test"):
            ctx.scan(INVALID_ADDR, Ref(root), False)
        assert ctx.sizes[bytes] == TypeSize(sys.getsizeof(payload), 1)
        assert ctx.sizes[memoryview] == TypeSize(sys.getsizeof(view), 1)


class TestSequences:

    def test_number_array_extra(self, ctx):
        arr = array.array("i", [0] * 10)
        assert ctx.scan(address_of(arr), arr, True) == 10 * arr.itemsize
        assert ctx.sizes[array.array] == TypeSize(sys.getsizeof(arr), 1)

    def test_record_with_inline_fields(self, ctx, type_cache, walk):
        type_cache.register(str, Kind.TEXT, pointer_shaped=False)
        type_cache.register(array.array, Kind.SLICE, pointer_shaped=False)
        name = "hello"
        data = array.array("i", [0] * 10)
        rec = Record(name, data)
        sizes = walk(rec)
        expected = (
            sys.getsizeof(rec)
            + static_size(name) + 5
            + static_size(data) + 10 * data.itemsize
        )
        assert sizes[Record] == TypeSize(expected, 1)
        assert list(sizes.by_type) == [Record]

    def test_record_with_referenced_fields(self, walk):
        data = array.array("i", [0] * 10)
        rec = Record("hello", data)
        sizes = walk(rec)
        assert sizes[Record] == TypeSize(sys.getsizeof(rec), 1)
        assert sizes[str] == TypeSize(sys.getsizeof("hello"), 1)
        assert sizes[array.array] == TypeSize(sys.getsizeof(data), 1)

    def test_list_bills_full_capacity(self, walk):
        lst = [None] * 8
        lst.append(1)
        sizes = walk(lst)
        assert sizes[list] == TypeSize(sys.getsizeof(lst), 1)

    def test_tuple_items(self, walk):
        tup = ("left", "right")
        sizes = walk(tup)
        assert sizes[tuple] == TypeSize(sys.getsizeof(tup), 1)
        assert sizes[str].count == 2

    def test_bytearray(self, walk):
        buf = bytearray(b"x" * 100)
        sizes = walk(buf)
        assert sizes[bytearray] == TypeSize(sys.getsizeof(buf), 1)

    def test_views_union_equals_distinct_bytes(self, type_cache):
        base = np.arange(100, dtype=np.int64)
        first, second = base[:60], base[40:]
        ctx = ScanContext(type_cache, follow_view_base=False)
        extra = ctx.scan(address_of(first), first, True)
        extra += ctx.scan(address_of(second), second, True)
        assert extra == base.nbytes
        assert np.ndarray in ctx.sizes

    def test_views_bill_their_base_once(self, walk):
        base = np.arange(100, dtype=np.int64)
        first, second = base[:60], base[40:]
        sizes = walk([first, second])
        expected = sys.getsizeof(base) + sys.getsizeof(first) + sys.getsizeof(second)
        assert sizes[np.ndarray] == TypeSize(expected, 3)

    def test_object_array_elements(self, walk):
        arr = np.empty(3, dtype=object)
        arr[:] = ["x", "y", "x"]
        sizes = walk(arr)
        assert sizes[np.ndarray] == TypeSize(sys.getsizeof(arr), 1)
        assert sizes[str].count == 2

    def test_structured_object_array_view_counted_once(self, walk):
        dtype = np.dtype([("a", np.int64), ("o", object)])
        base = np.zeros(1000, dtype=dtype)
        view = base[:500]
        sizes = walk([base, view])
        expected = sys.getsizeof(base) + sys.getsizeof(view)
        assert sizes[np.ndarray] == TypeSize(expected, 2)

    def test_structured_object_array_views_without_base(self, type_cache):
        dtype = np.dtype([("a", np.int64), ("o", object)])
        base = np.zeros(100, dtype=dtype)
        first, second = base[:60], base[40:]
        ctx = ScanContext(type_cache, follow_view_base=False)
        with stopped_world("test"):
            extra = ctx.scan(address_of(first), first, True)
            extra += ctx.scan(address_of(second), second, True)
        assert extra == base.nbytes


class TestMaps:

    def test_dict_entries(self, walk):
        d = {"k": 1, "j": 2}
        sizes = walk(d)
        assert sizes[dict] == TypeSize(static_size(d) + 4 * WORD_SIZE, 1)
        assert sizes[str].count == 2

    def test_set_has_no_value_slots(self, walk):
        s = {1, 2, 3}
        sizes = walk(s)
        assert sizes[set] == TypeSize(static_size(s) + 3 * WORD_SIZE, 1)
        assert sizes[int].count == 3

    def test_instance_attributes(self, walk):
        obj = Plain()
        sizes = walk(obj)
        assert Plain in sizes
        assert sizes[list].count == 1


class TestContainerSubclasses:

    def test_dict_subclass_attributes(self, walk):
        settings = Settings(key="value")
        settings.extra = "x" * 10_000
        sizes = walk(settings)
        assert sizes[Settings].count == 1
        assert sizes[dict].count == 1
        assert sizes[str].total > sys.getsizeof(settings.extra)

    def test_list_subclass_attributes(self, walk):
        items = Items([1, 2])
        items.extra = "x" * 10_000
        sizes = walk(items)
        assert sizes[Items] == TypeSize(sys.getsizeof(items), 1)
        assert sizes[str].total > sys.getsizeof(items.extra)
        assert sizes[int].count == 2

    def test_str_subclass_attributes(self, walk):
        label = Label("name")
        label.note = "y" * 5_000
        sizes = walk(label)
        assert sizes[Label] == TypeSize(sys.getsizeof(label), 1)
        assert sizes[str].total > sys.getsizeof(label.note)

    def test_slot_attributes(self, walk):
        batch = Batch([1], Target())
        sizes = walk(batch)
        assert sizes[Batch] == TypeSize(sys.getsizeof(batch), 1)
        assert sizes[Target].count == 1
        assert dict not in sizes

    def test_subclass_without_attributes_adds_nothing(self, walk):
        sizes = walk(Items([1]))
        assert dict not in sizes
        assert sizes[int].count == 1

    @pytest.mark.parametrize("value, contents", [
        (GuardedDict(a="b"), str),
        (GuardedList(["a", "b"]), str),
        (GuardedSet({"a", "b"}), str),
        (GuardedTuple(("a", "b")), str),
        (GuardedDeque(["a", "b"]), str),
    ])
    def test_overridden_iteration_is_bypassed(self, walk, value, contents):
        sizes = walk(value)
        assert sizes[type(value)].count == 1
        assert sizes[contents].count == 2


class TestQueues:

    def test_deque_buffer(self, walk):
        dq = collections.deque(["a", "b"])
        sizes = walk(dq)
        assert sizes[collections.deque] == TypeSize(sys.getsizeof(dq), 1)
        assert sizes[str].count == 2

    def test_queue_buffer(self, walk):
        q = queue.Queue()
        q.put("job")
        sizes = walk(q)
        expected = sys.getsizeof(q) + out_of_line_size(q.queue)
        assert sizes[queue.Queue] == TypeSize(expected, 1)
        assert collections.deque not in sizes
        assert sizes[str].count == 1

    def test_asyncio_queue_buffer(self, walk):
        q = asyncio.Queue()
        q.put_nowait(b"payload")
        sizes = walk(q)
        expected = sys.getsizeof(q) + out_of_line_size(q._queue)
        assert sizes[asyncio.Queue] == TypeSize(expected, 1)
        assert bytes in sizes

    def test_queue_requires_pause(self, ctx):
        dq = collections.deque([1])
        with pytest.raises(ContractViolation) as exc_info:
            ctx.scan(address_of(dq), dq, True)
        assert exc_info.value.code == MemsizeErrorCodes.UNPAUSED_ACCESS
        assert len(ctx.visiting) == 0


class TestOpaque:

    def test_callables_and_classes_not_walked(self, walk):
        sizes = walk([len, Holder])
        assert sizes[type(len)] == TypeSize(sys.getsizeof(len), 1)
        assert sizes[type] == TypeSize(sys.getsizeof(Holder), 1)
        assert str not in sizes


class TestContracts:

    def test_unhandled_kind_is_fatal(self, ctx):
        del ctx._handlers[Kind.MAP]
        with pytest.raises(UnhandledKindError) as exc_info:
            ctx.scan(INVALID_ADDR, {"a": 1}, False)
        assert exc_info.value.kind is Kind.MAP
        assert exc_info.value.typ is dict

    def test_max_depth(self, type_cache):
        nested = []
        for _ in range(50):
            nested = [nested]
        ctx = ScanContext(type_cache, max_depth=20)
        with pytest.raises(ContractViolation) as exc_info:
            ctx.scan(address_of(nested), nested, True)
        assert exc_info.value.code == MemsizeErrorCodes.MAX_DEPTH_EXCEEDED
        assert ctx.depth == 0
        assert len(ctx.visiting) == 0
