"""
memsize/sizes.py — Scan result and per-type aggregation
=======================================================

``Sizes`` is the aggregator the engine writes to while scanning.  Once the
scan is finished the orchestrator freezes it and hands it back to the
caller as a read-only result.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import FrozenInstanceError, dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Tuple


def type_name(typ: type) -> str:
    """Qualified display name of *typ* (builtins without module prefix)."""
    module = getattr(typ, "__module__", "builtins")
    qualname = getattr(typ, "__qualname__", repr(typ))
    if module in ("builtins", None):
        return qualname
    return f"{module}.{qualname}"


def display_names(types: Iterator[type]) -> Dict[type, str]:
    """One distinct label per type.

    Types sharing a qualified name (classes built inside a function, a
    reloaded module) are told apart by their identity.
    """
    names = {typ: type_name(typ) for typ in types}
    clashes = Counter(names.values())
    return {
        typ: name if clashes[name] == 1 else f"{name} <{id(typ):#x}>"
        for typ, name in names.items()
    }


@dataclass(frozen=True)
class TypeSize:
    """Totals for one concrete type."""
    total: int = 0
    count: int = 0


@dataclass
class Sizes:
    """Result of a scan.

    Attributes
    ----------
    total:
        Bytes billed over all counted values.
    by_type:
        Per concrete type totals.
    bitmap_size, bitmap_utilization:
        Diagnostics of the address-span tracker; not load-bearing.
    """
    total: int = 0
    by_type: Mapping[type, TypeSize] = field(default_factory=dict)
    bitmap_size: int = 0
    bitmap_utilization: float = 0.0
    _frozen: bool = field(default=False, init=False, repr=False, compare=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_frozen", False):
            raise FrozenInstanceError(f"cannot assign to {name!r} of a finished scan")
        super().__setattr__(name, value)

    def add_value(self, typ: type, size: int) -> None:
        """Bill one counted value of *typ* occupying *size* bytes."""
        self.total += size
        record = self.by_type.get(typ, _EMPTY_RECORD)
        self.by_type[typ] = TypeSize(record.total + size, record.count + 1)

    def freeze(self, bitmap_size: int = 0, bitmap_utilization: float = 0.0) -> "Sizes":
        """Attach the tracker diagnostics and make the result read-only."""
        self.bitmap_size = bitmap_size
        self.bitmap_utilization = bitmap_utilization
        self.by_type = MappingProxyType(dict(self.by_type))
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    # -- queries -------------------------------------------------------------

    @property
    def count(self) -> int:
        """Number of counted values over all types."""
        return sum(record.count for record in self.by_type.values())

    def items(self) -> Iterator[Tuple[type, TypeSize]]:
        return iter(self.by_type.items())

    def __getitem__(self, typ: type) -> TypeSize:
        return self.by_type[typ]

    def __contains__(self, typ: object) -> bool:
        return typ in self.by_type

    def as_dict(self) -> Dict[str, Dict[str, int]]:
        """Per-type totals keyed by display name, one entry per type."""
        names = display_names(iter(self.by_type))
        return {
            names[typ]: {"total": record.total, "count": record.count}
            for typ, record in self.by_type.items()
        }

    def report(self) -> str:
        """Plain-text table; see :mod:`memsize.report`."""
        from memsize.report import Report

        return Report(self).render(colour=False)


_EMPTY_RECORD = TypeSize()
