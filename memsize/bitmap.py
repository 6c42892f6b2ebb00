"""
memsize/bitmap.py — Address-span tracker
========================================

Records which byte ranges of the address space have already been counted
during a scan.  The address space is huge and almost entirely untouched, so
the bitmap is paged: it is cut into pages of ``PAGE_BITS`` bytes (one bit per
byte) and only pages that have been written to are allocated.

Each page is a plain Python ``int`` used as a bitset, so marking or counting a
range costs one mask operation per page it overlaps.

Usage
-----
    bm = Bitmap()
    bm.mark_range(0x1000, 64)
    bm.is_marked(0x1010)          # True
    bm.count_range(0x1020, 64)    # 32 bytes already marked
"""

from __future__ import annotations

from typing import Dict, Iterator, Tuple

# Bytes of address space covered by one page.  A page costs PAGE_BITS / 8
# bytes of bitmap storage once allocated.
PAGE_BITS: int = 1 << 15


def _mask(offset: int, nbits: int) -> int:
    return ((1 << nbits) - 1) << offset


class Bitmap:
    """Sparse, paged bitmap over the address space.

    Marks are never cleared: a byte marked once stays marked for the
    lifetime of the bitmap.
    """

    __slots__ = ("_pages",)

    def __init__(self) -> None:
        self._pages: Dict[int, int] = {}

    # -- internals -----------------------------------------------------------

    @staticmethod
    def _spans(addr: int, length: int) -> Iterator[Tuple[int, int, int]]:
        """Split ``[addr, addr+length)`` into ``(page, offset, nbits)`` runs."""
        end = addr + length
        while addr < end:
            page, offset = divmod(addr, PAGE_BITS)
            nbits = min(end - addr, PAGE_BITS - offset)
            yield page, offset, nbits
            addr += nbits

    # -- public API ----------------------------------------------------------

    def mark_range(self, addr: int, length: int) -> None:
        """Mark ``[addr, addr+length)`` as counted.  Idempotent."""
        if length <= 0:
            return
        pages = self._pages
        for page, offset, nbits in self._spans(addr, length):
            pages[page] = pages.get(page, 0) | _mask(offset, nbits)

    def is_marked(self, addr: int) -> bool:
        """Whether the byte at *addr* has been marked."""
        page, offset = divmod(addr, PAGE_BITS)
        return bool((self._pages.get(page, 0) >> offset) & 1)

    def count_range(self, addr: int, length: int) -> int:
        """Number of bytes inside ``[addr, addr+length)`` already marked."""
        if length <= 0:
            return 0
        count = 0
        pages = self._pages
        for page, offset, nbits in self._spans(addr, length):
            bits = pages.get(page)
            if bits:
                count += (bits & _mask(offset, nbits)).bit_count()
        return count

    # -- diagnostics ---------------------------------------------------------

    def size(self) -> int:
        """Bytes of bitmap storage allocated so far."""
        return len(self._pages) * (PAGE_BITS // 8)

    def utilization(self) -> float:
        """Fraction of allocated bits that are set (0.0 when empty)."""
        if not self._pages:
            return 0.0
        marked = sum(bits.bit_count() for bits in self._pages.values())
        return marked / (len(self._pages) * PAGE_BITS)

    def __len__(self) -> int:
        return len(self._pages)

    def __repr__(self) -> str:
        return (
            f"Bitmap(pages={len(self._pages)}, size={self.size()}, "
            f"utilization={self.utilization():.3f})"
        )
