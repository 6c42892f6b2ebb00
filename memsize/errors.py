# memsize/errors.py
"""
memsize Error Types

This module provides the error infrastructure for the memsize scanner.  A
scan has no recoverable runtime failures: it either completes with an exact
result or aborts with one of the exceptions below.

Architecture Overview:
─────────────────────
┌─────────────────────────────────────────────────────────────────────────────┐
│                          Error Hierarchy                                    │
├─────────────────────────────────────────────────────────────────────────────┤
│  MemsizeError (base)                                                        │
│  ├── ContractViolation  - Programmer errors; never caught by the library    │
│  │   ├── InvalidRootError    - null or non-reference scan root              │
│  │   └── UnhandledKindError  - classifier and dispatch out of lockstep      │
│  └── ConfigError        - Invalid configuration or type registration        │
└─────────────────────────────────────────────────────────────────────────────┘

Error Codes:
────────────
Each error has a unique code following the pattern MEMSIZE-XXXX where XXXX
is a 4-digit number in ranges:
  - 1000-1999: Root validation errors
  - 2000-2999: Traversal contract errors
  - 3000-3999: Configuration errors

Example Usage:
──────────────
    from memsize.errors import InvalidRootError, MemsizeErrorCodes

    try:
        memsize.scan(None)
    except InvalidRootError as exc:
        assert exc.code == MemsizeErrorCodes.NULL_ROOT
"""

from __future__ import annotations

from enum import Enum, unique
from typing import Any, Dict, Optional


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR CLASSIFICATION
# ═══════════════════════════════════════════════════════════════════════════════

@unique
class ErrorCategory(Enum):
    """Broad classification of memsize errors."""

    ROOT = "root"
    TRAVERSAL = "traversal"
    CONFIG = "config"


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR CODES
# ═══════════════════════════════════════════════════════════════════════════════

class ErrorCode:
    """
    Structured error code.

    Codes follow the pattern MEMSIZE-NNNN; the number range determines the
    category (see module docstring).
    """

    __slots__ = ("prefix", "number", "category", "title")

    def __init__(
        self,
        number: int,
        category: ErrorCategory,
        title: str,
        prefix: str = "MEMSIZE",
    ) -> None:
        self.prefix = prefix
        self.number = number
        self.category = category
        self.title = title

    @property
    def code(self) -> str:
        """Get the full error code string."""
        return f"{self.prefix}-{self.number:04d}"

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"ErrorCode({self.code!r}, {self.category.name})"

    def __hash__(self) -> int:
        return hash((self.prefix, self.number))

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ErrorCode):
            return self.prefix == other.prefix and self.number == other.number
        if isinstance(other, str):
            return self.code == other
        return False


# ───────────────────────────────────────────────────────────────────────────────
# PREDEFINED ERROR CODES
# ───────────────────────────────────────────────────────────────────────────────

class MemsizeErrorCodes:
    """Predefined error codes."""

    # Root validation (1000-1999)
    NULL_ROOT = ErrorCode(1001, ErrorCategory.ROOT, "root is None")
    NON_REFERENCE_ROOT = ErrorCode(
        1002, ErrorCategory.ROOT, "root is a plain value, not a reference"
    )

    # Traversal contracts (2000-2999)
    UNHANDLED_KIND = ErrorCode(
        2001, ErrorCategory.TRAVERSAL, "value kind has no scan handler"
    )
    MAX_DEPTH_EXCEEDED = ErrorCode(
        2002, ErrorCategory.TRAVERSAL, "scan exceeded the configured depth"
    )
    UNPAUSED_ACCESS = ErrorCode(
        2003, ErrorCategory.TRAVERSAL, "internal buffer read outside the global pause"
    )

    # Configuration (3000-3999)
    INVALID_CONFIG = ErrorCode(3001, ErrorCategory.CONFIG, "invalid configuration value")
    INVALID_REGISTRATION = ErrorCode(
        3002, ErrorCategory.CONFIG, "invalid type registration"
    )

    @classmethod
    def all(cls) -> Dict[str, ErrorCode]:
        """Return every predefined code keyed by its code string."""
        return {
            value.code: value
            for value in vars(cls).values()
            if isinstance(value, ErrorCode)
        }


# ═══════════════════════════════════════════════════════════════════════════════
# EXCEPTION CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

class MemsizeError(Exception):
    """
    Base exception for all memsize errors.

    Carries a structured :class:`ErrorCode` and an optional hint so that the
    CLI can render a one-line diagnostic.
    """

    default_code: ErrorCode = MemsizeErrorCodes.INVALID_CONFIG

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        hint: str = "",
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.hint = hint
        self.cause = cause

    def with_hint(self, hint: str) -> "MemsizeError":
        """Attach a hint to this error."""
        self.hint = hint
        return self

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation."""
        return {
            "code": self.code.code,
            "category": self.code.category.value,
            "message": self.message,
            "hint": self.hint,
        }

    def __str__(self) -> str:
        text = f"[{self.code}] {self.message}"
        if self.hint:
            text += f" (hint: {self.hint})"
        return text


class ContractViolation(MemsizeError):
    """A programming-contract violation.

    Raised loudly and never retried: continuing would produce a silently
    wrong size total.
    """

    default_code = MemsizeErrorCodes.UNHANDLED_KIND


class InvalidRootError(ContractViolation):
    """The value passed to :func:`memsize.scan` cannot be scanned."""

    default_code = MemsizeErrorCodes.NULL_ROOT

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        root_type: Optional[type] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, code=code, **kwargs)
        self.root_type = root_type


class UnhandledKindError(ContractViolation):
    """A classified kind reached the dispatcher without a handler."""

    default_code = MemsizeErrorCodes.UNHANDLED_KIND

    def __init__(self, kind: Any, typ: Optional[type] = None) -> None:
        name = getattr(typ, "__qualname__", repr(typ))
        super().__init__(f"unhandled kind {kind!r} for type {name}")
        self.kind = kind
        self.typ = typ


class ConfigError(MemsizeError):
    """Invalid configuration value or type registration."""

    default_code = MemsizeErrorCodes.INVALID_CONFIG
