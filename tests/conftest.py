# tests/conftest.py
"""
Shared fixtures for the memsize test-suite.
"""

import os
import sys

import pytest

# Ensure the memsize package is importable without installation
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from memsize.engine import ScanContext
from memsize.reflect import INVALID_ADDR, Ref
from memsize.typecache import TypeCache
from memsize.world import stopped_world


@pytest.fixture
def type_cache():
    """A private type cache so registrations never leak between tests."""
    return TypeCache()


@pytest.fixture
def ctx(type_cache):
    return ScanContext(type_cache)


@pytest.fixture
def paused():
    """Hold the global pause for the duration of the test."""
    with stopped_world("test"):
        yield


@pytest.fixture
def walk(ctx):
    """Scan *root* the way memsize.scan does and return the Sizes."""
    def _walk(root):
        with stopped_world("test walk"):
            ctx.scan(INVALID_ADDR, Ref(root), False)
        return ctx.sizes
    return _walk
