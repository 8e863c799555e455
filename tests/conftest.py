"""Shared fixtures for the queue tests.

The modules live at the repository root, so the root is put on sys.path
for runs that do not install the project first.
"""
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from harness import Heap  # noqa: E402
from queueLL import Queue  # noqa: E402


@pytest.fixture
def heap():
    return Heap(seed=0)


@pytest.fixture
def queue(heap):
    q = Queue(heap)
    yield q
    if q.block is not None:
        q.free()
    assert heap.live == 0, f"leaked blocks: {heap.leaks()}"