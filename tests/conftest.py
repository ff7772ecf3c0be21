"""
Shared fixtures. Fakes live in tests/fakes.py.
"""

import sys
from datetime import datetime
from pathlib import Path

import pytest

# Add repo root and this directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import CHICAGO, FakeClock


@pytest.fixture
def clock():
    """Noon in Minneapolis on a June day."""
    return FakeClock(datetime(2026, 6, 15, 12, 0, tzinfo=CHICAGO))
