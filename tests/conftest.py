"""Shared pytest configuration for Pyramid Limiter tests.

Provides:
- src/ on sys.path for flat-layout imports
- A fresh QuotaTracker per test
- Fixed timestamps so daily rollover and cooldown checks are deterministic
"""

from datetime import datetime
from pathlib import Path
import sys

import pytest

# Add src/ to Python path for absolute imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from utils.rate_limiting import QuotaTracker  # noqa: E402
from zone_index import Zone, ZoneIndex  # noqa: E402


@pytest.fixture
def tracker() -> QuotaTracker:
    """QuotaTracker with default limits (10 runs, 10 items, 3 per 10 min)."""
    return QuotaTracker()


@pytest.fixture
def t0() -> datetime:
    """Mid-morning timestamp, far from any date boundary."""
    return datetime(2025, 6, 1, 10, 0, 0)


@pytest.fixture
def pyramid_zone() -> Zone:
    """A well-formed pyramid zone."""
    return Zone(min_x=0, max_x=10, min_y=60, max_y=80, min_z=-20, max_z=-5)


@pytest.fixture
def zone_index(pyramid_zone: Zone) -> ZoneIndex:
    """ZoneIndex holding the single pyramid_zone."""
    return ZoneIndex([pyramid_zone])
