# Copyright (c) 2025 Stephen Clau
#
# This file is part of Pyramid Limiter.
#
# Pyramid Limiter is dual-licensed:
#
# 1. GNU Affero General Public License v3.0 (AGPL-3.0)
#    See LICENSE file for full terms
#
# 2. Commercial License
#    For proprietary use without AGPL requirements
#    Contact: licensing@laudiversified.com
#
# SPDX-License-Identifier: AGPL-3.0-only OR Commercial

"""
Zone index for pyramid areas.

A zone is an axis-aligned box with inclusive bounds on every axis. Bounds are
not reordered: a zone whose min exceeds its max on any axis contains nothing.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, List, Tuple
import structlog

logger = structlog.get_logger()

Point = Tuple[int, int, int]


@dataclass(frozen=True, slots=True)
class Zone:
    """Immutable inclusive-bound box."""
    min_x: int
    max_x: int
    min_y: int
    max_y: int
    min_z: int
    max_z: int

    def contains(self, point: Point) -> bool:
        x, y, z = point
        return (
            self.min_x <= x <= self.max_x
            and self.min_y <= y <= self.max_y
            and self.min_z <= z <= self.max_z
        )


# Fallback pyramid from the plugin defaults. Inverted on Z (min_z > max_z),
# so it never contains a point.
DEFAULT_ZONE = Zone(
    min_x=7800,
    max_x=7860,
    min_y=32,
    max_y=128,
    min_z=-7730,
    max_z=-7780,
)


class ZoneIndex:
    """Set of zones answering "is this location gated?"."""

    def __init__(self, zones: Iterable[Zone] = ()):
        self.zones: List[Zone] = list(zones)
        logger.debug("zone_index_initialized", zones=len(self.zones))

    def contains(self, point: Point) -> bool:
        """
        Check whether a block location falls inside any zone.

        Args:
            point: (x, y, z) block coordinates

        Returns:
            True if at least one zone contains the point. Always False
            when no zones are configured.
        """
        return any(zone.contains(point) for zone in self.zones)

    def __len__(self) -> int:
        return len(self.zones)
