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
Chest interaction handling.

Turns host interaction events into quota decisions: interactions outside
every pyramid zone pass through untouched, interactions inside are evaluated
by the QuotaTracker and cancelled on any deny.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional
import json
import structlog

try:  # pragma: no cover - import wiring
    from .zone_index import ZoneIndex, Point
    from .utils.rate_limiting import Decision, QuotaTracker
except ImportError:  # pragma: no cover - import wiring
    from zone_index import ZoneIndex, Point  # type: ignore[no-redef]
    from utils.rate_limiting import Decision, QuotaTracker  # type: ignore[no-redef]

logger = structlog.get_logger()

MAX_LINE_LENGTH = 4096  # chars - reject oversized feed lines


@dataclass(frozen=True, slots=True)
class InteractionEvent:
    """A player clicking a block at integer world coordinates."""
    player_id: str
    x: int
    y: int
    z: int

    @property
    def point(self) -> Point:
        return (self.x, self.y, self.z)


@dataclass(frozen=True, slots=True)
class InteractionOutcome:
    """What the host should do with a gated interaction."""
    decision: Decision
    cancelled: bool
    message: str

    def to_dict(self, player_id: str) -> Dict[str, Any]:
        return {
            "player": player_id,
            "decision": self.decision.value,
            "cancelled": self.cancelled,
            "message": self.message,
        }


def _coordinate(data: Dict[str, Any], key: str) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' must be an integer, got {value!r}")
    return value


def parse_interaction_line(line: str) -> InteractionEvent:
    """
    Parse one feed line into an InteractionEvent.

    Expected format: {"player": "<id>", "x": 1, "y": 2, "z": 3}

    Raises:
        ValueError: If the line is not a valid interaction record
    """
    if len(line) > MAX_LINE_LENGTH:
        raise ValueError(f"line too long: {len(line)} chars (max {MAX_LINE_LENGTH})")

    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid JSON: {e.msg}") from e

    if not isinstance(data, dict):
        raise ValueError("interaction must be a JSON object")

    player_id = data.get("player")
    if not isinstance(player_id, str) or not player_id:
        raise ValueError("'player' must be a non-empty string")

    return InteractionEvent(
        player_id=player_id,
        x=_coordinate(data, "x"),
        y=_coordinate(data, "y"),
        z=_coordinate(data, "z"),
    )


class InteractionHandler:
    """Gate chest interactions inside pyramid zones."""

    def __init__(
        self,
        zone_index: ZoneIndex,
        tracker: QuotaTracker,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize interaction handler.

        Args:
            zone_index: Zones whose chests are gated
            tracker: Quota engine shared by all zones
            clock: Source of "now" when the event carries no timestamp
        """
        self.zone_index = zone_index
        self.tracker = tracker
        self.clock = clock

    def handle(
        self,
        event: InteractionEvent,
        now: Optional[datetime] = None,
    ) -> Optional[InteractionOutcome]:
        """
        Evaluate an interaction.

        Returns:
            None if the location is outside every zone, otherwise the
            outcome the host must apply.
        """
        if not self.zone_index.contains(event.point):
            return None

        if now is None:
            now = self.clock()

        decision = self.tracker.evaluate(event.player_id, now)
        outcome = InteractionOutcome(
            decision=decision,
            cancelled=not decision.allowed,
            message=decision.message,
        )

        logger.info(
            "pyramid_interaction",
            player_id=event.player_id,
            location=event.point,
            decision=decision.value,
            cancelled=outcome.cancelled,
        )
        return outcome
