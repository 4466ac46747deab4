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
Per-player quota tracking (host-agnostic).

Enforces the daily run limit, the daily item limit and the item cooldown
period for pyramid chests. The caller supplies the timestamp, so decisions
are deterministic and the tracker never reads the wall clock.
"""

import threading
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, Hashable, Optional
import structlog

logger = structlog.get_logger()

MAX_RUNS_PER_DAY = 10
MAX_ITEMS_PER_DAY = 10
MAX_ITEMS_PER_PERIOD = 3
COOLDOWN_PERIOD = timedelta(minutes=10)


class Decision(str, Enum):
    """Outcome of one interaction evaluation."""
    ALLOW = "allow"
    DENY_DAILY_RUN_LIMIT = "deny_daily_run_limit"
    DENY_DAILY_ITEM_LIMIT = "deny_daily_item_limit"
    DENY_COOLDOWN_PERIOD = "deny_cooldown_period"

    @property
    def allowed(self) -> bool:
        return self is Decision.ALLOW

    @property
    def message(self) -> str:
        """Player-facing text for this decision (empty for ALLOW)."""
        return DECISION_MESSAGES[self]


DECISION_MESSAGES: Dict[Decision, str] = {
    Decision.ALLOW: "",
    Decision.DENY_DAILY_RUN_LIMIT: (
        "You have reached the daily run limit for the pyramid mini-game."
    ),
    Decision.DENY_DAILY_ITEM_LIMIT: (
        "You have already picked up the maximum number of items from the pyramid today."
    ),
    Decision.DENY_COOLDOWN_PERIOD: (
        "You have reached the item pickup limit for the current period. "
        "Please wait before picking up more items."
    ),
}


@dataclass
class PlayerQuotaState:
    """Counters for one player, rolled over at each calendar date."""
    run_count: int = 0
    item_count: int = 0
    last_run_date: Optional[date] = None
    last_item_pickup_time: Optional[datetime] = None
    """None means the player has never picked up an item."""


class QuotaTracker:
    """Daily and cooldown quota engine keyed by player identity."""

    def __init__(
        self,
        max_runs_per_day: int = MAX_RUNS_PER_DAY,
        max_items_per_day: int = MAX_ITEMS_PER_DAY,
        max_items_per_period: int = MAX_ITEMS_PER_PERIOD,
        cooldown_period: timedelta = COOLDOWN_PERIOD,
    ):
        """
        Initialize quota tracker.

        Args:
            max_runs_per_day: Interactions accepted per player per day
            max_items_per_day: Items granted per player per day
            max_items_per_period: Batch size that arms the cooldown check
            cooldown_period: Window after the last pickup in which a full
                batch is refused
        """
        self.max_runs_per_day = max_runs_per_day
        self.max_items_per_day = max_items_per_day
        self.max_items_per_period = max_items_per_period
        self.cooldown_period = cooldown_period
        self.players: Dict[Hashable, PlayerQuotaState] = {}
        self._lock = threading.Lock()
        logger.debug(
            "quota_tracker_initialized",
            max_runs_per_day=max_runs_per_day,
            max_items_per_day=max_items_per_day,
            max_items_per_period=max_items_per_period,
            cooldown_seconds=cooldown_period.total_seconds(),
        )

    def evaluate(self, player_id: Hashable, now: datetime) -> Decision:
        """
        Decide whether a player may open a pyramid chest and record it.

        The caller must already have checked that the chest lies inside a
        zone. Checks run in order and the first failing one wins:
        daily runs, daily items, cooldown period. A run is consumed as soon
        as the daily run check passes, even if a later check denies the item.

        Args:
            player_id: Stable player identity (e.g. UUID)
            now: Timestamp of the interaction

        Returns:
            Decision for this interaction
        """
        with self._lock:
            decision = self._evaluate(player_id, now)

        if not decision.allowed:
            logger.debug(
                "interaction_denied",
                player_id=str(player_id),
                decision=decision.value,
            )
        return decision

    def _evaluate(self, player_id: Hashable, now: datetime) -> Decision:
        today = now.date()
        state = self.players.get(player_id)

        if state is None:
            state = PlayerQuotaState(last_run_date=today)
            self.players[player_id] = state
        elif state.last_run_date != today:
            state.run_count = 0
            state.item_count = 0
            state.last_run_date = today
            logger.debug("quota_rolled_over", player_id=str(player_id), date=today.isoformat())
        elif state.run_count >= self.max_runs_per_day:
            return Decision.DENY_DAILY_RUN_LIMIT

        state.run_count += 1

        if state.item_count >= self.max_items_per_day:
            return Decision.DENY_DAILY_ITEM_LIMIT

        if self._in_cooldown(state, now):
            return Decision.DENY_COOLDOWN_PERIOD

        state.item_count += 1
        state.last_item_pickup_time = now
        return Decision.ALLOW

    def _in_cooldown(self, state: PlayerQuotaState, now: datetime) -> bool:
        # Only a completed batch inside the window is refused; a negative
        # elapsed time (clock went backwards) still counts as inside.
        if state.last_item_pickup_time is None:
            return False
        elapsed = now - state.last_item_pickup_time
        return (
            elapsed < self.cooldown_period
            and state.item_count % self.max_items_per_period == 0
        )

    def get_state(self, player_id: Hashable) -> Optional[PlayerQuotaState]:
        """Return a copy of the player's counters, or None if never seen."""
        with self._lock:
            state = self.players.get(player_id)
            return replace(state) if state is not None else None

    def tracked_players(self) -> int:
        """Number of players with recorded state."""
        return len(self.players)

    def reset(self, player_id: Hashable) -> None:
        """
        Forget all counters for a specific player.

        Args:
            player_id: Player identity to reset
        """
        with self._lock:
            if player_id in self.players:
                del self.players[player_id]
                logger.debug("quota_reset", player_id=str(player_id))

    def reset_all(self) -> None:
        """Forget all counters for every player."""
        with self._lock:
            self.players.clear()
        logger.debug("all_quotas_reset")
