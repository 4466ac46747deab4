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
General-purpose utilities for Pyramid Limiter.

Host-agnostic tools that can be driven by any game-server adapter.
"""

from .rate_limiting import (
    COOLDOWN_PERIOD,
    DECISION_MESSAGES,
    MAX_ITEMS_PER_DAY,
    MAX_ITEMS_PER_PERIOD,
    MAX_RUNS_PER_DAY,
    Decision,
    PlayerQuotaState,
    QuotaTracker,
)

__all__ = [
    # Quota tracking
    "QuotaTracker",
    "PlayerQuotaState",
    "Decision",
    "DECISION_MESSAGES",
    "MAX_RUNS_PER_DAY",
    "MAX_ITEMS_PER_DAY",
    "MAX_ITEMS_PER_PERIOD",
    "COOLDOWN_PERIOD",
]
