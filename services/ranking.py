"""
Urgency ranking for needs.

score() is a pure function of a need and the current time. It is only ever
used for ordering and is never stored as ground truth. Weights shrink factor
by factor, and a priority tier outweighs all the other factors combined:

    priority tier      1000 / 2000 / 3000
    deadline proximity 0 .. 500
    perishable         +150
    request_count      0 .. 99
"""
import math
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

import config
from models import Need, Priority

PRIORITY_WEIGHTS = {
    Priority.normal: 1000.0,
    Priority.high: 2000.0,
    Priority.urgent: 3000.0,
}

DEADLINE_WEIGHT = 500.0
PERISHABLE_BOOST = 150.0
DEMAND_SCALE = 10.0
DEMAND_CAP = 99.0


def deadline_pressure(need: Need, now: datetime, horizon_days: Optional[int] = None) -> float:
    """0 without a deadline or past the horizon, DEADLINE_WEIGHT when due today or overdue."""
    if need.needed_by is None:
        return 0.0
    horizon = horizon_days or config.DEADLINE_HORIZON_DAYS
    days_left = (need.needed_by - now.date()).days
    if days_left <= 0:
        return DEADLINE_WEIGHT
    return DEADLINE_WEIGHT * max(0.0, 1.0 - days_left / horizon)


def demand_signal(request_count: int) -> float:
    return min(DEMAND_SCALE * math.log1p(max(0, request_count or 0)), DEMAND_CAP)


def score(need: Need, now: datetime) -> float:
    """Higher means more urgent."""
    total = PRIORITY_WEIGHTS[Priority(need.priority)]
    total += deadline_pressure(need, now)
    if need.is_perishable:
        total += PERISHABLE_BOOST
    total += demand_signal(need.request_count)
    return total


def rank_key(need: Need, now: datetime) -> Tuple[float, int]:
    # Ties go to the smaller id so repeated listings come back in the same order.
    return (-score(need, now), need.id or 0)


def rank_needs(needs: Iterable[Need], now: datetime) -> List[Need]:
    return sorted(needs, key=lambda need: rank_key(need, now))
