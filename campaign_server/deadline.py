"""
Deadline and escalation calculator.

An order must be started within 48 hours of creation. The same hour math
drives both the order list badge (``classify``) and the action queue due
labels (``format_due_label``).
"""

import math
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

DEADLINE_HOURS = 48

BAND_SAFE = 'safe'
BAND_WARNING = 'warning'
BAND_URGENT = 'urgent'
BAND_BREACHED = 'breached'

BAND_COLORS = {
    BAND_SAFE: '#10B981',
    BAND_WARNING: '#F59E0B',
    BAND_URGENT: '#F97316',
    BAND_BREACHED: '#EF4444',
}


@dataclass
class DeadlineInfo:
    visible: bool
    label: str = ''
    color_band: Optional[str] = None
    color: Optional[str] = None
    hours_left: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _round_half_up(value: float) -> int:
    # Half-up rather than Python's banker's rounding.
    return math.floor(value + 0.5)


def deadline_for(
    created_at: datetime, deadline_hours: int = DEADLINE_HOURS
) -> datetime:
    return created_at + timedelta(hours=deadline_hours)


def hours_until_deadline(
    created_at: datetime,
    now: datetime,
    deadline_hours: int = DEADLINE_HOURS,
) -> int:
    """Whole hours until the deadline; negative once it has passed."""
    remaining = deadline_for(created_at, deadline_hours) - now
    return _round_half_up(remaining.total_seconds() / 3600)


def _hours_word(n: int) -> str:
    return 'Hour' if n == 1 else 'Hours'


def classify(
    created_at: datetime,
    order_status: str,
    now: datetime,
    deadline_hours: int = DEADLINE_HOURS,
) -> DeadlineInfo:
    """Map an order's age and status to a label and escalation band."""
    if (order_status or '').lower() != 'processing':
        return DeadlineInfo(visible=False)

    hours_left = hours_until_deadline(created_at, now, deadline_hours)

    if hours_left > 0:
        label = f'{hours_left} {_hours_word(hours_left)} left to start!'
        if hours_left >= 24:
            band = BAND_SAFE
        elif hours_left >= 12:
            band = BAND_WARNING
        else:
            band = BAND_URGENT
    else:
        past = abs(hours_left)
        label = f'{past} {_hours_word(past)} past deadline!'
        band = BAND_BREACHED

    return DeadlineInfo(
        visible=True,
        label=label,
        color_band=band,
        color=BAND_COLORS[band],
        hours_left=hours_left,
    )


def format_due_label(hours_left: int) -> str:
    """Short queue label: ``in 5h`` or ``2h ago!``."""
    if hours_left > 0:
        return f'in {hours_left}h'
    return f'{abs(hours_left)}h ago!'
