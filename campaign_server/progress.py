"""
Progress ramp: stream-count estimates derived from elapsed playlist time.

Every assigned playlist contributes 500 streams per 24 hours, linearly and
without a cap per playlist. The estimate is recomputed on every read; a stored
progress column is advisory only.
"""

import math
from datetime import datetime, timedelta
from typing import Optional

STREAMS_PER_PLAYLIST_PER_DAY = 500

_MICROS_PER_DAY = 24 * 60 * 60 * 1_000_000


def estimate_streams(
    assigned_at: Optional[datetime],
    slot_count: int,
    target_streams: int,
    now: datetime,
) -> int:
    """
    Estimate streams delivered since ``assigned_at``.

    Returns ``floor(hours_elapsed * slot_count * 500 / 24)`` clamped to
    ``[0, target_streams]``; 0 when nothing has been assigned yet.
    """
    if assigned_at is None or slot_count <= 0:
        return 0

    # Integer microsecond math keeps exact day boundaries exact.
    elapsed_us = (now - assigned_at) // timedelta(microseconds=1)
    if elapsed_us <= 0:
        return 0

    streams = (
        elapsed_us * slot_count * STREAMS_PER_PLAYLIST_PER_DAY
    ) // _MICROS_PER_DAY
    return max(0, min(streams, max(target_streams, 0)))


def estimated_removal_date(
    assigned_at: Optional[datetime],
    slot_count: int,
    target_streams: int,
) -> Optional[datetime]:
    """Day on which the playlist target is expected to be reached."""
    if assigned_at is None or slot_count <= 0:
        return None
    daily = slot_count * STREAMS_PER_PLAYLIST_PER_DAY
    days = math.ceil(max(target_streams, 0) / daily)
    return assigned_at + timedelta(days=days)
