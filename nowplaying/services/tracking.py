"""Watch-time accumulation and resume offset resolution.

Pure functions used by the session lifecycle manager on its progress, end and
start paths. Nothing here touches the database.
"""
from datetime import datetime
from typing import Optional


def progress_percentage(position: float, duration: float) -> float:
    """Percentage of the item consumed, clamped to 0..100."""
    if not duration or duration <= 0:
        return 0.0
    return max(0.0, min(100.0, (position / duration) * 100))


def watch_time_delta(
    previous_position: float,
    position: float,
    last_updated_at: datetime,
    now: datetime,
    tolerance: float
) -> float:
    """Seconds of forward playback to credit for a single position report.

    Backward seeks yield 0. A forward jump larger than the wall-clock time since
    the previous report (scaled by `tolerance`) is treated as a scrub and yields 0.
    """
    delta = max(0.0, position - previous_position)
    if delta == 0:
        return 0.0

    elapsed = max(0.0, (now - last_updated_at).total_seconds())
    if delta > elapsed * tolerance:
        return 0.0
    return delta


def is_near_complete(
    position: float,
    duration: float,
    epsilon: float,
    completion_ratio: float
) -> bool:
    if duration <= 0:
        return False
    return position >= duration - epsilon or position >= duration * completion_ratio


def resolve_resume_offset(
    last_position: Optional[float],
    duration: float,
    client_position: Optional[float],
    epsilon: float,
    completion_ratio: float
) -> float:
    """Pick the position a new session starts from.

    Server-side progress wins over the client's claim. Items that were finished
    or nearly finished restart from 0.
    """
    if last_position is None:
        return client_position or 0.0

    if last_position <= 0:
        return 0.0
    if is_near_complete(last_position, duration, epsilon, completion_ratio):
        return 0.0
    return last_position
