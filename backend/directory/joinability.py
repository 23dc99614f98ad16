"""
Joinability predicate.

Pure: depends only on (status, date, time, participant_count,
max_participants, now). No store access, no clocks.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from directory.models import JoinVerdict, PodcastSession, SessionStatus
from spec import MSG_LIVE_NOW, MSG_OPEN, MSG_ROOM_FULL, MSG_SESSION_ENDED, MSG_STARTS_IN


def _plural(amount: int, unit: str) -> str:
    return MSG_STARTS_IN.format(amount=amount, unit=unit if amount == 1 else f"{unit}s")


def describe_time_until(delta: timedelta) -> str:
    """
    "Starts in N minute(s) / hour(s) / day(s)".

    Minutes round up so a start 30s away reads "1 minute";
    hours and days are whole units of the rounded minutes.
    """
    minutes = max(1, math.ceil(delta.total_seconds() / 60))
    if minutes < 60:
        return _plural(minutes, "minute")
    hours = minutes // 60
    if hours < 24:
        return _plural(hours, "hour")
    return _plural(hours // 24, "day")


def is_joinable(session: PodcastSession, now: datetime) -> JoinVerdict:
    """
    Joinable iff status != ended, the scheduled start (if any) has passed,
    and the room has capacity left.

    now must be in the same (naive, local) time base as the schedule.
    """
    if session.status is SessionStatus.ENDED:
        return JoinVerdict(joinable=False, reason=MSG_SESSION_ENDED)

    start = session.scheduled_start
    if start is not None and now < start:
        return JoinVerdict(joinable=False, reason=describe_time_until(start - now))

    if session.participant_count >= session.max_participants:
        return JoinVerdict(
            joinable=False,
            reason=MSG_ROOM_FULL.format(max=session.max_participants),
        )

    if session.status is SessionStatus.LIVE:
        return JoinVerdict(joinable=True, reason=MSG_LIVE_NOW)
    return JoinVerdict(joinable=True, reason=MSG_OPEN)
