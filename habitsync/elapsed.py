"""
Elapsed time for timer habits, reconstructed from two stored markers.

A session is (base_elapsed_seconds, session_start). Readers in another
process derive the live value from those markers and their own clock, so the
writer never has to push a tick.
"""
import logging
from datetime import datetime, timedelta
from typing import NamedTuple, Optional
from .models import TimerSession, as_utc

logger = logging.getLogger(__name__)


class ElapsedReading(NamedTuple):
    elapsed_seconds: int
    is_running: bool


def _seconds_since(start: datetime, now: datetime) -> int:
    return max(0, (as_utc(now) - as_utc(start)) // timedelta(seconds=1))


def elapsed(base_elapsed_seconds: int, session_start: Optional[datetime], now: datetime) -> ElapsedReading:
    if session_start is None:
        return ElapsedReading(base_elapsed_seconds, False)
    return ElapsedReading(base_elapsed_seconds + _seconds_since(session_start, now), True)


def session_elapsed(session: TimerSession, now: datetime) -> ElapsedReading:
    return elapsed(session.base_elapsed_seconds, session.session_start, now)


def segment_seconds(session: TimerSession, now: datetime) -> int:
    """Seconds contributed by the currently open run, 0 when paused."""
    if session.session_start is None:
        return 0
    return _seconds_since(session.session_start, now)


def resume(session: TimerSession, now: datetime, allow_overrun: bool = False) -> TimerSession:
    if session.is_running:
        logger.debug(f"Resume ignored, timer already running since {session.session_start}")
        return session
    now = as_utc(now)
    return session.model_copy(update={"session_start": now, "allow_overrun": allow_overrun})


def pause(session: TimerSession, now: datetime) -> TimerSession:
    if not session.is_running:
        return session
    return session.model_copy(update={
        "base_elapsed_seconds": session.base_elapsed_seconds + segment_seconds(session, now),
        "session_start": None,
    })
