import json
import logging
import os
import fcntl
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional, Protocol
from zoneinfo import ZoneInfo
from ..config import settings
from ..models import Completion, HabitItem, ItemDocument, TimerSession, minutes_to_seconds
from .. import elapsed

logger = logging.getLogger(__name__)


class ItemSource(Protocol):
    """Read-only view of the habit database used by the snapshot builder."""

    def active_items(self) -> List[HabitItem]: ...

    def completions_today(self, habit_id: str, now: datetime) -> List[Completion]: ...


def local_day(instant: datetime, tz_name: Optional[str] = None) -> date:
    return instant.astimezone(ZoneInfo(tz_name or settings.TIMEZONE)).date()


def minutes_today(completions: List[Completion]) -> float:
    return sum(c.timer_minutes for c in completions)


def timer_session(item: HabitItem, completions: List[Completion]) -> TimerSession:
    """Session markers for today: logged segments form the base, the open run its start."""
    return TimerSession(
        base_elapsed_seconds=minutes_to_seconds(minutes_today(completions)),
        session_start=item.session_start,
        allow_overrun=item.allow_overrun,
    )


class JsonItemStore:
    """
    Habits and completion records kept in one JSON document.
    Only the owning process mutates it.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self.doc = ItemDocument()
        self.read_only = False
        self._load()

    def _load(self):
        if not self.path.exists():
            logger.info(f"No item store found at {self.path}, starting empty.")
            return

        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
                self.doc = ItemDocument(**data)
        except Exception as e:
            logger.error(f"Failed to load item store: {e}. Starting empty.", exc_info=True)

    def save(self):
        if not settings.PERSIST_ENABLED or self.read_only:
            return

        tmp_path = self.path.with_suffix('.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w') as f:
                try:
                    fcntl.flock(f, fcntl.LOCK_EX | fcntl.LOCK_NB)
                except BlockingIOError:
                    logger.warning("Could not acquire lock for item store save. Skipping save cycle.")
                    return

                try:
                    f.write(self.doc.model_dump_json(indent=2))
                    f.flush()
                    os.fsync(f.fileno())
                finally:
                    fcntl.flock(f, fcntl.LOCK_UN)

            os.rename(tmp_path, self.path)

        except OSError as e:
            logger.error(f"Failed to save item store to {self.path}: {e}")
            self.read_only = True

    # ItemSource

    def active_items(self) -> List[HabitItem]:
        return [item for item in self.doc.items if item.is_active]

    def completions_today(self, habit_id: str, now: datetime) -> List[Completion]:
        today = local_day(now)
        return [
            c for c in self.doc.completions
            if c.habit_id == habit_id and local_day(c.completed_at) == today
        ]

    # Mutations

    def get_item(self, habit_id: str) -> Optional[HabitItem]:
        for item in self.doc.items:
            if item.id == habit_id:
                return item
        return None

    def increment(self, habit_id: str, now: datetime) -> bool:
        item = self.get_item(habit_id)
        if item is None or item.is_timer_habit:
            logger.info(f"Ignoring increment for {habit_id}: not a count habit")
            return False

        self.doc.completions.append(Completion(habit_id=habit_id, completed_at=now, amount=1.0))
        self.save()
        return True

    def toggle_timer(self, habit_id: str, should_run: bool, now: datetime) -> bool:
        """Returns True when the stored state changed."""
        item = self.get_item(habit_id)
        if item is None or not item.is_timer_habit:
            logger.info(f"Ignoring timer toggle for {habit_id}: not a timer habit")
            return False

        session = timer_session(item, self.completions_today(habit_id, now))
        if should_run:
            if session.is_running:
                return False
            done = session.base_elapsed_seconds / 60.0
            resumed = elapsed.resume(session, now, allow_overrun=done >= item.goal_value)
            item.session_start = resumed.session_start
            item.allow_overrun = resumed.allow_overrun
            item.is_finished = False
            logger.info(f"Timer started for {habit_id} ({done:.1f} min done today)")
        else:
            if not session.is_running:
                return False
            self._pause(item, session, now)
            logger.info(f"Timer paused for {habit_id}")

        self.save()
        return True

    def _pause(self, item: HabitItem, session: TimerSession, now: datetime):
        paused = elapsed.pause(session, now)
        delta = paused.base_elapsed_seconds - session.base_elapsed_seconds
        item.session_start = None
        if delta > 0:
            self.doc.completions.append(
                Completion(habit_id=item.id, completed_at=now, amount=0.0, timer_minutes=delta / 60.0)
            )

    def stop_finished_timers(self, now: datetime) -> List[str]:
        """Pause running timers that reached their goal, unless the run allows overrun."""
        stopped = []
        for item in self.active_items():
            if not item.id or not item.is_timer_habit or not item.is_timer_running or item.allow_overrun:
                continue
            session = timer_session(item, self.completions_today(item.id, now))
            total = elapsed.session_elapsed(session, now).elapsed_seconds / 60.0
            if total >= item.goal_value:
                self._pause(item, session, now)
                item.is_finished = True
                stopped.append(item.id)
                logger.info(f"Goal reached for {item.id}, timer stopped at {total:.1f} min")

        if stopped:
            self.save()
        return stopped
