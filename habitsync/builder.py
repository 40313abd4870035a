import logging
from datetime import datetime
from typing import Dict, List, Optional
from .clients.item_store import ItemSource, timer_session
from .models import (
    CountSnapshot, HabitItem, ProgressSnapshot, TimerActivity, TimerAttributes,
    TimerContentState, TimerSnapshot, as_utc, utcnow,
)
from . import elapsed

logger = logging.getLogger(__name__)

MIN_TIMER_GOAL = 0.01
MIN_COUNT_GOAL = 1.0

DEFAULT_NAME = "Habit"
DEFAULT_ICON = "star"
DEFAULT_COLOR = "#007AFF"


class SnapshotBuilder:
    def __init__(self, source: ItemSource):
        self.source = source

    def build(self, items: Optional[List[HabitItem]] = None, now: Optional[datetime] = None) -> List[ProgressSnapshot]:
        """
        One snapshot per item with an identity, in the source's order.
        Items without an id are dropped; they are usually half-created records.
        Ids are the join key for readers, so only the first item with a given
        id is kept.
        """
        now = as_utc(now) if now else utcnow()
        if items is None:
            items = self.source.active_items()

        snapshots = []
        seen = set()
        for item in items:
            if not item.id:
                logger.debug(f"Skipping habit without id: {item.name!r}")
                continue
            if item.id in seen:
                logger.warning(f"Skipping duplicate habit id {item.id} ({item.name!r})")
                continue
            seen.add(item.id)
            snapshots.append(self.build_item(item, now))
        return snapshots

    def build_item(self, item: HabitItem, now: datetime) -> ProgressSnapshot:
        completions = self.source.completions_today(item.id, now)
        common = dict(
            id=item.id,
            name=item.name or DEFAULT_NAME,
            icon=item.icon or DEFAULT_ICON,
            color_hex=item.color_hex or DEFAULT_COLOR,
            unit_label=item.metric_unit,
            last_updated=now,
        )

        if item.is_timer_habit:
            reading = elapsed.session_elapsed(timer_session(item, completions), now)
            return TimerSnapshot(
                value=reading.elapsed_seconds / 60.0,
                goal=max(item.goal_value, MIN_TIMER_GOAL),
                is_timer_running=reading.is_running,
                **common,
            )

        return CountSnapshot(
            value=sum(c.amount for c in completions),
            goal=max(item.goal_value, MIN_COUNT_GOAL),
            **common,
        )

    def build_activities(self, items: Optional[List[HabitItem]] = None, now: Optional[datetime] = None) -> Dict[str, TimerActivity]:
        """Live activity records for timer habits that are running or have time logged today."""
        now = as_utc(now) if now else utcnow()
        if items is None:
            items = self.source.active_items()

        activities = {}
        seen = set()
        for item in items:
            if not item.id or item.id in seen:
                continue
            seen.add(item.id)
            if not item.is_timer_habit:
                continue
            session = timer_session(item, self.source.completions_today(item.id, now))
            if not session.is_running and session.base_elapsed_seconds == 0:
                continue

            activities[item.id] = TimerActivity(
                attributes=TimerAttributes(
                    habit_id=item.id,
                    name=item.name or DEFAULT_NAME,
                    icon=item.icon or "timer",
                    color_hex=item.color_hex or DEFAULT_COLOR,
                    target_goal_seconds=int(max(0.0, item.goal_value) * 60),
                ),
                state=TimerContentState(
                    base_elapsed_seconds=session.base_elapsed_seconds,
                    session_start=session.session_start,
                    is_finished=item.is_finished,
                ),
            )
        return activities
