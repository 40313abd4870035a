import asyncio
import logging
from datetime import datetime
from pydantic import BaseModel, Field
from typing import Annotated, Awaitable, Callable, Literal, Optional, Union
from .clients.item_store import JsonItemStore
from .models import utcnow

logger = logging.getLogger(__name__)

class ToggleTimer(BaseModel):
    kind: Literal["toggle_timer"] = "toggle_timer"
    habit_id: str
    should_run: bool

class IncrementHabit(BaseModel):
    kind: Literal["increment"] = "increment"
    habit_id: str

Command = Annotated[Union[ToggleTimer, IncrementHabit], Field(discriminator="kind")]


class CommandHandler:
    """
    Receives state-change requests from display surfaces. Submitting never
    blocks or reports back; the only visible effect is the next publish.
    """

    def __init__(self,
                 items: JsonItemStore,
                 run_in_background: Callable[..., Awaitable],
                 request_sync: Callable[[str], object]):
        self.items = items
        self.run_in_background = run_in_background
        self.request_sync = request_sync
        self.queue: asyncio.Queue = asyncio.Queue()
        self.processed = 0

    def submit(self, command: Command):
        self.queue.put_nowait(command)

    def apply(self, command: Command, now: Optional[datetime] = None) -> bool:
        """Mutates the item store; returns True when anything changed."""
        now = now or utcnow()
        if isinstance(command, ToggleTimer):
            return self.items.toggle_timer(command.habit_id, command.should_run, now)
        if isinstance(command, IncrementHabit):
            return self.items.increment(command.habit_id, now)
        logger.warning(f"Unknown command: {command!r}")
        return False

    async def run(self):
        logger.info("Command handler started")
        while True:
            command = await self.queue.get()
            try:
                changed = await self.run_in_background(self.apply, command)
                self.processed += 1
                if changed:
                    self.request_sync(f"{command.kind} {command.habit_id}")
            except Exception as e:
                logger.error(f"Failed to apply {command.kind} for {command.habit_id}: {e}", exc_info=True)
            finally:
                self.queue.task_done()
