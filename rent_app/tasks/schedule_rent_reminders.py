import asyncio
import logging

from core.get_db import AsyncSessionLocal
from services.reminder_scheduler import ReminderScheduler

logger = logging.getLogger("reminders.scheduler")


async def run_scheduling_cycle(stop_event: asyncio.Event | None = None) -> dict:
    async with AsyncSessionLocal() as session:
        try:
            return await ReminderScheduler(session).schedule_all(stop_event)
        except Exception:
            logger.exception("Reminder scheduling cycle failed")
            raise
