import asyncio
import logging

from core.get_db import AsyncSessionLocal
from services.reminder_dispatcher import ReminderDispatcher

logger = logging.getLogger("reminders.dispatcher")


async def run_dispatch_cycle(stop_event: asyncio.Event | None = None) -> dict:
    async with AsyncSessionLocal() as session:
        try:
            return await ReminderDispatcher(session).send_due(stop_event)
        except Exception:
            logger.exception("Reminder dispatch cycle failed")
            raise
