import dramatiq

from tasks.dispatch_rent_reminders import run_dispatch_cycle
from tasks.schedule_rent_reminders import run_scheduling_cycle


def create_schedule_reminders_task():
    @dramatiq.actor(
        queue_name="schedule_rent_reminders",
        max_retries=3,
        time_limit=600_000,
    )
    async def schedule_rent_reminders():
        return await run_scheduling_cycle()

    return schedule_rent_reminders


def create_dispatch_reminders_task():
    @dramatiq.actor(
        queue_name="dispatch_rent_reminders",
        max_retries=3,
        time_limit=600_000,
    )
    async def dispatch_rent_reminders():
        return await run_dispatch_cycle()

    return dispatch_rent_reminders
