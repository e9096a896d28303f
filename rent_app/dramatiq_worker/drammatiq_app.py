import logging
import time

import dramatiq
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from dramatiq.brokers.redis import RedisBroker
from dramatiq.middleware import AgeLimit, AsyncIO, Callbacks, Retries, TimeLimit

from core.settings import settings
from drammtiq_tasks.reconcile_payments_tasks import create_reconcile_payments_task
from drammtiq_tasks.rent_reminder_tasks import (
    create_dispatch_reminders_task,
    create_schedule_reminders_task,
)

logger = logging.getLogger("dramatiq.app")


class DramatiqManager:
    """Worker-process alternative to the in-process periodic workers.

    Run with RUN_BACKGROUND_JOBS=false on the web process so the jobs are
    not executed twice. Every process importing this module (web, each
    dramatiq worker) builds the broker, but only the one started with
    DRAMATIQ_RUN_SCHEDULER=true, or through run_scheduler(), enqueues the
    cron jobs.
    """

    def __init__(
        self, redis_url: str | None = None, start_scheduler: bool | None = None
    ):
        self.REDIS_URL = redis_url or settings.DRAMATIQ_REDIS_URL
        if start_scheduler is None:
            start_scheduler = settings.DRAMATIQ_RUN_SCHEDULER

        self.broker = RedisBroker(url=self.REDIS_URL)

        self.broker.add_middleware(AgeLimit(max_age=3600000))
        self.broker.add_middleware(TimeLimit(time_limit=600000))
        self.broker.add_middleware(Retries(max_retries=3))
        self.broker.add_middleware(Callbacks())
        self.broker.add_middleware(AsyncIO())

        dramatiq.set_broker(self.broker)

        self._register_tasks()

        self.scheduler = BackgroundScheduler(timezone=settings.REMINDER_TIMEZONE)
        self._register_cron_jobs()
        if start_scheduler:
            self.start_scheduler()

    def start_scheduler(self):
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Cron scheduler started, this process enqueues periodic jobs")

    def shutdown_scheduler(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def _register_tasks(self):
        create_reconcile_payments_task()
        create_schedule_reminders_task()
        create_dispatch_reminders_task()

    def _register_cron_jobs(self):
        self.scheduler.add_job(
            func=lambda: self.delay("reconcile_pending_payments"),
            trigger=CronTrigger(minute="*/10"),
            id="reconcile-pending-payments",
            replace_existing=True,
        )

        self.scheduler.add_job(
            func=lambda: self.delay("schedule_rent_reminders"),
            trigger=CronTrigger(minute=0),
            id="schedule-rent-reminders-hourly",
            replace_existing=True,
        )

        self.scheduler.add_job(
            func=lambda: self.delay("dispatch_rent_reminders"),
            trigger=CronTrigger(minute="*/5"),
            id="dispatch-rent-reminders",
            replace_existing=True,
        )

    async def connect(self):
        logger.info(f"Connecting to Dramatiq broker: {self.REDIS_URL}")
        try:
            self.broker.client.ping()
            logger.info("Dramatiq connected successfully.")
        except Exception:
            logger.exception("Dramatiq connection failed")

    def delay(self, actor_name: str, *args, **kwargs):
        actor = self.broker.get_actor(actor_name)
        return actor.send(*args, **kwargs)


dramatiq_app = DramatiqManager()


def run_scheduler():
    """Blocking entry point for the single process that enqueues cron jobs."""
    dramatiq_app.start_scheduler()
    try:
        while True:
            time.sleep(60)
    except (KeyboardInterrupt, SystemExit):
        dramatiq_app.shutdown_scheduler()


if __name__ == "__main__":
    run_scheduler()
