import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sms_notify.sms_service import send_sms
from tasks.dispatch_rent_reminders import run_dispatch_cycle
from tasks.reconcile_pending_payments import run_reconciliation_cycle
from tasks.schedule_rent_reminders import run_scheduling_cycle

from .periodic import PeriodicWorker
from .settings import settings

logger = logging.getLogger("startup")


def build_workers() -> list[PeriodicWorker]:
    grace = settings.WORKER_SHUTDOWN_GRACE_SECONDS
    return [
        PeriodicWorker(
            "reconciler",
            run_reconciliation_cycle,
            interval=settings.RECONCILE_POLL_INTERVAL_SECONDS,
            initial_delay=30,
            grace_seconds=grace,
        ),
        PeriodicWorker(
            "reminder-scheduler",
            run_scheduling_cycle,
            interval=settings.REMINDER_SCHEDULE_INTERVAL_SECONDS,
            initial_delay=10,
            grace_seconds=grace,
        ),
        PeriodicWorker(
            "reminder-dispatcher",
            run_dispatch_cycle,
            interval=settings.REMINDER_DISPATCH_INTERVAL_SECONDS,
            initial_delay=60,
            grace_seconds=grace,
        ),
    ]


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Waiting for application startup...")

    try:
        await send_sms.connect()
        await send_sms.ping()
        logger.info("SMS service connected.")
    except Exception:
        logger.exception("Failed to connect to SMS service")

    workers: list[PeriodicWorker] = []
    if settings.RUN_BACKGROUND_JOBS:
        workers = build_workers()
        for worker in workers:
            worker.start()
    else:
        logger.info("Background jobs disabled, expecting the Dramatiq worker to run them")

    app.state.workers = workers
    logger.info("Application startup complete.")

    yield

    for worker in workers:
        try:
            await worker.stop()
        except Exception:
            logger.exception(f"Failed to stop {worker.name}")

    try:
        await send_sms.close()
    except Exception:
        logger.exception("Failed to close SMS client")
