import asyncio
import logging

from core.get_db import AsyncSessionLocal
from services.reconciliation_service import ReconciliationService

logger = logging.getLogger("mpesa.reconciler")


async def run_reconciliation_cycle(stop_event: asyncio.Event | None = None) -> dict:
    async with AsyncSessionLocal() as session:
        try:
            return await ReconciliationService(session).reconcile_pending(stop_event)
        except Exception:
            logger.exception("Reconciliation cycle failed")
            raise
