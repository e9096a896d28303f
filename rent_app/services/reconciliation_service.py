import asyncio
import logging
from datetime import timedelta

from core.date_helper import utc_now
from core.errors import ExternalServiceFailure
from core.periodic import sleep_or_stop
from core.settings import settings
from fintechs.mpesa import MpesaClient
from models.enums import TransactionStatus
from models.models import GatewayTransaction
from repos.gateway_transaction_repo import GatewayTransactionRepo

from .transaction_service import TransactionStateService

logger = logging.getLogger("mpesa.reconciler")


class ReconciliationService:
    """Recovers push payments whose result callback never arrived.

    Pending transactions older than the minimum age are re-queried one at a
    time, oldest first, with a pause between queries to stay inside the
    gateway's rate limits. Younger ones are left alone so an in-flight
    callback is not raced.
    """

    def __init__(
        self,
        db,
        gateway: MpesaClient | None = None,
        state_service: TransactionStateService | None = None,
        min_age_seconds: float | None = None,
        batch_size: int | None = None,
        item_delay_seconds: float | None = None,
    ):
        self.repo = GatewayTransactionRepo(db)
        self.gateway = gateway or MpesaClient()
        self.state_service = state_service or TransactionStateService(db)
        self.min_age_seconds = (
            settings.RECONCILE_MIN_AGE_SECONDS if min_age_seconds is None else min_age_seconds
        )
        self.batch_size = batch_size or settings.RECONCILE_BATCH_SIZE
        self.item_delay_seconds = (
            settings.RECONCILE_ITEM_DELAY_SECONDS
            if item_delay_seconds is None
            else item_delay_seconds
        )

    async def reconcile_pending(self, stop_event: asyncio.Event | None = None) -> dict:
        cutoff = utc_now() - timedelta(seconds=self.min_age_seconds)
        stale = await self.repo.get_stale_pending_push(cutoff, self.batch_size)
        summary = {"checked": 0, "resolved": 0, "still_pending": 0, "errors": 0}

        if not stale:
            return summary
        logger.info(f"Reconciling {len(stale)} pending push payment(s)")

        # plain keys, a failed item may roll back and expire the loaded rows
        keys = [(t.id, t.checkout_request_id) for t in stale]

        for index, (transaction_id, checkout_request_id) in enumerate(keys):
            if stop_event is not None and stop_event.is_set():
                logger.info("Reconciliation stopped before finishing the batch")
                break

            try:
                transaction = await self.repo.get_by_id(transaction_id)
                if transaction is None or transaction.status != TransactionStatus.PENDING:
                    continue
                outcome = await self.reconcile_one(transaction)
            except ExternalServiceFailure as e:
                summary["errors"] += 1
                logger.error(f"Status query for {checkout_request_id} failed: {e}")
            except Exception:
                summary["errors"] += 1
                logger.exception(f"Reconciling {checkout_request_id} failed unexpectedly")
            else:
                summary["checked"] += 1
                if outcome["resolved"]:
                    summary["resolved"] += 1
                else:
                    summary["still_pending"] += 1

            if index < len(keys) - 1 and self.item_delay_seconds > 0:
                if await sleep_or_stop(self.item_delay_seconds, stop_event):
                    logger.info("Reconciliation stopped during the inter-item pause")
                    break

        logger.info(f"Reconciliation cycle finished: {summary}")
        return summary

    async def reconcile_one(self, transaction: GatewayTransaction) -> dict:
        checkout_request_id = transaction.checkout_request_id
        data = await self.gateway.query_status(checkout_request_id)

        await self.state_service.apply_push_result(
            transaction,
            data.get("ResultCode"),
            result_desc=data.get("ResultDesc"),
        )
        return {
            "transaction_id": transaction.id,
            "checkout_request_id": checkout_request_id,
            "status": transaction.status,
            "result_code": data.get("ResultCode"),
            "result_desc": data.get("ResultDesc"),
            "resolved": transaction.status != TransactionStatus.PENDING,
        }
