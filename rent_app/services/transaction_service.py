import logging
from datetime import datetime
from types import MappingProxyType

from core.date_helper import utc_now
from models.enums import OPEN_TRANSACTION_STATUSES, TransactionStatus
from models.models import GatewayTransaction
from repos.gateway_transaction_repo import GatewayTransactionRepo

from .payment_materializer import PaymentMaterializer

logger = logging.getLogger("mpesa.transactions")

# Gateway result codes shared by callbacks and status queries. Anything
# not listed is a failure.
RESULT_CODE_STATUS = MappingProxyType(
    {
        "0": TransactionStatus.COMPLETED,
        "1032": TransactionStatus.CANCELLED,
        "1037": TransactionStatus.TIMEOUT,
        "2001": TransactionStatus.TIMEOUT,
    }
)

NOT_COMPLETED = tuple(s for s in TransactionStatus if s != TransactionStatus.COMPLETED)


def map_result_code(result_code) -> TransactionStatus | None:
    """Gateway result code -> status. None means no verdict yet."""
    if result_code is None:
        return None
    code = str(result_code).strip()
    if not code:
        return None
    return RESULT_CODE_STATUS.get(code, TransactionStatus.FAILED)


class TransactionStateService:
    def __init__(self, db, materializer: PaymentMaterializer | None = None):
        self.repo = GatewayTransactionRepo(db)
        self.materializer = materializer or PaymentMaterializer(db)

    async def apply_result(
        self,
        transaction: GatewayTransaction,
        status: TransactionStatus,
        result_code=None,
        result_desc: str | None = None,
        receipt_number: str | None = None,
        transaction_date: datetime | None = None,
        callback: dict | None = None,
    ) -> bool:
        """Move the transaction to ``status`` if the transition is allowed.

        Completed may be entered from any other status and is never left.
        Failure outcomes only apply to Requested or Pending transactions.
        Returns True when this call performed the transition.
        """
        values = {
            "result_code": None if result_code is None else str(result_code),
            "result_desc": result_desc,
        }
        if callback is not None:
            values["callback_json"] = callback
            values["callback_received_at"] = utc_now()

        if status == TransactionStatus.COMPLETED:
            if receipt_number:
                values["receipt_number"] = receipt_number
            if transaction_date:
                values["transaction_date"] = transaction_date
            allowed_from = NOT_COMPLETED
        else:
            allowed_from = OPEN_TRANSACTION_STATUSES

        changed = await self.repo.transition(
            transaction.id, status, allowed_from, **values
        )
        await self.repo.refresh(transaction)

        if changed:
            logger.info(
                f"Transaction {transaction.id} -> {status.value} "
                f"(code={result_code}, receipt={receipt_number})"
            )
        else:
            logger.info(
                f"Transaction {transaction.id} stays {transaction.status.value}; "
                f"ignored {status.value} outcome"
            )
        return changed

    async def apply_push_result(
        self,
        transaction: GatewayTransaction,
        result_code,
        result_desc: str | None = None,
        receipt_number: str | None = None,
        transaction_date: datetime | None = None,
        callback: dict | None = None,
    ) -> GatewayTransaction:
        status = map_result_code(result_code)
        if status is None:
            logger.info(f"Transaction {transaction.id} has no result yet: {result_desc}")
            return transaction

        await self.apply_result(
            transaction,
            status,
            result_code=result_code,
            result_desc=result_desc,
            receipt_number=receipt_number,
            transaction_date=transaction_date,
            callback=callback,
        )
        await self.materialize_if_completed(transaction)
        return transaction

    async def materialize_if_completed(self, transaction: GatewayTransaction):
        if transaction.status != TransactionStatus.COMPLETED:
            return None
        if transaction.payment_id is not None:
            return None
        return await self.materializer.materialize(transaction)
