import logging

from fastapi import Request
from pydantic import ValidationError as PayloadError

from core.date_helper import parse_gateway_timestamp, utc_now
from core.errors import NotFoundFailure, ValidationFailure
from core.safe_handler import GATEWAY_ACK
from fintechs.mpesa import normalize_msisdn
from models.enums import TransactionKind, TransactionStatus
from repos.gateway_transaction_repo import GatewayTransactionRepo
from repos.tenant_repo import TenantRepo
from schemas.schema import (
    ACCOUNT_REFERENCE_PATTERN,
    B2CResultEnvelope,
    C2BPayload,
    StkCallbackEnvelope,
)
from services.transaction_service import TransactionStateService

logger = logging.getLogger("mpesa.webhooks")

INVALID_ACCOUNT = "C2B00012"
INVALID_AMOUNT = "C2B00013"
OTHER_ERROR = "C2B00016"


def rejection(code: str) -> dict:
    return {"ResultCode": code, "ResultDesc": "Rejected"}


class MpesaWebhooks:
    """Handles every inbound gateway callback.

    Only ``validation`` may answer with a rejection. Every other handler
    answers Accepted; routes wrap them in ``acknowledge_always`` so an
    exception escaping here is logged and still acknowledged.
    """

    def __init__(
        self,
        db,
        request: Request,
        state_service: TransactionStateService | None = None,
    ):
        self.request = request
        self.transaction_repo = GatewayTransactionRepo(db)
        self.tenant_repo = TenantRepo(db)
        self.state_service = state_service or TransactionStateService(db)

    async def _payload(self) -> dict:
        payload = await self.request.json()
        if not isinstance(payload, dict):
            raise ValidationFailure("Callback body is not a JSON object")
        return payload

    async def validation(self):
        try:
            payload = C2BPayload.model_validate(await self._payload())
            self._validate_c2b(payload)
        except ValidationFailure as e:
            logger.info(f"C2B validation rejected: {e}")
            return rejection(e.result_code)
        except (PayloadError, ValueError) as e:
            logger.info(f"C2B validation rejected malformed payload: {e}")
            return rejection(OTHER_ERROR)

        logger.info(
            f"C2B validation accepted {payload.TransID} for {payload.BillRefNumber}"
        )
        return dict(GATEWAY_ACK)

    def _validate_c2b(self, payload: C2BPayload):
        if not payload.TransID or not payload.BillRefNumber or payload.TransAmount is None:
            raise ValidationFailure("Missing required fields", result_code=OTHER_ERROR)
        if not ACCOUNT_REFERENCE_PATTERN.match(payload.BillRefNumber):
            raise ValidationFailure(
                "Malformed account reference",
                result_code=INVALID_ACCOUNT,
                reference=payload.BillRefNumber,
            )
        amount = payload.amount
        if amount is None or amount <= 0:
            raise ValidationFailure(
                "Amount must be positive",
                result_code=INVALID_AMOUNT,
                amount=payload.TransAmount,
            )

    async def confirmation(self):
        raw = await self._payload()
        payload = C2BPayload.model_validate(raw)
        if not payload.TransID or payload.amount is None:
            logger.error(f"C2B confirmation without TransID or amount: {raw}")
            return dict(GATEWAY_ACK)

        already = await self.transaction_repo.get_by_receipt_number(payload.TransID)
        if already:
            logger.info(f"C2B confirmation {payload.TransID} already recorded")
            return dict(GATEWAY_ACK)

        transaction = None
        if payload.BillRefNumber:
            transaction = await self.transaction_repo.find_pending_push_for_reference(
                payload.BillRefNumber, payload.amount
            )

        if transaction is None:
            transaction, created = await self._record_unsolicited(payload, raw)
            if not created:
                logger.info(f"C2B confirmation {payload.TransID} raced a duplicate")
                return dict(GATEWAY_ACK)

        await self.state_service.apply_result(
            transaction,
            TransactionStatus.COMPLETED,
            result_code=0,
            result_desc="Confirmed by C2B callback",
            receipt_number=payload.TransID,
            transaction_date=parse_gateway_timestamp(payload.TransTime),
            callback=raw,
        )
        await self.state_service.materialize_if_completed(transaction)
        return dict(GATEWAY_ACK)

    async def _record_unsolicited(self, payload: C2BPayload, raw: dict):
        tenant = None
        if payload.BillRefNumber:
            tenant = await self.tenant_repo.find_active_by_account_reference(
                payload.BillRefNumber
            )
        if tenant is None:
            logger.warning(
                f"C2B payment {payload.TransID} for account {payload.BillRefNumber} "
                "matches no active tenant; recorded for manual reconciliation"
            )

        return await self.transaction_repo.create_or_get(
            kind=TransactionKind.UNSOLICITED,
            merchant_request_id=payload.TransID,
            amount=payload.amount,
            phone_number=normalize_msisdn(payload.MSISDN),
            account_reference=payload.BillRefNumber,
            transaction_desc=f"Paybill payment from {payload.payer_name}".strip(),
            status=TransactionStatus.PENDING,
            tenant_id=tenant.id if tenant else None,
            request_json=raw,
            callback_received_at=utc_now(),
        )

    async def stk_callback(self):
        raw = await self._payload()
        callback = StkCallbackEnvelope.model_validate(raw).Body.stkCallback

        transaction = await self.transaction_repo.get_by_checkout_request_id(
            callback.CheckoutRequestID
        )
        if transaction is None:
            raise NotFoundFailure(
                "No push payment for callback",
                checkout_request_id=callback.CheckoutRequestID,
            )

        receipt = callback.metadata_value("MpesaReceiptNumber")
        await self.state_service.apply_push_result(
            transaction,
            callback.ResultCode,
            result_desc=callback.ResultDesc,
            receipt_number=str(receipt) if receipt else None,
            transaction_date=parse_gateway_timestamp(
                callback.metadata_value("TransactionDate")
            ),
            callback=raw,
        )
        return dict(GATEWAY_ACK)

    async def disbursement_result(self):
        raw = await self._payload()
        result = B2CResultEnvelope.model_validate(raw).Result

        transaction = await self.transaction_repo.get_by_conversation_id(
            result.ConversationID, result.OriginatorConversationID
        )
        if transaction is None:
            raise NotFoundFailure(
                "No disbursement for result",
                conversation_id=result.ConversationID,
                originator_conversation_id=result.OriginatorConversationID,
            )

        completed = result.ResultCode == 0
        status = TransactionStatus.COMPLETED if completed else TransactionStatus.FAILED

        await self.state_service.apply_result(
            transaction,
            status,
            result_code=result.ResultCode,
            result_desc=result.ResultDesc,
            receipt_number=result.TransactionID if completed else None,
            transaction_date=parse_gateway_timestamp(
                result.parameter("TransactionCompletedDateTime")
            ),
            callback=raw,
        )
        logger.info(
            f"Disbursement {transaction.id} result {result.ResultCode}: {result.ResultDesc}"
        )
        return dict(GATEWAY_ACK)

    async def disbursement_timeout(self):
        raw = await self._payload()
        result = raw.get("Result") if isinstance(raw.get("Result"), dict) else raw

        transaction = await self.transaction_repo.get_by_conversation_id(
            result.get("ConversationID"), result.get("OriginatorConversationID")
        )
        if transaction is None:
            raise NotFoundFailure(
                "No disbursement for timeout",
                conversation_id=result.get("ConversationID"),
            )

        await self.state_service.apply_result(
            transaction,
            TransactionStatus.TIMEOUT,
            result_code=result.get("ResultCode"),
            result_desc=result.get("ResultDesc") or "Queue timeout",
            callback=raw,
        )
        logger.warning(f"Disbursement {transaction.id} timed out at the gateway")
        return dict(GATEWAY_ACK)
