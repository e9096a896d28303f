import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi_utils.cbv import cbv
from sqlalchemy.ext.asyncio import AsyncSession

from core.get_db import get_db_async
from core.safe_handler import safe_handler
from core.validators import require_operator_key
from models.enums import TransactionKind, TransactionStatus
from schemas.schema import (
    GatewayTransactionOut,
    InitiateDisbursementSchema,
    InitiatePushPaymentSchema,
    PaymentDecisionSchema,
    PaymentOut,
    ResolveUnmatchedPaymentSchema,
)
from services.rent_payment_service import RentPaymentService

logger = logging.getLogger(__name__)
router = APIRouter(
    tags=["M-Pesa Payments and Manual Verifications"],
    dependencies=[Depends(require_operator_key)],
)


@cbv(router)
class PaymentsRoutes:
    @router.post("/stkpush")
    @safe_handler
    async def initiate_push_payment(
        self,
        request: Request,
        data: InitiatePushPaymentSchema,
        db: AsyncSession = Depends(get_db_async),
    ):
        return await RentPaymentService(db).initiate_push_payment(data)

    @router.post("/stkpush/{checkout_request_id}/query")
    @safe_handler
    async def query_push_payment(
        self,
        request: Request,
        checkout_request_id: str,
        db: AsyncSession = Depends(get_db_async),
    ):
        return await RentPaymentService(db).query_push_payment(checkout_request_id)

    @router.post("/disbursements")
    @safe_handler
    async def initiate_disbursement(
        self,
        request: Request,
        data: InitiateDisbursementSchema,
        db: AsyncSession = Depends(get_db_async),
    ):
        return await RentPaymentService(db).initiate_disbursement(data)

    @router.get("/transactions", response_model=List[GatewayTransactionOut])
    @safe_handler
    async def list_transactions(
        self,
        request: Request,
        status: Optional[TransactionStatus] = None,
        kind: Optional[TransactionKind] = None,
        tenant_id: Optional[uuid.UUID] = None,
        limit: int = Query(50, ge=1, le=200),
        offset: int = Query(0, ge=0),
        db: AsyncSession = Depends(get_db_async),
    ):
        return await RentPaymentService(db).list_transactions(
            status=status, kind=kind, tenant_id=tenant_id, limit=limit, offset=offset
        )

    @router.get("/transactions/unmatched", response_model=List[GatewayTransactionOut])
    @safe_handler
    async def list_unmatched(
        self,
        request: Request,
        limit: int = Query(50, ge=1, le=200),
        offset: int = Query(0, ge=0),
        db: AsyncSession = Depends(get_db_async),
    ):
        return await RentPaymentService(db).list_unmatched(limit=limit, offset=offset)

    @router.post("/transactions/{transaction_id}/resolve", response_model=PaymentOut)
    @safe_handler
    async def resolve_unmatched(
        self,
        request: Request,
        transaction_id: uuid.UUID,
        data: ResolveUnmatchedPaymentSchema,
        db: AsyncSession = Depends(get_db_async),
    ):
        return await RentPaymentService(db).resolve_unmatched(
            transaction_id, data.tenant_id, data.notes
        )

    @router.get("/transactions/{transaction_id}", response_model=GatewayTransactionOut)
    @safe_handler
    async def get_transaction(
        self,
        request: Request,
        transaction_id: uuid.UUID,
        db: AsyncSession = Depends(get_db_async),
    ):
        return await RentPaymentService(db).get_transaction(transaction_id)

    @router.post("/{payment_id}/confirm", response_model=PaymentOut)
    @safe_handler
    async def confirm_payment(
        self,
        request: Request,
        payment_id: uuid.UUID,
        data: PaymentDecisionSchema | None = None,
        db: AsyncSession = Depends(get_db_async),
    ):
        notes = data.notes if data else None
        return await RentPaymentService(db).confirm_payment(payment_id, notes)

    @router.post("/{payment_id}/reject", response_model=PaymentOut)
    @safe_handler
    async def reject_payment(
        self,
        request: Request,
        payment_id: uuid.UUID,
        data: PaymentDecisionSchema | None = None,
        db: AsyncSession = Depends(get_db_async),
    ):
        notes = data.notes if data else None
        return await RentPaymentService(db).reject_payment(payment_id, notes)
