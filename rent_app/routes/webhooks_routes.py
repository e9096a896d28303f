from fastapi import APIRouter, Depends, Request
from fastapi_utils.cbv import cbv
from sqlalchemy.ext.asyncio import AsyncSession

from core.get_db import get_db_async
from core.safe_handler import acknowledge_always
from core.webhook_guard import verify_mpesa_callback
from webhooks.service_webhooks import MpesaWebhooks

router = APIRouter(tags=["M-Pesa Webhooks"])


@cbv(router)
class MpesaWebhookRoutes:
    @router.post("/c2b/validation", dependencies=[Depends(verify_mpesa_callback)])
    @acknowledge_always
    async def c2b_validation(
        self,
        request: Request,
        db: AsyncSession = Depends(get_db_async),
    ):
        return await MpesaWebhooks(db=db, request=request).validation()

    @router.post("/c2b/confirmation", dependencies=[Depends(verify_mpesa_callback)])
    @acknowledge_always
    async def c2b_confirmation(
        self,
        request: Request,
        db: AsyncSession = Depends(get_db_async),
    ):
        return await MpesaWebhooks(db=db, request=request).confirmation()

    @router.post("/stkpush/callback", dependencies=[Depends(verify_mpesa_callback)])
    @acknowledge_always
    async def stk_push_callback(
        self,
        request: Request,
        db: AsyncSession = Depends(get_db_async),
    ):
        return await MpesaWebhooks(db=db, request=request).stk_callback()

    @router.post("/b2c/result", dependencies=[Depends(verify_mpesa_callback)])
    @acknowledge_always
    async def b2c_result(
        self,
        request: Request,
        db: AsyncSession = Depends(get_db_async),
    ):
        return await MpesaWebhooks(db=db, request=request).disbursement_result()

    @router.post("/b2c/timeout", dependencies=[Depends(verify_mpesa_callback)])
    @acknowledge_always
    async def b2c_timeout(
        self,
        request: Request,
        db: AsyncSession = Depends(get_db_async),
    ):
        return await MpesaWebhooks(db=db, request=request).disbursement_timeout()

    @router.get("/health")
    async def health(self):
        return {"status": "healthy", "service": "mpesa-webhooks"}
