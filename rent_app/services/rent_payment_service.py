import logging
import uuid

from core.errors import ExternalServiceFailure, NotFoundFailure, ValidationFailure
from fintechs.mpesa import MpesaClient, normalize_msisdn
from models.enums import PaymentStatus, TransactionKind, TransactionStatus
from repos.gateway_transaction_repo import GatewayTransactionRepo
from repos.payment_repo import PaymentRepo
from repos.tenant_repo import PaymentAccountRepo, TenantRepo
from schemas.schema import InitiateDisbursementSchema, InitiatePushPaymentSchema

from .payment_materializer import PaymentMaterializer
from .reconciliation_service import ReconciliationService

logger = logging.getLogger("mpesa.payments")


class RentPaymentService:
    """Issues gateway requests and exposes the resulting records.

    A GatewayTransaction is written once the gateway has answered with its
    correlation ids. A request the gateway refuses outright has no key to
    store it under, so it is logged and reported back to the caller.
    """

    def __init__(self, db, gateway: MpesaClient | None = None):
        self.db = db
        self.gateway = gateway or MpesaClient()
        self.transaction_repo = GatewayTransactionRepo(db)
        self.payment_repo = PaymentRepo(db)
        self.tenant_repo = TenantRepo(db)

    async def initiate_push_payment(self, data: InitiatePushPaymentSchema):
        tenant = await self.tenant_repo.get_by_id(data.tenant_id)
        if tenant is None:
            raise NotFoundFailure("Tenant not found", tenant_id=data.tenant_id)

        unit = tenant.unit
        account_reference = (
            data.account_reference or unit.payment_account_number or unit.unit_number
        )
        phone_number = normalize_msisdn(data.phone_number or tenant.phone_number)
        if not phone_number:
            raise ValidationFailure("Tenant has no phone number", tenant_id=tenant.id)

        response = await self.gateway.initiate_push_payment(
            phone_number=phone_number,
            amount=data.amount,
            account_reference=account_reference,
            description=data.description,
        )
        if not response.accepted:
            raise ExternalServiceFailure(
                response.description or "Push payment was not accepted",
                tenant_id=tenant.id,
            )

        transaction = await self.transaction_repo.create(
            kind=TransactionKind.PUSH_PAYMENT,
            merchant_request_id=response.data.get("MerchantRequestID"),
            checkout_request_id=response.data.get("CheckoutRequestID"),
            amount=data.amount,
            phone_number=phone_number,
            account_reference=account_reference,
            transaction_desc=data.description,
            status=TransactionStatus.PENDING,
            result_code=str(response.data.get("ResponseCode")),
            result_desc=response.description,
            tenant_id=tenant.id,
            request_json=response.request,
            response_json=response.data,
        )
        logger.info(
            f"Push payment {transaction.checkout_request_id} issued to {phone_number} "
            f"for tenant {tenant.id}"
        )
        return {
            "transaction_id": transaction.id,
            "checkout_request_id": transaction.checkout_request_id,
            "status": transaction.status,
            "customer_message": response.data.get("CustomerMessage"),
        }

    async def initiate_disbursement(self, data: InitiateDisbursementSchema):
        phone_number = normalize_msisdn(data.phone_number)
        response = await self.gateway.initiate_disbursement(
            phone_number=phone_number,
            amount=data.amount,
            remarks=data.remarks,
            occasion=data.occasion,
        )
        if not response.accepted:
            raise ExternalServiceFailure(
                response.description or "Disbursement was not accepted"
            )

        transaction = await self.transaction_repo.create(
            kind=TransactionKind.DISBURSEMENT,
            conversation_id=response.data.get("ConversationID"),
            originator_conversation_id=response.data.get("OriginatorConversationID"),
            amount=data.amount,
            phone_number=phone_number,
            transaction_desc=data.remarks,
            status=TransactionStatus.PENDING,
            result_code=str(response.data.get("ResponseCode")),
            result_desc=response.description,
            tenant_id=data.tenant_id,
            request_json=response.request,
            response_json=response.data,
        )
        logger.info(f"Disbursement {transaction.conversation_id} issued to {phone_number}")
        return {
            "transaction_id": transaction.id,
            "conversation_id": transaction.conversation_id,
            "status": transaction.status,
        }

    async def query_push_payment(self, checkout_request_id: str):
        transaction = await self.transaction_repo.get_by_checkout_request_id(
            checkout_request_id
        )
        if transaction is None:
            raise NotFoundFailure(
                "Push payment not found", checkout_request_id=checkout_request_id
            )
        reconciler = ReconciliationService(self.db, gateway=self.gateway)
        return await reconciler.reconcile_one(transaction)

    async def get_transaction(self, transaction_id: uuid.UUID):
        transaction = await self.transaction_repo.get_by_id(transaction_id)
        if transaction is None:
            raise NotFoundFailure("Transaction not found", transaction_id=transaction_id)
        return transaction

    async def list_transactions(self, **filters):
        return await self.transaction_repo.list_transactions(**filters)

    async def confirm_payment(self, payment_id: uuid.UUID, notes: str | None = None):
        return await self._decide(payment_id, PaymentStatus.COMPLETED, notes)

    async def reject_payment(self, payment_id: uuid.UUID, notes: str | None = None):
        return await self._decide(payment_id, PaymentStatus.REJECTED, notes)

    async def _decide(self, payment_id: uuid.UUID, status: PaymentStatus, notes):
        payment = await self.payment_repo.get_by_id(payment_id)
        if payment is None:
            raise NotFoundFailure("Payment not found", payment_id=payment_id)
        if payment.status != PaymentStatus.PENDING:
            raise ValidationFailure(
                f"Payment is already {payment.status.value}", payment_id=payment_id
            )

        changed = await self.payment_repo.set_status(payment_id, status, notes)
        if not changed:
            raise ValidationFailure("Payment was decided concurrently", payment_id=payment_id)

        await self.db.refresh(payment)
        logger.info(f"Payment {payment_id} marked {status.value}")
        return payment

    async def list_unmatched(self, limit: int = 50, offset: int = 0):
        return await self.transaction_repo.list_unmatched(limit=limit, offset=offset)

    async def resolve_unmatched(
        self, transaction_id: uuid.UUID, tenant_id: uuid.UUID, notes: str | None = None
    ):
        """Attribute an unmatched completed payment to a tenant and book it.

        The resulting Payment is confirmed straight away, an operator having
        verified it by hand.
        """
        transaction = await self.transaction_repo.get_by_id(transaction_id)
        if transaction is None:
            raise NotFoundFailure("Transaction not found", transaction_id=transaction_id)
        if transaction.status != TransactionStatus.COMPLETED:
            raise ValidationFailure(
                f"Only completed payments can be resolved, this one is "
                f"{transaction.status.value}",
                transaction_id=transaction_id,
            )
        if transaction.tenant_id is not None or transaction.payment_id is not None:
            raise ValidationFailure(
                "Payment is already matched", transaction_id=transaction_id
            )

        tenant = await self.tenant_repo.get_by_id(tenant_id)
        if tenant is None:
            raise NotFoundFailure("Tenant not found", tenant_id=tenant_id)
        unit = tenant.unit
        account = await PaymentAccountRepo(self.db).get_active_mpesa_account(
            unit.property.landlord_id, unit.property_id
        )
        if account is None:
            raise ValidationFailure(
                "Landlord has no active M-Pesa payment account", tenant_id=tenant_id
            )

        if not await self.transaction_repo.assign_tenant(transaction_id, tenant_id):
            raise ValidationFailure(
                "Payment was resolved concurrently", transaction_id=transaction_id
            )

        transaction = await self.transaction_repo.get_by_id(transaction_id)
        payment = await PaymentMaterializer(self.db).materialize(transaction)
        if payment is None:
            raise ValidationFailure(
                "Payment could not be booked", transaction_id=transaction_id
            )

        if payment.status == PaymentStatus.PENDING:
            await self.payment_repo.set_status(
                payment.id,
                PaymentStatus.COMPLETED,
                notes or f"Resolved unmatched M-Pesa payment {payment.transaction_reference}",
            )
            await self.db.refresh(payment)

        logger.info(
            f"Unmatched transaction {transaction_id} resolved to tenant {tenant_id}, "
            f"payment {payment.id}"
        )
        return payment
