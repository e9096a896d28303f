import logging
from datetime import date

from core.date_helper import current_due_date, local_today, month_bounds, utc_now
from core.errors import DataQualityFailure
from models.enums import PaymentMethod, PaymentStatus, TransactionStatus
from models.models import GatewayTransaction, Payment
from repos.gateway_transaction_repo import GatewayTransactionRepo
from repos.payment_repo import PaymentRepo
from repos.tenant_repo import PaymentAccountRepo, TenantRepo

logger = logging.getLogger("mpesa.materializer")


class PaymentMaterializer:
    """Turns a Completed gateway transaction into exactly one Payment.

    The Payment's ``transaction_reference`` is unique in the store, so
    concurrent deliveries of the same result converge on a single row.
    Missing tenant, unit or payment account is logged and skipped.
    """

    def __init__(self, db, today: date | None = None):
        self.transaction_repo = GatewayTransactionRepo(db)
        self.payment_repo = PaymentRepo(db)
        self.tenant_repo = TenantRepo(db)
        self.account_repo = PaymentAccountRepo(db)
        self.today = today

    async def materialize(self, transaction: GatewayTransaction) -> Payment | None:
        try:
            return await self._materialize(transaction)
        except DataQualityFailure as e:
            logger.warning(f"Payment not created: {e}")
            return None

    async def _materialize(self, transaction: GatewayTransaction) -> Payment | None:
        if transaction.status != TransactionStatus.COMPLETED:
            return None

        # a rollback below expires the instance, so keep the key at hand
        transaction_id = transaction.id

        if transaction.payment_id is not None:
            return await self.payment_repo.get_by_id(transaction.payment_id)

        reference = (
            transaction.receipt_number
            or transaction.checkout_request_id
            or transaction.merchant_request_id
        )
        existing = await self.payment_repo.get_by_reference(reference)
        if existing:
            await self._link(transaction, transaction_id, existing)
            return existing

        if transaction.tenant_id is None:
            raise DataQualityFailure(
                "Completed transaction has no tenant",
                transaction_id=transaction.id,
                reference=reference,
            )

        tenant = await self.tenant_repo.get_by_id(transaction.tenant_id)
        if tenant is None or tenant.unit is None:
            raise DataQualityFailure(
                "Tenant or unit not found",
                transaction_id=transaction.id,
                tenant_id=transaction.tenant_id,
            )

        unit = tenant.unit
        account = await self.account_repo.get_active_mpesa_account(
            unit.property.landlord_id, unit.property_id
        )
        if account is None:
            raise DataQualityFailure(
                "No active M-Pesa payment account",
                transaction_id=transaction.id,
                property_id=unit.property_id,
            )

        today = self.today or local_today()
        due_date = current_due_date(today, tenant.rent_due_day)
        period_start, period_end = month_bounds(due_date)

        payment, created = await self.payment_repo.create_or_get(
            tenant_id=tenant.id,
            unit_id=unit.id,
            landlord_account_id=account.id,
            amount=transaction.amount,
            payment_date=transaction.transaction_date or utc_now(),
            due_date=due_date,
            period_start=period_start,
            period_end=period_end,
            payment_method=PaymentMethod.MPESA,
            status=PaymentStatus.PENDING,
            transaction_reference=reference,
            paybill_account_number=transaction.account_reference,
            mpesa_phone_number=transaction.phone_number,
            notes=f"M-Pesa payment {reference}",
        )
        if created:
            logger.info(
                f"Payment {payment.id} created from transaction {transaction_id} "
                f"for tenant {tenant.id}, due {due_date}"
            )
        else:
            logger.info(f"Payment for {reference} already existed, linking it")

        await self._link(transaction, transaction_id, payment)
        return payment

    async def _link(
        self, transaction: GatewayTransaction, transaction_id, payment: Payment
    ):
        await self.transaction_repo.link_payment(transaction_id, payment.id)
        await self.transaction_repo.refresh(transaction)
