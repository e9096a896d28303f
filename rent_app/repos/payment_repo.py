import uuid
from datetime import date
from typing import List

from sqlalchemy import and_, exists, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.date_helper import month_bounds, utc_now
from models.enums import PaymentStatus
from models.models import Payment


class PaymentRepo:
    def __init__(self, db):
        self.db = db

    async def get_by_id(self, payment_id: uuid.UUID) -> Payment | None:
        result = await self.db.execute(select(Payment).where(Payment.id == payment_id))
        return result.scalar_one_or_none()

    async def get_by_reference(self, reference: str) -> Payment | None:
        result = await self.db.execute(
            select(Payment).where(Payment.transaction_reference == reference)
        )
        return result.scalar_one_or_none()

    async def list_for_tenant(self, tenant_id: uuid.UUID, limit: int = 50) -> List[Payment]:
        result = await self.db.execute(
            select(Payment)
            .where(Payment.tenant_id == tenant_id)
            .order_by(Payment.payment_date.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def has_confirmed_payment(
        self, tenant_id: uuid.UUID, month: int, year: int
    ) -> bool:
        """True when a Completed payment's period starts or ends in month/year."""
        first, last = month_bounds(date(year, month, 1))
        stmt = select(
            exists().where(
                Payment.tenant_id == tenant_id,
                Payment.status == PaymentStatus.COMPLETED,
                or_(
                    and_(Payment.period_start >= first, Payment.period_start <= last),
                    and_(Payment.period_end >= first, Payment.period_end <= last),
                ),
            )
        )
        result = await self.db.execute(stmt)
        return bool(result.scalar())

    async def create_or_get(self, **fields) -> tuple[Payment, bool]:
        """Insert keyed by transaction_reference; a duplicate returns the stored row."""
        payment = Payment(**fields)
        self.db.add(payment)

        try:
            await self.db.commit()
            await self.db.refresh(payment)
            return payment, True

        except IntegrityError:
            await self.db.rollback()

            existing = await self.get_by_reference(fields["transaction_reference"])
            if existing is None:
                raise
            return existing, False

    async def set_status(
        self,
        payment_id: uuid.UUID,
        status: PaymentStatus,
        notes: str | None = None,
    ) -> bool:
        values = {"status": status, "updated_at": utc_now()}
        if status == PaymentStatus.COMPLETED:
            values["confirmed_at"] = utc_now()
        if notes:
            values["notes"] = notes

        result = await self.db.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self._commit()
        return result.rowcount == 1

    async def _commit(self):
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
