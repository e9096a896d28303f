import uuid
from typing import List

from sqlalchemy import case, or_, select
from sqlalchemy.orm import selectinload

from models.enums import PaymentAccountType, TenantStatus
from models.models import LandlordPaymentAccount, Property, Tenant, Unit


def _with_unit_property():
    return selectinload(Tenant.unit).selectinload(Unit.property).selectinload(
        Property.landlord
    )


class TenantRepo:
    def __init__(self, db):
        self.db = db

    async def get_by_id(self, tenant_id: uuid.UUID) -> Tenant | None:
        result = await self.db.execute(
            select(Tenant)
            .options(_with_unit_property(), selectinload(Tenant.reminder_preference))
            .where(Tenant.id == tenant_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_active_tenant_ids(self) -> List[uuid.UUID]:
        result = await self.db.execute(
            select(Tenant.id)
            .where(Tenant.status == TenantStatus.ACTIVE)
            .order_by(Tenant.created_at)
        )
        return list(result.scalars().all())

    async def find_active_by_account_reference(self, reference: str) -> Tenant | None:
        """Tenant of the unit whose paybill account number (or unit number) matches."""
        result = await self.db.execute(
            select(Tenant)
            .join(Unit, Tenant.unit_id == Unit.id)
            .options(_with_unit_property())
            .where(
                Tenant.status == TenantStatus.ACTIVE,
                or_(
                    Unit.payment_account_number == reference,
                    Unit.unit_number == reference,
                ),
            )
            # an exact payment account match outranks a unit number match
            .order_by(
                case((Unit.payment_account_number == reference, 0), else_=1),
                Tenant.created_at,
            )
            .limit(1)
        )
        return result.scalar_one_or_none()


class PaymentAccountRepo:
    MPESA_TYPES = (PaymentAccountType.MPESA_PAYBILL, PaymentAccountType.MPESA_TILL)

    def __init__(self, db):
        self.db = db

    async def get_active_mpesa_account(
        self, landlord_id: uuid.UUID, property_id: uuid.UUID | None
    ) -> LandlordPaymentAccount | None:
        result = await self.db.execute(
            select(LandlordPaymentAccount)
            .where(
                LandlordPaymentAccount.landlord_id == landlord_id,
                LandlordPaymentAccount.is_active.is_(True),
                LandlordPaymentAccount.account_type.in_(self.MPESA_TYPES),
                or_(
                    LandlordPaymentAccount.property_id == property_id,
                    LandlordPaymentAccount.property_id.is_(None),
                ),
            )
            .order_by(
                LandlordPaymentAccount.property_id.is_(None),
                LandlordPaymentAccount.is_default.desc(),
                LandlordPaymentAccount.created_at,
            )
            .limit(1)
        )
        return result.scalar_one_or_none()
