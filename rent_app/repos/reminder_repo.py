import uuid
from datetime import date, datetime
from typing import Dict, List, Sequence, Set

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from core.date_helper import utc_now
from models.enums import ReminderStatus, ReminderType
from models.models import Property, RentReminder, Tenant, Unit

HANDLED_STATUSES = (
    ReminderStatus.SENDING,
    ReminderStatus.SENT,
    ReminderStatus.FAILED,
    ReminderStatus.SKIPPED,
)


def _with_relations():
    return (
        selectinload(RentReminder.tenant).selectinload(Tenant.reminder_preference),
        selectinload(RentReminder.landlord),
        selectinload(RentReminder.property),
        selectinload(RentReminder.unit).selectinload(Unit.property).selectinload(
            Property.landlord
        ),
    )


class RentReminderRepo:
    def __init__(self, db):
        self.db = db

    async def get_by_id(self, reminder_id: uuid.UUID) -> RentReminder | None:
        result = await self.db.execute(
            select(RentReminder)
            .options(*_with_relations())
            .where(RentReminder.id == reminder_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_due(
        self,
        today: date,
        limit: int,
        exclude_landlords: Sequence[uuid.UUID] = (),
    ) -> List[RentReminder]:
        stmt = (
            select(RentReminder)
            .options(*_with_relations())
            .where(
                RentReminder.status == ReminderStatus.SCHEDULED,
                RentReminder.scheduled_date <= today,
            )
        )
        if exclude_landlords:
            stmt = stmt.where(RentReminder.landlord_id.not_in(list(exclude_landlords)))
        result = await self.db.execute(
            stmt.order_by(RentReminder.scheduled_date, RentReminder.created_at).limit(
                limit
            )
        )
        return list(result.scalars().all())

    async def count_due(self, today: date, landlord_ids: Sequence[uuid.UUID]) -> int:
        if not landlord_ids:
            return 0
        result = await self.db.execute(
            select(func.count(RentReminder.id)).where(
                RentReminder.status == ReminderStatus.SCHEDULED,
                RentReminder.scheduled_date <= today,
                RentReminder.landlord_id.in_(list(landlord_ids)),
            )
        )
        return result.scalar_one()

    async def handled_types_for_due_date(
        self, tenant_id: uuid.UUID, due_date: date
    ) -> Set[ReminderType]:
        """Types already sent, failed, skipped or in flight for this due date."""
        result = await self.db.execute(
            select(RentReminder.reminder_type)
            .where(
                RentReminder.tenant_id == tenant_id,
                RentReminder.due_date == due_date,
                RentReminder.status.in_(HANDLED_STATUSES),
            )
            .distinct()
        )
        return {ReminderType(rt) for rt in result.scalars().all()}

    async def claim(
        self,
        reminder_id: uuid.UUID,
        from_statuses: Sequence[ReminderStatus] = (ReminderStatus.SCHEDULED,),
    ) -> bool:
        """Compare-and-set to Sending. Only one concurrent dispatcher wins."""
        result = await self.db.execute(
            update(RentReminder)
            .where(
                RentReminder.id == reminder_id,
                RentReminder.status.in_(list(from_statuses)),
            )
            .values(status=ReminderStatus.SENDING, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        await self.commit()
        return result.rowcount == 1

    async def cancel_scheduled_for_due_date(
        self, tenant_id: uuid.UUID, due_date: date
    ) -> int:
        """Flushes, does not commit; the caller owns the rescheduling transaction."""
        result = await self.db.execute(
            update(RentReminder)
            .where(
                RentReminder.tenant_id == tenant_id,
                RentReminder.due_date == due_date,
                RentReminder.status == ReminderStatus.SCHEDULED,
            )
            .values(status=ReminderStatus.CANCELLED, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def add(self, reminder: RentReminder):
        self.db.add(reminder)

    async def cancel(self, reminder_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            update(RentReminder)
            .where(
                RentReminder.id == reminder_id,
                RentReminder.status == ReminderStatus.SCHEDULED,
            )
            .values(status=ReminderStatus.CANCELLED, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        await self.commit()
        return result.rowcount == 1

    async def list_for_landlord(
        self,
        landlord_id: uuid.UUID,
        start: date | None = None,
        end: date | None = None,
        status: ReminderStatus | None = None,
    ) -> List[RentReminder]:
        stmt = (
            select(RentReminder)
            .options(*_with_relations())
            .where(RentReminder.landlord_id == landlord_id)
        )
        if start:
            stmt = stmt.where(RentReminder.scheduled_date >= start)
        if end:
            stmt = stmt.where(RentReminder.scheduled_date <= end)
        if status:
            stmt = stmt.where(RentReminder.status == status)
        result = await self.db.execute(stmt.order_by(RentReminder.scheduled_date.desc()))
        return list(result.scalars().all())

    async def list_for_tenant(self, tenant_id: uuid.UUID) -> List[RentReminder]:
        result = await self.db.execute(
            select(RentReminder)
            .options(*_with_relations())
            .where(RentReminder.tenant_id == tenant_id)
            .order_by(RentReminder.scheduled_date.desc())
        )
        return list(result.scalars().all())

    async def counts(
        self,
        landlord_id: uuid.UUID,
        start: date | None = None,
        end: date | None = None,
    ) -> Dict[tuple, int]:
        """(reminder_type, status) -> count for the landlord's reminders."""
        stmt = select(
            RentReminder.reminder_type, RentReminder.status, func.count(RentReminder.id)
        ).where(RentReminder.landlord_id == landlord_id)
        if start:
            stmt = stmt.where(RentReminder.scheduled_date >= start)
        if end:
            stmt = stmt.where(RentReminder.scheduled_date <= end)
        result = await self.db.execute(
            stmt.group_by(RentReminder.reminder_type, RentReminder.status)
        )
        return {
            (ReminderType(rt), ReminderStatus(st)): count
            for rt, st, count in result.all()
        }

    async def mark_sent(
        self,
        reminder: RentReminder,
        message: str,
        sent_at: datetime,
        sms_message_id: str | None = None,
        email_message_id: str | None = None,
    ):
        reminder.status = ReminderStatus.SENT
        reminder.sent_date = sent_at
        reminder.message_content = message
        reminder.failure_reason = None
        reminder.sms_message_id = sms_message_id
        reminder.email_message_id = email_message_id
        await self.commit()

    async def mark_failed(self, reminder: RentReminder, message: str | None, reason: str):
        reminder.status = ReminderStatus.FAILED
        reminder.message_content = message
        reminder.failure_reason = reason
        reminder.retry_count = (reminder.retry_count or 0) + 1
        reminder.last_retry_at = utc_now()
        await self.commit()

    async def mark_skipped(self, reminder: RentReminder, reason: str):
        reminder.status = ReminderStatus.SKIPPED
        reminder.failure_reason = reason
        await self.commit()

    async def commit(self):
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def rollback(self):
        await self.db.rollback()
