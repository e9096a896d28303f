import asyncio
import logging
import uuid
from datetime import date, timedelta

from sqlalchemy.exc import SQLAlchemyError

from core.date_helper import local_today, next_due_date
from core.errors import NotFoundFailure, ValidationFailure
from models.enums import ReminderStatus, ReminderType, TenantStatus
from models.models import RentReminder, Tenant
from repos.payment_repo import PaymentRepo
from repos.reminder_repo import RentReminderRepo
from repos.reminder_settings_repo import ReminderSettingsRepo
from repos.tenant_repo import TenantRepo

from .template_renderer import default_template

logger = logging.getLogger("reminders.scheduler")


class ReminderScheduler:
    def __init__(self, db, today: date | None = None):
        self.db = db
        self.today = today
        self.tenant_repo = TenantRepo(db)
        self.settings_repo = ReminderSettingsRepo(db)
        self.reminder_repo = RentReminderRepo(db)
        self.payment_repo = PaymentRepo(db)

    async def schedule_all(self, stop_event: asyncio.Event | None = None) -> dict:
        today = self.today or local_today()
        tenant_ids = await self.tenant_repo.get_active_tenant_ids()
        summary = {"tenants": 0, "scheduled": 0, "errors": 0}

        for tenant_id in tenant_ids:
            if stop_event is not None and stop_event.is_set():
                logger.info("Reminder scheduling stopped before finishing")
                break
            try:
                tenant = await self.tenant_repo.get_by_id(tenant_id)
                if tenant is None:
                    continue
                summary["scheduled"] += await self.schedule_for_tenant(tenant, today)
                summary["tenants"] += 1
            except Exception:
                summary["errors"] += 1
                await self.db.rollback()
                logger.exception(f"Scheduling reminders for tenant {tenant_id} failed")

        logger.info(f"Reminder scheduling finished: {summary}")
        return summary

    async def schedule_tenant(self, tenant_id: uuid.UUID) -> int:
        tenant = await self.tenant_repo.get_by_id(tenant_id)
        if tenant is None:
            raise NotFoundFailure("Tenant not found", tenant_id=tenant_id)
        if tenant.status != TenantStatus.ACTIVE:
            raise ValidationFailure("Tenant is not active", tenant_id=tenant_id)
        return await self.schedule_for_tenant(tenant)

    async def schedule_for_tenant(self, tenant: Tenant, today: date | None = None) -> int:
        """(Re)build the reminder set for the tenant's next due date.

        Scheduled reminders already recorded for that due date are cancelled
        first, in the same transaction as the inserts. Types that were already
        sent, failed or skipped for the due date are not recreated.
        """
        today = today or self.today or local_today()
        unit = tenant.unit
        landlord_id = unit.property.landlord_id

        reminder_settings = await self.settings_repo.get_or_create(landlord_id)
        if not reminder_settings.is_enabled:
            return 0

        preference = tenant.reminder_preference
        if preference is not None and not preference.reminders_enabled:
            return 0

        due_date = next_due_date(today, tenant.rent_due_day)
        cancelled = await self.reminder_repo.cancel_scheduled_for_due_date(
            tenant.id, due_date
        )

        if await self.payment_repo.has_confirmed_payment(
            tenant.id, due_date.month, due_date.year
        ):
            await self.reminder_repo.commit()
            logger.info(f"Tenant {tenant.id} already paid for {due_date:%B %Y}")
            return 0

        channel = reminder_settings.default_channel
        if preference is not None and preference.preferred_channel is not None:
            channel = preference.preferred_channel

        handled = await self.reminder_repo.handled_types_for_due_date(
            tenant.id, due_date
        )

        created = 0
        for reminder_type in ReminderType:
            if reminder_type in handled:
                continue
            if not reminder_settings.is_type_enabled(reminder_type):
                continue
            if preference is not None and not preference.allows(reminder_type):
                continue

            scheduled_date = due_date + timedelta(days=reminder_type.offset_days)
            if scheduled_date < today:
                continue

            self.reminder_repo.add(
                RentReminder(
                    tenant_id=tenant.id,
                    landlord_id=landlord_id,
                    property_id=unit.property_id,
                    unit_id=unit.id,
                    reminder_type=reminder_type,
                    channel=channel,
                    status=ReminderStatus.SCHEDULED,
                    scheduled_date=scheduled_date,
                    due_date=due_date,
                    rent_amount=tenant.monthly_rent,
                    message_template=reminder_settings.template_for(reminder_type)
                    or default_template(reminder_type),
                    retry_count=0,
                )
            )
            created += 1

        try:
            await self.reminder_repo.commit()
        except SQLAlchemyError:
            logger.error(f"Could not store reminders for tenant {tenant.id}")
            raise

        logger.info(
            f"Tenant {tenant.id}: {created} reminder(s) for due date {due_date}, "
            f"{cancelled} superseded"
        )
        return created
