import logging
import uuid
from collections import Counter
from datetime import date

from core.errors import NotFoundFailure, ValidationFailure
from models.enums import ReminderStatus
from repos.reminder_repo import RentReminderRepo
from repos.reminder_settings_repo import ReminderPreferenceRepo, ReminderSettingsRepo
from repos.tenant_repo import TenantRepo
from schemas.schema import ReminderSettingsUpdateSchema, TenantReminderPreferenceSchema

from .template_renderer import is_valid_template

logger = logging.getLogger("reminders.admin")

NULLABLE_SETTINGS = {"quiet_hours_start", "quiet_hours_end"}


class ReminderSettingsService:
    def __init__(self, db):
        self.db = db
        self.settings_repo = ReminderSettingsRepo(db)
        self.preference_repo = ReminderPreferenceRepo(db)
        self.reminder_repo = RentReminderRepo(db)
        self.tenant_repo = TenantRepo(db)

    async def get_settings(self, landlord_id: uuid.UUID):
        return await self.settings_repo.get_or_create(landlord_id)

    async def update_settings(
        self, landlord_id: uuid.UUID, data: ReminderSettingsUpdateSchema
    ):
        record = await self.settings_repo.get_or_create(landlord_id)

        for field, value in data.model_dump(exclude_unset=True).items():
            if field.endswith("_template"):
                if value is None or not value.strip():
                    continue
                if not is_valid_template(value):
                    raise ValidationFailure(
                        "Template has unbalanced placeholders", field=field
                    )
            elif value is None and field not in NULLABLE_SETTINGS:
                continue
            setattr(record, field, value)

        record = await self.settings_repo.save(record)
        logger.info(f"Reminder settings updated for landlord {landlord_id}")
        return record

    async def get_preferences(self, tenant_id: uuid.UUID):
        await self._require_tenant(tenant_id)
        record = await self.preference_repo.get_by_tenant(tenant_id)
        if record is None:
            raise NotFoundFailure("No reminder preferences recorded", tenant_id=tenant_id)
        return record

    async def update_preferences(
        self, tenant_id: uuid.UUID, data: TenantReminderPreferenceSchema
    ):
        await self._require_tenant(tenant_id)
        values = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None
            or key in ("preferred_channel", "alternate_phone", "alternate_email")
        }
        return await self.preference_repo.upsert(tenant_id, **values)

    async def list_for_landlord(
        self,
        landlord_id: uuid.UUID,
        start: date | None = None,
        end: date | None = None,
        status: ReminderStatus | None = None,
    ):
        return await self.reminder_repo.list_for_landlord(landlord_id, start, end, status)

    async def list_for_tenant(self, tenant_id: uuid.UUID):
        return await self.reminder_repo.list_for_tenant(tenant_id)

    async def statistics(
        self,
        landlord_id: uuid.UUID,
        start: date | None = None,
        end: date | None = None,
    ) -> dict:
        counts = await self.reminder_repo.counts(landlord_id, start, end)

        by_type: Counter = Counter()
        by_status: Counter = Counter()
        for (reminder_type, status), count in counts.items():
            by_type[reminder_type] += count
            by_status[status] += count

        sent = by_status[ReminderStatus.SENT]
        failed = by_status[ReminderStatus.FAILED]
        attempted = sent + failed

        return {
            "total_reminders": sum(by_status.values()),
            "sent": sent,
            "failed": failed,
            "scheduled": by_status[ReminderStatus.SCHEDULED],
            "skipped": by_status[ReminderStatus.SKIPPED],
            "cancelled": by_status[ReminderStatus.CANCELLED],
            "success_rate": round(sent / attempted * 100, 2) if attempted else 0.0,
            "by_type": dict(by_type),
            "by_status": dict(by_status),
        }

    async def cancel_reminder(self, reminder_id: uuid.UUID):
        if not await self.reminder_repo.cancel(reminder_id):
            reminder = await self.reminder_repo.get_by_id(reminder_id)
            if reminder is None:
                raise NotFoundFailure("Reminder not found", reminder_id=reminder_id)
            raise ValidationFailure(
                f"Only scheduled reminders can be cancelled, this one is "
                f"{reminder.status.value}",
                reminder_id=reminder_id,
            )
        logger.info(f"Reminder {reminder_id} cancelled")
        return await self.reminder_repo.get_by_id(reminder_id)

    async def _require_tenant(self, tenant_id: uuid.UUID):
        tenant = await self.tenant_repo.get_by_id(tenant_id)
        if tenant is None:
            raise NotFoundFailure("Tenant not found", tenant_id=tenant_id)
        return tenant
