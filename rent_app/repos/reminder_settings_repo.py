import uuid
from datetime import time
from typing import List

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.date_helper import in_quiet_hours
from core.settings import settings
from models.models import (
    REMINDER_SETTING_PREFIXES,
    ReminderSettings,
    TenantReminderPreference,
)
from services.template_renderer import DEFAULT_TEMPLATES


class ReminderSettingsRepo:
    def __init__(self, db):
        self.db = db

    async def get_by_landlord(self, landlord_id: uuid.UUID) -> ReminderSettings | None:
        result = await self.db.execute(
            select(ReminderSettings).where(ReminderSettings.landlord_id == landlord_id)
        )
        return result.scalar_one_or_none()

    async def landlords_in_quiet_hours(self, moment: time) -> List[uuid.UUID]:
        result = await self.db.execute(
            select(
                ReminderSettings.landlord_id,
                ReminderSettings.quiet_hours_start,
                ReminderSettings.quiet_hours_end,
            ).where(
                ReminderSettings.quiet_hours_start.is_not(None),
                ReminderSettings.quiet_hours_end.is_not(None),
            )
        )
        return [
            landlord_id
            for landlord_id, start, end in result.all()
            if in_quiet_hours(moment, start, end)
        ]

    async def get_or_create(self, landlord_id: uuid.UUID) -> ReminderSettings:
        existing = await self.get_by_landlord(landlord_id)
        if existing:
            return existing

        record = ReminderSettings(
            landlord_id=landlord_id,
            quiet_hours_start=settings.REMINDER_DEFAULT_QUIET_HOURS_START,
            quiet_hours_end=settings.REMINDER_DEFAULT_QUIET_HOURS_END,
        )
        for reminder_type, prefix in REMINDER_SETTING_PREFIXES.items():
            setattr(record, f"{prefix}_template", DEFAULT_TEMPLATES[reminder_type])
        self.db.add(record)

        try:
            await self.db.commit()
            await self.db.refresh(record)
            return record
        except IntegrityError:
            # created concurrently by another cycle
            await self.db.rollback()
            existing = await self.get_by_landlord(landlord_id)
            if existing is None:
                raise
            return existing

    async def save(self, record: ReminderSettings) -> ReminderSettings:
        try:
            await self.db.commit()
            await self.db.refresh(record)
            return record
        except SQLAlchemyError:
            await self.db.rollback()
            raise


class ReminderPreferenceRepo:
    def __init__(self, db):
        self.db = db

    async def get_by_tenant(
        self, tenant_id: uuid.UUID
    ) -> TenantReminderPreference | None:
        result = await self.db.execute(
            select(TenantReminderPreference).where(
                TenantReminderPreference.tenant_id == tenant_id
            )
        )
        return result.scalar_one_or_none()

    async def upsert(self, tenant_id: uuid.UUID, **values) -> TenantReminderPreference:
        record = await self.get_by_tenant(tenant_id)
        if record is None:
            record = TenantReminderPreference(tenant_id=tenant_id)
            self.db.add(record)

        for key, value in values.items():
            setattr(record, key, value)

        try:
            await self.db.commit()
            await self.db.refresh(record)
            return record
        except SQLAlchemyError:
            await self.db.rollback()
            raise
