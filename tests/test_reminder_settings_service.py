import uuid
from datetime import date, time

import pytest

from conftest import add_reminder, seed_tenancy
from core.errors import NotFoundFailure, ValidationFailure
from models.enums import ReminderChannel, ReminderStatus, ReminderType
from schemas.schema import ReminderSettingsUpdateSchema, TenantReminderPreferenceSchema
from services.reminder_settings_service import ReminderSettingsService
from services.template_renderer import DEFAULT_TEMPLATES

DUE = date(2026, 2, 5)


async def test_settings_are_created_with_defaults(db):
    tenancy = await seed_tenancy(db)

    record = await ReminderSettingsService(db).get_settings(tenancy.landlord.id)

    assert record.is_enabled is True
    assert record.default_channel == ReminderChannel.SMS
    assert record.three_days_overdue_enabled is False
    assert record.seven_days_overdue_enabled is False
    assert record.quiet_hours_start == time(22, 0)
    assert record.quiet_hours_end == time(8, 0)
    assert record.on_due_date_template == DEFAULT_TEMPLATES[ReminderType.ON_DUE_DATE]


async def test_partial_update_keeps_blank_templates(db):
    tenancy = await seed_tenancy(db)
    service = ReminderSettingsService(db)

    record = await service.update_settings(
        tenancy.landlord.id,
        ReminderSettingsUpdateSchema(
            default_channel=ReminderChannel.BOTH,
            on_due_date_template="   ",
            one_day_before_template="Hello {tenantName}, rent is due tomorrow.",
        ),
    )

    assert record.default_channel == ReminderChannel.BOTH
    assert record.on_due_date_template == DEFAULT_TEMPLATES[ReminderType.ON_DUE_DATE]
    assert record.one_day_before_template == "Hello {tenantName}, rent is due tomorrow."
    assert record.is_enabled is True


async def test_unbalanced_template_is_rejected(db):
    tenancy = await seed_tenancy(db)

    with pytest.raises(ValidationFailure):
        await ReminderSettingsService(db).update_settings(
            tenancy.landlord.id,
            ReminderSettingsUpdateSchema(on_due_date_template="Pay {amount now"),
        )


async def test_quiet_hours_can_be_cleared(db):
    tenancy = await seed_tenancy(db)

    record = await ReminderSettingsService(db).update_settings(
        tenancy.landlord.id,
        ReminderSettingsUpdateSchema(quiet_hours_start=None, quiet_hours_end=None),
    )

    assert record.quiet_hours_start is None
    assert record.quiet_hours_end is None


async def test_preferences_upsert_and_lookup(db):
    tenancy = await seed_tenancy(db)
    service = ReminderSettingsService(db)

    with pytest.raises(NotFoundFailure):
        await service.get_preferences(tenancy.tenant.id)

    await service.update_preferences(
        tenancy.tenant.id,
        TenantReminderPreferenceSchema(
            preferred_channel=ReminderChannel.EMAIL, alternate_phone="254799000111"
        ),
    )
    record = await service.update_preferences(
        tenancy.tenant.id, TenantReminderPreferenceSchema(overdue=False)
    )

    assert record.preferred_channel == ReminderChannel.EMAIL
    assert record.alternate_phone == "254799000111"
    assert record.overdue is False
    assert record.reminders_enabled is True

    with pytest.raises(NotFoundFailure):
        await service.update_preferences(uuid.uuid4(), TenantReminderPreferenceSchema())


async def test_statistics(db):
    tenancy = await seed_tenancy(db)
    await add_reminder(db, tenancy, DUE, ReminderType.SEVEN_DAYS_BEFORE, status=ReminderStatus.SENT)
    await add_reminder(db, tenancy, DUE, ReminderType.THREE_DAYS_BEFORE, status=ReminderStatus.SENT)
    await add_reminder(db, tenancy, DUE, ReminderType.ONE_DAY_BEFORE, status=ReminderStatus.SENT)
    await add_reminder(db, tenancy, DUE, ReminderType.ON_DUE_DATE, status=ReminderStatus.FAILED)
    await add_reminder(db, tenancy, DUE, ReminderType.ONE_DAY_OVERDUE)

    stats = await ReminderSettingsService(db).statistics(tenancy.landlord.id)

    assert stats["total_reminders"] == 5
    assert stats["sent"] == 3
    assert stats["failed"] == 1
    assert stats["scheduled"] == 1
    assert stats["success_rate"] == 75.0
    assert stats["by_status"][ReminderStatus.SENT] == 3
    assert stats["by_type"][ReminderType.ON_DUE_DATE] == 1


async def test_statistics_without_attempts(db):
    tenancy = await seed_tenancy(db)

    stats = await ReminderSettingsService(db).statistics(tenancy.landlord.id)

    assert stats["total_reminders"] == 0
    assert stats["success_rate"] == 0.0


async def test_cancel_only_scheduled_reminders(db):
    tenancy = await seed_tenancy(db)
    scheduled = await add_reminder(db, tenancy, DUE)
    sent = await add_reminder(
        db, tenancy, DUE, ReminderType.ON_DUE_DATE, status=ReminderStatus.SENT
    )
    service = ReminderSettingsService(db)

    cancelled = await service.cancel_reminder(scheduled.id)
    assert cancelled.status == ReminderStatus.CANCELLED

    with pytest.raises(ValidationFailure):
        await service.cancel_reminder(sent.id)
    with pytest.raises(NotFoundFailure):
        await service.cancel_reminder(uuid.uuid4())


async def test_reminder_routes(client, db):
    tenancy = await seed_tenancy(db)
    reminder = await add_reminder(db, tenancy, DUE)

    res = await client.put(
        f"/reminders/settings/{tenancy.landlord.id}",
        json={"seven_days_overdue_enabled": True},
    )
    assert res.status_code == 200
    assert res.json()["seven_days_overdue_enabled"] is True

    res = await client.get(f"/reminders/tenants/{tenancy.tenant.id}")
    assert res.status_code == 200
    assert [r["id"] for r in res.json()] == [str(reminder.id)]

    res = await client.get(f"/reminders/landlords/{tenancy.landlord.id}/statistics")
    assert res.status_code == 200
    assert res.json()["scheduled"] == 1

    res = await client.post(f"/reminders/{reminder.id}/cancel")
    assert res.status_code == 200
    assert res.json()["status"] == ReminderStatus.CANCELLED.value

    res = await client.post(f"/reminders/{reminder.id}/cancel")
    assert res.status_code == 400

    res = await client.get(f"/reminders/tenants/{uuid.uuid4()}/preferences")
    assert res.status_code == 404
