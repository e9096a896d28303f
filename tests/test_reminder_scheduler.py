from datetime import date, datetime

from sqlalchemy import select

from conftest import FakeChannel, add_confirmed_payment, add_reminder, seed_tenancy
from models.enums import ReminderChannel, ReminderStatus, ReminderType, TenantStatus
from models.models import RentReminder, TenantReminderPreference
from repos.reminder_settings_repo import ReminderSettingsRepo
from repos.tenant_repo import TenantRepo
from services.reminder_dispatcher import ReminderDispatcher
from services.reminder_scheduler import ReminderScheduler

JAN_20 = date(2026, 1, 20)


async def reminder_rows(db, tenant_id):
    result = await db.execute(
        select(
            RentReminder.reminder_type,
            RentReminder.status,
            RentReminder.scheduled_date,
            RentReminder.due_date,
            RentReminder.channel,
        ).where(RentReminder.tenant_id == tenant_id)
    )
    return result.all()


async def schedule(db, tenant_id, today):
    tenant = await TenantRepo(db).get_by_id(tenant_id)
    return await ReminderScheduler(db, today=today).schedule_for_tenant(tenant, today)


async def test_schedules_enabled_types_for_next_due_date(db):
    tenancy = await seed_tenancy(db, rent_due_day=5)

    created = await schedule(db, tenancy.tenant.id, JAN_20)

    rows = await reminder_rows(db, tenancy.tenant.id)
    assert created == 5
    assert {r.due_date for r in rows} == {date(2026, 2, 5)}
    assert {r.reminder_type: r.scheduled_date for r in rows} == {
        ReminderType.SEVEN_DAYS_BEFORE: date(2026, 1, 29),
        ReminderType.THREE_DAYS_BEFORE: date(2026, 2, 2),
        ReminderType.ONE_DAY_BEFORE: date(2026, 2, 4),
        ReminderType.ON_DUE_DATE: date(2026, 2, 5),
        ReminderType.ONE_DAY_OVERDUE: date(2026, 2, 6),
    }
    assert all(r.status == ReminderStatus.SCHEDULED for r in rows)
    assert all(r.channel == ReminderChannel.SMS for r in rows)


async def test_past_offsets_are_skipped(db):
    tenancy = await seed_tenancy(db, rent_due_day=5)

    created = await schedule(db, tenancy.tenant.id, date(2026, 1, 31))

    rows = await reminder_rows(db, tenancy.tenant.id)
    assert created == 4
    assert ReminderType.SEVEN_DAYS_BEFORE not in {r.reminder_type for r in rows}


async def test_due_day_31_is_clamped_in_february(db):
    tenancy = await seed_tenancy(db, rent_due_day=31)

    await schedule(db, tenancy.tenant.id, date(2026, 2, 10))

    rows = await reminder_rows(db, tenancy.tenant.id)
    assert {r.due_date for r in rows} == {date(2026, 2, 28)}


async def test_rescheduling_cancels_the_earlier_set(db):
    tenancy = await seed_tenancy(db, rent_due_day=5)

    await schedule(db, tenancy.tenant.id, JAN_20)
    await schedule(db, tenancy.tenant.id, JAN_20)

    rows = await reminder_rows(db, tenancy.tenant.id)
    scheduled = [r for r in rows if r.status == ReminderStatus.SCHEDULED]
    cancelled = [r for r in rows if r.status == ReminderStatus.CANCELLED]
    assert len(scheduled) == 5
    assert len(cancelled) == 5
    assert len({r.reminder_type for r in scheduled}) == 5


async def test_paid_month_gets_no_reminders(db):
    tenancy = await seed_tenancy(db, rent_due_day=5)
    await add_confirmed_payment(db, tenancy, date(2026, 2, 5))

    created = await schedule(db, tenancy.tenant.id, JAN_20)

    assert created == 0
    assert await reminder_rows(db, tenancy.tenant.id) == []


async def test_landlord_can_disable_reminders(db):
    tenancy = await seed_tenancy(db)
    settings = await ReminderSettingsRepo(db).get_or_create(tenancy.landlord.id)
    settings.is_enabled = False
    await ReminderSettingsRepo(db).save(settings)

    assert await schedule(db, tenancy.tenant.id, JAN_20) == 0


async def test_landlord_type_toggles_and_tenant_preferences(db):
    tenancy = await seed_tenancy(db)
    repo = ReminderSettingsRepo(db)
    settings = await repo.get_or_create(tenancy.landlord.id)
    settings.seven_days_overdue_enabled = True
    settings.three_days_before_enabled = False
    await repo.save(settings)

    db.add(
        TenantReminderPreference(
            tenant_id=tenancy.tenant.id,
            preferred_channel=ReminderChannel.EMAIL,
            one_day_before=False,
            overdue=False,
        )
    )
    await db.commit()

    await schedule(db, tenancy.tenant.id, JAN_20)

    rows = await reminder_rows(db, tenancy.tenant.id)
    assert {r.reminder_type for r in rows} == {
        ReminderType.SEVEN_DAYS_BEFORE,
        ReminderType.ON_DUE_DATE,
    }
    assert {r.channel for r in rows} == {ReminderChannel.EMAIL}


async def test_tenant_opt_out_skips_everything(db):
    tenancy = await seed_tenancy(db)
    db.add(TenantReminderPreference(tenant_id=tenancy.tenant.id, reminders_enabled=False))
    await db.commit()

    assert await schedule(db, tenancy.tenant.id, JAN_20) == 0


async def test_schedule_all_covers_active_tenants_only(db):
    active = await seed_tenancy(db, account_number="ACC-1")
    moved_out = await seed_tenancy(
        db, account_number="ACC-2", tenant_status=TenantStatus.MOVED_OUT
    )

    summary = await ReminderScheduler(db, today=JAN_20).schedule_all()

    assert summary == {"tenants": 1, "scheduled": 5, "errors": 0}
    assert len(await reminder_rows(db, active.tenant.id)) == 5
    assert await reminder_rows(db, moved_out.tenant.id) == []


async def test_stored_reminders_carry_template_and_amount(db):
    tenancy = await seed_tenancy(db)

    await schedule(db, tenancy.tenant.id, JAN_20)

    reminder = (
        await db.execute(
            select(RentReminder).where(
                RentReminder.reminder_type == ReminderType.ON_DUE_DATE
            )
        )
    ).scalar_one()
    assert "{tenantFirstName}" in reminder.message_template
    assert reminder.rent_amount == tenancy.tenant.monthly_rent
    assert reminder.landlord_id == tenancy.landlord.id
    assert reminder.property_id == tenancy.property.id


async def test_hourly_rescheduling_does_not_resend_delivered_types(db):
    tenancy = await seed_tenancy(db, rent_due_day=5)
    today = date(2026, 2, 2)
    sms = FakeChannel()
    dispatcher = ReminderDispatcher(db, sms=sms, email=FakeChannel(), item_delay_seconds=0)

    for hour in (9, 10, 11):
        await schedule(db, tenancy.tenant.id, today)
        await dispatcher.send_due(now=datetime(2026, 2, 2, hour, 0))

    assert len(sms.sent) == 1
    rows = await reminder_rows(db, tenancy.tenant.id)
    three_days = [r for r in rows if r.reminder_type == ReminderType.THREE_DAYS_BEFORE]
    assert [r.status for r in three_days] == [ReminderStatus.SENT]
    scheduled = [r for r in rows if r.status == ReminderStatus.SCHEDULED]
    assert {r.reminder_type for r in scheduled} == {
        ReminderType.ONE_DAY_BEFORE,
        ReminderType.ON_DUE_DATE,
        ReminderType.ONE_DAY_OVERDUE,
    }


async def test_failed_and_skipped_types_are_not_recreated(db):
    tenancy = await seed_tenancy(db, rent_due_day=5)
    due = date(2026, 2, 5)
    await add_reminder(
        db, tenancy, due, ReminderType.THREE_DAYS_BEFORE, status=ReminderStatus.FAILED
    )
    await add_reminder(
        db, tenancy, due, ReminderType.ONE_DAY_BEFORE, status=ReminderStatus.SKIPPED
    )

    created = await schedule(db, tenancy.tenant.id, date(2026, 2, 2))

    assert created == 2
    rows = await reminder_rows(db, tenancy.tenant.id)
    scheduled = {r.reminder_type for r in rows if r.status == ReminderStatus.SCHEDULED}
    assert scheduled == {ReminderType.ON_DUE_DATE, ReminderType.ONE_DAY_OVERDUE}
