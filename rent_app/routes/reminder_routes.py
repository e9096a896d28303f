import logging
import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi_utils.cbv import cbv
from sqlalchemy.ext.asyncio import AsyncSession

from core.get_db import get_db_async
from core.safe_handler import safe_handler
from core.validators import require_operator_key
from models.enums import ReminderStatus
from schemas.schema import (
    ReminderSettingsOut,
    ReminderSettingsUpdateSchema,
    ReminderStatisticsOut,
    RentReminderOut,
    TenantReminderPreferenceOut,
    TenantReminderPreferenceSchema,
)
from services.reminder_dispatcher import ReminderDispatcher
from services.reminder_scheduler import ReminderScheduler
from services.reminder_settings_service import ReminderSettingsService
from tasks.dispatch_rent_reminders import run_dispatch_cycle
from tasks.schedule_rent_reminders import run_scheduling_cycle

logger = logging.getLogger(__name__)
router = APIRouter(
    tags=["Rent Reminders"],
    dependencies=[Depends(require_operator_key)],
)


@cbv(router)
class ReminderRoutes:
    @router.get("/settings/{landlord_id}", response_model=ReminderSettingsOut)
    @safe_handler
    async def get_settings(
        self,
        request: Request,
        landlord_id: uuid.UUID,
        db: AsyncSession = Depends(get_db_async),
    ):
        return await ReminderSettingsService(db).get_settings(landlord_id)

    @router.put("/settings/{landlord_id}", response_model=ReminderSettingsOut)
    @safe_handler
    async def update_settings(
        self,
        request: Request,
        landlord_id: uuid.UUID,
        data: ReminderSettingsUpdateSchema,
        db: AsyncSession = Depends(get_db_async),
    ):
        return await ReminderSettingsService(db).update_settings(landlord_id, data)

    @router.get(
        "/tenants/{tenant_id}/preferences", response_model=TenantReminderPreferenceOut
    )
    @safe_handler
    async def get_preferences(
        self,
        request: Request,
        tenant_id: uuid.UUID,
        db: AsyncSession = Depends(get_db_async),
    ):
        return await ReminderSettingsService(db).get_preferences(tenant_id)

    @router.put(
        "/tenants/{tenant_id}/preferences", response_model=TenantReminderPreferenceOut
    )
    @safe_handler
    async def update_preferences(
        self,
        request: Request,
        tenant_id: uuid.UUID,
        data: TenantReminderPreferenceSchema,
        db: AsyncSession = Depends(get_db_async),
    ):
        return await ReminderSettingsService(db).update_preferences(tenant_id, data)

    @router.get("/tenants/{tenant_id}", response_model=List[RentReminderOut])
    @safe_handler
    async def list_for_tenant(
        self,
        request: Request,
        tenant_id: uuid.UUID,
        db: AsyncSession = Depends(get_db_async),
    ):
        return await ReminderSettingsService(db).list_for_tenant(tenant_id)

    @router.post("/tenants/{tenant_id}/schedule")
    @safe_handler
    async def schedule_for_tenant(
        self,
        request: Request,
        tenant_id: uuid.UUID,
        db: AsyncSession = Depends(get_db_async),
    ):
        created = await ReminderScheduler(db).schedule_tenant(tenant_id)
        return {"tenant_id": tenant_id, "scheduled": created}

    @router.get("/landlords/{landlord_id}", response_model=List[RentReminderOut])
    @safe_handler
    async def list_for_landlord(
        self,
        request: Request,
        landlord_id: uuid.UUID,
        start: Optional[date] = None,
        end: Optional[date] = None,
        status: Optional[ReminderStatus] = None,
        db: AsyncSession = Depends(get_db_async),
    ):
        return await ReminderSettingsService(db).list_for_landlord(
            landlord_id, start, end, status
        )

    @router.get(
        "/landlords/{landlord_id}/statistics", response_model=ReminderStatisticsOut
    )
    @safe_handler
    async def statistics(
        self,
        request: Request,
        landlord_id: uuid.UUID,
        start: Optional[date] = None,
        end: Optional[date] = None,
        db: AsyncSession = Depends(get_db_async),
    ):
        return await ReminderSettingsService(db).statistics(landlord_id, start, end)

    @router.post("/{reminder_id}/cancel", response_model=RentReminderOut)
    @safe_handler
    async def cancel_reminder(
        self,
        request: Request,
        reminder_id: uuid.UUID,
        db: AsyncSession = Depends(get_db_async),
    ):
        return await ReminderSettingsService(db).cancel_reminder(reminder_id)

    @router.post("/{reminder_id}/send-now", response_model=RentReminderOut)
    @safe_handler
    async def send_now(
        self,
        request: Request,
        reminder_id: uuid.UUID,
        db: AsyncSession = Depends(get_db_async),
    ):
        return await ReminderDispatcher(db).send_now(reminder_id)

    @router.post("/schedule/trigger", status_code=202)
    @safe_handler
    async def trigger_scheduling(
        self,
        request: Request,
        background_tasks: BackgroundTasks,
    ):
        background_tasks.add_task(run_scheduling_cycle)
        return {"message": "Reminder scheduling started"}

    @router.post("/dispatch/trigger", status_code=202)
    @safe_handler
    async def trigger_dispatch(
        self,
        request: Request,
        background_tasks: BackgroundTasks,
    ):
        background_tasks.add_task(run_dispatch_cycle)
        return {"message": "Reminder dispatch started"}
