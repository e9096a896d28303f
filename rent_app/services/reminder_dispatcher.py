import asyncio
import logging
import uuid
from datetime import date, datetime
from typing import Dict, List, Sequence

from core.date_helper import local_now, utc_now
from core.errors import NotFoundFailure, ValidationFailure
from core.notification import NotificationChannel, SendResult
from core.periodic import sleep_or_stop
from core.settings import settings
from email_notify.email_service import EmailService
from models.enums import ReminderChannel, ReminderStatus
from models.models import RentReminder
from repos.payment_repo import PaymentRepo
from repos.reminder_repo import RentReminderRepo
from repos.reminder_settings_repo import ReminderSettingsRepo
from sms_notify.sms_service import send_sms

from .template_renderer import default_template, render

logger = logging.getLogger("reminders.dispatcher")

SENDABLE_STATUSES = (ReminderStatus.SCHEDULED, ReminderStatus.FAILED)


def reminder_variables(reminder: RentReminder, today: date) -> Dict[str, object]:
    tenant = reminder.tenant
    landlord = reminder.landlord
    amount = f"{reminder.rent_amount:,.0f}"
    due = reminder.due_date

    return {
        "tenantName": tenant.full_name,
        "tenantFirstName": tenant.first_name,
        "tenantPhone": tenant.phone_number,
        "landlordName": landlord.full_name if landlord else "",
        "landlordPhone": (landlord.phone_number or "") if landlord else "",
        "propertyName": reminder.property.name if reminder.property else "",
        "unitNumber": reminder.unit.unit_number if reminder.unit else "",
        "amount": amount,
        "rentAmount": amount,
        "dueDate": due.strftime("%A, %d %B %Y"),
        "dueDateShort": due.strftime("%d/%m/%Y"),
        "today": today.strftime("%d/%m/%Y"),
        "year": today.year,
        "daysUntilDue": abs((due - today).days),
        "daysOverdue": max(0, (today - due).days),
    }


class ReminderDispatcher:
    """Sends reminders whose scheduled date has arrived.

    A reminder is claimed (Scheduled -> Sending) before anything is sent,
    so overlapping runs never deliver it twice. Every claimed reminder ends
    in Sent, Failed or Skipped. Reminders of landlords inside their quiet
    hours are left out of the periodic fetch and stay Scheduled.
    """

    def __init__(
        self,
        db,
        sms: NotificationChannel | None = None,
        email: NotificationChannel | None = None,
        item_delay_seconds: float | None = None,
        batch_size: int | None = None,
    ):
        self.db = db
        self.sms = sms or send_sms
        self.email = email or EmailService()
        self.item_delay_seconds = (
            settings.REMINDER_ITEM_DELAY_SECONDS
            if item_delay_seconds is None
            else item_delay_seconds
        )
        self.batch_size = batch_size or settings.REMINDER_DISPATCH_BATCH_SIZE
        self.reminder_repo = RentReminderRepo(db)
        self.settings_repo = ReminderSettingsRepo(db)
        self.payment_repo = PaymentRepo(db)

    async def send_due(
        self, stop_event: asyncio.Event | None = None, now: datetime | None = None
    ) -> dict:
        now = now or local_now()
        today = now.date()
        summary = {"sent": 0, "failed": 0, "skipped": 0, "deferred": 0, "errors": 0}

        quiet_landlords = await self.settings_repo.landlords_in_quiet_hours(now.time())
        summary["deferred"] = await self.reminder_repo.count_due(today, quiet_landlords)
        due = await self.reminder_repo.get_due(
            today, self.batch_size, exclude_landlords=quiet_landlords
        )
        if not due:
            if summary["deferred"]:
                logger.info(f"{summary['deferred']} due reminder(s) held by quiet hours")
            return summary

        logger.info(f"Dispatching {len(due)} due reminder(s)")
        reminder_ids = [r.id for r in due]

        for index, reminder_id in enumerate(reminder_ids):
            if stop_event is not None and stop_event.is_set():
                logger.info("Reminder dispatch stopped before finishing the batch")
                break

            try:
                reminder = await self.reminder_repo.get_by_id(reminder_id)
                if reminder is None or reminder.status != ReminderStatus.SCHEDULED:
                    continue
                status = await self.dispatch(reminder, now)
            except Exception:
                summary["errors"] += 1
                await self.reminder_repo.rollback()
                logger.exception(f"Dispatching reminder {reminder_id} failed")
                continue

            if status is None:
                continue
            summary[status.value.lower()] += 1

            if index < len(reminder_ids) - 1 and self.item_delay_seconds > 0:
                if await sleep_or_stop(self.item_delay_seconds, stop_event):
                    break

        logger.info(f"Reminder dispatch finished: {summary}")
        return summary

    async def send_now(self, reminder_id: uuid.UUID) -> RentReminder:
        """Operator-triggered send. Ignores quiet hours and may retry a Failed one."""
        reminder = await self.reminder_repo.get_by_id(reminder_id)
        if reminder is None:
            raise NotFoundFailure("Reminder not found", reminder_id=reminder_id)
        if reminder.status not in SENDABLE_STATUSES:
            raise ValidationFailure(
                f"Reminder is already {reminder.status.value}", reminder_id=reminder_id
            )
        status = await self.dispatch(
            reminder, local_now(), from_statuses=SENDABLE_STATUSES
        )
        if status is None:
            raise ValidationFailure(
                "Reminder is already being sent", reminder_id=reminder_id
            )
        return reminder

    async def dispatch(
        self,
        reminder: RentReminder,
        now: datetime,
        from_statuses: Sequence[ReminderStatus] = (ReminderStatus.SCHEDULED,),
    ) -> ReminderStatus | None:
        """Returns the final status, or None when another run claimed it first."""
        reminder_id = reminder.id
        if not await self.reminder_repo.claim(reminder_id, from_statuses):
            logger.info(f"Reminder {reminder_id} already claimed by another run")
            return None

        reminder = await self.reminder_repo.get_by_id(reminder_id)
        try:
            return await self._process(reminder, now)
        except Exception as e:
            # a claimed reminder must not stay in Sending
            await self.reminder_repo.rollback()
            reminder = await self.reminder_repo.get_by_id(reminder_id)
            if reminder is not None and reminder.status == ReminderStatus.SENDING:
                await self.reminder_repo.mark_failed(
                    reminder, None, f"Dispatch error: {str(e) or type(e).__name__}"
                )
            raise

    async def _process(self, reminder: RentReminder, now: datetime) -> ReminderStatus:
        due = reminder.due_date
        if await self.payment_repo.has_confirmed_payment(
            reminder.tenant_id, due.month, due.year
        ):
            await self.reminder_repo.mark_skipped(
                reminder, f"Rent for {due:%B %Y} already paid"
            )
            logger.info(f"Reminder {reminder.id} skipped, rent already paid")
            return ReminderStatus.SKIPPED

        template = reminder.message_template or default_template(reminder.reminder_type)
        message = render(template, reminder_variables(reminder, now.date()))
        if not message:
            await self.reminder_repo.mark_failed(reminder, None, "Rendered message is empty")
            return ReminderStatus.FAILED

        results = await self._deliver(reminder, message)
        successes = {name: r for name, r in results.items() if r.success}

        if successes:
            await self.reminder_repo.mark_sent(
                reminder,
                message,
                sent_at=utc_now(),
                sms_message_id=successes["sms"].message_id if "sms" in successes else None,
                email_message_id=(
                    successes["email"].message_id if "email" in successes else None
                ),
            )
            logger.info(f"Reminder {reminder.id} sent via {', '.join(successes)}")
            return ReminderStatus.SENT

        reason = "; ".join(f"{name}: {r.reason}" for name, r in results.items())
        await self.reminder_repo.mark_failed(reminder, message, reason)
        logger.warning(f"Reminder {reminder.id} failed: {reason}")
        return ReminderStatus.FAILED

    async def _deliver(self, reminder: RentReminder, message: str) -> Dict[str, SendResult]:
        tenant = reminder.tenant
        preference = tenant.reminder_preference
        phone = (preference.alternate_phone if preference else None) or tenant.phone_number
        email = (preference.alternate_email if preference else None) or tenant.email

        routes: List[tuple] = []
        if reminder.channel in (ReminderChannel.SMS, ReminderChannel.BOTH):
            routes.append(("sms", self.sms, phone))
        if reminder.channel in (ReminderChannel.EMAIL, ReminderChannel.BOTH):
            routes.append(("email", self.email, email))

        results: Dict[str, SendResult] = {}
        for name, channel, recipient in routes:
            try:
                results[name] = await channel.send(recipient, message)
            except Exception as e:
                logger.exception(f"{name} channel raised for reminder {reminder.id}")
                results[name] = SendResult.failed(str(e) or type(e).__name__)
        return results
