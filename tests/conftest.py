import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "testing"
os.environ["MPESA_WEBHOOK_TOKEN"] = "test-webhook-token"
os.environ["RUN_BACKGROUND_JOBS"] = "false"
os.environ["DRAMATIQ_RUN_SCHEDULER"] = "false"
os.environ.pop("ADMIN_API_KEY", None)

import uuid
from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.date_helper import month_bounds, utc_now
from core.errors import ExternalServiceFailure
from core.get_db import Base, get_db_async
from core.notification import SendResult
from fintechs.mpesa import GatewayResponse
from models import models  # noqa: F401
from models.enums import (
    PaymentAccountType,
    PaymentMethod,
    PaymentStatus,
    ReminderChannel,
    ReminderStatus,
    ReminderType,
    TenantStatus,
    TransactionKind,
    TransactionStatus,
)
from models.models import (
    GatewayTransaction,
    LandlordPaymentAccount,
    Payment,
    Property,
    RentReminder,
    Tenant,
    Unit,
    User,
)

WEBHOOK_HEADERS = {"X-MPesa-Token": "test-webhook-token"}


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    from app import app

    async def override_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_async] = override_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def seed_tenancy(
    db,
    rent_due_day: int = 5,
    monthly_rent: Decimal = Decimal("15000"),
    account_number: str = "ACC-101",
    unit_number: str = "A1",
    tenant_status: TenantStatus = TenantStatus.ACTIVE,
    with_account: bool = True,
):
    landlord = User(
        first_name="Grace",
        last_name="Wanjiku",
        email=f"landlord-{uuid.uuid4().hex[:8]}@example.com",
        phone_number="254700000001",
    )
    db.add(landlord)
    await db.flush()

    prop = Property(landlord_id=landlord.id, name="Riverside Court", location="Nairobi")
    db.add(prop)
    await db.flush()

    unit = Unit(
        property_id=prop.id,
        unit_number=unit_number,
        monthly_rent=monthly_rent,
        payment_account_number=account_number,
    )
    db.add(unit)
    await db.flush()

    tenant = Tenant(
        unit_id=unit.id,
        first_name="Jane",
        last_name="Otieno",
        email="jane@example.com",
        phone_number="254712345678",
        monthly_rent=monthly_rent,
        rent_due_day=rent_due_day,
        status=tenant_status,
    )
    db.add(tenant)

    account = None
    if with_account:
        account = LandlordPaymentAccount(
            landlord_id=landlord.id,
            property_id=None,
            account_type=PaymentAccountType.MPESA_PAYBILL,
            account_name="Riverside Paybill",
            short_code="174379",
            is_active=True,
            is_default=True,
        )
        db.add(account)

    await db.commit()
    return SimpleNamespace(
        landlord=landlord, property=prop, unit=unit, tenant=tenant, account=account
    )


async def add_push_transaction(
    db,
    tenancy,
    checkout_request_id: str = "ws_CO_0001",
    amount: Decimal = Decimal("15000"),
    status: TransactionStatus = TransactionStatus.PENDING,
    age: timedelta = timedelta(0),
):
    transaction = GatewayTransaction(
        kind=TransactionKind.PUSH_PAYMENT,
        merchant_request_id=f"mr-{checkout_request_id}",
        checkout_request_id=checkout_request_id,
        amount=amount,
        phone_number=tenancy.tenant.phone_number,
        account_reference=tenancy.unit.payment_account_number,
        status=status,
        tenant_id=tenancy.tenant.id,
        created_at=utc_now() - age,
    )
    db.add(transaction)
    await db.commit()
    return transaction


async def add_confirmed_payment(db, tenancy, due_date: date, reference: str = "PAID001"):
    period_start, period_end = month_bounds(due_date)
    payment = Payment(
        tenant_id=tenancy.tenant.id,
        unit_id=tenancy.unit.id,
        amount=tenancy.tenant.monthly_rent,
        due_date=due_date,
        period_start=period_start,
        period_end=period_end,
        payment_method=PaymentMethod.MPESA,
        status=PaymentStatus.COMPLETED,
        transaction_reference=reference,
    )
    db.add(payment)
    await db.commit()
    return payment


async def add_reminder(
    db,
    tenancy,
    due_date: date,
    reminder_type: ReminderType = ReminderType.THREE_DAYS_BEFORE,
    channel: ReminderChannel = ReminderChannel.SMS,
    status: ReminderStatus = ReminderStatus.SCHEDULED,
    template: str | None = None,
):
    reminder = RentReminder(
        tenant_id=tenancy.tenant.id,
        landlord_id=tenancy.landlord.id,
        property_id=tenancy.property.id,
        unit_id=tenancy.unit.id,
        reminder_type=reminder_type,
        channel=channel,
        status=status,
        scheduled_date=due_date + timedelta(days=reminder_type.offset_days),
        due_date=due_date,
        rent_amount=tenancy.tenant.monthly_rent,
        message_template=template,
        retry_count=0,
    )
    db.add(reminder)
    await db.commit()
    return reminder


class FakeChannel:
    def __init__(self, result: SendResult | None = None, error: Exception | None = None):
        self.result = result or SendResult.ok(message_id="msg-1")
        self.error = error
        self.sent = []

    async def send(self, recipient, message):
        self.sent.append((recipient, message))
        if self.error:
            raise self.error
        return self.result


class FakeGateway:
    """Stands in for MpesaClient; records calls, answers from canned data."""

    def __init__(self, query_results=None, push_response: GatewayResponse | None = None):
        self.query_results = dict(query_results or {})
        self.push_response = push_response
        self.queried = []
        self.pushes = []

    async def query_status(self, checkout_request_id):
        self.queried.append(checkout_request_id)
        outcome = self.query_results.get(
            checkout_request_id, {"ResultCode": None, "ResultDesc": "pending"}
        )
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def initiate_push_payment(self, phone_number, amount, account_reference, description):
        self.pushes.append((phone_number, amount, account_reference))
        if self.push_response is not None:
            return self.push_response
        suffix = len(self.pushes)
        return GatewayResponse(
            accepted=True,
            request={"PhoneNumber": phone_number, "Amount": int(amount)},
            data={
                "MerchantRequestID": f"mr-{suffix}",
                "CheckoutRequestID": f"ws_CO_push_{suffix}",
                "ResponseCode": "0",
                "ResponseDescription": "Success. Request accepted for processing",
                "CustomerMessage": "Success. Request accepted for processing",
            },
            description="Success. Request accepted for processing",
        )

    async def initiate_disbursement(self, phone_number, amount, remarks, occasion):
        raise ExternalServiceFailure("Disbursements are not faked")


@pytest.fixture
def tenancy_factory(db):
    async def factory(**kwargs):
        return await seed_tenancy(db, **kwargs)

    return factory
