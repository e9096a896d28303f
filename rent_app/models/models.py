import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.date_helper import utc_now
from core.get_db import Base

from .enums import (
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

# ReminderType -> column prefix on ReminderSettings
REMINDER_SETTING_PREFIXES = {
    ReminderType.SEVEN_DAYS_BEFORE: "seven_days_before",
    ReminderType.THREE_DAYS_BEFORE: "three_days_before",
    ReminderType.ONE_DAY_BEFORE: "one_day_before",
    ReminderType.ON_DUE_DATE: "on_due_date",
    ReminderType.ONE_DAY_OVERDUE: "one_day_overdue",
    ReminderType.THREE_DAYS_OVERDUE: "three_days_overdue",
    ReminderType.SEVEN_DAYS_OVERDUE: "seven_days_overdue",
}


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    phone_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    properties: Mapped[List["Property"]] = relationship(back_populates="landlord")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Property(Base):
    __tablename__ = "properties"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    landlord_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    landlord: Mapped["User"] = relationship(back_populates="properties")
    units: Mapped[List["Unit"]] = relationship(back_populates="property")


class Unit(Base):
    __tablename__ = "units"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    property_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True
    )
    unit_number: Mapped[str] = mapped_column(String(50), nullable=False)
    monthly_rent: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_account_number: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    property: Mapped["Property"] = relationship(back_populates="units")
    tenants: Mapped[List["Tenant"]] = relationship(back_populates="unit")


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    unit_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("units.id", ondelete="CASCADE"), nullable=False, index=True
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    monthly_rent: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    rent_due_day: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[TenantStatus] = mapped_column(
        Enum(TenantStatus, native_enum=False),
        nullable=False,
        default=TenantStatus.ACTIVE,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    unit: Mapped["Unit"] = relationship(back_populates="tenants")
    reminder_preference: Mapped[Optional["TenantReminderPreference"]] = relationship(
        back_populates="tenant", uselist=False
    )

    __table_args__ = (
        CheckConstraint(
            "rent_due_day >= 1 AND rent_due_day <= 31", name="ck_tenant_rent_due_day"
        ),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class LandlordPaymentAccount(Base):
    __tablename__ = "landlord_payment_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    landlord_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    property_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("properties.id", ondelete="CASCADE"), nullable=True
    )
    account_type: Mapped[PaymentAccountType] = mapped_column(
        Enum(PaymentAccountType, native_enum=False), nullable=False
    )
    account_name: Mapped[str] = mapped_column(String(255), nullable=False)
    short_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    account_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    unit_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("units.id", ondelete="CASCADE"), nullable=False
    )
    landlord_account_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("landlord_payment_accounts.id"), nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_date: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod, native_enum=False), default=PaymentMethod.MPESA
    )
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, native_enum=False), default=PaymentStatus.PENDING
    )
    transaction_reference: Mapped[str] = mapped_column(
        String(100), unique=True, index=True, nullable=False
    )
    paybill_account_number: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True
    )
    mpesa_phone_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now
    )

    tenant: Mapped["Tenant"] = relationship()
    unit: Mapped["Unit"] = relationship()


class GatewayTransaction(Base):
    __tablename__ = "gateway_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    kind: Mapped[TransactionKind] = mapped_column(
        Enum(TransactionKind, native_enum=False), nullable=False
    )
    merchant_request_id: Mapped[Optional[str]] = mapped_column(
        String(100), unique=True, nullable=True
    )
    checkout_request_id: Mapped[Optional[str]] = mapped_column(
        String(100), unique=True, nullable=True
    )
    conversation_id: Mapped[Optional[str]] = mapped_column(
        String(100), unique=True, nullable=True
    )
    originator_conversation_id: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True, index=True
    )
    tenant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True, index=True
    )
    payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("payments.id", ondelete="SET NULL"), nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    phone_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    account_reference: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True, index=True
    )
    transaction_desc: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus, native_enum=False),
        nullable=False,
        default=TransactionStatus.REQUESTED,
        index=True,
    )
    result_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    result_desc: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    receipt_number: Mapped[Optional[str]] = mapped_column(
        String(50), unique=True, nullable=True
    )
    transaction_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    request_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    response_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    callback_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now
    )
    callback_received_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )

    tenant: Mapped[Optional["Tenant"]] = relationship()
    payment: Mapped[Optional["Payment"]] = relationship()

    __table_args__ = (
        CheckConstraint(
            "merchant_request_id IS NOT NULL OR checkout_request_id IS NOT NULL "
            "OR conversation_id IS NOT NULL",
            name="ck_gateway_transaction_correlation_key",
        ),
    )


class ReminderSettings(Base):
    __tablename__ = "reminder_settings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    landlord_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    default_channel: Mapped[ReminderChannel] = mapped_column(
        Enum(ReminderChannel, native_enum=False), default=ReminderChannel.SMS
    )

    seven_days_before_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    three_days_before_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    one_day_before_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    on_due_date_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    one_day_overdue_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    three_days_overdue_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    seven_days_overdue_enabled: Mapped[bool] = mapped_column(Boolean, default=False)

    seven_days_before_template: Mapped[Optional[str]] = mapped_column(Text)
    three_days_before_template: Mapped[Optional[str]] = mapped_column(Text)
    one_day_before_template: Mapped[Optional[str]] = mapped_column(Text)
    on_due_date_template: Mapped[Optional[str]] = mapped_column(Text)
    one_day_overdue_template: Mapped[Optional[str]] = mapped_column(Text)
    three_days_overdue_template: Mapped[Optional[str]] = mapped_column(Text)
    seven_days_overdue_template: Mapped[Optional[str]] = mapped_column(Text)

    quiet_hours_start: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    quiet_hours_end: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now
    )

    def is_type_enabled(self, reminder_type: ReminderType) -> bool:
        return bool(
            getattr(self, f"{REMINDER_SETTING_PREFIXES[reminder_type]}_enabled")
        )

    def template_for(self, reminder_type: ReminderType) -> Optional[str]:
        return getattr(self, f"{REMINDER_SETTING_PREFIXES[reminder_type]}_template")


class RentReminder(Base):
    __tablename__ = "rent_reminders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    landlord_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    property_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False
    )
    unit_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("units.id", ondelete="CASCADE"), nullable=False
    )
    reminder_type: Mapped[ReminderType] = mapped_column(
        Enum(ReminderType, native_enum=False), nullable=False
    )
    channel: Mapped[ReminderChannel] = mapped_column(
        Enum(ReminderChannel, native_enum=False), nullable=False
    )
    status: Mapped[ReminderStatus] = mapped_column(
        Enum(ReminderStatus, native_enum=False),
        nullable=False,
        default=ReminderStatus.SCHEDULED,
    )
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    sent_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    rent_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    message_template: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    message_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    last_retry_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    sms_message_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    email_message_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now
    )

    tenant: Mapped["Tenant"] = relationship()
    landlord: Mapped["User"] = relationship()
    property: Mapped["Property"] = relationship()
    unit: Mapped["Unit"] = relationship()

    __table_args__ = (
        Index("ix_rent_reminders_tenant_due", "tenant_id", "due_date", "status"),
        # one live reminder per type for a tenant's due date
        Index(
            "uq_rent_reminders_active_type",
            "tenant_id",
            "due_date",
            "reminder_type",
            unique=True,
            postgresql_where=text("status = 'SCHEDULED'"),
            sqlite_where=text("status = 'SCHEDULED'"),
        ),
    )


class TenantReminderPreference(Base):
    __tablename__ = "tenant_reminder_preferences"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    reminders_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    preferred_channel: Mapped[Optional[ReminderChannel]] = mapped_column(
        Enum(ReminderChannel, native_enum=False), nullable=True
    )
    seven_days_before: Mapped[bool] = mapped_column(Boolean, default=True)
    three_days_before: Mapped[bool] = mapped_column(Boolean, default=True)
    one_day_before: Mapped[bool] = mapped_column(Boolean, default=True)
    on_due_date: Mapped[bool] = mapped_column(Boolean, default=True)
    overdue: Mapped[bool] = mapped_column(Boolean, default=True)
    alternate_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    alternate_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now
    )

    tenant: Mapped["Tenant"] = relationship(back_populates="reminder_preference")

    def allows(self, reminder_type: ReminderType) -> bool:
        if not self.reminders_enabled:
            return False
        if reminder_type.is_overdue:
            return bool(self.overdue)
        flag = {
            ReminderType.SEVEN_DAYS_BEFORE: self.seven_days_before,
            ReminderType.THREE_DAYS_BEFORE: self.three_days_before,
            ReminderType.ONE_DAY_BEFORE: self.one_day_before,
            ReminderType.ON_DUE_DATE: self.on_due_date,
        }[reminder_type]
        return bool(flag)
