import re
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from models.enums import (
    PaymentMethod,
    PaymentStatus,
    ReminderChannel,
    ReminderStatus,
    ReminderType,
    TransactionKind,
    TransactionStatus,
)

ACCOUNT_REFERENCE_PATTERN = re.compile(r"^[A-Za-z0-9-]+$")
PHONE_PATTERN = re.compile(r"^\+?\d{9,15}$")


# ---------------------------------------------------------------------------
# Inbound gateway callbacks. Field names follow the gateway's wire format.
# ---------------------------------------------------------------------------


class C2BPayload(BaseModel):
    TransactionType: Optional[str] = None
    TransID: Optional[str] = None
    TransTime: Optional[str] = None
    TransAmount: Any = None
    BusinessShortCode: Optional[str] = None
    BillRefNumber: Optional[str] = None
    InvoiceNumber: Optional[str] = None
    OrgAccountBalance: Optional[str] = None
    ThirdPartyTransID: Optional[str] = None
    MSISDN: Optional[str] = None
    FirstName: Optional[str] = None
    MiddleName: Optional[str] = None
    LastName: Optional[str] = None

    model_config = {"extra": "allow", "coerce_numbers_to_str": True}

    @property
    def amount(self) -> Optional[Decimal]:
        if self.TransAmount is None or str(self.TransAmount).strip() == "":
            return None
        try:
            value = Decimal(str(self.TransAmount).strip())
        except ArithmeticError:
            return None
        return value if value.is_finite() else None

    @property
    def payer_name(self) -> str:
        parts = [self.FirstName, self.MiddleName, self.LastName]
        return " ".join(p for p in parts if p)


class StkMetadataItem(BaseModel):
    Name: str
    Value: Any = None


class StkMetadata(BaseModel):
    Item: List[StkMetadataItem] = Field(default_factory=list)


class StkCallback(BaseModel):
    MerchantRequestID: Optional[str] = None
    CheckoutRequestID: str
    ResultCode: int
    ResultDesc: Optional[str] = None
    CallbackMetadata: Optional[StkMetadata] = None

    model_config = {"extra": "allow"}

    def metadata_value(self, name: str) -> Any:
        if not self.CallbackMetadata:
            return None
        for item in self.CallbackMetadata.Item:
            if item.Name == name:
                return item.Value
        return None


class StkCallbackBody(BaseModel):
    stkCallback: StkCallback


class StkCallbackEnvelope(BaseModel):
    Body: StkCallbackBody


class B2CParameter(BaseModel):
    Key: str
    Value: Any = None


class B2CParameters(BaseModel):
    ResultParameter: List[B2CParameter] = Field(default_factory=list)


class B2CResult(BaseModel):
    ResultType: Optional[int] = None
    ResultCode: int
    ResultDesc: Optional[str] = None
    OriginatorConversationID: Optional[str] = None
    ConversationID: Optional[str] = None
    TransactionID: Optional[str] = None
    ResultParameters: Optional[B2CParameters] = None

    model_config = {"extra": "allow"}

    def parameter(self, key: str) -> Any:
        if not self.ResultParameters:
            return None
        for item in self.ResultParameters.ResultParameter:
            if item.Key == key:
                return item.Value
        return None


class B2CResultEnvelope(BaseModel):
    Result: B2CResult


# ---------------------------------------------------------------------------
# Operator requests and responses
# ---------------------------------------------------------------------------


class InitiatePushPaymentSchema(BaseModel):
    tenant_id: uuid.UUID
    amount: Decimal = Field(gt=0)
    phone_number: Optional[str] = None
    account_reference: Optional[str] = None
    description: str = "Rent Payment"

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, value: Optional[str]):
        if value is not None and not PHONE_PATTERN.match(value.replace(" ", "")):
            raise ValueError("Phone number must contain 9 to 15 digits.")
        return value

    @field_validator("account_reference")
    @classmethod
    def validate_reference(cls, value: Optional[str]):
        if value is not None and not ACCOUNT_REFERENCE_PATTERN.match(value):
            raise ValueError("Account reference may only contain letters, digits and dashes.")
        return value


class InitiateDisbursementSchema(BaseModel):
    phone_number: str
    amount: Decimal = Field(gt=0)
    remarks: str = Field(min_length=1, max_length=100)
    occasion: Optional[str] = Field(default=None, max_length=100)
    tenant_id: Optional[uuid.UUID] = None

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, value: str):
        if not PHONE_PATTERN.match(value.replace(" ", "")):
            raise ValueError("Phone number must contain 9 to 15 digits.")
        return value


class PaymentDecisionSchema(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=500)


class ResolveUnmatchedPaymentSchema(BaseModel):
    tenant_id: uuid.UUID
    notes: Optional[str] = Field(default=None, max_length=500)


class GatewayTransactionOut(BaseModel):
    id: uuid.UUID
    kind: TransactionKind
    status: TransactionStatus
    merchant_request_id: Optional[str] = None
    checkout_request_id: Optional[str] = None
    conversation_id: Optional[str] = None
    amount: Decimal
    phone_number: Optional[str] = None
    account_reference: Optional[str] = None
    result_code: Optional[str] = None
    result_desc: Optional[str] = None
    receipt_number: Optional[str] = None
    transaction_date: Optional[datetime] = None
    tenant_id: Optional[uuid.UUID] = None
    payment_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime
    callback_received_at: Optional[datetime] = None
    model_config = {"from_attributes": True}


class PaymentOut(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    unit_id: uuid.UUID
    amount: Decimal
    payment_date: datetime
    due_date: date
    period_start: date
    period_end: date
    payment_method: PaymentMethod
    status: PaymentStatus
    transaction_reference: str
    mpesa_phone_number: Optional[str] = None
    notes: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Reminders
# ---------------------------------------------------------------------------


class ReminderSettingsOut(BaseModel):
    id: uuid.UUID
    landlord_id: uuid.UUID
    is_enabled: bool
    default_channel: ReminderChannel
    seven_days_before_enabled: bool
    three_days_before_enabled: bool
    one_day_before_enabled: bool
    on_due_date_enabled: bool
    one_day_overdue_enabled: bool
    three_days_overdue_enabled: bool
    seven_days_overdue_enabled: bool
    seven_days_before_template: Optional[str] = None
    three_days_before_template: Optional[str] = None
    one_day_before_template: Optional[str] = None
    on_due_date_template: Optional[str] = None
    one_day_overdue_template: Optional[str] = None
    three_days_overdue_template: Optional[str] = None
    seven_days_overdue_template: Optional[str] = None
    quiet_hours_start: Optional[time] = None
    quiet_hours_end: Optional[time] = None
    model_config = {"from_attributes": True}


class ReminderSettingsUpdateSchema(BaseModel):
    is_enabled: Optional[bool] = None
    default_channel: Optional[ReminderChannel] = None
    seven_days_before_enabled: Optional[bool] = None
    three_days_before_enabled: Optional[bool] = None
    one_day_before_enabled: Optional[bool] = None
    on_due_date_enabled: Optional[bool] = None
    one_day_overdue_enabled: Optional[bool] = None
    three_days_overdue_enabled: Optional[bool] = None
    seven_days_overdue_enabled: Optional[bool] = None
    seven_days_before_template: Optional[str] = None
    three_days_before_template: Optional[str] = None
    one_day_before_template: Optional[str] = None
    on_due_date_template: Optional[str] = None
    one_day_overdue_template: Optional[str] = None
    three_days_overdue_template: Optional[str] = None
    seven_days_overdue_template: Optional[str] = None
    quiet_hours_start: Optional[time] = None
    quiet_hours_end: Optional[time] = None


class TenantReminderPreferenceSchema(BaseModel):
    reminders_enabled: Optional[bool] = None
    preferred_channel: Optional[ReminderChannel] = None
    seven_days_before: Optional[bool] = None
    three_days_before: Optional[bool] = None
    one_day_before: Optional[bool] = None
    on_due_date: Optional[bool] = None
    overdue: Optional[bool] = None
    alternate_phone: Optional[str] = None
    alternate_email: Optional[EmailStr] = None

    @field_validator("alternate_phone")
    @classmethod
    def validate_phone(cls, value: Optional[str]):
        if value and not PHONE_PATTERN.match(value.replace(" ", "")):
            raise ValueError("Phone number must contain 9 to 15 digits.")
        return value


class TenantReminderPreferenceOut(BaseModel):
    tenant_id: uuid.UUID
    reminders_enabled: bool
    preferred_channel: Optional[ReminderChannel] = None
    seven_days_before: bool
    three_days_before: bool
    one_day_before: bool
    on_due_date: bool
    overdue: bool
    alternate_phone: Optional[str] = None
    alternate_email: Optional[str] = None
    model_config = {"from_attributes": True}


class RentReminderOut(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    landlord_id: uuid.UUID
    property_id: uuid.UUID
    unit_id: uuid.UUID
    reminder_type: ReminderType
    channel: ReminderChannel
    status: ReminderStatus
    scheduled_date: date
    sent_date: Optional[datetime] = None
    due_date: date
    rent_amount: Decimal
    message_content: Optional[str] = None
    failure_reason: Optional[str] = None
    retry_count: int = 0
    last_retry_at: Optional[datetime] = None
    model_config = {"from_attributes": True}


class ReminderStatisticsOut(BaseModel):
    total_reminders: int
    sent: int
    failed: int
    scheduled: int
    skipped: int
    cancelled: int
    success_rate: float
    by_type: Dict[ReminderType, int]
    by_status: Dict[ReminderStatus, int]
