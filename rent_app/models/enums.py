from enum import Enum


class TenantStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    MOVED_OUT = "MovedOut"


class TransactionKind(str, Enum):
    PUSH_PAYMENT = "PushPayment"
    DISBURSEMENT = "Disbursement"
    UNSOLICITED = "Unsolicited"


class TransactionStatus(str, Enum):
    REQUESTED = "Requested"
    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    TIMEOUT = "Timeout"


OPEN_TRANSACTION_STATUSES = (
    TransactionStatus.REQUESTED,
    TransactionStatus.PENDING,
)


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    REJECTED = "Rejected"


class PaymentMethod(str, Enum):
    MPESA = "MPesa"
    BANK_TRANSFER = "BankTransfer"
    CASH = "Cash"


class PaymentAccountType(str, Enum):
    MPESA_PAYBILL = "MPesaPaybill"
    MPESA_TILL = "MPesaTill"
    BANK = "Bank"


class ReminderType(str, Enum):
    SEVEN_DAYS_BEFORE = "SevenDaysBefore"
    THREE_DAYS_BEFORE = "ThreeDaysBefore"
    ONE_DAY_BEFORE = "OneDayBefore"
    ON_DUE_DATE = "OnDueDate"
    ONE_DAY_OVERDUE = "OneDayOverdue"
    THREE_DAYS_OVERDUE = "ThreeDaysOverdue"
    SEVEN_DAYS_OVERDUE = "SevenDaysOverdue"

    @property
    def offset_days(self) -> int:
        return REMINDER_OFFSETS[self]

    @property
    def is_overdue(self) -> bool:
        return REMINDER_OFFSETS[self] > 0


REMINDER_OFFSETS = {
    ReminderType.SEVEN_DAYS_BEFORE: -7,
    ReminderType.THREE_DAYS_BEFORE: -3,
    ReminderType.ONE_DAY_BEFORE: -1,
    ReminderType.ON_DUE_DATE: 0,
    ReminderType.ONE_DAY_OVERDUE: 1,
    ReminderType.THREE_DAYS_OVERDUE: 3,
    ReminderType.SEVEN_DAYS_OVERDUE: 7,
}


class ReminderChannel(str, Enum):
    SMS = "SMS"
    EMAIL = "Email"
    BOTH = "Both"


class ReminderStatus(str, Enum):
    SCHEDULED = "Scheduled"
    SENT = "Sent"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    SKIPPED = "Skipped"
    SENDING = "Sending"
