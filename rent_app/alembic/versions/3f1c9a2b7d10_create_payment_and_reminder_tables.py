"""create payment and reminder tables

Revision ID: 3f1c9a2b7d10
Revises:
Create Date: 2026-10-19 09:12:44.301274

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

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


# revision identifiers, used by Alembic.
revision: str = '3f1c9a2b7d10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _enum(enum_cls):
    return sa.Enum(enum_cls, native_enum=False)


def _timestamps(updated=True):
    columns = [sa.Column("created_at", sa.DateTime(), nullable=True)]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(), nullable=True))
    return columns


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("phone_number", sa.String(20), nullable=True),
        *_timestamps(updated=False),
    )

    op.create_table(
        "properties",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "landlord_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("location", sa.String(255), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_properties_landlord_id", "properties", ["landlord_id"])

    op.create_table(
        "units",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "property_id",
            sa.Uuid(),
            sa.ForeignKey("properties.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("unit_number", sa.String(50), nullable=False),
        sa.Column("monthly_rent", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_account_number", sa.String(50), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_units_property_id", "units", ["property_id"])
    op.create_index(
        "ix_units_payment_account_number", "units", ["payment_account_number"]
    )

    op.create_table(
        "tenants",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "unit_id",
            sa.Uuid(),
            sa.ForeignKey("units.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone_number", sa.String(20), nullable=False),
        sa.Column("monthly_rent", sa.Numeric(12, 2), nullable=False),
        sa.Column("rent_due_day", sa.Integer(), nullable=False),
        sa.Column("status", _enum(TenantStatus), nullable=False),
        *_timestamps(updated=False),
        sa.CheckConstraint(
            "rent_due_day >= 1 AND rent_due_day <= 31", name="ck_tenant_rent_due_day"
        ),
    )
    op.create_index("ix_tenants_unit_id", "tenants", ["unit_id"])

    op.create_table(
        "landlord_payment_accounts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "landlord_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "property_id",
            sa.Uuid(),
            sa.ForeignKey("properties.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("account_type", _enum(PaymentAccountType), nullable=False),
        sa.Column("account_name", sa.String(255), nullable=False),
        sa.Column("short_code", sa.String(20), nullable=True),
        sa.Column("account_number", sa.String(50), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index(
        "ix_landlord_payment_accounts_landlord_id",
        "landlord_payment_accounts",
        ["landlord_id"],
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.Uuid(),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "unit_id",
            sa.Uuid(),
            sa.ForeignKey("units.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "landlord_account_id",
            sa.Uuid(),
            sa.ForeignKey("landlord_payment_accounts.id"),
            nullable=True,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_date", sa.DateTime(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("payment_method", _enum(PaymentMethod), nullable=True),
        sa.Column("status", _enum(PaymentStatus), nullable=True),
        sa.Column("transaction_reference", sa.String(100), nullable=False),
        sa.Column("paybill_account_number", sa.String(50), nullable=True),
        sa.Column("mpesa_phone_number", sa.String(20), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_payments_tenant_id", "payments", ["tenant_id"])
    # dedupe key for at-least-once gateway deliveries
    op.create_index(
        "ix_payments_transaction_reference",
        "payments",
        ["transaction_reference"],
        unique=True,
    )

    op.create_table(
        "gateway_transactions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("kind", _enum(TransactionKind), nullable=False),
        sa.Column("merchant_request_id", sa.String(100), nullable=True, unique=True),
        sa.Column("checkout_request_id", sa.String(100), nullable=True, unique=True),
        sa.Column("conversation_id", sa.String(100), nullable=True, unique=True),
        sa.Column("originator_conversation_id", sa.String(100), nullable=True),
        sa.Column(
            "tenant_id",
            sa.Uuid(),
            sa.ForeignKey("tenants.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "payment_id",
            sa.Uuid(),
            sa.ForeignKey("payments.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("phone_number", sa.String(20), nullable=True),
        sa.Column("account_reference", sa.String(100), nullable=True),
        sa.Column("transaction_desc", sa.String(255), nullable=True),
        sa.Column("status", _enum(TransactionStatus), nullable=False),
        sa.Column("result_code", sa.String(20), nullable=True),
        sa.Column("result_desc", sa.Text(), nullable=True),
        sa.Column("receipt_number", sa.String(50), nullable=True, unique=True),
        sa.Column("transaction_date", sa.DateTime(), nullable=True),
        sa.Column("request_json", sa.JSON(), nullable=True),
        sa.Column("response_json", sa.JSON(), nullable=True),
        sa.Column("callback_json", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.Column("callback_received_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint(
            "merchant_request_id IS NOT NULL OR checkout_request_id IS NOT NULL "
            "OR conversation_id IS NOT NULL",
            name="ck_gateway_transaction_correlation_key",
        ),
    )
    op.create_index(
        "ix_gateway_transactions_originator_conversation_id",
        "gateway_transactions",
        ["originator_conversation_id"],
    )
    op.create_index(
        "ix_gateway_transactions_tenant_id", "gateway_transactions", ["tenant_id"]
    )
    op.create_index(
        "ix_gateway_transactions_account_reference",
        "gateway_transactions",
        ["account_reference"],
    )
    op.create_index(
        "ix_gateway_transactions_status", "gateway_transactions", ["status"]
    )
    op.create_index(
        "ix_gateway_transactions_created_at", "gateway_transactions", ["created_at"]
    )

    op.create_table(
        "reminder_settings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "landlord_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("is_enabled", sa.Boolean(), nullable=True),
        sa.Column("default_channel", _enum(ReminderChannel), nullable=True),
        sa.Column("seven_days_before_enabled", sa.Boolean(), nullable=True),
        sa.Column("three_days_before_enabled", sa.Boolean(), nullable=True),
        sa.Column("one_day_before_enabled", sa.Boolean(), nullable=True),
        sa.Column("on_due_date_enabled", sa.Boolean(), nullable=True),
        sa.Column("one_day_overdue_enabled", sa.Boolean(), nullable=True),
        sa.Column("three_days_overdue_enabled", sa.Boolean(), nullable=True),
        sa.Column("seven_days_overdue_enabled", sa.Boolean(), nullable=True),
        sa.Column("seven_days_before_template", sa.Text(), nullable=True),
        sa.Column("three_days_before_template", sa.Text(), nullable=True),
        sa.Column("one_day_before_template", sa.Text(), nullable=True),
        sa.Column("on_due_date_template", sa.Text(), nullable=True),
        sa.Column("one_day_overdue_template", sa.Text(), nullable=True),
        sa.Column("three_days_overdue_template", sa.Text(), nullable=True),
        sa.Column("seven_days_overdue_template", sa.Text(), nullable=True),
        sa.Column("quiet_hours_start", sa.Time(), nullable=True),
        sa.Column("quiet_hours_end", sa.Time(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "rent_reminders",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.Uuid(),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "landlord_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "property_id",
            sa.Uuid(),
            sa.ForeignKey("properties.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "unit_id",
            sa.Uuid(),
            sa.ForeignKey("units.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("reminder_type", _enum(ReminderType), nullable=False),
        sa.Column("channel", _enum(ReminderChannel), nullable=False),
        sa.Column("status", _enum(ReminderStatus), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("sent_date", sa.DateTime(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("rent_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("message_template", sa.Text(), nullable=True),
        sa.Column("message_content", sa.Text(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=True),
        sa.Column("last_retry_at", sa.DateTime(), nullable=True),
        sa.Column("sms_message_id", sa.String(100), nullable=True),
        sa.Column("email_message_id", sa.String(100), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_rent_reminders_landlord_id", "rent_reminders", ["landlord_id"])
    op.create_index(
        "ix_rent_reminders_scheduled_date", "rent_reminders", ["scheduled_date"]
    )
    op.create_index(
        "ix_rent_reminders_tenant_due",
        "rent_reminders",
        ["tenant_id", "due_date", "status"],
    )
    op.create_index(
        "uq_rent_reminders_active_type",
        "rent_reminders",
        ["tenant_id", "due_date", "reminder_type"],
        unique=True,
        postgresql_where=sa.text("status = 'SCHEDULED'"),
        sqlite_where=sa.text("status = 'SCHEDULED'"),
    )

    op.create_table(
        "tenant_reminder_preferences",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.Uuid(),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("reminders_enabled", sa.Boolean(), nullable=True),
        sa.Column("preferred_channel", _enum(ReminderChannel), nullable=True),
        sa.Column("seven_days_before", sa.Boolean(), nullable=True),
        sa.Column("three_days_before", sa.Boolean(), nullable=True),
        sa.Column("one_day_before", sa.Boolean(), nullable=True),
        sa.Column("on_due_date", sa.Boolean(), nullable=True),
        sa.Column("overdue", sa.Boolean(), nullable=True),
        sa.Column("alternate_phone", sa.String(20), nullable=True),
        sa.Column("alternate_email", sa.String(255), nullable=True),
        *_timestamps(),
    )


def downgrade():
    op.drop_table("tenant_reminder_preferences")
    op.drop_index("uq_rent_reminders_active_type", table_name="rent_reminders")
    op.drop_index("ix_rent_reminders_tenant_due", table_name="rent_reminders")
    op.drop_index("ix_rent_reminders_scheduled_date", table_name="rent_reminders")
    op.drop_index("ix_rent_reminders_landlord_id", table_name="rent_reminders")
    op.drop_table("rent_reminders")
    op.drop_table("reminder_settings")
    op.drop_table("gateway_transactions")
    op.drop_index("ix_payments_transaction_reference", table_name="payments")
    op.drop_index("ix_payments_tenant_id", table_name="payments")
    op.drop_table("payments")
    op.drop_table("landlord_payment_accounts")
    op.drop_table("tenants")
    op.drop_table("units")
    op.drop_table("properties")
    op.drop_table("users")
