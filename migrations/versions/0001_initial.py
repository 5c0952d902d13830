"""tillbook core tables

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


class GUID(sa.TypeDecorator):
    impl = sa.CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import UUID

            return dialect.type_descriptor(UUID(as_uuid=True))
        return dialect.type_descriptor(sa.CHAR(36))


def upgrade() -> None:
    op.create_table(
        "businesses",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False, unique=True),
        sa.Column("short_code", sa.String(length=8), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="America/Toronto"),
        sa.Column("tip_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("default_tip_percent", sa.Float(), nullable=False, server_default="0.15"),
        sa.Column("cash_rounding_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "users",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("business_id", GUID(), sa.ForeignKey("businesses.id"), nullable=False),
        sa.Column("username", sa.String(length=150), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("hashed_pin", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=50), nullable=False, server_default="CASHIER"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_business_id", "users", ["business_id"])
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "idempotency_records",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("business_id", GUID(), nullable=False),
        sa.Column("endpoint", sa.String(length=255), nullable=False),
        sa.Column("method", sa.String(length=10), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("request_hash", sa.String(length=64), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False, server_default="in_progress"),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("business_id", "endpoint", "method", "idempotency_key", name="uq_idempotency"),
    )
    op.create_index("ix_idempotency_records_business_id", "idempotency_records", ["business_id"])

    op.create_table(
        "audit_events",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("business_id", GUID(), nullable=False),
        sa.Column("user_id", GUID(), nullable=True),
        sa.Column("trace_id", sa.String(length=64), nullable=True),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        sa.Column("before_payload", sa.JSON(), nullable=True),
        sa.Column("after_payload", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("result", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_audit_events_business_id", "audit_events", ["business_id"])
    op.create_index("ix_audit_events_user_id", "audit_events", ["user_id"])
    op.create_index("ix_audit_events_action", "audit_events", ["action"])

    op.create_table(
        "tax_rules",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("business_id", GUID(), sa.ForeignKey("businesses.id"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("category_type", sa.String(length=20), nullable=False, server_default="tax"),
        sa.Column("rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("category_ids", sa.JSON(), nullable=True),
        sa.Column("rebate_affects", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_tax_rules_business_id", "tax_rules", ["business_id"])

    op.create_table(
        "loyalty_settings",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("business_id", GUID(), sa.ForeignKey("businesses.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("loyalty_mode", sa.String(length=20), nullable=False, server_default="dollars"),
        sa.Column("redemption_rate", sa.Float(), nullable=False, server_default="100"),
        sa.Column("min_redemption", sa.Float(), nullable=False, server_default="0"),
        sa.Column("max_redemption_per_day", sa.Float(), nullable=True),
        sa.Column("max_redemption_per_transaction", sa.Float(), nullable=True),
        sa.Column("earn_rate_percentage", sa.Float(), nullable=False, server_default="1"),
        sa.Column("auto_apply", sa.String(length=20), nullable=False, server_default="never"),
        sa.Column("allow_partial_redemption", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("credits_expire", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expiry_months", sa.Integer(), nullable=False, server_default="12"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_loyalty_settings_business_id", "loyalty_settings", ["business_id"], unique=True)

    op.create_table(
        "loyalty_accounts",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("business_id", GUID(), sa.ForeignKey("businesses.id"), nullable=False),
        sa.Column("customer_name", sa.String(length=255), nullable=False),
        sa.Column("customer_email", sa.String(length=255), nullable=True),
        sa.Column("customer_phone", sa.String(length=50), nullable=True),
        sa.Column("balance", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_earned", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_spent", sa.Float(), nullable=False, server_default="0"),
        sa.Column("last_activity_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_loyalty_accounts_business_id", "loyalty_accounts", ["business_id"])

    op.create_table(
        "loyalty_daily_usage",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("business_id", GUID(), nullable=False),
        sa.Column("loyalty_account_id", GUID(), sa.ForeignKey("loyalty_accounts.id"), nullable=False),
        sa.Column("usage_date", sa.Date(), nullable=False),
        sa.Column("amount_used", sa.Float(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("loyalty_account_id", "usage_date", name="uq_loyalty_daily_usage_account_date"),
    )
    op.create_index("ix_loyalty_daily_usage_business_id", "loyalty_daily_usage", ["business_id"])

    op.create_table(
        "loyalty_transactions",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("business_id", GUID(), nullable=False),
        sa.Column("loyalty_account_id", GUID(), sa.ForeignKey("loyalty_accounts.id"), nullable=False),
        sa.Column("sale_id", GUID(), nullable=True),
        sa.Column("transaction_type", sa.String(length=20), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("balance_before", sa.Float(), nullable=False),
        sa.Column("balance_after", sa.Float(), nullable=False),
        sa.Column("points_before", sa.Integer(), nullable=False),
        sa.Column("points_after", sa.Integer(), nullable=False),
        sa.Column("earned_date", sa.Date(), nullable=False),
        sa.Column("expires_at", sa.Date(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("processed_by", GUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_loyalty_transactions_business_id", "loyalty_transactions", ["business_id"])
    op.create_index("ix_loyalty_transactions_loyalty_account_id", "loyalty_transactions", ["loyalty_account_id"])
    op.create_index("ix_loyalty_transactions_sale_id", "loyalty_transactions", ["sale_id"])
    op.create_index(
        "ix_loyalty_transactions_account_earned",
        "loyalty_transactions",
        ["loyalty_account_id", "earned_date"],
    )

    op.create_table(
        "checkout_sessions",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("business_id", GUID(), nullable=False),
        sa.Column("cashier_user_id", GUID(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="OPEN"),
        sa.Column("state", sa.JSON(), nullable=False),
        sa.Column("sale_id", GUID(), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_checkout_sessions_business_id", "checkout_sessions", ["business_id"])
    op.create_index("ix_checkout_sessions_cashier_user_id", "checkout_sessions", ["cashier_user_id"])

    op.create_table(
        "sales",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("business_id", GUID(), nullable=False),
        sa.Column("cashier_user_id", GUID(), nullable=True),
        sa.Column("checkout_session_id", GUID(), nullable=True, unique=True),
        sa.Column("loyalty_account_id", GUID(), nullable=True),
        sa.Column("receipt_number", sa.String(length=40), nullable=False),
        sa.Column("business_date", sa.Date(), nullable=False),
        sa.Column("subtotal", sa.Float(), nullable=False, server_default="0"),
        sa.Column("tax", sa.Float(), nullable=False, server_default="0"),
        sa.Column("discount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("loyalty_discount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("tip_amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total", sa.Float(), nullable=False, server_default="0"),
        sa.Column("change_given", sa.Float(), nullable=False, server_default="0"),
        sa.Column("item_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="completed"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_sales_business_id", "sales", ["business_id"])
    op.create_index("ix_sales_receipt_number", "sales", ["receipt_number"])
    op.create_index("ix_sales_business_date", "sales", ["business_id", "business_date"])

    op.create_table(
        "sale_items",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("business_id", GUID(), nullable=False),
        sa.Column("sale_id", GUID(), sa.ForeignKey("sales.id"), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(length=100), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("category_id", sa.String(length=64), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_sale_items_business_id", "sale_items", ["business_id"])
    op.create_index("ix_sale_items_sale_id", "sale_items", ["sale_id"])

    op.create_table(
        "sale_tenders",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("business_id", GUID(), nullable=False),
        sa.Column("sale_id", GUID(), sa.ForeignKey("sales.id"), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.String(length=20), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("custom_method_name", sa.String(length=100), nullable=True),
        sa.Column("tip_amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("change_given", sa.Float(), nullable=False, server_default="0"),
        sa.Column("manager_override", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("processed_by", GUID(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_sale_tenders_business_id", "sale_tenders", ["business_id"])
    op.create_index("ix_sale_tenders_sale_id", "sale_tenders", ["sale_id"])

    op.create_table(
        "receipts",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("business_id", GUID(), nullable=False),
        sa.Column("sale_id", GUID(), sa.ForeignKey("sales.id"), nullable=False),
        sa.Column("receipt_number", sa.String(length=40), nullable=False),
        sa.Column("qr_code", sa.String(length=80), nullable=False),
        sa.Column("receipt_type", sa.String(length=20), nullable=False, server_default="Standard"),
        sa.Column("subtotal", sa.Float(), nullable=False, server_default="0"),
        sa.Column("discount_amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("loyalty_redemption", sa.Float(), nullable=False, server_default="0"),
        sa.Column("tax_amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("tip_amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total", sa.Float(), nullable=False, server_default="0"),
        sa.Column("change_given", sa.Float(), nullable=False, server_default="0"),
        sa.Column("aggregated_taxes", sa.JSON(), nullable=True),
        sa.Column("aggregated_rebates", sa.JSON(), nullable=True),
        sa.Column("items", sa.JSON(), nullable=True),
        sa.Column("payment_methods", sa.JSON(), nullable=True),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("customer_email", sa.String(length=255), nullable=True),
        sa.Column("customer_phone", sa.String(length=50), nullable=True),
        sa.Column("employee_name", sa.String(length=255), nullable=True),
        sa.Column("business_name", sa.String(length=255), nullable=True),
        sa.Column("cash_rounding_applied", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_receipts_business_id", "receipts", ["business_id"])
    op.create_index("ix_receipts_sale_id", "receipts", ["sale_id"])


def downgrade() -> None:
    for table in (
        "receipts",
        "sale_tenders",
        "sale_items",
        "sales",
        "checkout_sessions",
        "loyalty_transactions",
        "loyalty_daily_usage",
        "loyalty_accounts",
        "loyalty_settings",
        "tax_rules",
        "audit_events",
        "idempotency_records",
        "users",
        "businesses",
    ):
        op.drop_table(table)
