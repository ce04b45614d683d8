"""billing entitlement tables

Revision ID: 3f2a9c1d7e40
Revises:
Create Date: 2026-10-19 09:12:44.318201

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '3f2a9c1d7e40'
down_revision = None
branch_labels = None
depends_on = None


def _json():
    return sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="user"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("subscription_plan", sa.String(length=64), nullable=False, server_default="free"),
        sa.Column("subscription_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("subscription_auto_renew", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("boost_credits", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_spent", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("boost_credits >= 0", name="ck_accounts_boost_credits_non_negative"),
        sa.CheckConstraint("total_spent >= 0", name="ck_accounts_total_spent_non_negative"),
        sa.CheckConstraint("role IN ('user','dealer','admin')", name="ck_accounts_role_valid"),
        sa.UniqueConstraint("email", name="uq_accounts_email"),
    )
    op.create_index("ix_accounts_subscription_end", "accounts", ["subscription_end"])

    op.create_table(
        "listings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("is_boosted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("boost_expiry", sa.DateTime(timezone=True), nullable=True),
        sa.Column("boost_priority", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("boost_priority >= 0 AND boost_priority <= 100", name="ck_listings_boost_priority_range"),
        sa.CheckConstraint("status IN ('active','sold','deleted')", name="ck_listings_status_valid"),
    )
    op.create_index("ix_listings_owner_id", "listings", ["owner_id"])
    op.create_index("ix_listings_boost_rank", "listings", ["is_boosted", "boost_priority", "boost_expiry"])

    op.create_table(
        "boost_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("listing_id", sa.Integer(), sa.ForeignKey("listings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("boosted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("boosted_by", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True),
        sa.Column("boost_type", sa.String(length=10), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("payment_method", sa.String(length=32), nullable=True),
        sa.Column("transaction_id", sa.String(length=255), nullable=True),
        sa.CheckConstraint("boost_type IN ('user','admin')", name="ck_boost_history_type_valid"),
    )
    op.create_index("ix_boost_history_listing_id", "boost_history", ["listing_id"])

    op.create_table(
        "payment_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("method", sa.String(length=32), nullable=True),
        sa.Column("transaction_id", sa.String(length=255), nullable=True),
        sa.Column("purpose", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("meta", _json(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("purpose IN ('boost','subscription')", name="ck_payment_records_purpose_valid"),
        sa.CheckConstraint("status IN ('pending','completed','failed')", name="ck_payment_records_status_valid"),
    )
    op.create_index("ix_payment_records_account_id", "payment_records", ["account_id"])
    op.create_index("ix_payment_records_transaction_id", "payment_records", ["transaction_id"])
    op.create_index("ix_payment_records_txn_status", "payment_records", ["transaction_id", "status"])

    op.create_table(
        "processed_webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=80), nullable=False),
        sa.Column("meta", _json(), nullable=False),
        sa.Column("notes", sa.String(length=255), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    # Unique: a second insert for the same Stripe event is the duplicate signal
    op.create_index("ix_processed_webhook_events_event_id", "processed_webhook_events", ["event_id"], unique=True)
    op.create_index("ix_processed_webhook_events_event_type", "processed_webhook_events", ["event_type"])
    op.create_index("ix_processed_webhook_events_processed_at", "processed_webhook_events", ["processed_at"])

    op.create_table(
        "plan_definitions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=128), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=False, server_default=sa.text("30")),
        sa.Column("features", _json(), nullable=False),
        sa.Column("max_listings", sa.Integer(), nullable=False, server_default=sa.text("-1")),
        sa.Column("boost_credits", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("allowed_roles", _json(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("visible", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("name", name="uq_plan_definitions_name"),
    )
    op.create_index("ix_plan_definitions_active_order", "plan_definitions", ["is_active", "sort_order"])


def downgrade():
    op.drop_index("ix_plan_definitions_active_order", table_name="plan_definitions")
    op.drop_table("plan_definitions")
    op.drop_index("ix_processed_webhook_events_processed_at", table_name="processed_webhook_events")
    op.drop_index("ix_processed_webhook_events_event_type", table_name="processed_webhook_events")
    op.drop_index("ix_processed_webhook_events_event_id", table_name="processed_webhook_events")
    op.drop_table("processed_webhook_events")
    op.drop_index("ix_payment_records_txn_status", table_name="payment_records")
    op.drop_index("ix_payment_records_transaction_id", table_name="payment_records")
    op.drop_index("ix_payment_records_account_id", table_name="payment_records")
    op.drop_table("payment_records")
    op.drop_index("ix_boost_history_listing_id", table_name="boost_history")
    op.drop_table("boost_history")
    op.drop_index("ix_listings_boost_rank", table_name="listings")
    op.drop_index("ix_listings_owner_id", table_name="listings")
    op.drop_table("listings")
    op.drop_index("ix_accounts_subscription_end", table_name="accounts")
    op.drop_table("accounts")
