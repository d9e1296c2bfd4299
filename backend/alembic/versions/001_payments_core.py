# backend/alembic/versions/001_payments_core.py
"""Payments core - provider catalog, bookings with escrow split, Stripe mirrors, payouts

Revision ID: 001_payments_core
Revises:
Create Date: 2025-11-01 00:00:00.000000

On PostgreSQL the bookings table also gets a generated booking_span range
and an exclusion constraint so two confirmed/in-progress bookings of one
provider can never overlap, whatever the application layer does.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_payments_core"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BOOKING_STATUSES = ("pending", "confirmed", "in_progress", "completed", "cancelled", "declined", "expired")
PAYMENT_STATUSES = ("pending", "paid", "funds_held_in_escrow", "payout_completed", "failed", "refunded")


def _in_clause(values: Sequence[str]) -> str:
    return ", ".join(f"'{v}'" for v in values)


def _timestamps(updated: bool = True) -> list[sa.Column]:
    cols = [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        )
    ]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True))
    return cols


def _create_extension_prefer_extensions_schema(extension_name: str) -> None:
    """Create extension using extensions schema when available."""

    bind = op.get_bind()
    if bind is None or bind.dialect.name != "postgresql":
        return

    op.execute(
        f"""
        DO $$
        DECLARE
            extensions_schema_exists BOOLEAN;
            extension_installed BOOLEAN;
        BEGIN
            SELECT EXISTS (
                SELECT 1 FROM pg_namespace WHERE nspname = 'extensions'
            ) INTO extensions_schema_exists;

            SELECT EXISTS (
                SELECT 1 FROM pg_extension WHERE extname = '{extension_name}'
            ) INTO extension_installed;

            IF NOT extension_installed THEN
                IF extensions_schema_exists THEN
                    EXECUTE 'CREATE EXTENSION IF NOT EXISTS {extension_name} WITH SCHEMA extensions';
                ELSE
                    EXECUTE 'CREATE EXTENSION IF NOT EXISTS {extension_name}';
                END IF;
            END IF;
        END
        $$;
        """
    )


def upgrade() -> None:
    """Create payments core schema."""
    print("Creating payments core schema...")

    bind = op.get_bind()
    dialect_name = bind.dialect.name if bind is not None else "postgresql"
    is_postgres = dialect_name == "postgresql"

    # Provider-owned records
    op.create_table(
        "provider_profiles",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("business_name", sa.String(255), nullable=True),
        sa.Column("auto_confirm_bookings", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", name="uq_provider_profiles_user"),
    )

    op.create_table(
        "provider_services",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("provider_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("base_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("base_price >= 0", name="ck_provider_services_price"),
        sa.CheckConstraint("duration_minutes > 0", name="ck_provider_services_duration"),
    )
    op.create_index("ix_provider_services_provider_id", "provider_services", ["provider_id"])

    op.create_table(
        "provider_schedules",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("provider_id", sa.String(64), nullable=False),
        sa.Column("weekly_schedule", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider_id", name="uq_provider_schedules_provider"),
    )

    op.create_table(
        "provider_blackouts",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("provider_id", sa.String(64), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.String(255), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("start_date <= end_date", name="ck_provider_blackouts_range"),
    )
    op.create_index("ix_provider_blackouts_provider_id", "provider_blackouts", ["provider_id"])

    # Bookings
    op.create_table(
        "bookings",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("customer_id", sa.String(64), nullable=False),
        sa.Column("provider_id", sa.String(64), nullable=False),
        sa.Column("service_id", sa.String(26), nullable=False),
        sa.Column("booking_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payment_status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("base_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("platform_fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("captured_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("amount_held_for_provider", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("platform_fee_held", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("payment_intent_id", sa.String(255), nullable=True, comment="Stripe payment intent"),
        sa.Column(
            "provider_transfer_id", sa.String(255), nullable=True, comment="Stripe transfer to provider"
        ),
        sa.Column("auto_confirmed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("provider_response_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("customer_notes", sa.Text(), nullable=True),
        sa.Column("service_address", sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("declined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("provider_paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by_id", sa.String(64), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("decline_reason", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["service_id"], ["provider_services.id"]),
        sa.CheckConstraint(f"status IN ({_in_clause(BOOKING_STATUSES)})", name="ck_bookings_status"),
        sa.CheckConstraint(
            f"payment_status IN ({_in_clause(PAYMENT_STATUSES)})",
            name="ck_bookings_payment_status",
        ),
        sa.CheckConstraint("start_time < end_time", name="ck_bookings_time_order"),
        sa.CheckConstraint(
            "ROUND(total_amount - base_amount - platform_fee, 2) = 0",
            name="ck_bookings_total_split",
        ),
        sa.CheckConstraint(
            "ROUND(captured_amount - amount_held_for_provider - platform_fee_held, 2) >= 0",
            name="ck_bookings_held_within_captured",
        ),
        sa.CheckConstraint("base_amount >= 0 AND platform_fee >= 0", name="ck_bookings_amounts"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_customer_id", "bookings", ["customer_id"])
    op.create_index("ix_bookings_booking_date", "bookings", ["booking_date"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index("ix_bookings_payment_status", "bookings", ["payment_status"])
    op.create_index(
        "ix_bookings_provider_date_status", "bookings", ["provider_id", "booking_date", "status"]
    )

    if is_postgres:
        _create_extension_prefer_extensions_schema("btree_gist")
        op.execute(
            """
            ALTER TABLE bookings
              ADD COLUMN IF NOT EXISTS booking_span tsrange
              GENERATED ALWAYS AS (
                tsrange(
                  (booking_date::timestamp + start_time),
                  (booking_date::timestamp + end_time),
                  '[)'
                )
              ) STORED
            """
        )
        op.execute(
            """
            ALTER TABLE bookings
              ADD CONSTRAINT bookings_no_overlap_per_provider
              EXCLUDE USING gist (
                provider_id WITH =,
                booking_span WITH &&
              )
              WHERE (status IN ('confirmed','in_progress'))
            """
        )

    # Stripe mirrors and payment audit rows
    op.create_table(
        "stripe_customers",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("customer_id", sa.String(64), nullable=False),
        sa.Column("stripe_customer_id", sa.String(255), nullable=False),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("customer_id", name="uq_stripe_customers_customer"),
        sa.UniqueConstraint("stripe_customer_id", name="uq_stripe_customers_stripe_id"),
    )

    op.create_table(
        "connected_accounts",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("provider_id", sa.String(64), nullable=False),
        sa.Column("stripe_account_id", sa.String(255), nullable=False),
        sa.Column("charges_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("details_submitted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("onboarding_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("requirements", sa.JSON(), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider_id", name="uq_connected_accounts_provider"),
        sa.UniqueConstraint("stripe_account_id", name="uq_connected_accounts_stripe_id"),
    )
    op.create_index("ix_connected_accounts_provider_id", "connected_accounts", ["provider_id"])

    op.create_table(
        "payment_intents",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("stripe_payment_intent_id", sa.String(255), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="usd"),
        sa.Column("status", sa.String(50), nullable=False),
        sa.Column("client_secret", sa.String(255), nullable=True),
        sa.Column("payment_method_types", sa.JSON(), nullable=False),
        sa.Column("intent_metadata", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"]),
        sa.UniqueConstraint("stripe_payment_intent_id", name="uq_payment_intents_stripe_id"),
    )
    op.create_index("ix_payment_intents_booking_id", "payment_intents", ["booking_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("customer_id", sa.String(64), nullable=False),
        sa.Column("provider_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("platform_fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("provider_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="usd"),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("stripe_payment_intent_id", sa.String(255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"]),
    )
    op.create_index("ix_payments_booking_id", "payments", ["booking_id"])
    op.create_index("ix_payments_stripe_payment_intent_id", "payments", ["stripe_payment_intent_id"])

    op.create_table(
        "provider_payouts",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("provider_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="usd"),
        sa.Column("stripe_transfer_id", sa.String(255), nullable=False),
        sa.Column("source_charge_id", sa.String(255), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="completed"),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"]),
        sa.UniqueConstraint("stripe_transfer_id", name="uq_provider_payouts_transfer"),
    )
    op.create_index("ix_provider_payouts_booking_id", "provider_payouts", ["booking_id"])
    op.create_index("ix_provider_payouts_provider_id", "provider_payouts", ["provider_id"])

    print("Payments core schema created")


def downgrade() -> None:
    """Drop payments core schema."""
    print("Dropping payments core schema...")

    bind = op.get_bind()
    dialect_name = bind.dialect.name if bind is not None else "postgresql"
    is_postgres = dialect_name == "postgresql"

    op.drop_table("provider_payouts")
    op.drop_table("payments")
    op.drop_table("payment_intents")
    op.drop_table("connected_accounts")
    op.drop_table("stripe_customers")

    if is_postgres:
        op.execute("ALTER TABLE bookings DROP CONSTRAINT IF EXISTS bookings_no_overlap_per_provider")
    op.drop_table("bookings")

    op.drop_table("provider_blackouts")
    op.drop_table("provider_schedules")
    op.drop_table("provider_services")
    op.drop_table("provider_profiles")
