"""Claim lifecycle schema.

Revision ID: 20261019_01
Revises: 
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


PAYMENT_PROCESSORS = ("stripe", "square", "paypal", "venmo", "zelle", "cashapp")
PAYMENT_TIERS = ("none", "integrated", "manual", "link")


def _uuid() -> postgresql.UUID:
    return postgresql.UUID(as_uuid=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    payment_processor_enum = postgresql.ENUM(*PAYMENT_PROCESSORS, name="payment_processor_enum")
    payment_tier_enum = postgresql.ENUM(*PAYMENT_TIERS, name="payment_tier_enum")
    deal_status_enum = postgresql.ENUM("draft", "active", "paused", "expired", name="deal_status_enum")
    deal_type_enum = postgresql.ENUM("regular", "sponti_coupon", name="deal_type_enum")
    loyalty_program_type = postgresql.ENUM("punch_card", "points", name="loyalty_program_type")
    loyalty_transaction_type = postgresql.ENUM(
        "earn_punch",
        "earn_points",
        "redeem_punch_reward",
        "redeem_points_reward",
        name="loyalty_transaction_type",
    )
    webhook_provider_enum = postgresql.ENUM("stripe_connect", name="webhook_provider_enum")

    bind = op.get_bind()
    for enum_type in (
        payment_processor_enum,
        payment_tier_enum,
        deal_status_enum,
        deal_type_enum,
        loyalty_program_type,
        loyalty_transaction_type,
        webhook_provider_enum,
    ):
        enum_type.create(bind, checkfirst=True)

    def existing(enum_type: postgresql.ENUM) -> postgresql.ENUM:
        return postgresql.ENUM(name=enum_type.name, create_type=False)

    op.create_table(
        "users",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="customer"),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "vendors",
        sa.Column("id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("business_name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("stripe_payment_link", sa.String(), nullable=True),
        sa.Column("deposit_webhook_secret", sa.String(), nullable=True),
        sa.Column("stripe_connect_account_id", sa.String(), nullable=True, unique=True),
        sa.Column("stripe_connect_onboarding_complete", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("stripe_connect_charges_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
    )

    op.create_table(
        "vendor_payment_methods",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("vendor_id", _uuid(), sa.ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("processor_type", existing(payment_processor_enum), nullable=False),
        sa.Column("payment_link", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("payment_tier", existing(payment_tier_enum), nullable=False, server_default="link"),
        *_timestamps(),
    )
    op.create_index("ix_vendor_payment_methods_vendor_id", "vendor_payment_methods", ["vendor_id"])

    op.create_table(
        "deals",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("vendor_id", _uuid(), sa.ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("deal_type", existing(deal_type_enum), nullable=False, server_default="regular"),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("original_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("deal_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("deposit_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("max_claims", sa.Integer(), nullable=True),
        sa.Column("claims_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", existing(deal_status_enum), nullable=False, server_default="draft"),
        *_timestamps(),
        sa.CheckConstraint("claims_count >= 0", name="ck_deals_claims_count_non_negative"),
    )
    op.create_index("ix_deals_vendor_id", "deals", ["vendor_id"])

    op.create_table(
        "claims",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("deal_id", _uuid(), sa.ForeignKey("deals.id", ondelete="CASCADE"), nullable=False),
        sa.Column("customer_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("session_token", sa.String(length=64), nullable=False, unique=True),
        sa.Column("payment_tier", existing(payment_tier_enum), nullable=False, server_default="none"),
        sa.Column("payment_method_type", existing(payment_processor_enum), nullable=True),
        sa.Column("payment_reference", sa.String(length=32), nullable=True, unique=True),
        sa.Column("stripe_checkout_session_id", sa.String(), nullable=True, unique=True),
        sa.Column("deposit_confirmed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("deposit_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deposit_amount_paid", sa.Numeric(10, 2), nullable=True),
        sa.Column("qr_code", sa.String(length=64), nullable=True, unique=True),
        sa.Column("qr_code_url", sa.String(), nullable=True),
        sa.Column("redemption_code", sa.String(length=6), nullable=True, unique=True),
        sa.Column("redeemed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_claims_deal_id", "claims", ["deal_id"])
    op.create_index("ix_claims_customer_id", "claims", ["customer_id"])
    op.create_index("ix_claims_deal_customer", "claims", ["deal_id", "customer_id"])

    op.create_table(
        "redemptions",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("claim_id", _uuid(), nullable=False, unique=True),
        sa.Column("deal_id", _uuid(), sa.ForeignKey("deals.id", ondelete="CASCADE"), nullable=False),
        sa.Column("vendor_id", _uuid(), sa.ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("customer_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("scanned_by", _uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("deposit_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("payment_method_type", sa.String(), nullable=True),
        sa.Column("remaining_balance", sa.Numeric(10, 2), nullable=True),
        sa.Column("scanned_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_redemptions_deal_id", "redemptions", ["deal_id"])
    op.create_index("ix_redemptions_vendor_id", "redemptions", ["vendor_id"])
    op.create_index("ix_redemptions_customer_id", "redemptions", ["customer_id"])

    op.create_table(
        "loyalty_programs",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("vendor_id", _uuid(), sa.ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("program_type", existing(loyalty_program_type), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("punches_required", sa.Integer(), nullable=True),
        sa.Column("punch_reward", sa.String(), nullable=True),
        sa.Column("points_per_dollar", sa.Numeric(8, 2), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_loyalty_programs_vendor_id", "loyalty_programs", ["vendor_id"])

    op.create_table(
        "loyalty_rewards",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("program_id", _uuid(), sa.ForeignKey("loyalty_programs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("points_cost", sa.Integer(), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.create_table(
        "loyalty_cards",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("program_id", _uuid(), sa.ForeignKey("loyalty_programs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("customer_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("vendor_id", _uuid(), sa.ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("current_punches", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_punches_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_points_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_points_redeemed", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("program_id", "customer_id", name="uq_loyalty_cards_program_customer"),
    )
    op.create_index("ix_loyalty_cards_customer_id", "loyalty_cards", ["customer_id"])

    op.create_table(
        "loyalty_transactions",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("card_id", _uuid(), sa.ForeignKey("loyalty_cards.id", ondelete="CASCADE"), nullable=False),
        sa.Column("customer_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("vendor_id", _uuid(), sa.ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("redemption_id", _uuid(), sa.ForeignKey("redemptions.id", ondelete="SET NULL"), nullable=True),
        sa.Column("reward_id", _uuid(), sa.ForeignKey("loyalty_rewards.id", ondelete="SET NULL"), nullable=True),
        sa.Column("transaction_type", existing(loyalty_transaction_type), nullable=False),
        sa.Column("points_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("punches_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("deal_title", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_loyalty_transactions_card_id", "loyalty_transactions", ["card_id"])

    op.create_table(
        "webhook_events",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("provider", existing(webhook_provider_enum), nullable=False),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("provider", "external_id", name="uq_webhook_events_provider_external"),
    )


def downgrade() -> None:
    op.drop_table("webhook_events")
    op.drop_index("ix_loyalty_transactions_card_id", table_name="loyalty_transactions")
    op.drop_table("loyalty_transactions")
    op.drop_index("ix_loyalty_cards_customer_id", table_name="loyalty_cards")
    op.drop_table("loyalty_cards")
    op.drop_table("loyalty_rewards")
    op.drop_index("ix_loyalty_programs_vendor_id", table_name="loyalty_programs")
    op.drop_table("loyalty_programs")
    op.drop_index("ix_redemptions_customer_id", table_name="redemptions")
    op.drop_index("ix_redemptions_vendor_id", table_name="redemptions")
    op.drop_index("ix_redemptions_deal_id", table_name="redemptions")
    op.drop_table("redemptions")
    op.drop_index("ix_claims_deal_customer", table_name="claims")
    op.drop_index("ix_claims_customer_id", table_name="claims")
    op.drop_index("ix_claims_deal_id", table_name="claims")
    op.drop_table("claims")
    op.drop_index("ix_deals_vendor_id", table_name="deals")
    op.drop_table("deals")
    op.drop_index("ix_vendor_payment_methods_vendor_id", table_name="vendor_payment_methods")
    op.drop_table("vendor_payment_methods")
    op.drop_table("vendors")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for name in (
        "webhook_provider_enum",
        "loyalty_transaction_type",
        "loyalty_program_type",
        "deal_type_enum",
        "deal_status_enum",
        "payment_tier_enum",
        "payment_processor_enum",
    ):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
