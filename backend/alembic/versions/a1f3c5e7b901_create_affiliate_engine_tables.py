"""create affiliate engine tables

Revision ID: a1f3c5e7b901
Revises:
Create Date: 2026-10-16 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "a1f3c5e7b901"
down_revision = None
branch_labels = None
depends_on = None


def _enum(name, *values):
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True, length=32)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "affiliates",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=False),
        sa.Column("company_name", sa.String(), nullable=True),
        sa.Column("type", _enum("affiliate_type_enum", "individual", "company"), nullable=False),
        sa.Column("promotion_channel", sa.String(), nullable=False),
        sa.Column("platform_link", sa.String(), nullable=False),
        sa.Column("country", sa.String(), nullable=False),
        sa.Column("terms_accepted", sa.Boolean(), nullable=False),
        sa.Column(
            "status",
            _enum("affiliate_status_enum", "pending", "active", "rejected", "suspended"),
            nullable=False,
        ),
        sa.Column("commission_tier", sa.Numeric(5, 2), nullable=False),
        sa.Column("payout_details", sa.JSON(), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("approved_by", sa.String(), nullable=True),
        sa.Column("status_reason", sa.Text(), nullable=True),
        sa.Column("payout_version", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("payout_version >= 0", name="ck_affiliates_payout_version"),
    )
    op.create_index("ix_affiliates_id", "affiliates", ["id"])
    op.create_index("ix_affiliates_status", "affiliates", ["status"])
    op.create_index("ix_affiliates_email", "affiliates", ["email"])

    op.create_table(
        "affiliate_commission_tiers",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("min_orders", sa.Integer(), nullable=False),
        sa.Column("max_orders", sa.Integer(), nullable=True),
        sa.Column("commission_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("min_orders", name="uq_affiliate_commission_tiers_min_orders"),
        sa.CheckConstraint("min_orders >= 0", name="ck_affiliate_commission_tiers_min"),
        sa.CheckConstraint(
            "max_orders IS NULL OR max_orders >= min_orders",
            name="ck_affiliate_commission_tiers_range",
        ),
        sa.CheckConstraint(
            "commission_percentage >= 0 AND commission_percentage <= 100",
            name="ck_affiliate_commission_tiers_percentage",
        ),
    )
    op.create_index("ix_affiliate_commission_tiers_id", "affiliate_commission_tiers", ["id"])

    op.create_table(
        "affiliate_referrals",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("affiliate_id", sa.Integer(), nullable=False),
        sa.Column("referral_type", _enum("referral_type_enum", "code", "customer_referral"), nullable=False),
        sa.Column("referral_code", sa.String(64), nullable=True),
        sa.Column("referred_user_id", sa.String(64), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["affiliate_id"], ["affiliates.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("referral_code", name="uq_affiliate_referrals_code"),
        sa.UniqueConstraint("referred_user_id", name="uq_affiliate_referrals_referred_user"),
        sa.CheckConstraint(
            "(referral_code IS NOT NULL AND referred_user_id IS NULL)"
            " OR (referral_code IS NULL AND referred_user_id IS NOT NULL)",
            name="ck_affiliate_referrals_single_target",
        ),
    )
    op.create_index("ix_affiliate_referrals_id", "affiliate_referrals", ["id"])
    op.create_index("ix_affiliate_referrals_affiliate", "affiliate_referrals", ["affiliate_id"])

    op.create_table(
        "affiliate_commissions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("affiliate_id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.String(64), nullable=False),
        sa.Column("order_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "referral_type",
            _enum("commission_referral_type_enum", "code", "customer_referral"),
            nullable=False,
        ),
        sa.Column("referral_code", sa.String(64), nullable=True),
        sa.Column("referred_user_id", sa.String(64), nullable=True),
        sa.Column("status", _enum("commission_status_enum", "pending", "earned", "paid"), nullable=False),
        sa.Column("earned_at", sa.DateTime(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("transaction_id", sa.String(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["affiliate_id"], ["affiliates.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("order_id", name="uq_affiliate_commissions_order"),
        sa.CheckConstraint("amount >= 0", name="ck_affiliate_commissions_amount"),
        sa.CheckConstraint("rate >= 0 AND rate <= 100", name="ck_affiliate_commissions_rate"),
    )
    op.create_index("ix_affiliate_commissions_id", "affiliate_commissions", ["id"])
    op.create_index(
        "ix_affiliate_commissions_affiliate_status",
        "affiliate_commissions",
        ["affiliate_id", "status"],
    )
    op.create_index("ix_affiliate_commissions_earned_at", "affiliate_commissions", ["earned_at"])

    op.create_table(
        "affiliate_payouts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("affiliate_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "method",
            _enum("payout_method_enum", "gateway", "bank_transfer", "mobile_money"),
            nullable=False,
        ),
        sa.Column("status", _enum("payout_status_enum", "pending", "paid", "failed"), nullable=False),
        sa.Column("request_date", sa.DateTime(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["affiliate_id"], ["affiliates.id"], ondelete="RESTRICT"),
        sa.CheckConstraint("amount > 0", name="ck_affiliate_payouts_amount"),
    )
    op.create_index("ix_affiliate_payouts_id", "affiliate_payouts", ["id"])
    op.create_index(
        "ix_affiliate_payouts_affiliate_status",
        "affiliate_payouts",
        ["affiliate_id", "status"],
    )


def downgrade():
    op.drop_index("ix_affiliate_payouts_affiliate_status", table_name="affiliate_payouts")
    op.drop_index("ix_affiliate_payouts_id", table_name="affiliate_payouts")
    op.drop_table("affiliate_payouts")

    op.drop_index("ix_affiliate_commissions_earned_at", table_name="affiliate_commissions")
    op.drop_index("ix_affiliate_commissions_affiliate_status", table_name="affiliate_commissions")
    op.drop_index("ix_affiliate_commissions_id", table_name="affiliate_commissions")
    op.drop_table("affiliate_commissions")

    op.drop_index("ix_affiliate_referrals_affiliate", table_name="affiliate_referrals")
    op.drop_index("ix_affiliate_referrals_id", table_name="affiliate_referrals")
    op.drop_table("affiliate_referrals")

    op.drop_index("ix_affiliate_commission_tiers_id", table_name="affiliate_commission_tiers")
    op.drop_table("affiliate_commission_tiers")

    op.drop_index("ix_affiliates_email", table_name="affiliates")
    op.drop_index("ix_affiliates_status", table_name="affiliates")
    op.drop_index("ix_affiliates_id", table_name="affiliates")
    op.drop_table("affiliates")
