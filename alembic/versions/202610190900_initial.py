"""initial ledger schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("deleted_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "labels",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("deleted_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "type", sa.Enum("income", "expense", name="entrytype"), nullable=False
        ),
        sa.Column("amount_minor", sa.BigInteger(), nullable=False),
        sa.Column("currency_code", sa.String(length=3), nullable=False),
        sa.Column("transaction_date_utc", sa.DateTime(), nullable=False),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
        ),
        sa.Column("note", sa.Text()),
        sa.Column("payment_method", sa.Enum("cash", "card", name="paymentmethod")),
        sa.Column("payment_card_id", sa.Integer()),
        sa.Column("deleted_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_minor > 0", name="ck_entries_amount_positive"),
        sa.CheckConstraint("length(currency_code) = 3", name="ck_entries_currency"),
    )
    op.create_index(
        "ix_entries_deleted_date", "entries", ["deleted_at", "transaction_date_utc"]
    )
    op.create_index("ix_entries_category", "entries", ["category_id"])
    op.create_index("ix_entries_type_date", "entries", ["type", "transaction_date_utc"])

    op.create_table(
        "entry_labels",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "entry_id", sa.Integer(), sa.ForeignKey("entries.id"), nullable=False
        ),
        sa.Column("label_id", sa.Integer(), sa.ForeignKey("labels.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("deleted_at", sa.DateTime()),
    )
    op.create_index(
        "ix_entry_labels_entry_active", "entry_labels", ["entry_id", "deleted_at"]
    )
    op.create_index(
        "ix_entry_labels_label_active", "entry_labels", ["label_id", "deleted_at"]
    )

    op.create_table(
        "monthly_caps",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("month_key", sa.String(length=7), nullable=False),
        sa.Column("amount_minor", sa.BigInteger(), nullable=False),
        sa.Column("currency_code", sa.String(length=3), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("month_key", name="uq_monthly_caps_month"),
        sa.CheckConstraint("amount_minor > 0", name="ck_monthly_caps_amount_positive"),
    )

    op.create_table(
        "monthly_cap_changes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("month_key", sa.String(length=7), nullable=False),
        sa.Column("old_amount_minor", sa.BigInteger()),
        sa.Column("new_amount_minor", sa.BigInteger(), nullable=False),
        sa.Column("currency_code", sa.String(length=3), nullable=False),
        sa.Column("changed_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_monthly_cap_changes_month_changed",
        "monthly_cap_changes",
        ["month_key", "changed_at"],
    )

    op.create_table(
        "settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("default_currency_code", sa.String(length=3), nullable=False),
        sa.Column("display_timezone", sa.String(length=64), nullable=False),
        sa.Column(
            "orphan_count_threshold", sa.Integer(), nullable=False, server_default="5"
        ),
        sa.Column(
            "orphan_spending_threshold_bps",
            sa.Integer(),
            nullable=False,
            server_default="500",
        ),
        sa.Column("onboarding_completed_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("id = 1", name="ck_settings_singleton"),
        sa.CheckConstraint(
            "orphan_spending_threshold_bps BETWEEN 0 AND 10000",
            name="ck_settings_orphan_bps_range",
        ),
    )

    op.create_table(
        "fx_rate_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider", sa.String(length=40), nullable=False),
        sa.Column("base_currency", sa.String(length=3), nullable=False),
        sa.Column("quote_currency", sa.String(length=3), nullable=False),
        sa.Column("rate", sa.String(length=40), nullable=False),
        sa.Column("rate_date", sa.Date(), nullable=False),
        sa.Column("is_estimate", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("fetched_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "provider",
            "base_currency",
            "quote_currency",
            "rate_date",
            "is_estimate",
            name="uq_fx_rate_snapshot_key",
        ),
    )


def downgrade():
    op.drop_table("fx_rate_snapshots")
    op.drop_table("settings")
    op.drop_index("ix_monthly_cap_changes_month_changed", table_name="monthly_cap_changes")
    op.drop_table("monthly_cap_changes")
    op.drop_table("monthly_caps")
    op.drop_index("ix_entry_labels_label_active", table_name="entry_labels")
    op.drop_index("ix_entry_labels_entry_active", table_name="entry_labels")
    op.drop_table("entry_labels")
    op.drop_index("ix_entries_type_date", table_name="entries")
    op.drop_index("ix_entries_category", table_name="entries")
    op.drop_index("ix_entries_deleted_date", table_name="entries")
    op.drop_table("entries")
    op.drop_table("labels")
    op.drop_table("categories")
