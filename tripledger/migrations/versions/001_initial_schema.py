"""Initial schema — trips, memberships, ledger entries and splits.

Revision: 001_initial_schema
Created:  2026-10-18

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Creation order:
  trips → trip_members → budget_items → budget_splits, then indexes.

Enumerations (member role, split type) are stored as VARCHAR with a CHECK
constraint rather than native PostgreSQL enums, so the same schema runs on
SQLite in tests.

ON DELETE policies:
  trip_members.trip_id           → CASCADE  (roster owned by the trip)
  budget_items.trip_id           → CASCADE  (ledger owned by the trip)
  budget_splits.budget_item_id   → CASCADE  (splits owned by their entry)
User ids come from the identity provider and carry no foreign key.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration — no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:

    # ── Step 1: trips ──────────────────────────────────────────────────────

    op.create_table(
        "trips",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("max_members", sa.Integer(), nullable=True),
        sa.Column("created_by", sa.String(36), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_trips"),
        sa.CheckConstraint(
            "LENGTH(TRIM(title)) > 0",
            name="ck_trips_title_nonempty",
        ),
        sa.CheckConstraint(
            "max_members IS NULL OR (max_members > 0 AND max_members <= 100)",
            name="ck_trips_max_members_range",
        ),
    )

    # ── Step 2: trip_members ───────────────────────────────────────────────
    # Rows are deactivated (is_active = FALSE), never deleted, when a member leaves.

    op.create_table(
        "trip_members",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column(
            "trip_id",
            sa.String(36),
            sa.ForeignKey("trips.id", ondelete="CASCADE", name="fk_trip_members_trip"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("role", sa.String(10), nullable=False, server_default="guest"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_trip_members"),
        sa.UniqueConstraint("trip_id", "user_id", name="uq_trip_members_trip_user"),
        sa.CheckConstraint("role IN ('admin', 'guest')", name="ck_trip_members_role"),
    )

    # ── Step 3: budget_items ───────────────────────────────────────────────

    op.create_table(
        "budget_items",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column(
            "trip_id",
            sa.String(36),
            sa.ForeignKey("trips.id", ondelete="CASCADE", name="fk_budget_items_trip"),
            nullable=False,
        ),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("paid_by", sa.String(36), nullable=True),
        sa.Column("split_type", sa.String(20), nullable=False, server_default="equal"),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_by", sa.String(36), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_budget_items"),
        sa.CheckConstraint("amount > 0", name="ck_budget_items_amount_positive"),
        sa.CheckConstraint(
            "LENGTH(TRIM(title)) > 0",
            name="ck_budget_items_title_nonempty",
        ),
        sa.CheckConstraint(
            "LENGTH(currency) = 3",
            name="ck_budget_items_currency_format",
        ),
        sa.CheckConstraint(
            "LENGTH(TRIM(category)) > 0",
            name="ck_budget_items_category_nonempty",
        ),
        sa.CheckConstraint(
            "split_type IN ('equal', 'custom', 'percentage')",
            name="ck_budget_items_split_type",
        ),
    )

    # ── Step 4: budget_splits ──────────────────────────────────────────────
    # Zero amounts are allowed: a custom split may leave a member at 0.00.

    op.create_table(
        "budget_splits",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column(
            "budget_item_id",
            sa.String(36),
            sa.ForeignKey("budget_items.id", ondelete="CASCADE", name="fk_budget_splits_item"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("id", name="pk_budget_splits"),
        sa.UniqueConstraint("budget_item_id", "user_id", name="uq_budget_splits_item_user"),
        sa.CheckConstraint("amount >= 0", name="ck_budget_splits_amount_not_negative"),
        sa.CheckConstraint(
            "percentage IS NULL OR (percentage >= 0 AND percentage <= 100)",
            name="ck_budget_splits_percentage_range",
        ),
    )

    # ── Step 5: Indexes ────────────────────────────────────────────────────
    # Names match the ORM's default ix_<table>_<column> convention.

    op.create_index("ix_trip_members_trip_id", "trip_members", ["trip_id"])
    op.create_index("ix_trip_members_user_id", "trip_members", ["user_id"])
    op.create_index("ix_budget_items_trip_id", "budget_items", ["trip_id"])
    op.create_index("ix_budget_items_category", "budget_items", ["category"])
    op.create_index("ix_budget_items_paid_by", "budget_items", ["paid_by"])
    op.create_index("ix_budget_splits_budget_item_id", "budget_splits", ["budget_item_id"])
    op.create_index("ix_budget_splits_user_id", "budget_splits", ["user_id"])

    # Newest-first listing of a trip's ledger.
    op.create_index(
        "idx_budget_items_trip_created",
        "budget_items",
        ["trip_id", sa.text("created_at DESC")],
    )


def downgrade() -> None:
    """Drops everything created in upgrade(), in reverse dependency order."""

    op.drop_index("idx_budget_items_trip_created",   table_name="budget_items")
    op.drop_index("ix_budget_splits_user_id",        table_name="budget_splits")
    op.drop_index("ix_budget_splits_budget_item_id", table_name="budget_splits")
    op.drop_index("ix_budget_items_paid_by",         table_name="budget_items")
    op.drop_index("ix_budget_items_category",        table_name="budget_items")
    op.drop_index("ix_budget_items_trip_id",         table_name="budget_items")
    op.drop_index("ix_trip_members_user_id",         table_name="trip_members")
    op.drop_index("ix_trip_members_trip_id",         table_name="trip_members")

    op.drop_table("budget_splits")
    op.drop_table("budget_items")
    op.drop_table("trip_members")
    op.drop_table("trips")
