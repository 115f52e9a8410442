"""Create users, credit_transactions and food_analyses

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000+00:00

What:  Initial NutriLens schema: accounts with credit counters, the
       append-only credit transaction log and persisted food analyses.

Rollback: downgrade() drops all three tables. The transaction log is an
audit record; take a backup before downgrading a live database.
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TRANSACTION_KINDS = ("consume", "refill", "adjustment")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False, comment="Account identifier used by the credit ledger"),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("google_id", sa.String(64), nullable=True),
        sa.Column("api_key", sa.String(64), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        # Server default mirrors CREDITS_DEFAULT_TOTAL at migration time
        sa.Column("credits_total", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("credits_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("credits_used >= 0", name="ck_users_credits_used_non_negative"),
        sa.CheckConstraint("credits_used <= credits_total", name="ck_users_credits_within_total"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_google_id", "users", ["google_id"], unique=True)
    op.create_index("ix_users_api_key", "users", ["api_key"], unique=True)

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column(
            "kind",
            sa.Enum(*TRANSACTION_KINDS, name="credit_transaction_kind"),
            nullable=False,
        ),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("endpoint_path", sa.String(255), nullable=True),
        sa.Column(
            "balance_after",
            sa.Integer(),
            nullable=False,
            comment="Remaining credits immediately after this event",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    # "Latest N for this user" is the only read pattern
    op.create_index(
        "idx_credit_transactions_user_created",
        "credit_transactions",
        ["user_id", sa.text("created_at DESC"), sa.text("id DESC")],
    )

    op.create_table(
        "food_analyses",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("food_items", sa.JSON(), nullable=False),
        sa.Column("total_calories", sa.String(16), nullable=False),
        sa.Column("total_protein", sa.String(16), nullable=False),
        sa.Column("total_carbs", sa.String(16), nullable=False),
        sa.Column("total_fat", sa.String(16), nullable=False),
        sa.Column("total_fiber", sa.String(16), nullable=False),
        sa.Column("total_sugar", sa.String(16), nullable=False),
        sa.Column("total_sodium", sa.String(16), nullable=False),
        sa.Column("overall_health_score", sa.Integer(), nullable=False),
        sa.Column("meal_type", sa.String(50), nullable=False),
        sa.Column("calories_density", sa.String(50), nullable=False),
        sa.Column("portion_recommendation", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("image_path", sa.String(255), nullable=False),
        sa.Column("image_content_type", sa.String(100), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_food_analyses_user_created",
        "food_analyses",
        ["user_id", sa.text("created_at DESC")],
    )


def downgrade() -> None:
    op.drop_index("idx_food_analyses_user_created", table_name="food_analyses")
    op.drop_table("food_analyses")
    op.drop_index("idx_credit_transactions_user_created", table_name="credit_transactions")
    op.drop_table("credit_transactions")
    sa.Enum(name="credit_transaction_kind").drop(op.get_bind(), checkfirst=True)
    op.drop_index("ix_users_api_key", table_name="users")
    op.drop_index("ix_users_google_id", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
