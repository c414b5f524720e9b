"""create finance tables

Revision ID: 20211129_0001
Revises: 
Create Date: 2021-11-29

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20211129_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("nickname", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("hashed_password", sa.String(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "categories",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_categories_user_id", "categories", ["user_id"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("category_id", sa.Uuid(), sa.ForeignKey("categories.id"), nullable=False),
        sa.Column("amount", sa.Numeric(11, 2), nullable=False),
        sa.Column("starts_at", sa.Date(), nullable=False),
        sa.Column("ends_at", sa.Date(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("category_id", "starts_at", name="uq_budgets_category_id_starts_at"),
        sa.UniqueConstraint("category_id", "ends_at", name="uq_budgets_category_id_ends_at"),
    )
    op.create_index("ix_budgets_category_id", "budgets", ["category_id"])
    # Only one open-ended budget per category
    op.create_index(
        "uq_budgets_category_id_open_ended",
        "budgets",
        ["category_id"],
        unique=True,
        postgresql_where=sa.text("ends_at IS NULL"),
        sqlite_where=sa.text("ends_at IS NULL"),
    )

    op.create_table(
        "wallets",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("balance", sa.Numeric(11, 2), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_wallets_user_id", "wallets", ["user_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("wallet_id", sa.Uuid(), sa.ForeignKey("wallets.id"), nullable=False),
        sa.Column("category_id", sa.Uuid(), sa.ForeignKey("categories.id"), nullable=True),
        sa.Column("amount", sa.Numeric(11, 2), nullable=False),
        sa.Column("effective_date", sa.Date(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_payments_wallet_id", "payments", ["wallet_id"])
    op.create_index("ix_payments_category_id", "payments", ["category_id"])
    op.create_index("ix_payments_effective_date", "payments", ["effective_date"])

    op.create_table(
        "goals",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Numeric(11, 2), nullable=False),
        sa.Column("starts_at", sa.Date(), nullable=False),
        sa.Column("ends_at", sa.Date(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_goals_user_id", "goals", ["user_id"])


def downgrade() -> None:
    op.drop_table("goals")
    op.drop_table("payments")
    op.drop_table("wallets")
    op.drop_index("uq_budgets_category_id_open_ended", table_name="budgets")
    op.drop_table("budgets")
    op.drop_table("categories")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
