"""initial schema

Revision ID: 202610180900
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610180900"
down_revision = None
branch_labels = None
depends_on = None

ID = sa.String(length=32)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    transaction_type = sa.Enum("income", "expense", name="transactiontype")

    op.create_table(
        "users",
        sa.Column("id", ID, primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("preferences", sa.JSON(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "categories",
        sa.Column("id", ID, primary_key=True),
        sa.Column("user_id", ID, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("name_key", sa.String(length=100), nullable=False),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("color", sa.String(length=9), nullable=False),
        sa.Column("icon", sa.String(length=50), nullable=False),
        sa.Column("budget", sa.Float(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name_key", name="uq_category_user_name_key"),
        sa.CheckConstraint("budget >= 0", name="ck_category_budget_positive"),
    )

    op.create_table(
        "cards",
        sa.Column("id", ID, primary_key=True),
        sa.Column("user_id", ID, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", sa.Enum("credit", "debit", name="cardtype"), nullable=False),
        sa.Column("last_four", sa.String(length=4)),
        sa.Column("credit_limit", sa.Float()),
        sa.Column("color", sa.String(length=9)),
        *_timestamps(),
    )
    op.create_index("ix_cards_user", "cards", ["user_id"])

    op.create_table(
        "currencies",
        sa.Column("id", ID, primary_key=True),
        sa.Column("user_id", ID, nullable=False),
        sa.Column("code", sa.String(length=10), nullable=False),
        sa.Column("symbol", sa.String(length=10)),
        sa.Column("name", sa.String(length=100)),
        sa.Column("rate", sa.Float()),
        sa.Column("is_base", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "code", name="uq_currency_user_code"),
    )
    op.create_index(
        "uq_currency_user_base",
        "currencies",
        ["user_id"],
        unique=True,
        sqlite_where=sa.text("is_base = 1"),
        postgresql_where=sa.text("is_base IS TRUE"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", ID, primary_key=True),
        sa.Column("user_id", ID, nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column(
            "category_id",
            ID,
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
        ),
        sa.Column("card_id", ID, sa.ForeignKey("cards.id", ondelete="SET NULL")),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_category_date",
        "transactions",
        ["user_id", "category_id", "date"],
    )
    op.create_index(
        "ix_transactions_user_type_date", "transactions", ["user_id", "type", "date"]
    )

    op.create_table(
        "goals",
        sa.Column("id", ID, primary_key=True),
        sa.Column("user_id", ID, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("target_amount", sa.Float(), nullable=False),
        sa.Column("current_amount", sa.Float(), nullable=False),
        sa.Column("deadline", sa.DateTime(), nullable=False),
        sa.Column(
            "priority",
            sa.Enum("high", "medium", "low", name="goalpriority"),
            nullable=False,
        ),
        sa.Column("color", sa.String(length=9)),
        sa.Column("description", sa.Text()),
        sa.Column(
            "category_id",
            ID,
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "currency_id",
            ID,
            sa.ForeignKey("currencies.id", ondelete="SET NULL"),
        ),
        *_timestamps(),
        sa.CheckConstraint("target_amount > 0", name="ck_goal_target_positive"),
        sa.CheckConstraint("current_amount >= 0", name="ck_goal_current_non_negative"),
    )
    op.create_index("ix_goals_user_deadline", "goals", ["user_id", "deadline"])

    op.create_table(
        "goal_contributions",
        sa.Column("id", ID, primary_key=True),
        sa.Column(
            "goal_id",
            ID,
            sa.ForeignKey("goals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column(
            "currency_id",
            ID,
            sa.ForeignKey("currencies.id", ondelete="SET NULL"),
        ),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.CheckConstraint("amount > 0", name="ck_contribution_amount_positive"),
    )
    op.create_index(
        "ix_goal_contributions_goal_date", "goal_contributions", ["goal_id", "date"]
    )


def downgrade():
    op.drop_index("ix_goal_contributions_goal_date", table_name="goal_contributions")
    op.drop_table("goal_contributions")
    op.drop_index("ix_goals_user_deadline", table_name="goals")
    op.drop_table("goals")
    op.drop_index("ix_transactions_user_type_date", table_name="transactions")
    op.drop_index("ix_transactions_user_category_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("uq_currency_user_base", table_name="currencies")
    op.drop_table("currencies")
    op.drop_index("ix_cards_user", table_name="cards")
    op.drop_table("cards")
    op.drop_table("categories")
    op.drop_table("users")
    sa.Enum(name="goalpriority").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="cardtype").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="transactiontype").drop(op.get_bind(), checkfirst=True)
