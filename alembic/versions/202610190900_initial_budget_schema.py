"""initial budget schema

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

ONBOARDING_STEPS = (
    "profile_goals",
    "analyze_spending",
    "analyze_spending_in_progress",
    "budget_setup",
    "end",
)
CURRENCIES = ("EUR", "USD", "CAD", "GBP")
FREQUENCIES = ("weekly", "biweekly", "monthly", "quarterly", "yearly", "unknown")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "onboarding_step",
            sa.Enum(*ONBOARDING_STEPS, name="onboardingstep"),
            nullable=False,
        ),
        sa.Column("spending_recommendations", sa.JSON()),
        sa.Column("spending_tracking", sa.JSON()),
        *_timestamps(),
    )
    op.create_table(
        "financial_profiles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        sa.Column("full_name", sa.String(length=120)),
        sa.Column("age", sa.Integer()),
        sa.Column("annual_income_cents", sa.Integer()),
        sa.Column("savings_cents", sa.Integer()),
        *_timestamps(),
        sa.UniqueConstraint("budget_id"),
    )
    op.create_table(
        "provider_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        sa.Column("institution_name", sa.String(length=120)),
        sa.Column("access_token", sa.String(length=255), nullable=False),
        sa.Column("next_cursor", sa.Text()),
        *_timestamps(),
    )
    op.create_table(
        "fin_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("budget_id", sa.Integer(), sa.ForeignKey("budgets.id")),
        sa.Column(
            "provider_item_id", sa.Integer(), sa.ForeignKey("provider_items.id")
        ),
        sa.Column("provider_account_id", sa.String(length=100)),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "currency",
            sa.Enum(*CURRENCIES, name="currencycode"),
            nullable=False,
            server_default="USD",
        ),
        *_timestamps(),
        sa.UniqueConstraint("provider_account_id", name="uq_fin_account_provider_id"),
    )
    op.create_table(
        "category_groups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=255)),
        *_timestamps(),
        sa.UniqueConstraint("budget_id", "name", name="uq_category_group_budget_name"),
    )
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("category_groups.id"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "is_discretionary", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
        sa.UniqueConstraint("budget_id", "name", name="uq_category_budget_name"),
    )
    op.create_table(
        "provider_category_mappings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider_category", sa.String(length=100), nullable=False),
        sa.Column("category_name", sa.String(length=100), nullable=False),
        sa.UniqueConstraint("provider_category"),
    )
    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_tx_id", sa.String(length=32), nullable=False),
        sa.Column("provider_tx_id", sa.String(length=100)),
        sa.Column("fin_account_id", sa.Integer(), sa.ForeignKey("fin_accounts.id")),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "posted", name="transactionstatus"),
            nullable=False,
            server_default="posted",
        ),
        sa.Column(
            "currency",
            sa.Enum(*CURRENCIES, name="currencycode"),
            nullable=False,
            server_default="USD",
        ),
        sa.Column("merchant", sa.String(length=200)),
        sa.Column("provider_category", sa.String(length=100)),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("note", sa.String(length=200)),
        *_timestamps(),
        sa.UniqueConstraint("user_tx_id"),
    )
    op.create_index(
        "ix_transaction_account_date", "transactions", ["fin_account_id", "date"]
    )
    op.create_index("ix_transaction_provider_id", "transactions", ["provider_tx_id"])
    op.create_table(
        "recurring_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        sa.Column("fin_account_id", sa.Integer(), sa.ForeignKey("fin_accounts.id")),
        sa.Column("provider_stream_id", sa.String(length=100)),
        sa.Column("user_tx_id", sa.String(length=32), nullable=False),
        sa.Column("merchant", sa.String(length=200)),
        sa.Column("provider_category", sa.String(length=100)),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column(
            "frequency",
            sa.Enum(*FREQUENCIES, name="recurringfrequency"),
            nullable=False,
            server_default="unknown",
        ),
        sa.Column(
            "average_amount_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("instance_ids", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_tx_id"),
        sa.UniqueConstraint(
            "budget_id", "provider_stream_id", name="uq_recurring_budget_stream"
        ),
    )
    op.create_table(
        "budget_goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        sa.Column(
            "type",
            sa.Enum("savings", "debt", "investment", name="goaltype"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("target_date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(length=255)),
        sa.Column("fin_account_id", sa.Integer(), sa.ForeignKey("fin_accounts.id")),
        sa.Column(
            "debt_type",
            sa.Enum(
                "credit_card",
                "student_loan",
                "mortgage",
                "auto_loan",
                "personal_loan",
                "other",
                name="debttype",
            ),
        ),
        sa.Column(
            "debt_payment_component",
            sa.Enum(
                "principal",
                "interest",
                "principal_interest",
                name="debtpaymentcomponent",
            ),
        ),
        sa.Column("debt_interest_rate", sa.Numeric(6, 3)),
        sa.Column("spending_tracking", sa.JSON()),
        sa.Column("spending_recommendations", sa.JSON()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_goal_amount_positive"),
    )
    op.create_index("ix_goal_budget", "budget_goals", ["budget_id"])


def downgrade():
    op.drop_index("ix_goal_budget", table_name="budget_goals")
    op.drop_table("budget_goals")
    op.drop_table("recurring_transactions")
    op.drop_index("ix_transaction_provider_id", table_name="transactions")
    op.drop_index("ix_transaction_account_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("provider_category_mappings")
    op.drop_table("categories")
    op.drop_table("category_groups")
    op.drop_table("fin_accounts")
    op.drop_table("provider_items")
    op.drop_table("financial_profiles")
    op.drop_table("budgets")
