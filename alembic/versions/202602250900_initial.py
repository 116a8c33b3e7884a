"""accounts and ledger transactions

Revision ID: 202602250900
Revises:
Create Date: 2026-02-25 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202602250900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=60), nullable=False),
        sa.Column(
            "type", sa.Enum("asset", "liability", name="accounttype"), nullable=False
        ),
        sa.Column("currency", sa.Enum("CAD", "CNY", name="currencycode"), nullable=False),
        sa.Column(
            "display_currency",
            sa.Enum("CAD", "CNY", name="currencycode"),
            nullable=False,
        ),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "opening_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("due_date", sa.Integer()),
        sa.Column("billing_date", sa.Integer()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "name", name="uq_account_user_name"),
        sa.CheckConstraint(
            "due_date IS NULL OR (due_date >= 1 AND due_date <= 31)",
            name="ck_account_due_date_range",
        ),
        sa.CheckConstraint(
            "billing_date IS NULL OR (billing_date >= 1 AND billing_date <= 31)",
            name="ck_account_billing_date_range",
        ),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "type",
            sa.Enum("expense", "income", "transfer", name="transactiontype"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("target_account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        sa.Column("note", sa.Text()),
        sa.Column("degraded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "amount_cents >= 0", name="ck_transactions_amount_positive"
        ),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_type_date", "transactions", ["user_id", "type", "date"]
    )
    op.create_index("ix_transactions_account", "transactions", ["account_id"])


def downgrade():
    op.drop_index("ix_transactions_account", table_name="transactions")
    op.drop_index("ix_transactions_user_type_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("accounts")
