"""initial schema

Revision ID: 202610181200
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610181200"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("color", sa.String(length=7)),
        sa.Column("icon", sa.String(length=50)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column(
            "recurrence",
            sa.Enum(
                "none", "daily", "weekly", "monthly", "yearly", name="recurrencetype"
            ),
            nullable=False,
            server_default="none",
        ),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
        ),
        sa.Column("end_date", sa.Date()),
        sa.Column("last_generated_date", sa.Date()),
        sa.Column(
            "parent_template_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id", ondelete="SET NULL"),
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "parent_template_id",
            "effective_date",
            name="uq_txn_template_occurrence",
        ),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_effective_date", "transactions", ["effective_date"]
    )
    op.create_index(
        "ix_transactions_type_date", "transactions", ["type", "effective_date"]
    )
    op.create_index("ix_transactions_recurrence", "transactions", ["recurrence"])


def downgrade():
    op.drop_index("ix_transactions_recurrence", table_name="transactions")
    op.drop_index("ix_transactions_type_date", table_name="transactions")
    op.drop_index("ix_transactions_effective_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
