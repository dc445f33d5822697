"""add balance adjustment queue

Revision ID: 202601201400
Revises: 202601100900
Create Date: 2026-01-20 14:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601201400"
down_revision = "202601100900"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "balance_adjustments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer()),
        sa.Column("delta_cents", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=40), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text()),
        sa.Column("resolved_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_balance_adjustments_pending",
        "balance_adjustments",
        ["user_id", "resolved_at"],
    )


def downgrade():
    op.drop_index("ix_balance_adjustments_pending", table_name="balance_adjustments")
    op.drop_table("balance_adjustments")
