"""create orphaned_rule_logs table

Revision ID: 9e4a1b3c5f82
Revises: 7c2f4e6a9d31
Create Date: 2026-10-12 00:00:03.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "9e4a1b3c5f82"
down_revision = "7c2f4e6a9d31"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "orphaned_rule_logs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("external_rule_id", sa.String(length=64), nullable=False),
        sa.Column("coupon_code", sa.String(length=100), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=False),
        sa.Column("error_details", sa.JSON(), nullable=True),
        sa.Column("platform_response", sa.JSON(), nullable=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("resolved", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_orphaned_rule_logs_external_rule_id", "orphaned_rule_logs", ["external_rule_id"]
    )
    op.create_index("ix_orphaned_rule_logs_coupon_code", "orphaned_rule_logs", ["coupon_code"])
    op.create_index("ix_orphaned_rule_logs_resolved", "orphaned_rule_logs", ["resolved"])


def downgrade() -> None:
    op.drop_index("ix_orphaned_rule_logs_resolved", table_name="orphaned_rule_logs")
    op.drop_index("ix_orphaned_rule_logs_coupon_code", table_name="orphaned_rule_logs")
    op.drop_index("ix_orphaned_rule_logs_external_rule_id", table_name="orphaned_rule_logs")
    op.drop_table("orphaned_rule_logs")
