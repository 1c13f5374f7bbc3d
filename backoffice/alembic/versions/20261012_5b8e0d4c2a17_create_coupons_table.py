"""create coupons table

Revision ID: 5b8e0d4c2a17
Revises: 3f1a9c2d7b40
Create Date: 2026-10-12 00:00:01.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "5b8e0d4c2a17"
down_revision = "3f1a9c2d7b40"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "coupons",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("customer_id", sa.String(length=36), nullable=False),
        sa.Column("code", sa.String(length=100), nullable=False),
        sa.Column("discount_type", sa.String(length=20), nullable=False),
        sa.Column("discount_value", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("usage_limit", sa.Integer(), nullable=True),
        sa.Column("current_uses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("minimum_purchase", sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column("applies_to", sa.String(length=255), nullable=True, server_default="all"),
        sa.Column("external_rule_id", sa.String(length=64), nullable=True),
        sa.Column("external_code_id", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("notification_sent", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("notification_sent_at", sa.DateTime(timezone=True), nullable=True),
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
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_coupons_code", "coupons", ["code"], unique=True)
    op.create_index("ix_coupons_customer_id", "coupons", ["customer_id"])
    op.create_index("ix_coupons_external_rule_id", "coupons", ["external_rule_id"])
    op.create_index("ix_coupons_status", "coupons", ["status"])


def downgrade() -> None:
    op.drop_index("ix_coupons_status", table_name="coupons")
    op.drop_index("ix_coupons_external_rule_id", table_name="coupons")
    op.drop_index("ix_coupons_customer_id", table_name="coupons")
    op.drop_index("ix_coupons_code", table_name="coupons")
    op.drop_table("coupons")
