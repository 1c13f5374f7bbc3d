"""create coupon_uses table

Revision ID: 7c2f4e6a9d31
Revises: 5b8e0d4c2a17
Create Date: 2026-10-12 00:00:02.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "7c2f4e6a9d31"
down_revision = "5b8e0d4c2a17"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "coupon_uses",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("coupon_id", sa.String(length=36), nullable=False),
        sa.Column("customer_id", sa.String(length=36), nullable=False),
        sa.Column("order_id", sa.String(length=255), nullable=True),
        sa.Column("order_amount", sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column(
            "discount_applied",
            sa.Numeric(precision=10, scale=2),
            nullable=False,
            server_default="0",
        ),
        sa.Column(
            "used_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
        ),
        sa.ForeignKeyConstraint(["coupon_id"], ["coupons.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_coupon_uses_coupon_id", "coupon_uses", ["coupon_id"])
    op.create_index("ix_coupon_uses_customer_id", "coupon_uses", ["customer_id"])


def downgrade() -> None:
    op.drop_index("ix_coupon_uses_customer_id", table_name="coupon_uses")
    op.drop_index("ix_coupon_uses_coupon_id", table_name="coupon_uses")
    op.drop_table("coupon_uses")
