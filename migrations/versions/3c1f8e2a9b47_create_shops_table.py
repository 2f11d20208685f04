"""create_shops_table

Revision ID: 3c1f8e2a9b47
Revises:
Create Date: 2025-05-12 10:15:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3c1f8e2a9b47"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "shops",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("shopify_domain", sa.String(), nullable=False),
        sa.Column("shop_name", sa.String(), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("scopes", sa.Text(), nullable=True),
        sa.Column(
            "installed_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True
        ),
        sa.Column("subscription_tier", sa.String(), nullable=False, server_default="free"),
        sa.Column("subscription_status", sa.String(), nullable=False, server_default="active"),
        sa.Column("billing_id", sa.String(), nullable=True),
    )
    op.create_index("ix_shops_shopify_domain", "shops", ["shopify_domain"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_shops_shopify_domain", table_name="shops")
    op.drop_table("shops")
