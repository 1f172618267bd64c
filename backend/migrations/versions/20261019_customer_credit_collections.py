"""Customer contact details and credit collections

Revision ID: 20261019_credit
Revises: 20260301_initial
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_credit"
down_revision = "20260301_initial"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("customers") as batch_op:
        batch_op.add_column(sa.Column("email", sa.String(255), nullable=True))
        batch_op.add_column(sa.Column("address", sa.String(500), nullable=True))
        batch_op.add_column(
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())
        )
    op.create_index("ix_customers_active_name", "customers", ["is_active", "name"])

    op.create_table(
        "credit_collections",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("amount_collected", sa.Float(), nullable=False),
        sa.Column("notes", sa.String(1000), nullable=True),
        sa.Column("collected_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("amount_collected > 0", name="ck_credit_collections_amount_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_credit_collections_customer_id", "credit_collections", ["customer_id"])
    op.create_index("ix_credit_collections_collected_at", "credit_collections", ["collected_at"])
    op.create_index(
        "ix_credit_collections_customer_collected",
        "credit_collections",
        ["customer_id", "collected_at"],
    )


def downgrade():
    op.drop_table("credit_collections")
    op.drop_index("ix_customers_active_name", table_name="customers")
    with op.batch_alter_table("customers") as batch_op:
        batch_op.drop_column("updated_at")
        batch_op.drop_column("address")
        batch_op.drop_column("email")
