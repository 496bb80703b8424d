"""Add stock count tables.

Revision ID: 20261019_add_stock_count_tables
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_add_stock_count_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "unit",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "employee",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True, unique=True),
        sa.Column("whatsapp", sa.String(length=20), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "product_category",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("description", sa.String(length=255), nullable=True),
    )

    op.create_table(
        "product",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=50), nullable=False, unique=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("stock_category", sa.String(length=100), nullable=True),
        sa.Column("unit_of_measure", sa.String(length=20), nullable=True),
    )

    op.create_table(
        "product_unit",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("unit_id", sa.Integer(), nullable=False),
        sa.Column("stock_quantity", sa.Numeric(10, 3), nullable=True),
        sa.ForeignKeyConstraint(["product_id"], ["product.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["unit_id"], ["unit.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("product_id", "unit_id", name="uq_product_unit"),
    )

    op.create_table(
        "stock_count",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("responsible_id", sa.Integer(), nullable=False),
        sa.Column("unit_id", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("public_token", sa.String(length=64), nullable=True, unique=True),
        sa.Column("category_order", sa.JSON(), nullable=True),
        sa.Column("product_order", sa.JSON(), nullable=True),
        sa.Column("uncounted_items", sa.Integer(), nullable=True),
        sa.Column("closed_at", sa.DateTime(), nullable=True),
        sa.Column("counting_started_at", sa.DateTime(), nullable=True),
        sa.Column("finalized_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["responsible_id"], ["employee.id"]),
        sa.ForeignKeyConstraint(["unit_id"], ["unit.id"]),
    )
    op.create_index("ix_stock_count_status", "stock_count", ["status"])

    op.create_table(
        "stock_count_item",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("stock_count_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("counted_quantity", sa.Numeric(10, 3), nullable=True),
        sa.Column("system_quantity", sa.Numeric(10, 3), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("counted_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["stock_count_id"], ["stock_count.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["product_id"], ["product.id"]),
        sa.UniqueConstraint(
            "stock_count_id", "product_id", name="uq_stock_count_item_product"
        ),
    )
    op.create_index(
        "ix_stock_count_item_stock_count_id", "stock_count_item", ["stock_count_id"]
    )

    op.create_table(
        "stock_count_event",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("stock_count_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(length=32), nullable=False),
        sa.Column("actor", sa.String(length=255), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["stock_count_id"], ["stock_count.id"], ondelete="CASCADE"
        ),
    )
    op.create_index(
        "ix_stock_count_event_stock_count_id", "stock_count_event", ["stock_count_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_stock_count_event_stock_count_id", table_name="stock_count_event")
    op.drop_table("stock_count_event")
    op.drop_index("ix_stock_count_item_stock_count_id", table_name="stock_count_item")
    op.drop_table("stock_count_item")
    op.drop_index("ix_stock_count_status", table_name="stock_count")
    op.drop_table("stock_count")
    op.drop_table("product_unit")
    op.drop_table("product")
    op.drop_table("product_category")
    op.drop_table("employee")
    op.drop_table("unit")
    op.drop_table("user")
