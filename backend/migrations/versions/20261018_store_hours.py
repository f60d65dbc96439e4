"""Add weekly store hours per franchise

Revision ID: 20261018_store_hours
Revises: 20261001_initial
Create Date: 2026-10-18

Existing franchises are seeded with 09:00-21:00 every day.
"""

import uuid

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_store_hours"
down_revision = "20261001_initial"
branch_labels = None
depends_on = None


def upgrade():
    store_hours = op.create_table(
        "store_hours",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("franchise_id", sa.Uuid(), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("open_time", sa.String(5), nullable=False, server_default="09:00"),
        sa.Column("close_time", sa.String(5), nullable=False, server_default="21:00"),
        sa.Column("is_closed", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_store_hours_day_of_week"),
        sa.ForeignKeyConstraint(["franchise_id"], ["franchises.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("franchise_id", "day_of_week", name="uq_store_hours_franchise_day"),
    )

    with op.batch_alter_table("store_hours", schema=None) as batch_op:
        batch_op.create_index("ix_store_hours_franchise_id", ["franchise_id"], unique=False)

    conn = op.get_bind()
    franchise_ids = [row[0] for row in conn.execute(sa.text("SELECT id FROM franchises")).fetchall()]
    if franchise_ids:
        op.bulk_insert(store_hours, [
            {
                "id": uuid.uuid4(),
                "franchise_id": fid if isinstance(fid, uuid.UUID) else uuid.UUID(str(fid)),
                "day_of_week": day,
                "open_time": "09:00",
                "close_time": "21:00",
                "is_closed": False,
            }
            for fid in franchise_ids
            for day in range(7)
        ])


def downgrade():
    with op.batch_alter_table("store_hours", schema=None) as batch_op:
        batch_op.drop_index("ix_store_hours_franchise_id")
    op.drop_table("store_hours")
