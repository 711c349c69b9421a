"""add recurrence descriptor and instance linkage"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0002_add_recurrence"
down_revision = "0001_create_tasks"
branch_labels = None
depends_on = None

RULE_COLUMNS = (
    ("recurrence_month_day", sa.Integer()),
    ("recurrence_weekday", sa.Integer()),
    ("recurrence_weekdays", sa.String(length=20)),
    ("recurrence_month", sa.Integer()),
    ("recurrence_week_of_month", sa.Integer()),
    ("recurrence_end_date", sa.Date()),
    ("recurrence_timezone", sa.String(length=64)),
)


def upgrade() -> None:
    op.add_column(
        "tasks",
        sa.Column("recurrence_type", sa.String(length=20), nullable=False, server_default="none"),
    )
    op.add_column(
        "tasks",
        sa.Column("recurrence_interval", sa.Integer(), nullable=False, server_default="1"),
    )
    for name, type_ in RULE_COLUMNS:
        op.add_column("tasks", sa.Column(name, type_, nullable=True))
    op.add_column(
        "tasks",
        sa.Column("recurrence_paused", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.add_column(
        "tasks",
        sa.Column(
            "recurring_parent_id",
            sa.Integer(),
            sa.ForeignKey("tasks.id", ondelete="SET NULL"),
            nullable=True,
        ),
    )
    op.create_index("ix_tasks_recurring_parent_id", "tasks", ["recurring_parent_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_tasks_recurring_parent_id", table_name="tasks")
    op.drop_column("tasks", "recurring_parent_id")
    op.drop_column("tasks", "recurrence_paused")
    for name, _ in reversed(RULE_COLUMNS):
        op.drop_column("tasks", name)
    op.drop_column("tasks", "recurrence_interval")
    op.drop_column("tasks", "recurrence_type")
