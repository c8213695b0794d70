"""Create users, machines, alerts and logs tables.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(16), nullable=False, server_default="Viewer"),
        sa.Column("approved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("(NOW() AT TIME ZONE 'utc')")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("(NOW() AT TIME ZONE 'utc')")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "machines",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", sa.String(100), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="Idle"),
        sa.Column("mode", sa.String(16), nullable=False, server_default="Auto"),
        sa.Column("current_job", sa.String(255), nullable=True),
        sa.Column("temperature", sa.Float(), nullable=False, server_default="25"),
        sa.Column("efficiency", sa.Float(), nullable=False, server_default="90"),
        sa.Column("cycle_time", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_temperature", sa.Float(), nullable=False, server_default="80"),
        sa.Column("min_efficiency", sa.Float(), nullable=False, server_default="60"),
        sa.Column("under_maintenance", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("maintenance_reason", sa.Text(), nullable=True),
        sa.Column("maintenance_start", sa.DateTime(), nullable=True),
        sa.Column("maintenance_end", sa.DateTime(), nullable=True),
        sa.Column("last_maintenance_date", sa.DateTime(), nullable=True),
        sa.Column("assigned_engineer_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("(NOW() AT TIME ZONE 'utc')")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("(NOW() AT TIME ZONE 'utc')")),
        sa.ForeignKeyConstraint(["assigned_engineer_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_machines_name", "machines", ["name"], unique=False)
    op.create_index("ix_machines_assigned_engineer_id", "machines", ["assigned_engineer_id"], unique=False)

    op.create_table(
        "alerts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("machine_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("severity", sa.String(16), nullable=False, server_default="Low"),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("acknowledged", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("acknowledged_by", sa.Integer(), nullable=True),
        sa.Column("acknowledged_note", sa.Text(), nullable=True),
        sa.Column("resolved_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("(NOW() AT TIME ZONE 'utc')")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("(NOW() AT TIME ZONE 'utc')")),
        sa.ForeignKeyConstraint(["machine_id"], ["machines.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["acknowledged_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["resolved_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_alerts_machine_id", "alerts", ["machine_id"], unique=False)
    op.create_index("ix_alerts_resolved", "alerts", ["resolved"], unique=False)
    op.create_index("ix_alerts_created_at", "alerts", ["created_at"], unique=False)

    # No foreign keys: entries outlive the users and machines they mention
    op.create_table(
        "logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("machine_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False, server_default=sa.text("(NOW() AT TIME ZONE 'utc')")),
        sa.Column("details", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_logs_user_id", "logs", ["user_id"], unique=False)
    op.create_index("ix_logs_machine_id", "logs", ["machine_id"], unique=False)
    op.create_index("ix_logs_timestamp", "logs", ["timestamp"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_logs_timestamp", table_name="logs")
    op.drop_index("ix_logs_machine_id", table_name="logs")
    op.drop_index("ix_logs_user_id", table_name="logs")
    op.drop_table("logs")
    op.drop_index("ix_alerts_created_at", table_name="alerts")
    op.drop_index("ix_alerts_resolved", table_name="alerts")
    op.drop_index("ix_alerts_machine_id", table_name="alerts")
    op.drop_table("alerts")
    op.drop_index("ix_machines_assigned_engineer_id", table_name="machines")
    op.drop_index("ix_machines_name", table_name="machines")
    op.drop_table("machines")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
