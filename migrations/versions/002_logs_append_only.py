"""Make the logs table append-only.

Revision ID: 002_logs_append_only
Revises: 001_initial_schema
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op

revision: str = "002_logs_append_only"
down_revision: Union[str, None] = "001_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Append-only: forbid UPDATE and DELETE
    op.execute("""
        CREATE OR REPLACE FUNCTION logs_deny_update_delete()
        RETURNS TRIGGER AS $$
        BEGIN
          RAISE EXCEPTION 'logs is append-only: UPDATE and DELETE are not allowed';
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER logs_append_only
        BEFORE UPDATE OR DELETE ON logs
        FOR EACH ROW EXECUTE PROCEDURE logs_deny_update_delete()
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS logs_append_only ON logs")
    op.execute("DROP FUNCTION IF EXISTS logs_deny_update_delete()")
