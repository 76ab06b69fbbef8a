"""enforce append-only ledger entries and reconciliation results

Revision ID: 0002_append_only
Revises: 0001_reconciler
Create Date: 2026-10-19
"""

from alembic import op


revision = "0002_append_only"
down_revision = "0001_reconciler"
branch_labels = None
depends_on = None

APPEND_ONLY_TABLES = ("ledger_entries", "reconciliation_results")


def upgrade() -> None:
    op.execute(
        """
        CREATE OR REPLACE FUNCTION prevent_append_only_mutation()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            RAISE EXCEPTION '% is append-only; % is not allowed', TG_TABLE_NAME, TG_OP;
        END;
        $$;
        """
    )
    for table in APPEND_ONLY_TABLES:
        op.execute(
            f"""
            CREATE TRIGGER trg_{table}_immutable
            BEFORE UPDATE OR DELETE ON {table}
            FOR EACH ROW
            EXECUTE FUNCTION prevent_append_only_mutation();
            """
        )


def downgrade() -> None:
    for table in APPEND_ONLY_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS trg_{table}_immutable ON {table};")
    op.execute("DROP FUNCTION IF EXISTS prevent_append_only_mutation();")
