"""add hot-path indexes for claim and ledger tail reads

Revision ID: 0003_claim_indexes
Revises: 0002_append_only
Create Date: 2026-10-19
"""

from alembic import op


revision = "0003_claim_indexes"
down_revision = "0002_append_only"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_index(
        "ix_recon_jobs_status_created_at",
        "recon_jobs",
        ["status", "created_at"],
    )
    op.create_index(
        "ix_ledger_entries_account_id_created_at",
        "ledger_entries",
        ["account_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_ledger_entries_account_id_created_at", table_name="ledger_entries")
    op.drop_index("ix_recon_jobs_status_created_at", table_name="recon_jobs")
