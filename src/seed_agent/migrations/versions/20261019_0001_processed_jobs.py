"""Create processed job dedup table."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "processed_jobs",
        sa.Column("seq", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_processed_jobs_job_id", "processed_jobs", ["job_id"], unique=True)
    op.create_index("ix_processed_jobs_outcome", "processed_jobs", ["outcome"])


def downgrade() -> None:
    op.drop_index("ix_processed_jobs_outcome", table_name="processed_jobs")
    op.drop_index("ix_processed_jobs_job_id", table_name="processed_jobs")
    op.drop_table("processed_jobs")
