"""create report pipeline tables

Revision ID: 3f9a1c2e7b40
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "3f9a1c2e7b40"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # =========================================================
    # 1. Questionnaires (one per report request)
    # =========================================================
    op.create_table(
        "brand_questionnaires",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False, index=True),
        sa.Column("brand_name", sa.String(255), nullable=False),
        sa.Column("aliases", JSONB(), nullable=True),
        sa.Column("competitors", JSONB(), nullable=False, server_default="[]"),
        sa.Column("sector", sa.String(255), nullable=True),
        sa.Column("website", sa.String(500), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("progress_percent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("progress_percent BETWEEN 0 AND 100", name="ck_progress_range"),
    )

    # =========================================================
    # 2. Batches
    # =========================================================
    op.create_table(
        "prompt_batches",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "questionnaire_id",
            UUID(as_uuid=True),
            sa.ForeignKey("brand_questionnaires.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("batch_number", sa.Integer(), nullable=False),
        sa.Column("questions", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("questionnaire_id", "batch_number", name="uq_batch_number"),
    )

    # =========================================================
    # 3. Question responses (resume key: batch_id + question_text)
    # =========================================================
    op.create_table(
        "prompt_responses",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "batch_id",
            UUID(as_uuid=True),
            sa.ForeignKey("prompt_batches.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("question_text", sa.Text(), nullable=False),
        sa.Column("answer_text", sa.Text(), nullable=False),
        sa.Column("tokens_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("brand_match", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("competitor_matches", JSONB(), nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("batch_id", "question_text", name="uq_batch_question"),
    )

    # =========================================================
    # 4. Batch summaries (at most one per batch)
    # =========================================================
    op.create_table(
        "batch_summaries",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "batch_id",
            UUID(as_uuid=True),
            sa.ForeignKey("prompt_batches.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("summary_json", JSONB(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    # =========================================================
    # 5. Final reports (one per questionnaire)
    # =========================================================
    op.create_table(
        "final_reports",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "questionnaire_id",
            UUID(as_uuid=True),
            sa.ForeignKey("brand_questionnaires.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="processing"),
        sa.Column("summary_json", JSONB(), nullable=True),
        sa.Column("total_tokens", sa.Integer(), nullable=True),
        sa.Column("cost_eur", sa.Float(), nullable=True),
        sa.Column("cost_alert", sa.Boolean(), nullable=True),
        sa.Column("pdf_url", sa.String(2000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("final_reports")
    op.drop_table("batch_summaries")
    op.drop_table("prompt_responses")
    op.drop_table("prompt_batches")
    op.drop_table("brand_questionnaires")
