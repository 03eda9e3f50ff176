import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from visibility_report.db.base import Base
from visibility_report.db.types import JsonType


class BatchSummary(Base):
    """LLM-written summary of one completed batch (at most one per batch)."""

    __tablename__ = "batch_summaries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    batch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("prompt_batches.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    summary_json: Mapped[dict] = mapped_column(JsonType, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Relationships
    batch: Mapped["PromptBatch"] = relationship("PromptBatch", back_populates="summary")  # noqa: F821
