import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from visibility_report.db.base import Base
from visibility_report.db.types import JsonType


class PromptResponse(Base):
    """The completion service's answer to one question, with mention analysis."""

    __tablename__ = "prompt_responses"
    # (batch, question) is the resume key: an answered question is never re-sent
    __table_args__ = (UniqueConstraint("batch_id", "question_text", name="uq_batch_question"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    batch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("prompt_batches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    answer_text: Mapped[str] = mapped_column(Text, nullable=False)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    brand_match: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    competitor_matches: Mapped[list] = mapped_column(JsonType, nullable=False, default=list)  # ["Globex"]

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Relationships
    batch: Mapped["PromptBatch"] = relationship("PromptBatch", back_populates="responses")  # noqa: F821
