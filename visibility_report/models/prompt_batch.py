import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from visibility_report.db.base import Base


class PromptBatch(Base):
    """A fixed-size slice of a questionnaire's question list."""

    __tablename__ = "prompt_batches"
    __table_args__ = (UniqueConstraint("questionnaire_id", "batch_number", name="uq_batch_number"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    questionnaire_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("brand_questionnaires.id", ondelete="CASCADE"), nullable=False, index=True
    )
    batch_number: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-based
    questions: Mapped[str] = mapped_column(Text, nullable=False)  # JSON-encoded list[str]
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")  # pending | processing | complete | error
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)  # processing lease

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    questionnaire: Mapped["Questionnaire"] = relationship("Questionnaire", back_populates="batches")  # noqa: F821
    responses: Mapped[list["PromptResponse"]] = relationship(  # noqa: F821
        "PromptResponse", back_populates="batch", cascade="all, delete-orphan"
    )
    summary: Mapped["BatchSummary | None"] = relationship(  # noqa: F821
        "BatchSummary", back_populates="batch", uselist=False, cascade="all, delete-orphan"
    )
