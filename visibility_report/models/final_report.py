import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from visibility_report.db.base import Base
from visibility_report.db.types import JsonType


class FinalReport(Base):
    """The rendered visibility report of a questionnaire (one per questionnaire)."""

    __tablename__ = "final_reports"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    questionnaire_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("brand_questionnaires.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="processing")  # processing | ready | error
    summary_json: Mapped[dict | None] = mapped_column(JsonType, nullable=True)  # meta-summary
    total_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cost_eur: Mapped[float | None] = mapped_column(Float, nullable=True)
    cost_alert: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    pdf_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)  # rendered artifact URL

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    questionnaire: Mapped["Questionnaire"] = relationship(  # noqa: F821
        "Questionnaire", back_populates="final_report"
    )
