import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from visibility_report.db.base import Base
from visibility_report.db.types import JsonType


class Questionnaire(Base):
    """A brand visibility report request submitted by a user."""

    __tablename__ = "brand_questionnaires"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    brand_name: Mapped[str] = mapped_column(String(255), nullable=False)
    aliases: Mapped[list | None] = mapped_column(JsonType, nullable=True)  # ["ACME Corp", "Acme Inc."]
    competitors: Mapped[list] = mapped_column(JsonType, nullable=False, default=list)  # ["Globex", "Initech"]
    sector: Mapped[str | None] = mapped_column(String(255), nullable=True)
    website: Mapped[str | None] = mapped_column(String(500), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", index=True
    )  # pending | processing | complete | error
    progress_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    batches: Mapped[list["PromptBatch"]] = relationship(  # noqa: F821
        "PromptBatch", back_populates="questionnaire", cascade="all, delete-orphan", order_by="PromptBatch.batch_number"
    )
    final_report: Mapped["FinalReport | None"] = relationship(  # noqa: F821
        "FinalReport", back_populates="questionnaire", uselist=False, cascade="all, delete-orphan"
    )
