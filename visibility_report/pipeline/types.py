"""Core types and records for the report pipeline.

Stores return these plain records instead of ORM rows so the pipeline can run
against any ``ReportStore`` implementation.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class QuestionnaireStatus(str, Enum):
    """Lifecycle of a report request, as polled by the UI."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class BatchStatus(str, Enum):
    """Lifecycle of one fixed-size batch of questions."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class ReportStatus(str, Enum):
    """Lifecycle of the final report row."""

    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class BrandInfo:
    """Brand name plus the aliases that also count as a brand mention."""

    brand: str
    aliases: list[str] = field(default_factory=list)

    @property
    def terms(self) -> list[str]:
        return [t for t in [self.brand, *self.aliases] if t]


@dataclass
class QuestionnaireRecord:
    id: uuid.UUID
    user_id: str
    brand_name: str
    aliases: list[str] = field(default_factory=list)
    competitors: list[str] = field(default_factory=list)
    status: QuestionnaireStatus = QuestionnaireStatus.PENDING
    progress_percent: int = 0
    error_message: str | None = None
    sector: str | None = None
    website: str | None = None
    updated_at: datetime | None = None

    @property
    def brand_info(self) -> BrandInfo:
        return BrandInfo(brand=self.brand_name, aliases=list(self.aliases or []))


@dataclass
class BatchRecord:
    id: uuid.UUID
    questionnaire_id: uuid.UUID
    batch_number: int
    questions: list[str]
    status: BatchStatus = BatchStatus.PENDING
    error_message: str | None = None
    claimed_at: datetime | None = None


@dataclass
class ResponseRecord:
    batch_id: uuid.UUID
    question_text: str
    answer_text: str
    tokens_used: int = 0
    brand_match: bool = False
    competitor_matches: list[str] = field(default_factory=list)
    id: uuid.UUID | None = None
    created_at: datetime | None = None


@dataclass
class BatchSummaryRecord:
    batch_id: uuid.UUID
    summary_json: dict[str, Any]
    id: uuid.UUID | None = None


@dataclass
class FinalReportRecord:
    questionnaire_id: uuid.UUID
    status: ReportStatus = ReportStatus.PROCESSING
    summary_json: dict[str, Any] | None = None
    total_tokens: int | None = None
    cost_eur: float | None = None
    cost_alert: bool | None = None
    pdf_url: str | None = None
    id: uuid.UUID | None = None


@dataclass
class ProcessOptions:
    """Which unit of work a trigger asks for.

    With no flags set the whole questionnaire is processed batch after batch.
    """

    batch_id: uuid.UUID | None = None
    process_single_batch: bool = False
    process_all_batches: bool = False
    generate_final_report_only: bool = False

    @property
    def single_batch(self) -> bool:
        return self.process_single_batch or self.batch_id is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": str(self.batch_id) if self.batch_id else None,
            "process_single_batch": self.process_single_batch,
            "process_all_batches": self.process_all_batches,
            "generate_final_report_only": self.generate_final_report_only,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ProcessOptions:
        data = data or {}
        batch_id = data.get("batch_id")
        return cls(
            batch_id=uuid.UUID(str(batch_id)) if batch_id else None,
            process_single_batch=bool(data.get("process_single_batch")),
            process_all_batches=bool(data.get("process_all_batches")),
            generate_final_report_only=bool(data.get("generate_final_report_only")),
        )
