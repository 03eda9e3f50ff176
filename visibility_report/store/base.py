"""Report store interface.

Every method is one read or one write scoped to a single id; the pipeline never
relies on multi-statement transactions. Rows are the source of truth: callers
re-read them instead of trusting lists they were handed.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from visibility_report.pipeline.types import (
    BatchRecord,
    BatchStatus,
    BatchSummaryRecord,
    FinalReportRecord,
    QuestionnaireRecord,
    ResponseRecord,
)


class ReportStore(ABC):
    """Narrow persistence boundary used by every pipeline component."""

    # --- Questionnaires ---

    @abstractmethod
    async def get_questionnaire(self, questionnaire_id: uuid.UUID) -> QuestionnaireRecord | None: ...

    @abstractmethod
    async def update_questionnaire(self, questionnaire_id: uuid.UUID, **fields: Any) -> None:
        """Set columns on one questionnaire (status, progress_percent, error_message)."""

    @abstractmethod
    async def raise_progress(self, questionnaire_id: uuid.UUID, percent: int) -> bool:
        """Store *percent* only if it is higher than the current value. Returns True if written."""

    # --- Batches ---

    @abstractmethod
    async def list_batches(self, questionnaire_id: uuid.UUID) -> list[BatchRecord]:
        """All batches of a questionnaire ordered by batch_number."""

    @abstractmethod
    async def get_batch(self, batch_id: uuid.UUID) -> BatchRecord | None: ...

    @abstractmethod
    async def get_batch_by_number(self, questionnaire_id: uuid.UUID, batch_number: int) -> BatchRecord | None: ...

    @abstractmethod
    async def create_batches(
        self,
        questionnaire_id: uuid.UUID,
        chunks: list[list[str]],
        status: BatchStatus = BatchStatus.PENDING,
        first_number: int = 1,
    ) -> list[BatchRecord]:
        """Insert one batch per chunk in a single statement, numbered from *first_number*.

        Raises ``BatchesExistError`` if any of the batch numbers is already taken.
        """

    @abstractmethod
    async def update_batch(self, batch_id: uuid.UUID, **fields: Any) -> None: ...

    @abstractmethod
    async def claim_batch(self, batch_id: uuid.UUID, now: datetime, stale_before: datetime) -> bool:
        """Move a batch to ``processing`` and stamp ``claimed_at`` if nobody holds it.

        Succeeds when the batch is pending/error, or processing with a lease
        older than *stale_before*. Never claims a complete batch.
        """

    @abstractmethod
    async def touch_batch(self, batch_id: uuid.UUID, held_since: datetime, now: datetime) -> bool:
        """Move the lease stamped *held_since* to *now*.

        Returns False if the batch was re-claimed by someone else in between.
        """

    @abstractmethod
    async def finish_batch(
        self,
        batch_id: uuid.UUID,
        held_since: datetime,
        status: BatchStatus,
        error_message: str | None = None,
    ) -> bool:
        """Write the final status of a batch and release its lease.

        Only applies while the caller still holds the lease stamped *held_since*.
        """

    # --- Question responses ---

    @abstractmethod
    async def answered_questions(self, batch_id: uuid.UUID) -> set[str]: ...

    @abstractmethod
    async def insert_response(self, response: ResponseRecord) -> bool:
        """Insert a response. Returns False if (batch_id, question_text) already exists."""

    @abstractmethod
    async def list_responses(self, batch_id: uuid.UUID) -> list[ResponseRecord]: ...

    @abstractmethod
    async def list_questionnaire_responses(self, questionnaire_id: uuid.UUID) -> list[ResponseRecord]:
        """Every response of a questionnaire, in batch order then insertion order."""

    # --- Summaries and report ---

    @abstractmethod
    async def get_batch_summary(self, batch_id: uuid.UUID) -> BatchSummaryRecord | None: ...

    @abstractmethod
    async def insert_batch_summary(self, batch_id: uuid.UUID, summary: dict[str, Any]) -> bool:
        """Insert a summary. Returns False if the batch already has one."""

    @abstractmethod
    async def get_final_report(self, questionnaire_id: uuid.UUID) -> FinalReportRecord | None: ...

    @abstractmethod
    async def upsert_final_report(self, questionnaire_id: uuid.UUID, **fields: Any) -> FinalReportRecord:
        """Create or update the single final report row of a questionnaire."""


class BatchesExistError(Exception):
    """Raised by ``create_batches`` when a concurrent caller already created them."""
