"""SQLAlchemy implementation of the report store.

Each method opens its own short session from the factory and commits before
returning, so no transaction spans a network call.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from visibility_report.models.batch_summary import BatchSummary
from visibility_report.models.final_report import FinalReport
from visibility_report.models.prompt_batch import PromptBatch
from visibility_report.models.prompt_response import PromptResponse
from visibility_report.models.questionnaire import Questionnaire
from visibility_report.pipeline.types import (
    BatchRecord,
    BatchStatus,
    BatchSummaryRecord,
    FinalReportRecord,
    QuestionnaireRecord,
    QuestionnaireStatus,
    ReportStatus,
    ResponseRecord,
)
from visibility_report.store.base import BatchesExistError, ReportStore

logger = logging.getLogger(__name__)


def _plain(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in fields.items()}


def _questionnaire_record(row: Questionnaire) -> QuestionnaireRecord:
    return QuestionnaireRecord(
        id=row.id,
        user_id=row.user_id,
        brand_name=row.brand_name,
        aliases=list(row.aliases or []),
        competitors=list(row.competitors or []),
        status=QuestionnaireStatus(row.status),
        progress_percent=row.progress_percent or 0,
        error_message=row.error_message,
        sector=row.sector,
        website=row.website,
        updated_at=row.updated_at,
    )


def _batch_record(row: PromptBatch) -> BatchRecord:
    return BatchRecord(
        id=row.id,
        questionnaire_id=row.questionnaire_id,
        batch_number=row.batch_number,
        questions=json.loads(row.questions) if row.questions else [],
        status=BatchStatus(row.status),
        error_message=row.error_message,
        claimed_at=row.claimed_at,
    )


def _response_record(row: PromptResponse) -> ResponseRecord:
    return ResponseRecord(
        id=row.id,
        batch_id=row.batch_id,
        question_text=row.question_text,
        answer_text=row.answer_text,
        tokens_used=row.tokens_used or 0,
        brand_match=bool(row.brand_match),
        competitor_matches=list(row.competitor_matches or []),
        created_at=row.created_at,
    )


def _report_record(row: FinalReport) -> FinalReportRecord:
    return FinalReportRecord(
        id=row.id,
        questionnaire_id=row.questionnaire_id,
        status=ReportStatus(row.status),
        summary_json=row.summary_json,
        total_tokens=row.total_tokens,
        cost_eur=row.cost_eur,
        cost_alert=row.cost_alert,
        pdf_url=row.pdf_url,
    )


class SqlReportStore(ReportStore):
    """Report store backed by PostgreSQL (or SQLite in tests)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # --- Questionnaires ---

    async def get_questionnaire(self, questionnaire_id: uuid.UUID) -> QuestionnaireRecord | None:
        async with self._session_factory() as db:
            row = await db.get(Questionnaire, questionnaire_id)
            return _questionnaire_record(row) if row else None

    async def update_questionnaire(self, questionnaire_id: uuid.UUID, **fields: Any) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(Questionnaire).where(Questionnaire.id == questionnaire_id).values(**_plain(fields))
            )
            await db.commit()

    async def raise_progress(self, questionnaire_id: uuid.UUID, percent: int) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                update(Questionnaire)
                .where(Questionnaire.id == questionnaire_id, Questionnaire.progress_percent < percent)
                .values(progress_percent=percent)
            )
            await db.commit()
            return result.rowcount > 0

    # --- Batches ---

    async def list_batches(self, questionnaire_id: uuid.UUID) -> list[BatchRecord]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(PromptBatch)
                .where(PromptBatch.questionnaire_id == questionnaire_id)
                .order_by(PromptBatch.batch_number)
            )
            return [_batch_record(row) for row in result.scalars().all()]

    async def get_batch(self, batch_id: uuid.UUID) -> BatchRecord | None:
        async with self._session_factory() as db:
            row = await db.get(PromptBatch, batch_id)
            return _batch_record(row) if row else None

    async def get_batch_by_number(self, questionnaire_id: uuid.UUID, batch_number: int) -> BatchRecord | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(PromptBatch).where(
                    PromptBatch.questionnaire_id == questionnaire_id,
                    PromptBatch.batch_number == batch_number,
                )
            )
            row = result.scalar_one_or_none()
            return _batch_record(row) if row else None

    async def create_batches(
        self,
        questionnaire_id: uuid.UUID,
        chunks: list[list[str]],
        status: BatchStatus = BatchStatus.PENDING,
        first_number: int = 1,
    ) -> list[BatchRecord]:
        if not chunks:
            return []
        rows = [
            {
                "id": uuid.uuid4(),
                "questionnaire_id": questionnaire_id,
                "batch_number": first_number + i,
                "questions": json.dumps(chunk, ensure_ascii=False),
                "status": status.value,
            }
            for i, chunk in enumerate(chunks)
        ]
        async with self._session_factory() as db:
            try:
                await db.execute(insert(PromptBatch), rows)
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise BatchesExistError(f"Batches already exist for questionnaire {questionnaire_id}") from e

        return [
            BatchRecord(
                id=r["id"],
                questionnaire_id=questionnaire_id,
                batch_number=r["batch_number"],
                questions=list(chunk),
                status=status,
            )
            for r, chunk in zip(rows, chunks)
        ]

    async def update_batch(self, batch_id: uuid.UUID, **fields: Any) -> None:
        async with self._session_factory() as db:
            await db.execute(update(PromptBatch).where(PromptBatch.id == batch_id).values(**_plain(fields)))
            await db.commit()

    async def claim_batch(self, batch_id: uuid.UUID, now: datetime, stale_before: datetime) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                update(PromptBatch)
                .where(
                    PromptBatch.id == batch_id,
                    or_(
                        PromptBatch.status.in_([BatchStatus.PENDING.value, BatchStatus.ERROR.value]),
                        (PromptBatch.status == BatchStatus.PROCESSING.value)
                        & (PromptBatch.claimed_at.is_(None) | (PromptBatch.claimed_at < stale_before)),
                    ),
                )
                .values(status=BatchStatus.PROCESSING.value, claimed_at=now, error_message=None)
            )
            await db.commit()
            return result.rowcount > 0

    def _held(self, batch_id: uuid.UUID, held_since: datetime):
        return update(PromptBatch).where(
            PromptBatch.id == batch_id,
            PromptBatch.status == BatchStatus.PROCESSING.value,
            PromptBatch.claimed_at == held_since,
        )

    async def touch_batch(self, batch_id: uuid.UUID, held_since: datetime, now: datetime) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(self._held(batch_id, held_since).values(claimed_at=now))
            await db.commit()
            return result.rowcount > 0

    async def finish_batch(
        self,
        batch_id: uuid.UUID,
        held_since: datetime,
        status: BatchStatus,
        error_message: str | None = None,
    ) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                self._held(batch_id, held_since).values(
                    status=status.value, error_message=error_message, claimed_at=None
                )
            )
            await db.commit()
            return result.rowcount > 0

    # --- Question responses ---

    async def answered_questions(self, batch_id: uuid.UUID) -> set[str]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(PromptResponse.question_text).where(PromptResponse.batch_id == batch_id)
            )
            return set(result.scalars().all())

    async def insert_response(self, response: ResponseRecord) -> bool:
        async with self._session_factory() as db:
            exists = await db.execute(
                select(func.count())
                .select_from(PromptResponse)
                .where(
                    PromptResponse.batch_id == response.batch_id,
                    PromptResponse.question_text == response.question_text,
                )
            )
            if exists.scalar_one() > 0:
                return False

            db.add(
                PromptResponse(
                    batch_id=response.batch_id,
                    question_text=response.question_text,
                    answer_text=response.answer_text,
                    tokens_used=response.tokens_used,
                    brand_match=response.brand_match,
                    competitor_matches=list(response.competitor_matches),
                )
            )
            try:
                await db.commit()
            except IntegrityError:
                # Lost a race with another writer on (batch_id, question_text)
                await db.rollback()
                return False
            return True

    async def list_responses(self, batch_id: uuid.UUID) -> list[ResponseRecord]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(PromptResponse)
                .where(PromptResponse.batch_id == batch_id)
                .order_by(PromptResponse.created_at)
            )
            return [_response_record(row) for row in result.scalars().all()]

    async def list_questionnaire_responses(self, questionnaire_id: uuid.UUID) -> list[ResponseRecord]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(PromptResponse)
                .join(PromptBatch, PromptBatch.id == PromptResponse.batch_id)
                .where(PromptBatch.questionnaire_id == questionnaire_id)
                .order_by(PromptBatch.batch_number, PromptResponse.created_at)
            )
            return [_response_record(row) for row in result.scalars().all()]

    # --- Summaries and report ---

    async def get_batch_summary(self, batch_id: uuid.UUID) -> BatchSummaryRecord | None:
        async with self._session_factory() as db:
            result = await db.execute(select(BatchSummary).where(BatchSummary.batch_id == batch_id))
            row = result.scalar_one_or_none()
            if not row:
                return None
            return BatchSummaryRecord(id=row.id, batch_id=row.batch_id, summary_json=row.summary_json)

    async def insert_batch_summary(self, batch_id: uuid.UUID, summary: dict[str, Any]) -> bool:
        async with self._session_factory() as db:
            exists = await db.execute(select(BatchSummary.id).where(BatchSummary.batch_id == batch_id))
            if exists.scalar_one_or_none() is not None:
                return False
            db.add(BatchSummary(batch_id=batch_id, summary_json=summary))
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                return False
            return True

    async def get_final_report(self, questionnaire_id: uuid.UUID) -> FinalReportRecord | None:
        async with self._session_factory() as db:
            result = await db.execute(select(FinalReport).where(FinalReport.questionnaire_id == questionnaire_id))
            row = result.scalar_one_or_none()
            return _report_record(row) if row else None

    async def upsert_final_report(self, questionnaire_id: uuid.UUID, **fields: Any) -> FinalReportRecord:
        values = _plain(fields)
        async with self._session_factory() as db:
            result = await db.execute(select(FinalReport).where(FinalReport.questionnaire_id == questionnaire_id))
            row = result.scalar_one_or_none()
            if row is None:
                row = FinalReport(questionnaire_id=questionnaire_id, **values)
                db.add(row)
                try:
                    await db.commit()
                except IntegrityError:
                    # A concurrent finalizer created the row first; update it instead
                    await db.rollback()
                    logger.info("Final report row for %s created concurrently, updating", questionnaire_id)
                    result = await db.execute(
                        select(FinalReport).where(FinalReport.questionnaire_id == questionnaire_id)
                    )
                    row = result.scalar_one()
                    for key, value in values.items():
                        setattr(row, key, value)
                    await db.commit()
            else:
                for key, value in values.items():
                    setattr(row, key, value)
                await db.commit()
            await db.refresh(row)
            return _report_record(row)
