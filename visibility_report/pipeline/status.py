"""Questionnaire and batch state transitions.

Questionnaire: pending -> processing -> {pending | complete | error}.
Retry moves error (or a stuck pending job) back to pending with progress 0.
A processing job is only retried once its worker is gone: no live batch
lease and no write within the lease window.
Batch: pending/error -> processing -> {complete | error}. A complete batch
never changes again.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone

from visibility_report.core.exceptions import (
    BatchNotFoundError,
    InvalidTransitionError,
    QuestionnaireNotFoundError,
)
from visibility_report.pipeline.types import BatchStatus, QuestionnaireRecord, QuestionnaireStatus
from visibility_report.store.base import ReportStore

logger = logging.getLogger(__name__)

Q = QuestionnaireStatus

QUESTIONNAIRE_TRANSITIONS: dict[QuestionnaireStatus, set[QuestionnaireStatus]] = {
    Q.PENDING: {Q.PROCESSING, Q.ERROR},
    Q.PROCESSING: {Q.PROCESSING, Q.PENDING, Q.COMPLETE, Q.ERROR},
    Q.ERROR: {Q.PENDING, Q.ERROR},
    Q.COMPLETE: {Q.COMPLETE},
}

RETRYABLE = {Q.ERROR, Q.PENDING}


class JobStatusMachine:
    """Validated writes of questionnaire status.

    ``complete`` is only written by ``mark_complete``, which also sets the
    progress to 100.
    """

    def __init__(self, store: ReportStore, batch_lease_seconds: int = 600):
        self.store = store
        self.batch_lease_seconds = batch_lease_seconds

    async def _load(self, questionnaire_id: uuid.UUID) -> QuestionnaireRecord:
        job = await self.store.get_questionnaire(questionnaire_id)
        if job is None:
            raise QuestionnaireNotFoundError(questionnaire_id)
        return job

    async def _transition(self, questionnaire_id: uuid.UUID, target: QuestionnaireStatus, **fields) -> None:
        job = await self._load(questionnaire_id)
        if target not in QUESTIONNAIRE_TRANSITIONS[job.status]:
            raise InvalidTransitionError("questionnaire", job.status.value, target.value)
        await self.store.update_questionnaire(questionnaire_id, status=target, **fields)
        if job.status != target:
            logger.info("Questionnaire %s: %s -> %s", questionnaire_id, job.status.value, target.value)

    async def mark_processing(self, questionnaire_id: uuid.UUID) -> None:
        await self._transition(questionnaire_id, Q.PROCESSING, error_message=None)

    async def mark_pending(self, questionnaire_id: uuid.UUID) -> None:
        """Hand the job back to the caller between manually triggered batches."""
        await self._transition(questionnaire_id, Q.PENDING)

    async def mark_complete(self, questionnaire_id: uuid.UUID) -> None:
        await self._transition(questionnaire_id, Q.COMPLETE, progress_percent=100, error_message=None)

    async def mark_error(self, questionnaire_id: uuid.UUID, message: str) -> None:
        job = await self._load(questionnaire_id)
        if job.status == Q.COMPLETE:
            # A finished report is never downgraded by a late failure
            logger.warning("Ignoring error for complete questionnaire %s: %s", questionnaire_id, message)
            return
        await self.store.update_questionnaire(questionnaire_id, status=Q.ERROR, error_message=message)
        logger.error("Questionnaire %s failed: %s", questionnaire_id, message)

    async def reset_for_retry(self, questionnaire_id: uuid.UUID, batch_id: uuid.UUID | None = None) -> int:
        """Put a failed job back to ``pending`` so processing resumes.

        Resets the named batch, or every errored and stale ``processing`` batch.
        Responses and complete batches are kept. Returns the number of batches reset.
        """
        job = await self._load(questionnaire_id)
        if job.status == Q.PROCESSING:
            await self._ensure_abandoned(job)
        elif job.status not in RETRYABLE:
            raise InvalidTransitionError("questionnaire", job.status.value, Q.PENDING.value)

        if batch_id is not None:
            batch = await self.store.get_batch(batch_id)
            if batch is None or batch.questionnaire_id != questionnaire_id:
                raise BatchNotFoundError(batch_id)
            if batch.status == BatchStatus.COMPLETE:
                targets = []
            elif batch.status == BatchStatus.PROCESSING and not self._is_stale(batch.claimed_at):
                raise InvalidTransitionError("batch", batch.status.value, BatchStatus.PENDING.value)
            else:
                targets = [batch]
        else:
            targets = [
                b
                for b in await self.store.list_batches(questionnaire_id)
                if b.status == BatchStatus.ERROR
                or (b.status == BatchStatus.PROCESSING and self._is_stale(b.claimed_at))
            ]

        for batch in targets:
            await self.store.update_batch(batch.id, status=BatchStatus.PENDING, error_message=None, claimed_at=None)

        await self.store.update_questionnaire(
            questionnaire_id, status=Q.PENDING, progress_percent=0, error_message=None
        )
        logger.info("Questionnaire %s reset for retry (%d batches reset)", questionnaire_id, len(targets))
        return len(targets)

    async def _ensure_abandoned(self, job: QuestionnaireRecord) -> None:
        live = [
            b
            for b in await self.store.list_batches(job.id)
            if b.status == BatchStatus.PROCESSING and not self._is_stale(b.claimed_at)
        ]
        if live or not self._is_stale(job.updated_at):
            raise InvalidTransitionError("questionnaire", job.status.value, Q.PENDING.value)
        logger.warning("Questionnaire %s stuck in processing with no live worker, recovering", job.id)

    def _is_stale(self, stamped_at: datetime | None) -> bool:
        if stamped_at is None:
            return True
        if stamped_at.tzinfo is None:
            stamped_at = stamped_at.replace(tzinfo=timezone.utc)
        return stamped_at < datetime.now(timezone.utc) - timedelta(seconds=self.batch_lease_seconds)
