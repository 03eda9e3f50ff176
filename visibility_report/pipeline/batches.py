"""Partitioning a questionnaire into fixed-size batches and driving them."""

import logging
import uuid

from visibility_report.core.config import PipelineConfig
from visibility_report.pipeline.processing import QuestionProcessor
from visibility_report.pipeline.types import BatchRecord, BatchStatus, QuestionnaireRecord
from visibility_report.store.base import BatchesExistError, ReportStore

logger = logging.getLogger(__name__)


def chunk_questions(questions: list[str], size: int) -> list[list[str]]:
    """Split in order into chunks of *size*; the last one may be shorter."""
    if size < 1:
        raise ValueError("batch size must be at least 1")
    return [questions[i : i + size] for i in range(0, len(questions), size)]


def stored_questions(batches: list[BatchRecord]) -> list[str]:
    """The full question list reconstructed from batch rows, in batch order."""
    result: list[str] = []
    for batch in sorted(batches, key=lambda b: b.batch_number):
        result.extend(batch.questions)
    return result


def next_incomplete_batch(batches: list[BatchRecord]) -> BatchRecord | None:
    """Lowest-numbered batch that is not complete."""
    for batch in sorted(batches, key=lambda b: b.batch_number):
        if batch.status != BatchStatus.COMPLETE:
            return batch
    return None


class BatchManager:
    def __init__(self, store: ReportStore, processor: QuestionProcessor, config: PipelineConfig):
        self.store = store
        self.processor = processor
        self.config = config

    async def prepare_batches(self, questionnaire_id: uuid.UUID, questions: list[str]) -> list[BatchRecord]:
        """Return the questionnaire's batches, creating them on first call.

        Existing rows always win over *questions*. All batches are inserted
        in one statement so a crash never leaves a partial set behind.
        """
        existing = await self.store.list_batches(questionnaire_id)
        if existing:
            logger.info("Reusing %d existing batches for %s", len(existing), questionnaire_id)
            return existing

        chunks = chunk_questions(questions, self.config.batch_size)
        try:
            batches = await self.store.create_batches(questionnaire_id, chunks, status=BatchStatus.PENDING)
        except BatchesExistError:
            logger.info("Batches for %s were created concurrently, re-reading", questionnaire_id)
            return await self.store.list_batches(questionnaire_id)

        logger.info(
            "Created %d batches (%d questions, size %d) for %s",
            len(batches),
            len(questions),
            self.config.batch_size,
            questionnaire_id,
        )
        return batches

    async def process_specific_batch(
        self,
        job: QuestionnaireRecord,
        batch: BatchRecord,
        total_questions: int,
    ) -> int:
        """Process one batch, crediting the complete batches numbered below it."""
        batches = await self.store.list_batches(job.id)
        previously_processed = sum(
            len(b.questions)
            for b in batches
            if b.batch_number < batch.batch_number and b.status == BatchStatus.COMPLETE
        )
        return await self.processor.process_batch(
            batch.batch_number,
            batch.questions,
            job.id,
            job.brand_info,
            job.competitors,
            total_questions,
            previously_processed,
            batch_id=batch.id,
        )

    async def process_all_batches(
        self,
        job: QuestionnaireRecord,
        batches: list[BatchRecord],
        total_questions: int,
    ) -> int:
        """Process every non-complete batch in ascending order.

        A batch that ends in ``error`` does not stop the loop. Returns the
        number of answered questions across the questionnaire.
        """
        processed = 0
        for batch in sorted(batches, key=lambda b: b.batch_number):
            if batch.status == BatchStatus.COMPLETE:
                processed += len(batch.questions)
                continue
            processed = await self.processor.process_batch(
                batch.batch_number,
                batch.questions,
                job.id,
                job.brand_info,
                job.competitors,
                total_questions,
                processed,
                batch_id=batch.id,
            )
        return processed

    async def check_batches_completion(self, questionnaire_id: uuid.UUID) -> bool:
        """True iff at least one batch exists and every batch is complete."""
        batches = await self.store.list_batches(questionnaire_id)
        return bool(batches) and all(b.status == BatchStatus.COMPLETE for b in batches)
