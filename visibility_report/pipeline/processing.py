"""Per-question and per-batch processing.

A question counts as answered once its response row exists; that row is
the resume key, so re-running a batch only sends the unanswered questions.
"""

import json
import logging
import re
import uuid
from datetime import datetime, timedelta, timezone

from visibility_report.collectors.completion import CompletionClient
from visibility_report.core.config import PipelineConfig
from visibility_report.core.exceptions import BatchInProgressError, BatchNotFoundError, PipelineError
from visibility_report.core.metrics import BATCH_OUTCOMES, QUESTIONS_PROCESSED
from visibility_report.pipeline.parsing import extract_json_object
from visibility_report.pipeline.progress import ProgressTracker
from visibility_report.pipeline.retry import with_retry
from visibility_report.pipeline.types import BatchRecord, BatchStatus, BrandInfo, ResponseRecord
from visibility_report.store.base import BatchesExistError, ReportStore

logger = logging.getLogger(__name__)

ANSWER_SYSTEM_PROMPT = (
    "Act as a general-purpose AI assistant. A user asks a question. "
    "Answer naturally, objectively and completely."
)
SUMMARY_SYSTEM_PROMPT = "You are a branding analyst. Return your analysis as a JSON object."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _mention_pattern(terms: list[str]) -> re.Pattern | None:
    terms = [t for t in terms if t and t.strip()]
    if not terms:
        return None
    return re.compile("|".join(re.escape(t.strip()) for t in terms), re.IGNORECASE)


def brand_mentioned(answer: str, brand: BrandInfo) -> bool:
    pattern = _mention_pattern(brand.terms)
    return bool(pattern and pattern.search(answer))


def competitors_mentioned(answer: str, competitors: list[str]) -> list[str]:
    """Competitors named in *answer*, in competitor-list order."""
    matches = []
    for competitor in competitors:
        pattern = _mention_pattern([competitor])
        if pattern and pattern.search(answer):
            matches.append(competitor)
    return matches


def build_summary_prompt(brand: str, competitors: list[str], responses: list[ResponseRecord]) -> str:
    payload = [
        {
            "question_text": r.question_text,
            "answer_text": r.answer_text,
            "brand_match": r.brand_match,
            "competitor_matches": r.competitor_matches,
        }
        for r in responses
    ]
    return (
        f"Summarize the following answers highlighting (a) mentions of {brand}, "
        f"(b) mentions of competitors ({', '.join(competitors)}), (c) overall tone and sentiment.\n\n"
        f"Answers:\n{json.dumps(payload, indent=2, ensure_ascii=False)}"
    )


class QuestionProcessor:
    """Sends questions to the completion service and records the analyzed answers."""

    def __init__(
        self,
        client: CompletionClient,
        store: ReportStore,
        progress: ProgressTracker,
        config: PipelineConfig,
    ):
        self.client = client
        self.store = store
        self.progress = progress
        self.config = config

    async def _complete(self, system_prompt: str, user_prompt: str):
        return await with_retry(
            lambda: self.client.complete(system_prompt, user_prompt),
            max_retries=self.config.max_retries,
            base_delay=self.config.retry_base_delay,
        )

    async def process_question(
        self,
        question: str,
        brand: BrandInfo,
        competitors: list[str],
        batch_id: uuid.UUID,
    ) -> ResponseRecord:
        """Answer one question and persist the analyzed response.

        If a response for (batch, question) already exists, nothing new is stored.
        """
        completion = await self._complete(ANSWER_SYSTEM_PROMPT, question)
        response = ResponseRecord(
            batch_id=batch_id,
            question_text=question,
            answer_text=completion.text,
            tokens_used=completion.tokens,
            brand_match=brand_mentioned(completion.text, brand),
            competitor_matches=competitors_mentioned(completion.text, competitors),
        )
        if await self.store.insert_response(response):
            QUESTIONS_PROCESSED.labels(outcome="answered").inc()
        else:
            QUESTIONS_PROCESSED.labels(outcome="duplicate").inc()
            logger.info("Response for batch %s already stored, keeping the first one", batch_id)
        return response

    async def _locate_batch(
        self,
        questionnaire_id: uuid.UUID,
        batch_number: int,
        questions: list[str],
        batch_id: uuid.UUID | None,
    ) -> BatchRecord:
        if batch_id is not None:
            batch = await self.store.get_batch(batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id)
            return batch

        batch = await self.store.get_batch_by_number(questionnaire_id, batch_number)
        if batch is not None:
            return batch

        try:
            created = await self.store.create_batches(
                questionnaire_id, [questions], status=BatchStatus.PENDING, first_number=batch_number
            )
            return created[0]
        except BatchesExistError:
            batch = await self.store.get_batch_by_number(questionnaire_id, batch_number)
            if batch is None:
                raise
            return batch

    async def process_batch(
        self,
        batch_number: int,
        questions: list[str],
        questionnaire_id: uuid.UUID,
        brand: BrandInfo,
        competitors: list[str],
        total_questions: int,
        previously_processed: int,
        batch_id: uuid.UUID | None = None,
    ) -> int:
        """Run every unanswered question of one batch.

        Returns ``previously_processed`` plus the number of answered questions
        in this batch. Raises ``BatchInProgressError`` if another invocation
        holds the batch lease.
        """
        batch = await self._locate_batch(questionnaire_id, batch_number, questions, batch_id)
        # Stored questions win over the list the caller passed in
        questions = batch.questions
        log_extra = {"questionnaire_id": questionnaire_id, "batch_id": batch.id}

        if batch.status == BatchStatus.COMPLETE:
            logger.info("Batch %d already complete, skipping", batch.batch_number, extra=log_extra)
            BATCH_OUTCOMES.labels(status="skipped").inc()
            return previously_processed + len(questions)

        lease = _utcnow()
        stale_before = lease - timedelta(seconds=self.config.batch_lease_seconds)
        if not await self.store.claim_batch(batch.id, lease, stale_before):
            current = await self.store.get_batch(batch.id)
            if current is not None and current.status == BatchStatus.COMPLETE:
                return previously_processed + len(questions)
            raise BatchInProgressError(batch.id)

        try:
            answered = await self.store.answered_questions(batch.id)
            pending = [q for q in questions if q not in answered]
            processed = previously_processed + (len(questions) - len(pending))
            logger.info(
                "Processing batch %d: %d of %d questions pending",
                batch.batch_number,
                len(pending),
                len(questions),
                extra=log_extra,
            )

            failed = 0
            for question in pending:
                try:
                    await self.process_question(question, brand, competitors, batch.id)
                    processed += 1
                except Exception as e:
                    failed += 1
                    QUESTIONS_PROCESSED.labels(outcome="failed").inc()
                    logger.warning(
                        "Question failed in batch %d: %s (%s)", batch.batch_number, question[:80], e, extra=log_extra
                    )
                await self.progress.update_progress(questionnaire_id, total_questions, processed)
                # Renewed per question: one question with all its retries fits inside the lease
                renewed = _utcnow()
                if not await self.store.touch_batch(batch.id, lease, renewed):
                    raise BatchInProgressError(batch.id)
                lease = renewed

            # Re-read: the rows decide, not the loop counters
            answered = await self.store.answered_questions(batch.id)
            answered_count = sum(1 for q in questions if q in answered)

            if answered_count == len(questions):
                if not await self.store.finish_batch(batch.id, lease, BatchStatus.COMPLETE):
                    raise BatchInProgressError(batch.id)
                BATCH_OUTCOMES.labels(status="complete").inc()
                logger.info("Batch %d complete", batch.batch_number, extra=log_extra)
                try:
                    await self.generate_batch_summary(batch.id, brand.brand, competitors)
                except Exception as e:
                    logger.warning("Batch summary failed for batch %d: %s", batch.batch_number, e, extra=log_extra)
            else:
                message = (
                    f"Processed {answered_count}/{len(questions)} questions. "
                    f"Failed to process {len(questions) - answered_count} questions."
                )
                if not await self.store.finish_batch(batch.id, lease, BatchStatus.ERROR, error_message=message):
                    raise BatchInProgressError(batch.id)
                BATCH_OUTCOMES.labels(status="error").inc()
                logger.error("Batch %d ended with errors: %s (failed=%d)", batch.batch_number, message, failed, extra=log_extra)

            return previously_processed + answered_count

        except BatchInProgressError:
            # Another invocation re-claimed the batch; its run owns the outcome
            logger.warning("Lost the lease on batch %d, stopping", batch.batch_number, extra=log_extra)
            raise
        except Exception as e:
            logger.exception("Batch %d aborted", batch.batch_number, extra=log_extra)
            await self.store.finish_batch(batch.id, lease, BatchStatus.ERROR, error_message=str(e))
            BATCH_OUTCOMES.labels(status="error").inc()
            raise

    async def generate_batch_summary(self, batch_id: uuid.UUID, brand: str, competitors: list[str]) -> dict | None:
        """Summarize a batch once. Returns None if a summary already exists."""
        if await self.store.get_batch_summary(batch_id) is not None:
            logger.debug("Summary for batch %s already exists", batch_id)
            return None

        responses = await self.store.list_responses(batch_id)
        if not responses:
            raise PipelineError(f"No responses to summarize for batch {batch_id}")

        completion = await self._complete(SUMMARY_SYSTEM_PROMPT, build_summary_prompt(brand, competitors, responses))
        summary = extract_json_object(completion.text)
        await self.store.insert_batch_summary(batch_id, summary)
        logger.info("Stored summary for batch %s", batch_id)
        return summary
