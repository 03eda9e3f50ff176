"""Entry point that runs one trigger's worth of work for a questionnaire."""

import logging
import time
import uuid
from collections.abc import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from visibility_report.collectors.completion import CompletionClient, OpenAiCompletionClient
from visibility_report.core.config import PipelineConfig, Settings
from visibility_report.core.exceptions import (
    BatchInProgressError,
    BatchNotFoundError,
    QuestionnaireNotFoundError,
    ReportGenerationError,
    ReportNotReadyError,
)
from visibility_report.integrations.s3 import ObjectStorage, S3ObjectStorage
from visibility_report.pipeline.batches import BatchManager, next_incomplete_batch, stored_questions
from visibility_report.pipeline.processing import QuestionProcessor
from visibility_report.pipeline.progress import ProgressTracker
from visibility_report.pipeline.questions import QuestionGenerator
from visibility_report.pipeline.report import ReportAggregator
from visibility_report.pipeline.status import JobStatusMachine
from visibility_report.pipeline.types import (
    BatchRecord,
    BatchStatus,
    ProcessOptions,
    QuestionnaireRecord,
    QuestionnaireStatus,
)
from visibility_report.store.base import ReportStore
from visibility_report.store.sql import SqlReportStore

logger = logging.getLogger(__name__)


class ReportPipeline:
    """Wires the pipeline components around one store, client and storage."""

    def __init__(
        self,
        store: ReportStore,
        client: CompletionClient,
        storage: ObjectStorage,
        config: PipelineConfig,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config
        self.progress = ProgressTracker(store)
        self.status = JobStatusMachine(store, config.batch_lease_seconds)
        self.generator = QuestionGenerator(client, config)
        self.processor = QuestionProcessor(client, store, self.progress, config)
        self.batches = BatchManager(store, self.processor, config)
        self.aggregator = ReportAggregator(store, client, self.processor, storage, self.status, config, clock=clock)

    async def run(self, questionnaire_id: uuid.UUID, options: ProcessOptions | None = None) -> QuestionnaireStatus:
        """Process a questionnaire according to *options*.

        Failures are persisted on the questionnaire before being re-raised.
        Returns the questionnaire status after the run.
        """
        options = options or ProcessOptions()
        log_extra = {"questionnaire_id": questionnaire_id}

        job = await self.store.get_questionnaire(questionnaire_id)
        if job is None:
            logger.error("Questionnaire %s not found", questionnaire_id, extra=log_extra)
            raise QuestionnaireNotFoundError(questionnaire_id)

        if job.status == QuestionnaireStatus.COMPLETE:
            logger.info("Questionnaire %s already complete, nothing to do", job.id, extra=log_extra)
            return job.status

        await self.status.mark_processing(job.id)

        try:
            if options.generate_final_report_only:
                await self._final_report_only(job)
            else:
                questions = await self._load_questions(job)
                batches = await self.batches.prepare_batches(job.id, questions)
                total = sum(len(b.questions) for b in batches)
                if options.single_batch:
                    await self._run_single_batch(job, batches, total, options.batch_id)
                else:
                    await self._run_all_batches(job, batches, total)
        except BatchInProgressError as e:
            # Another worker owns the batch; its run decides the job status
            logger.warning("%s, leaving questionnaire %s untouched", e, job.id, extra=log_extra)
        except ReportNotReadyError as e:
            await self.status.mark_error(job.id, str(e))
        except ReportGenerationError:
            raise
        except Exception as e:
            logger.exception("Processing failed for questionnaire %s", job.id, extra=log_extra)
            await self.status.mark_error(job.id, str(e))
            raise

        current = await self.store.get_questionnaire(job.id)
        return current.status if current else job.status

    async def _load_questions(self, job: QuestionnaireRecord) -> list[str]:
        existing = await self.store.list_batches(job.id)
        if existing:
            return stored_questions(existing)
        return await self.generator.generate(job.brand_name, job.competitors)

    async def _final_report_only(self, job: QuestionnaireRecord) -> None:
        if not await self.batches.check_batches_completion(job.id):
            batches = await self.store.list_batches(job.id)
            complete = sum(1 for b in batches if b.status == BatchStatus.COMPLETE)
            raise ReportNotReadyError(f"Cannot generate final report: {complete} of {len(batches)} batches complete")
        await self.aggregator.generate_final_report(job)

    async def _run_single_batch(
        self,
        job: QuestionnaireRecord,
        batches: list[BatchRecord],
        total: int,
        batch_id: uuid.UUID | None,
    ) -> None:
        if batch_id is not None:
            batch = next((b for b in batches if b.id == batch_id), None)
            if batch is None:
                raise BatchNotFoundError(batch_id)
        else:
            batch = next_incomplete_batch(batches)

        if batch is not None:
            await self.batches.process_specific_batch(job, batch, total)

        if await self.batches.check_batches_completion(job.id):
            await self.aggregator.generate_final_report(job)
            return

        current = await self.store.get_batch(batch.id) if batch is not None else None
        if current is not None and current.status == BatchStatus.ERROR:
            await self.status.mark_error(job.id, current.error_message or f"Batch {current.batch_number} failed")
        else:
            await self.status.mark_pending(job.id)

    async def _run_all_batches(self, job: QuestionnaireRecord, batches: list[BatchRecord], total: int) -> None:
        await self.batches.process_all_batches(job, batches, total)

        refreshed = await self.store.list_batches(job.id)
        complete = sum(1 for b in refreshed if b.status == BatchStatus.COMPLETE)
        if refreshed and complete == len(refreshed):
            await self.aggregator.generate_final_report(job)
        else:
            await self.status.mark_error(
                job.id, f"Incomplete processing: {complete} of {len(refreshed)} batches completed."
            )


def build_pipeline(
    s: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    client: CompletionClient | None = None,
    storage: ObjectStorage | None = None,
) -> ReportPipeline:
    """Production wiring: SQL store, OpenAI client and S3 storage."""
    config = PipelineConfig.from_settings(s)
    if client is None:
        client = OpenAiCompletionClient(
            api_key=config.openai_api_key,
            model=config.model,
            temperature=config.temperature,
            timeout=config.completion_timeout,
        )
    if storage is None:
        storage = S3ObjectStorage.from_settings(s)
    return ReportPipeline(SqlReportStore(session_factory), client, storage, config)
