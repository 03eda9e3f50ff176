"""Report API endpoints: trigger processing, retry, and poll status."""

import uuid

from fastapi import APIRouter, Depends

from visibility_report.core.dependencies import get_report_store, get_status_machine
from visibility_report.core.exceptions import BatchNotFoundError, ConflictError, NotFoundError
from visibility_report.pipeline.types import ProcessOptions, QuestionnaireStatus
from visibility_report.schemas.report import (
    BatchStatusResponse,
    FinalReportResponse,
    ProcessRequest,
    ProcessResponse,
    ReportStatusResponse,
    RetryRequest,
)
from visibility_report.store.base import ReportStore

router = APIRouter(prefix="/reports", tags=["reports"])


def _enqueue(questionnaire_id: uuid.UUID, options: ProcessOptions) -> str:
    from visibility_report.tasks.report_tasks import process_questionnaire_task

    task = process_questionnaire_task.delay(str(questionnaire_id), options.to_dict())
    return task.id


@router.post("/{questionnaire_id}/process", response_model=ProcessResponse, status_code=202)
async def trigger_processing(
    questionnaire_id: uuid.UUID,
    body: ProcessRequest | None = None,
    store: ReportStore = Depends(get_report_store),
):
    """Start background processing. Poll ``GET /reports/{id}`` for progress."""
    body = body or ProcessRequest()
    job = await store.get_questionnaire(questionnaire_id)
    if not job:
        raise NotFoundError("Questionnaire not found")
    if job.status == QuestionnaireStatus.ERROR:
        raise ConflictError("Questionnaire failed; use the retry endpoint to resume it")

    if body.batch_id is not None:
        batch = await store.get_batch(body.batch_id)
        if not batch or batch.questionnaire_id != questionnaire_id:
            raise NotFoundError("Batch not found")

    task_id = _enqueue(questionnaire_id, body.to_options())
    return ProcessResponse(message="Processing started", questionnaire_id=questionnaire_id, task_id=task_id)


@router.post("/{questionnaire_id}/retry", response_model=ProcessResponse, status_code=202)
async def retry_processing(
    questionnaire_id: uuid.UUID,
    body: RetryRequest | None = None,
    store: ReportStore = Depends(get_report_store),
):
    """Reset a failed questionnaire (or one batch of it) and resume processing."""
    body = body or RetryRequest()
    job = await store.get_questionnaire(questionnaire_id)
    if not job:
        raise NotFoundError("Questionnaire not found")

    try:
        await get_status_machine(store).reset_for_retry(questionnaire_id, body.batch_id)
    except BatchNotFoundError:
        raise NotFoundError("Batch not found")

    if body.batch_id is not None:
        options = ProcessOptions(batch_id=body.batch_id, process_single_batch=True)
    else:
        options = ProcessOptions(process_all_batches=True)
    task_id = _enqueue(questionnaire_id, options)
    return ProcessResponse(message="Retry started", questionnaire_id=questionnaire_id, task_id=task_id)


@router.get("/{questionnaire_id}", response_model=ReportStatusResponse)
async def get_report_status(
    questionnaire_id: uuid.UUID,
    store: ReportStore = Depends(get_report_store),
):
    job = await store.get_questionnaire(questionnaire_id)
    if not job:
        raise NotFoundError("Questionnaire not found")

    batches = []
    for batch in await store.list_batches(questionnaire_id):
        answered = await store.answered_questions(batch.id)
        batches.append(
            BatchStatusResponse(
                id=batch.id,
                batch_number=batch.batch_number,
                status=batch.status.value,
                question_count=len(batch.questions),
                answered_count=sum(1 for q in batch.questions if q in answered),
                error_message=batch.error_message,
            )
        )

    report = await store.get_final_report(questionnaire_id)
    final_report = None
    if report:
        final_report = FinalReportResponse(
            status=report.status.value,
            url=report.pdf_url,
            total_tokens=report.total_tokens,
            cost_eur=report.cost_eur,
            cost_alert=report.cost_alert,
            summary=report.summary_json,
        )

    return ReportStatusResponse(
        questionnaire_id=job.id,
        brand_name=job.brand_name,
        status=job.status.value,
        progress_percent=job.progress_percent,
        error_message=job.error_message,
        batches=batches,
        final_report=final_report,
    )
