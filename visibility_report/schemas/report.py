import uuid

from pydantic import BaseModel

from visibility_report.pipeline.types import ProcessOptions


class ProcessRequest(BaseModel):
    batch_id: uuid.UUID | None = None
    process_single_batch: bool = False
    process_all_batches: bool = False
    generate_final_report_only: bool = False

    def to_options(self) -> ProcessOptions:
        return ProcessOptions(
            batch_id=self.batch_id,
            process_single_batch=self.process_single_batch,
            process_all_batches=self.process_all_batches,
            generate_final_report_only=self.generate_final_report_only,
        )


class RetryRequest(BaseModel):
    batch_id: uuid.UUID | None = None


class ProcessResponse(BaseModel):
    message: str
    questionnaire_id: uuid.UUID
    task_id: str


class BatchStatusResponse(BaseModel):
    id: uuid.UUID
    batch_number: int
    status: str  # pending | processing | complete | error
    question_count: int
    answered_count: int
    error_message: str | None = None


class FinalReportResponse(BaseModel):
    status: str  # processing | ready | error
    url: str | None = None
    total_tokens: int | None = None
    cost_eur: float | None = None
    cost_alert: bool | None = None
    summary: dict | None = None


class ReportStatusResponse(BaseModel):
    questionnaire_id: uuid.UUID
    brand_name: str
    status: str
    progress_percent: int
    error_message: str | None = None
    batches: list[BatchStatusResponse] = []
    final_report: FinalReportResponse | None = None
