"""Application exceptions.

HTTP errors are raised from API handlers and rendered by FastAPI directly.
Pipeline errors never reach the trigger caller: the orchestrator persists
them as ``error_message`` on the owning questionnaire or batch row.
"""

from fastapi import HTTPException, status


# ---------------------------------------------------------------------------
# HTTP layer
# ---------------------------------------------------------------------------


class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class BadRequestError(HTTPException):
    def __init__(self, detail: str = "Bad request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class ConflictError(HTTPException):
    def __init__(self, detail: str = "Conflict"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class PipelineError(Exception):
    """Base class for report pipeline failures."""


class CompletionError(PipelineError):
    """The completion service returned an unusable response."""


class ResponseParseError(PipelineError):
    """No well-formed JSON of the expected shape in model output."""


class QuestionGenerationError(PipelineError):
    """Question generation failed; fatal to the whole job."""


class QuestionnaireNotFoundError(PipelineError):
    def __init__(self, questionnaire_id):
        super().__init__(f"Questionnaire {questionnaire_id} not found")
        self.questionnaire_id = questionnaire_id


class BatchNotFoundError(PipelineError):
    def __init__(self, batch_id):
        super().__init__(f"Batch {batch_id} not found")
        self.batch_id = batch_id


class BatchInProgressError(PipelineError):
    """Another invocation holds the lease on this batch."""

    def __init__(self, batch_id):
        super().__init__(f"Batch {batch_id} is already being processed")
        self.batch_id = batch_id


class InvalidTransitionError(PipelineError):
    def __init__(self, entity: str, current: str, target: str):
        super().__init__(f"Cannot move {entity} from '{current}' to '{target}'")
        self.entity = entity
        self.current = current
        self.target = target


class ReportNotReadyError(PipelineError):
    """Final report requested while some batches are not complete."""


class ReportGenerationError(PipelineError):
    """Final report generation failed at a named stage."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"Final processing failed during {stage}: {message}")
        self.stage = stage


class StorageError(PipelineError):
    """Object storage upload or URL generation failed."""

    def __init__(self, message: str, key: str | None = None):
        super().__init__(message)
        self.key = key
