from visibility_report.models.batch_summary import BatchSummary
from visibility_report.models.final_report import FinalReport
from visibility_report.models.prompt_batch import PromptBatch
from visibility_report.models.prompt_response import PromptResponse
from visibility_report.models.questionnaire import Questionnaire

__all__ = [
    "BatchSummary",
    "FinalReport",
    "PromptBatch",
    "PromptResponse",
    "Questionnaire",
]
