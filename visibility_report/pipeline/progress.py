"""Completion percentage of a questionnaire, as polled by the UI."""

import logging
import math
import uuid

from visibility_report.store.base import ReportStore

logger = logging.getLogger(__name__)

# 100 is reserved for a questionnaire whose final report exists
MAX_IN_FLIGHT_PERCENT = 99


def compute_percent(total: int, processed: int) -> int:
    """``processed / total`` as a whole percentage, rounded half up and clamped to 0..99."""
    if total <= 0:
        return 0
    percent = math.floor(processed / total * 100 + 0.5)
    return max(0, min(percent, MAX_IN_FLIGHT_PERCENT))


class ProgressTracker:
    def __init__(self, store: ReportStore):
        self.store = store

    async def update_progress(self, questionnaire_id: uuid.UUID, total: int, processed: int) -> int:
        """Persist the new percentage if it is higher than the stored one."""
        percent = compute_percent(total, processed)
        if await self.store.raise_progress(questionnaire_id, percent):
            logger.debug("Progress for %s: %d%% (%d/%d)", questionnaire_id, percent, processed, total)
        return percent

    async def reset(self, questionnaire_id: uuid.UUID) -> None:
        await self.store.update_questionnaire(questionnaire_id, progress_percent=0)
