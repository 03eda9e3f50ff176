"""Final report: meta-summary, cost metrics, HTML artifact, finalization.

Runs once every batch of a questionnaire is complete. Each step is a named
stage; a failure marks the report and the questionnaire ``error`` with the
stage name and leaves all batch data in place.
"""

import json
import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from visibility_report.collectors.completion import CompletionClient
from visibility_report.core.config import PipelineConfig
from visibility_report.core.exceptions import ReportGenerationError, ReportNotReadyError
from visibility_report.core.metrics import FINAL_REPORTS
from visibility_report.integrations.s3 import ObjectStorage
from visibility_report.pipeline.parsing import extract_json_object
from visibility_report.pipeline.processing import QuestionProcessor
from visibility_report.pipeline.retry import with_retry
from visibility_report.pipeline.status import JobStatusMachine
from visibility_report.pipeline.types import (
    BatchStatus,
    FinalReportRecord,
    QuestionnaireRecord,
    ReportStatus,
    ResponseRecord,
)
from visibility_report.store.base import ReportStore

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"
REPORT_TEMPLATE = "report.html.j2"

META_SYSTEM_PROMPT = (
    "You are a consultant specialized in branding and brand visibility in AI assistants. "
    "Return your analysis as a JSON object."
)

# Display order and labels for the meta-summary keys
SUMMARY_LABELS = {
    "brand_presence_percent": "Brand presence",
    "top_competitors": "Top competitors",
    "improvement_tactics": "Improvement tactics",
    "executive_conclusion": "Executive conclusion",
}

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html", "j2"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def build_meta_prompt(brand: str, question_count: int, summaries: list[dict]) -> str:
    return (
        "Merge these batch summaries into a single JSON object with the keys:\n"
        f"  brand_presence_percent: share (0-100) of the {question_count} questions where {brand} appears\n"
        "  top_competitors: the top 3 competitors and how they appear\n"
        "  improvement_tactics: 3 to 5 concrete tactics to improve visibility\n"
        "  executive_conclusion: an executive conclusion of at most 150 words\n\n"
        f"Summaries:\n{json.dumps(summaries, indent=2, ensure_ascii=False)}"
    )


def compute_cost(total_tokens: int, config: PipelineConfig) -> tuple[float, bool]:
    """Cost in EUR and whether it crosses the alert threshold."""
    cost_eur = total_tokens / 1000 * config.cost_per_1k_tokens_eur
    return cost_eur, cost_eur > config.cost_limit_eur


def _display(value) -> str | list[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return [item if isinstance(item, str) else _inline(item) for item in value]
    return _inline(value)


def _inline(value) -> str:
    if isinstance(value, dict):
        return "; ".join(f"{k}: {_inline(v)}" for k, v in value.items())
    if isinstance(value, list):
        return ", ".join(_inline(v) for v in value)
    return str(value)


def summary_items(summary: dict) -> list[tuple[str, str | list[str]]]:
    """Known keys first in a fixed order, then anything else the model returned."""
    items = [(label, _display(summary[key])) for key, label in SUMMARY_LABELS.items() if key in summary]
    items.extend(
        (key.replace("_", " ").capitalize(), _display(value))
        for key, value in summary.items()
        if key not in SUMMARY_LABELS
    )
    return items


def render_report_html(
    job: QuestionnaireRecord,
    summary: dict,
    responses: list[ResponseRecord],
    total_tokens: int,
    cost_eur: float,
    generated_at: datetime,
) -> str:
    competitor_counts = {c: 0 for c in job.competitors}
    for r in responses:
        for c in r.competitor_matches:
            competitor_counts[c] = competitor_counts.get(c, 0) + 1
    brand_mentions = sum(1 for r in responses if r.brand_match)

    template = _env.get_template(REPORT_TEMPLATE)
    return template.render(
        brand=job.brand_name,
        sector=job.sector,
        website=job.website,
        generated_on=generated_at.strftime("%Y-%m-%d"),
        year=generated_at.year,
        summary_items=summary_items(summary),
        responses=responses,
        question_count=len(responses),
        brand_mentions=brand_mentions,
        brand_percent=round(brand_mentions / len(responses) * 100) if responses else 0,
        competitor_counts=competitor_counts,
        total_tokens=total_tokens,
        cost_eur=cost_eur,
    )


class ReportAggregator:
    def __init__(
        self,
        store: ReportStore,
        client: CompletionClient,
        processor: QuestionProcessor,
        storage: ObjectStorage,
        status: JobStatusMachine,
        config: PipelineConfig,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.client = client
        self.processor = processor
        self.storage = storage
        self.status = status
        self.config = config
        self.clock = clock

    def _retry(self, fn):
        return with_retry(fn, max_retries=self.config.max_retries, base_delay=self.config.retry_base_delay)

    async def generate_final_report(self, job: QuestionnaireRecord) -> FinalReportRecord:
        """Build, upload and persist the report, then mark the questionnaire complete.

        A report that is already ``ready`` is returned as is.
        """
        existing = await self.store.get_final_report(job.id)
        if existing is not None and existing.status == ReportStatus.READY:
            logger.info("Final report for %s already ready, skipping generation", job.id)
            await self.status.mark_complete(job.id)
            return existing

        batches = await self.store.list_batches(job.id)
        complete = sum(1 for b in batches if b.status == BatchStatus.COMPLETE)
        if not batches or complete < len(batches):
            raise ReportNotReadyError(
                f"Cannot generate final report: {complete} of {len(batches)} batches complete"
            )

        await self.store.upsert_final_report(job.id, status=ReportStatus.PROCESSING)
        log_extra = {"questionnaire_id": job.id}

        stage = "batch_summaries"
        try:
            summaries = []
            for batch in batches:
                record = await self.store.get_batch_summary(batch.id)
                if record is None:
                    logger.info("Regenerating missing summary for batch %d", batch.batch_number, extra=log_extra)
                    await self.processor.generate_batch_summary(batch.id, job.brand_name, job.competitors)
                    record = await self.store.get_batch_summary(batch.id)
                if record is None:
                    raise RuntimeError(f"Summary for batch {batch.batch_number} is missing")
                summaries.append(record.summary_json)

            stage = "meta_summary"
            question_count = sum(len(b.questions) for b in batches)
            prompt = build_meta_prompt(job.brand_name, question_count, summaries)
            completion = await self._retry(lambda: self.client.complete(META_SYSTEM_PROMPT, prompt))
            meta_summary = extract_json_object(completion.text)

            stage = "cost_metrics"
            responses = await self.store.list_questionnaire_responses(job.id)
            total_tokens = sum(r.tokens_used for r in responses)
            cost_eur, cost_alert = compute_cost(total_tokens, self.config)
            if cost_alert:
                logger.warning(
                    "Cost alert for %s: %.2f EUR exceeds limit of %.2f EUR",
                    job.id,
                    cost_eur,
                    self.config.cost_limit_eur,
                    extra=log_extra,
                )

            stage = "render"
            now_ms = int(self.clock() * 1000)
            generated_at = datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc)
            html = render_report_html(job, meta_summary, responses, total_tokens, cost_eur, generated_at)

            stage = "upload"
            key = f"{job.user_id}/{job.id}/report-{now_ms}.html"
            await self._retry(lambda: self.storage.upload(key, html.encode("utf-8"), "text/html"))
            url = await self.storage.get_url(key)

            stage = "persist"
            report = await self.store.upsert_final_report(
                job.id,
                status=ReportStatus.READY,
                summary_json=meta_summary,
                total_tokens=total_tokens,
                cost_eur=cost_eur,
                cost_alert=cost_alert,
                pdf_url=url,
            )
            await self.status.mark_complete(job.id)

        except Exception as e:
            error = ReportGenerationError(stage, str(e))
            logger.exception("Final report failed during %s", stage, extra={**log_extra, "stage": stage})
            FINAL_REPORTS.labels(status="error").inc()
            await self.store.upsert_final_report(job.id, status=ReportStatus.ERROR)
            await self.status.mark_error(job.id, str(error))
            raise error from e

        FINAL_REPORTS.labels(status="ready").inc()
        logger.info("Final report ready for %s: %s", job.id, url, extra=log_extra)
        return report
