"""Celery tasks that run the report pipeline in the background.

The API only enqueues; all job state lives in the database and is polled
through the status endpoint.
"""

import asyncio
import logging
from typing import Any
from uuid import UUID

from visibility_report.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _run_async(coro):
    """Run an async coroutine from sync Celery task context.

    Creates a fresh event loop each time to avoid conflicts with
    the module-level SQLAlchemy engine (which may be bound to a
    different loop created by uvicorn).
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _make_session_factory():
    """Create a fresh async engine + session factory for the worker's event loop."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    from visibility_report.core.config import settings

    engine = create_async_engine(
        settings.postgres_url,
        echo=False,
        pool_size=2,
        max_overflow=2,
        pool_pre_ping=True,
    )
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False), engine


async def _process_questionnaire_async(questionnaire_id: str, options: dict[str, Any] | None) -> dict[str, Any]:
    from visibility_report.core.config import settings
    from visibility_report.pipeline.orchestrator import build_pipeline
    from visibility_report.pipeline.types import ProcessOptions

    session_factory, engine = _make_session_factory()
    try:
        pipeline = build_pipeline(settings, session_factory)
        status = await pipeline.run(UUID(questionnaire_id), ProcessOptions.from_dict(options))
        return {"questionnaire_id": questionnaire_id, "status": status.value}
    finally:
        await engine.dispose()


@celery_app.task(bind=True, name="process_questionnaire", max_retries=0)
def process_questionnaire_task(self, questionnaire_id: str, options: dict[str, Any] | None = None):
    """Celery task: run one trigger's worth of work for a questionnaire.

    Retries live inside the pipeline (per completion call) and in the retry
    endpoint, so Celery-level retries are disabled.
    """
    logger.info("Starting report processing for %s options=%s", questionnaire_id, options)
    try:
        result = _run_async(_process_questionnaire_async(questionnaire_id, options))
        logger.info("Report processing done for %s: %s", questionnaire_id, result)
        return result
    except Exception as exc:
        # The failure is already persisted on the questionnaire row
        logger.error("Report processing failed for %s: %s", questionnaire_id, exc)
        return {"error": str(exc), "questionnaire_id": questionnaire_id}
