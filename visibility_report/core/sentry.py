"""Sentry error tracking for the API and the report worker.

Does nothing unless SENTRY_DSN is set, so it is safe to call unconditionally.
"""

import logging

from visibility_report.core.config import settings

logger = logging.getLogger(__name__)

# Expected outcomes of normal operation, not bugs
_IGNORED_ERRORS = ("BatchInProgressError", "ReportNotReadyError")


def _before_send(event, hint):
    exc_info = hint.get("exc_info")
    if exc_info and type(exc_info[1]).__name__ in _IGNORED_ERRORS:
        return None
    return event


def init_sentry() -> None:
    if not settings.sentry_dsn:
        logger.debug("Sentry DSN not configured, skipping")
        return

    import sentry_sdk
    from sentry_sdk.integrations.celery import CeleryIntegration
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        release="visibility-report@1.0.0",
        traces_sample_rate=0.1 if settings.app_env == "production" else 1.0,
        send_default_pii=False,
        before_send=_before_send,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            CeleryIntegration(monitor_beat_tasks=False),
        ],
    )
    logger.info("Sentry initialized (env=%s)", settings.app_env)
