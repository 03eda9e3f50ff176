from visibility_report.core.config import settings
from visibility_report.db.postgres import async_session_factory
from visibility_report.pipeline.status import JobStatusMachine
from visibility_report.store.base import ReportStore
from visibility_report.store.sql import SqlReportStore


def get_report_store() -> ReportStore:
    return SqlReportStore(async_session_factory)


def get_status_machine(store: ReportStore) -> JobStatusMachine:
    return JobStatusMachine(store, settings.batch_lease_seconds)
