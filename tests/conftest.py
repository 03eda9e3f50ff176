import pytest

from visibility_report.core.config import PipelineConfig, settings

# Override settings for tests
settings.app_env = "test"
settings.openai_api_key = "sk-test-fake-key"

from tests.fakes import FakeCompletionClient, FakeObjectStorage, InMemoryReportStore  # noqa: E402
from visibility_report.pipeline.orchestrator import ReportPipeline  # noqa: E402


@pytest.fixture
def config() -> PipelineConfig:
    """Small, fast pipeline: no backoff delay, 20-question batches."""
    return PipelineConfig(
        openai_api_key="sk-test-fake-key",
        batch_size=20,
        max_retries=3,
        retry_base_delay=0.0,
        min_questions=40,
        required_questions=47,
        cost_per_1k_tokens_eur=0.01,
        cost_limit_eur=20.0,
    )


@pytest.fixture
def store() -> InMemoryReportStore:
    return InMemoryReportStore()


@pytest.fixture
def acme_questions() -> list[str]:
    return [f"Is Acme good for use case {i}?" for i in range(1, 48)]


@pytest.fixture
def completion(acme_questions) -> FakeCompletionClient:
    return FakeCompletionClient(questions=acme_questions)


@pytest.fixture
def storage() -> FakeObjectStorage:
    return FakeObjectStorage()


@pytest.fixture
def job(store):
    return store.add_questionnaire(brand_name="Acme", aliases=["ACME Corp"], competitors=["Globex", "Initech"])


@pytest.fixture
def pipeline(store, completion, storage, config) -> ReportPipeline:
    return ReportPipeline(store, completion, storage, config, clock=lambda: 1_760_000_000.0)
