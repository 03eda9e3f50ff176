from dataclasses import dataclass

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "vr_user"
    postgres_password: str = "changeme"
    postgres_db: str = "visibility_report"

    @property
    def postgres_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Redis (Celery broker + result backend)
    redis_url: str = "redis://localhost:6379/0"

    # OpenAI completion service
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_temperature: float = 0.3
    openai_timeout: float = 120.0

    # Batch pipeline
    batch_size: int = 20
    max_retries: int = 3
    retry_base_delay: float = 0.5  # seconds; delay = base * 2**retry, so 1s, 2s, 4s
    min_questions: int = 50
    required_questions: int = 100
    batch_lease_seconds: int = 600  # a "processing" batch older than this can be re-claimed

    # Cost tracking
    cost_per_1k_tokens_eur: float = 0.01  # gpt-4o-mini rate
    cost_limit_eur: float = 20.0

    # Object storage (S3-compatible)
    s3_bucket: str = "reports"
    s3_endpoint_url: str | None = None
    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_region: str = "us-east-1"
    s3_public_base_url: str = ""  # e.g. "https://cdn.example.com/reports"; empty means presigned URLs
    s3_presigned_expiry_seconds: int = 60 * 60 * 24 * 7

    # App
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # CORS
    allowed_origins: str = "*"  # comma-separated

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable


settings = Settings()


@dataclass(frozen=True)
class PipelineConfig:
    """Knobs for the report pipeline, built once at process start.

    Pipeline components receive this in their constructors and never read
    ``settings`` themselves, so tests can build one by hand.
    """

    openai_api_key: str = ""
    model: str = "gpt-4o-mini"
    temperature: float = 0.3
    completion_timeout: float = 120.0
    batch_size: int = 20
    max_retries: int = 3
    retry_base_delay: float = 0.5
    min_questions: int = 50
    required_questions: int = 100
    batch_lease_seconds: int = 600
    cost_per_1k_tokens_eur: float = 0.01
    cost_limit_eur: float = 20.0

    @classmethod
    def from_settings(cls, s: Settings) -> "PipelineConfig":
        return cls(
            openai_api_key=s.openai_api_key,
            model=s.openai_model,
            temperature=s.openai_temperature,
            completion_timeout=s.openai_timeout,
            batch_size=s.batch_size,
            max_retries=s.max_retries,
            retry_base_delay=s.retry_base_delay,
            min_questions=s.min_questions,
            required_questions=s.required_questions,
            batch_lease_seconds=s.batch_lease_seconds,
            cost_per_1k_tokens_eur=s.cost_per_1k_tokens_eur,
            cost_limit_eur=s.cost_limit_eur,
        )


def validate_settings_for_production(s: Settings | None = None) -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    s = s or settings
    errors: list[str] = []

    if not s.openai_api_key:
        errors.append("OPENAI_API_KEY must be set")

    if s.batch_size < 1:
        errors.append("BATCH_SIZE must be at least 1")

    if s.min_questions > s.required_questions:
        errors.append("MIN_QUESTIONS must not exceed REQUIRED_QUESTIONS")

    if s.app_env == "production":
        if s.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if s.app_debug:
            errors.append("APP_DEBUG must be false in production")
        if not (s.s3_access_key and s.s3_secret_key):
            errors.append("S3_ACCESS_KEY and S3_SECRET_KEY must be set in production")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
