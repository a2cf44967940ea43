"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    VERSION: str = "1.04.00"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./matterflow.db"

    # Clio API
    CLIO_API_BASE_URL: str = "https://app.clio.com"
    CLIO_CLIENT_ID: str = ""
    CLIO_CLIENT_SECRET: str = ""
    CLIO_ACCESS_TOKEN: str = ""  # Bootstrap only; the stored token wins once refreshed
    CLIO_REFRESH_TOKEN: str = ""
    CLIO_WEBHOOK_SECRET: str = ""  # Empty disables X-Clio-Signature validation
    CLIO_REQUEST_TIMEOUT_SECONDS: float = 30.0
    CLIO_RETRY_ATTEMPTS: int = 3
    CLIO_RETRY_DELAY_MS: int = 1000

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""

    # Automation timing
    TIMEZONE_OFFSET_HOURS: int = 4  # Server runs in UTC, firm reasons in US Eastern
    ROLLBACK_WINDOW_MINUTES: int = 3
    CONSISTENCY_DELAY_MS: int = 1000
    VERIFICATION_SETTLE_SECONDS: float = 30.0

    # Webhook queue
    QUEUE_MODE: str = "entity"  # entity | rate_aware
    RATE_LIMIT_THRESHOLD: int = 5
    QUEUE_MAX_RESET_WAIT_MS: int = 15000
    QUEUE_INTER_REQUEST_DELAY_MS: int = 200

    # Retention (error logs only, the webhook ledger is kept)
    RETENTION_DAYS: int = 90

    # Test mode: only process a single matter
    TEST_MODE: bool = False
    TEST_MATTER_ID: int | None = None

    # Firm reference ids
    PROBATE_PRACTICE_AREA_ID: int = 45045123
    FALLBACK_ASSIGNEE_ID: int = 357379471
    FALLBACK_ASSIGNEE_NAME: str = "Jacqui"
    DOCUMENT_TASK_ASSIGNEE_ID: int = 357379471

    # Stale matter alerts
    STALE_FUNDING_STAGE_NAME: str = "Funding in Progress"
    STALE_INITIAL_ALERT_DAYS: int = 30
    STALE_RECURRING_ALERT_DAYS: int = 30
    STALE_INITIAL_DUE_BUSINESS_DAYS: int = 6
    STALE_RECURRING_DUE_BUSINESS_DAYS: int = 7
    STALE_INITIAL_ASSIGNEE_ID: int = 357379471
    STALE_RECURRING_ASSIGNEE_ID: int = 357378676

    # Webhook subscription renewal
    WEBHOOK_RENEW_WITHIN_DAYS: int = 14
    WEBHOOK_RENEW_EXTEND_DAYS: int = 28

    @property
    def rate_aware_queue(self) -> bool:
        return self.QUEUE_MODE.lower() == "rate_aware"

    def allows_matter(self, matter_id: int | None) -> bool:
        """Test-mode gate: everything passes unless TEST_MODE is on."""
        if not self.TEST_MODE:
            return True
        return matter_id is not None and matter_id == self.TEST_MATTER_ID


settings = Settings()
