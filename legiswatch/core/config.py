from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # core
    ENV: str = "dev"
    API_PREFIX: str = "/api"

    # database & redis
    # Plain string so sqlite:// URLs used in tests are accepted as well
    DATABASE_URL: str
    REDIS_URL: str

    # auth / security
    API_AUTH_KEY: str | None = None
    CRON_SECRET: str | None = None
    FRONTEND_ORIGIN: str | None = None
    # Explicit debug-only switch for wide-open CORS in non-prod envs
    CORS_ALLOW_ALL_ORIGINS: bool = False

    # source adapters
    # Deadline applied to every adapter call (availability check and fetch)
    SOURCE_FETCH_TIMEOUT_SECONDS: int = 120
    HTTP_TIMEOUT_SECONDS: int = 30

    FEDERAL_REGISTER_BASE_URL: str = "https://www.federalregister.gov/api/v1"
    FEDERAL_REGISTER_API_KEY: str | None = None
    FEDERAL_REGISTER_LOOKBACK_DAYS: int = 30
    FEDERAL_REGISTER_PAGE_SIZE: int = 50

    LEGISCAN_BASE_URL: str = "https://api.legiscan.com"
    LEGISCAN_API_KEY: str | None = None

    # notifications
    ADMIN_EMAILS: str | None = None  # comma-separated
    SMTP_HOST: str | None = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: str | None = None
    SMTP_PASSWORD: str | None = None
    SMTP_USE_TLS: bool = True
    EMAIL_FROM_ADDRESS: str | None = None
    EMAIL_SUBJECT_PREFIX: str = "LegisWatch"

    # schedules (UTC)
    INGEST_CRON_HOUR: int = 1
    INGEST_CRON_MINUTE: int = 30
    PUBLISH_CRON_DAY: int = 1
    PUBLISH_CRON_HOUR: int = 2
    PUBLISH_CRON_MINUTE: int = 15

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def admin_recipients(self) -> list[str]:
        if not self.ADMIN_EMAILS:
            return []
        return [e.strip() for e in self.ADMIN_EMAILS.split(",") if e.strip()]

    @property
    def smtp_configured(self) -> bool:
        return bool(self.SMTP_HOST and self.EMAIL_FROM_ADDRESS)


@lru_cache
def get_settings() -> Settings:
    return Settings()
