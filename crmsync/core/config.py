"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str

    # Admin endpoints (X-Internal-Secret header)
    INTERNAL_SECRET: str = ""

    # Connection secret encryption
    FERNET_KEY: str = ""  # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

    # Queue poller
    CRM_POLL_INTERVAL_SECONDS: float = 5.0
    CRM_MAX_CONCURRENT: int = 3
    CRM_JOB_MAX_RETRIES: int = 3
    CRM_SHUTDOWN_GRACE_SECONDS: float = 30.0
    CRM_RUN_WORKER_IN_API: bool = False  # Start the poller inside the API process

    # REST writers
    CRM_HTTP_TIMEOUT_SECONDS: float = 15.0

    # Browser automation
    CRM_BROWSER_HEADLESS: bool = True
    CRM_BROWSER_NAVIGATION_TIMEOUT_MS: int = 30_000
    CRM_BROWSER_FIELD_TIMEOUT_MS: int = 5_000
    CRM_SCREENSHOT_DIR: str = "./screenshots"
    CRM_SCREENSHOT_URL_PREFIX: str = "/screenshots"


settings = Settings()
