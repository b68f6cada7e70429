from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Database
    DATABASE_URL: Optional[str] = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = "quantumbets"
    DB_PASSWORD: str = "quantumbets_password"
    DB_NAME: str = "quantumbets_db"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # URLs
    API_URL: str = "http://localhost:8000"  # Base URL for tracking links
    SITE_URL: str = "https://quantumbets.com"  # Fallback redirect and upgrade links
    FRONTEND_URL: str = "http://localhost:3000"

    # Email
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    EMAIL_FROM: Optional[str] = "noreply@quantumbets.com"
    EMAIL_FROM_NAME: str = "QuantumBets"

    # SMS (Twilio)
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: Optional[str] = None
    TWILIO_API_BASE: str = "https://api.twilio.com/2010-04-01"
    SMS_TIMEOUT_SECONDS: float = 10.0
    SMS_MAX_LENGTH: int = 160
    SMS_QUIET_HOURS_START: int = 21  # 9PM local server time
    SMS_QUIET_HOURS_END: int = 9  # 9AM local server time

    # Delivery pipeline
    DELIVERY_BATCH_SIZE: int = 50
    DELIVERY_MAX_RETRIES: int = 3

    # Periodic sweeps (disabled by default; cron or API calls trigger the pipeline)
    DELIVERY_WORKER_ENABLED: bool = False
    DELIVERY_PROCESS_INTERVAL_SECONDS: int = 60
    DELIVERY_RETRY_INTERVAL_SECONDS: int = 900

    class Config:
        env_file = ".env"
        extra = "ignore"  # Allow extra fields in .env file


settings = Settings()
