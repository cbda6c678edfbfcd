from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"  # local | development | production | test
    APP_NAME: str = "restful-query-api"

    CORS_ORIGINS: str = "http://localhost:3000"

    DATABASE_URL: str
    DB_CONNECT_TIMEOUT_SECONDS: float = 10.0
    DB_RECONNECT_DELAY_SECONDS: float = 1.0
    # create_all on startup in every environment; turn off where alembic owns the schema.
    DB_SYNC_SCHEMA: bool = True

    JWT_SECRET: str = "change_me_jwt"
    JWT_TTL_MINUTES: int = 60 * 24

    EMAIL_PROVIDER: str = "dummy"  # dummy | smtp | service | sendgrid
    EMAIL_FROM: str = "noreply@example.com"
    EMAIL_SERVICE_URL: str = "http://email-service:8010"
    INTERNAL_SERVICE_TOKEN: str = "change_me_internal_service_token"
    SENDGRID_API_KEY: str = ""
    SENDGRID_API_URL: str = "https://api.sendgrid.com/v3/mail/send"
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False

    OTP_LENGTH: int = 6
    OTP_TTL_MINUTES: int = 10
    OTP_MAX_ATTEMPTS: int = 5
    OTP_EMAIL_SUBJECT_TEMPLATE: str = "Your verification code: {code}"
    OTP_EMAIL_TEMPLATE: str = "<p>Your verification code: <b>{code}</b></p>"

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def is_test_env(self) -> bool:
        return self.APP_ENV.strip().lower() == "test"

settings = Settings()
