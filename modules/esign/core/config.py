"""
E-Sign Module Configuration.

Manages environment variables specific to the E-Sign module.
Uses prefix ESIGN_ to avoid conflicts with other modules.
"""

from functools import lru_cache
from typing import Annotated

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PUBLIC_BASE_URL = "http://localhost:8082"

SMTP_TRANSPORTS = frozenset({"smtp", "mailpit"})
DETERMINISTIC_TRANSPORTS = frozenset({"", "deterministic", "mock"})


class EsignSettings(BaseSettings):
    """
    E-Sign module settings loaded from environment variables.

    All variables use the ESIGN_ prefix for module isolation.
    Sensitive values use SecretStr for security.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    public_base_url: Annotated[
        str,
        Field(
            description="Base URL for generated sign and completion links",
            validation_alias="ESIGN_PUBLIC_BASE_URL",
        ),
    ] = DEFAULT_PUBLIC_BASE_URL

    # Email transport
    email_transport: Annotated[
        str,
        Field(
            description="Email provider: '', deterministic, mock, smtp or mailpit",
            validation_alias="ESIGN_EMAIL_TRANSPORT",
        ),
    ] = ""
    smtp_host: Annotated[str, Field(validation_alias="ESIGN_EMAIL_SMTP_HOST")] = "localhost"
    smtp_port: Annotated[int, Field(validation_alias="ESIGN_EMAIL_SMTP_PORT")] = 1025
    smtp_username: Annotated[str, Field(validation_alias="ESIGN_EMAIL_SMTP_USERNAME")] = ""
    smtp_password: Annotated[
        SecretStr,
        Field(validation_alias="ESIGN_EMAIL_SMTP_PASSWORD"),
    ] = SecretStr("")
    from_name: Annotated[str, Field(validation_alias="ESIGN_EMAIL_FROM_NAME")] = "E-Sign"
    from_address: Annotated[str, Field(validation_alias="ESIGN_EMAIL_FROM_ADDRESS")] = "no-reply@example.test"
    smtp_timeout_seconds: Annotated[
        float,
        Field(
            description="Timeout for one SMTP send",
            validation_alias="ESIGN_EMAIL_SMTP_TIMEOUT_SECONDS",
        ),
    ] = 10.0
    smtp_disable_starttls: Annotated[bool, Field(validation_alias="ESIGN_EMAIL_SMTP_DISABLE_STARTTLS")] = False
    smtp_insecure_tls: Annotated[bool, Field(validation_alias="ESIGN_EMAIL_SMTP_INSECURE_TLS")] = False

    # Job orchestration
    retry_base_delay_seconds: Annotated[float, Field(validation_alias="ESIGN_RETRY_BASE_DELAY_SECONDS")] = 2.0
    retry_max_attempts: Annotated[int, Field(validation_alias="ESIGN_RETRY_MAX_ATTEMPTS")] = 3
    import_queue_workers: Annotated[int, Field(validation_alias="ESIGN_IMPORT_QUEUE_WORKERS")] = 1
    import_queue_capacity: Annotated[int, Field(validation_alias="ESIGN_IMPORT_QUEUE_CAPACITY")] = 64
    token_ttl_hours: Annotated[int, Field(validation_alias="ESIGN_TOKEN_TTL_HOURS")] = 720

    # Persistence / integrations
    database_url: Annotated[
        str,
        Field(
            description="Optional SQLAlchemy URL for job runs, email logs and audit events",
            validation_alias="ESIGN_DATABASE_URL",
        ),
    ] = ""
    google_api_base_url: Annotated[
        str,
        Field(validation_alias="ESIGN_GOOGLE_API_BASE_URL"),
    ] = "https://www.googleapis.com"

    @property
    def normalized_transport(self) -> str:
        return self.email_transport.strip().lower()

    @property
    def normalized_public_base_url(self) -> str:
        return (self.public_base_url.strip() or DEFAULT_PUBLIC_BASE_URL).rstrip("/")


@lru_cache
def get_esign_settings() -> EsignSettings:
    """Get cached E-Sign settings instance."""
    return EsignSettings()
