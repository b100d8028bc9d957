"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables with sensible defaults.
Using Pydantic's BaseSettings means we get:
- Type validation at startup (fail fast if config is wrong)
- Documentation of what's required vs optional
- Easy testing with different configurations

Mock modes enable local development without external services.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like api_keys), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "TrainerDesk API"
    api_version: str = "v1"
    api_keys: str = Field(
        default="dev-key-1,dev-key-2",
        description="Comma-separated API keys. Using a list enables key rotation without downtime."
    )

    # Snowflake Configuration
    snowflake_account: str = Field(
        default="",
        description="Snowflake account identifier"
    )
    snowflake_user: str = Field(
        default="",
        description="Snowflake service account username"
    )
    snowflake_password: str = Field(
        default="",
        description="Snowflake service account password"
    )
    snowflake_private_key_path: Optional[str] = Field(
        default=None,
        description="Path to RSA private key file for key-pair authentication"
    )
    snowflake_private_key_base64: Optional[str] = Field(
        default=None,
        description="Base64-encoded private key (for deployment, alternative to file path)"
    )
    snowflake_database: str = Field(
        default="TRAINERDESK",
        description="Snowflake database name"
    )
    snowflake_schema: str = Field(
        default="ACCOUNTING",
        description="Snowflake schema name"
    )
    snowflake_warehouse: str = Field(
        default="COMPUTE_WH",
        description="Snowflake warehouse for query execution"
    )
    snowflake_role: Optional[str] = Field(
        default=None,
        description="Snowflake role to use (optional)"
    )
    snowflake_mock_mode: bool = Field(
        default=False,
        description="Use in-memory mock instead of real Snowflake connection. Enables local dev without DB."
    )
    persistence_max_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts for an account read-modify-write before giving up on a concurrent writer."
    )

    # E-mail (Brevo) Configuration
    brevo_api_key: str = Field(
        default="",
        description="Brevo transactional e-mail API key. Required unless in mock mode."
    )
    brevo_sender_email: str = Field(
        default="",
        description="Verified sender address. Reminders go out from here under the trainer's name."
    )
    brevo_api_url: str = Field(
        default="https://api.brevo.com/v3/smtp/email",
        description="Brevo SMTP API endpoint"
    )
    brevo_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="HTTP timeout for one send request"
    )
    email_mock_mode: bool = Field(
        default=False,
        description="Keep e-mails in memory instead of sending them. Enables local dev without Brevo."
    )

    # Trainer branding
    trainer_name: str = Field(
        default="Personal Trainer",
        description="Shown as the e-mail sender name and in the e-mail header"
    )
    trainer_contact_email: Optional[str] = Field(
        default=None,
        description="Reply-to address for reminders. Falls back to the sender address."
    )
    trainer_whatsapp: Optional[str] = Field(
        default=None,
        description="WhatsApp number (digits only) for the e-mail footer"
    )
    trainer_instagram: Optional[str] = Field(
        default=None,
        description="Instagram handle for the e-mail footer"
    )

    # Application Behavior
    timezone: str = Field(
        default="America/Sao_Paulo",
        description="IANA timezone that decides what 'today' is for due dates and reminders"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins. Use * for development only."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def api_keys_list(self) -> list[str]:
        """Parse comma-separated API keys into a list."""
        return [key.strip() for key in self.api_keys.split(",") if key.strip()]

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode settings.

        Returns list of missing required fields.
        This is separate from Pydantic validation because requirements
        depend on whether we're in mock mode.
        """
        missing = []

        # Snowflake only required if not in mock mode
        if not self.snowflake_mock_mode:
            if not self.snowflake_account:
                missing.append("SNOWFLAKE_ACCOUNT")
            if not self.snowflake_user:
                missing.append("SNOWFLAKE_USER")
            # Need either password or private key
            if not (
                self.snowflake_password
                or self.snowflake_private_key_path
                or self.snowflake_private_key_base64
            ):
                missing.append("SNOWFLAKE_PASSWORD or SNOWFLAKE_PRIVATE_KEY_PATH")

        # Brevo only required if not in mock mode
        if not self.email_mock_mode:
            if not self.brevo_api_key:
                missing.append("BREVO_API_KEY")
            if not self.brevo_sender_email:
                missing.append("BREVO_SENDER_EMAIL")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache means we only load settings once per process.
    This is safe because settings don't change during runtime.
    For tests, you can call get_settings.cache_clear() to reset.
    """
    return Settings()
