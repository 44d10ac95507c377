"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Comma-separated, e.g. http://localhost:3000,https://dashboard.example.com. Empty = default list in main.py.
    cors_origins: str = ""

    # ===========================================
    # DATABASE
    # ===========================================
    database_url: str  # Required, no default

    # Docker-compose variables (not used by app directly)
    postgres_db: str | None = None
    postgres_user: str | None = None
    postgres_password: str | None = None

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # CODES
    # ===========================================
    code_generation_attempts: int = 5
    code_validity_days: int = 100
    code_default_usage_limit: int | None = 100
    partner_code_prefix: str = "PRM"
    ambassador_code_prefix: str = "AMB"

    # ===========================================
    # COMMISSION
    # ===========================================
    # Fraction of post-discount revenue credited to the referrer when the record has no rate.
    partner_default_commission_rate: float = 0.30
    ambassador_default_commission_rate: float = 0.10

    # ===========================================
    # PAYOUTS
    # ===========================================
    payout_currency: str = "usd"
    payout_claim_ttl: int = 60  # seconds an approval holds its request

    # ===========================================
    # FUNDS TRANSFER (Stripe Connect)
    # ===========================================
    transfer_provider: str = "stripe"  # stripe, mock
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_api_base: str = "https://api.stripe.com/v1"
    stripe_account_country: str = "US"
    connect_refresh_url: str = "http://localhost:8000/connect/reauth"
    connect_return_url: str = "http://localhost:8000/connect/success"
    webhook_tolerance_seconds: int = 300

    # ===========================================
    # EMAIL (SMTP)
    # ===========================================
    smtp_host: str = ""  # Empty = emails are logged, not sent
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""
    smtp_timeout: float = 10.0
    mail_brand_name: str = "Korpo"

    # ===========================================
    # INTERNAL SERVICES
    # ===========================================
    http_client_timeout: float = 10.0

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    request_id_header: str = "X-Request-Id"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("transfer_provider")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        return (v or "stripe").strip().lower()

    @field_validator("partner_default_commission_rate", "ambassador_default_commission_rate")
    @classmethod
    def validate_rate(cls, v: float) -> float:
        """Commission rates are fractions, not percentages."""
        if v < 0 or v > 1:
            raise ValueError("commission rate must be between 0 and 1")
        return v

    @field_validator("code_generation_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("code_generation_attempts must be at least 1")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
