import logging
import warnings

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Environment
    environment: str = "development"  # development | test | production
    log_level: str = "INFO"

    # Public site
    site_url: str = "http://localhost:3000"

    # Database (sqlite for local dev, postgresql+asyncpg for production)
    database_url: str = "sqlite+aiosqlite:///./data/storefront.db"

    # Auth
    jwt_secret_key: str = "dev-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expire_hours: int = 24 * 7  # 7 days

    # PayPal
    paypal_mode: str = "sandbox"  # sandbox | live
    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    paypal_checkout_webhook_id: str = ""
    paypal_payouts_webhook_id: str = ""  # PayPal issues one webhook id per listener URL
    paypal_timeout_seconds: float = 15.0

    # Scheduled jobs
    cron_secret: str = ""

    # Escrow / payouts
    escrow_days: int = 14
    payout_min_usd: float = 10.00
    platform_fee_pct: float = 0.10  # default seller commission

    # Email verification
    email_verification_ttl_hours: int = 24
    email_verification_cooldown_seconds: int = 120

    # Guest receipts
    receipt_session_minutes: int = 15
    receipt_resend_cooldown_seconds: int = 60
    receipt_token_ttl_days: int = 30

    # Downloads
    download_store_path: str = "./data/downloads"
    download_url_ttl_seconds: int = 3600  # 1 hour
    download_signing_secret: str = "dev-download-signing-secret-change-in-production"

    # Email delivery (Resend)
    resend_api_key: str = ""
    email_from: str = "Digital Store <onboarding@resend.dev>"
    email_timeout_seconds: float = 10.0

    # Buyer dashboard cache
    dashboard_cache_ttl_seconds: float = 60.0

    # CORS
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in {"production", "prod"}

    @property
    def paypal_api_base(self) -> str:
        if self.paypal_mode == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"


settings = Settings()

# Warn on insecure defaults (logged at startup, not a hard error for dev convenience)
_logger = logging.getLogger("storefront.config")
_INSECURE_SECRETS = {
    "dev-secret-change-in-production",
    "dev-download-signing-secret-change-in-production",
    "change-me-to-a-random-string",
}


def validate_security_posture(cfg: Settings) -> None:
    is_prod = cfg.is_production

    if cfg.jwt_secret_key in _INSECURE_SECRETS:
        if is_prod:
            raise RuntimeError(
                "FATAL: JWT_SECRET_KEY is set to an insecure default. "
                "Set a strong random secret via the JWT_SECRET_KEY environment variable before deploying to production."
            )
        warnings.warn(
            "JWT_SECRET_KEY is set to the default insecure value. "
            "Set a strong random secret via the JWT_SECRET_KEY environment variable for production.",
            stacklevel=1,
        )

    if cfg.cors_origins == "*":
        if is_prod:
            raise RuntimeError(
                "FATAL: CORS_ORIGINS cannot be '*' in production. "
                "Set explicit trusted origins via the CORS_ORIGINS environment variable."
            )
        _logger.warning(
            "CORS_ORIGINS is set to '*' (allow all). "
            "Configure specific origins for production via the CORS_ORIGINS environment variable."
        )

    if not cfg.cron_secret:
        if is_prod:
            raise RuntimeError(
                "FATAL: CRON_SECRET must be set in production. "
                "The escrow release job refuses to run without it."
            )
        _logger.warning("CRON_SECRET is not set; scheduled endpoints accept unauthenticated calls outside production.")

    if is_prod:
        if not cfg.paypal_client_id or not cfg.paypal_client_secret:
            raise RuntimeError(
                "FATAL: PAYPAL_CLIENT_ID and PAYPAL_CLIENT_SECRET must be set in production."
            )
        if cfg.download_signing_secret in _INSECURE_SECRETS:
            raise RuntimeError(
                "FATAL: DOWNLOAD_SIGNING_SECRET must be set to a strong random value in production."
            )
        if cfg.download_signing_secret == cfg.jwt_secret_key:
            raise RuntimeError(
                "FATAL: DOWNLOAD_SIGNING_SECRET must be different from JWT_SECRET_KEY in production."
            )


validate_security_posture(settings)
