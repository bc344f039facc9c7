# ==================================================================================
# core/config.py: Sortify Configuration (Postgres + SendGrid + Stripe + Pydantic v2)
# ==================================================================================
import logging
import sys

from pydantic import EmailStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # ------------------------
    # DATABASE CONFIG
    # ------------------------
    DATABASE_URL: str

    # ------------------------
    # SECURITY CONFIG
    # ------------------------
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # ------------------------
    # SENDGRID EMAIL CONFIG
    # ------------------------
    SENDGRID_API_KEY: str | None = None
    MAIL_FROM: EmailStr | None = None  # Example: "billing@sortifyapp.com"

    # ------------------------
    # FRONTEND & BACKEND CONFIG
    # ------------------------
    FRONTEND_URL: str = "http://localhost:5173"
    BACKEND_URL: str = "http://localhost:8000"

    # ------------------------
    # STRIPE / PAYMENT CONFIG
    # ------------------------
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None

    @property
    def STRIPE_SUCCESS_URL(self) -> str:
        """Where Stripe checkout sends the customer after paying."""
        return f"{self.FRONTEND_URL}/settings?subscription=success&session_id={{CHECKOUT_SESSION_ID}}"

    @property
    def STRIPE_CANCEL_URL(self) -> str:
        return f"{self.FRONTEND_URL}/settings?subscription=cancelled"

    @property
    def STRIPE_PORTAL_RETURN_URL(self) -> str:
        return f"{self.FRONTEND_URL}/settings"

    # ------------------------
    # TRIAL / LICENSE ENFORCEMENT
    # ------------------------
    # Allow gated actions when the trial state cannot be evaluated
    TRIAL_GATE_FAIL_OPEN: bool = True
    # Deliveries of one webhook event that may miss its organization before it is dropped
    WEBHOOK_LOOKUP_MAX_ATTEMPTS: int = 3

    # ------------------------
    # ENVIRONMENT SETTINGS
    # ------------------------
    ENVIRONMENT: str = "development"  # 'development' | 'production'
    DEBUG: bool = True

    @property
    def IS_PRODUCTION(self) -> bool:
        """Convenience helper to check if running in production"""
        return self.ENVIRONMENT.lower() == "production"

    # ------------------------
    # Pydantic v2 Settings
    # ------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# ------------------------
# Global Settings Loader
# ------------------------
try:
    settings = Settings()
    logger.info("✅ Environment loaded: %s (debug=%s)", settings.ENVIRONMENT, settings.DEBUG)
except ValidationError as e:
    logger.critical("❌ Environment configuration error, missing or invalid settings!\n%s", e)
    sys.exit(1)
