import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


class Settings:
    """Centralised application configuration sourced from environment variables."""

    def __init__(self) -> None:
        load_dotenv()
        self.database_path = Path(os.getenv("DATABASE_PATH", "data/backoffice.db")).resolve()
        self.payment_failure_threshold = self._get_int("PAYMENT_FAILURE_THRESHOLD", default=3)
        if self.payment_failure_threshold < 1:
            raise RuntimeError("Environment variable PAYMENT_FAILURE_THRESHOLD must be at least 1")
        self.payment_event_retention_hours = self._get_int("PAYMENT_EVENT_RETENTION_HOURS", default=72)
        self.stripe_secret_key = os.getenv("STRIPE_SECRET_KEY")
        self.stripe_webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET")
        self.stripe_timeout_seconds = self._get_float("STRIPE_TIMEOUT_SECONDS", default=20.0)
        self.admin_token_secret = os.getenv("ADMIN_TOKEN_SECRET", "change-me")
        self.admin_token_exp_minutes = self._get_int("ADMIN_TOKEN_EXP_MINUTES", default=60 * 24)
        self.admin_default_email = os.getenv("ADMIN_EMAIL")
        self.admin_default_password = os.getenv("ADMIN_PASSWORD")
        self.cron_secret = os.getenv("CRON_SECRET")
        origins = os.getenv("CORS_ALLOW_ORIGINS")
        if origins:
            self.cors_allow_origins = [item.strip() for item in origins.split(",") if item.strip()]
        else:
            self.cors_allow_origins = ["*"]

    @staticmethod
    def _get_int(key: str, default: Optional[int] = None) -> int:
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise RuntimeError(f"Missing required environment variable: {key}")
            return default
        try:
            return int(value)
        except ValueError as exc:
            raise RuntimeError(f"Environment variable {key} must be an integer") from exc

    @staticmethod
    def _get_float(key: str, default: Optional[float] = None) -> float:
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise RuntimeError(f"Missing required environment variable: {key}")
            return default
        try:
            return float(value)
        except ValueError as exc:
            raise RuntimeError(f"Environment variable {key} must be a number") from exc
