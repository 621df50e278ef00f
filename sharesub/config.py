"""Application configuration via environment variables."""

from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings

_INSECURE_DEFAULTS = {"change-me-session-secret", "change-me-step-up-secret"}


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # --- App ---
    app_name: str = "Sharesub"
    app_url: str = "http://localhost:8000"
    debug: bool = False

    # --- Database ---
    database_url: str = "sqlite:///data/sharesub.db"

    @field_validator("database_url", mode="before")
    @classmethod
    def _fix_db_scheme(cls, v: str) -> str:
        """Hosted Postgres hands out postgresql:// but asyncpg needs postgresql+asyncpg://."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    # --- Redis (plan locks across processes, arq worker) ---
    redis_url: str = ""

    # --- Signed tokens ---
    session_secret: str = "change-me-session-secret"
    step_up_secret: str = "change-me-step-up-secret"
    jwt_algorithm: str = "HS256"
    session_expire_days: int = 14
    step_up_expire_minutes: int = 15

    # --- Stripe ---
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    currency: str = "usd"

    # --- Resend (email) ---
    resend_api_key: str = ""
    email_from: str = "billing@sharesub.app"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _validate_secrets(self) -> "Settings":
        """Refuse to start with insecure default secrets in production."""
        if self.debug:
            return self

        insecure = []
        if self.session_secret in _INSECURE_DEFAULTS:
            insecure.append("SESSION_SECRET")
        if self.step_up_secret in _INSECURE_DEFAULTS:
            insecure.append("STEP_UP_SECRET")

        if insecure:
            raise ValueError(
                f"Insecure default values detected for: {', '.join(insecure)}. "
                "Set these to secure random values via environment variables or .env file."
            )

        # Session and step-up tokens are different trust levels
        if self.session_secret == self.step_up_secret:
            raise ValueError("SESSION_SECRET and STEP_UP_SECRET must differ.")

        return self

    @property
    def async_database_url(self) -> str:
        """Database URL with the async driver swapped in for SQLite."""
        if self.database_url.startswith("sqlite:///"):
            return self.database_url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
        return self.database_url


@lru_cache
def get_settings() -> Settings:
    """Return cached settings singleton. Only entry points should call this."""
    return Settings()
