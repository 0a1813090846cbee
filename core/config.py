from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Payment provider webhooks
    STRIPE_WEBHOOK_SECRET: str = ""
    WEBHOOK_TOLERANCE_SECONDS: int = Field(default=300, ge=0)

    # Influencer promotion
    INFLUENCER_REFERRAL_THRESHOLD: int = Field(default=100, ge=1)

    # Notifications
    NOTIFIER_URL: Optional[str] = None
    NOTIFIER_TIMEOUT_SECONDS: float = 5.0

    CORS_ALLOW_ORIGINS: str = "*"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ALLOW_ORIGINS.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
