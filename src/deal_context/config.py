"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Redis (credentials + thread context)
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_SOCKET_TIMEOUT: float = 5.0

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # HubSpot OAuth app + portal
    HUBSPOT_CLIENT_ID: str = ""
    HUBSPOT_CLIENT_SECRET: str = ""
    HUBSPOT_PORTAL_ID: str = ""
    HUBSPOT_BASE_URL: str = "https://api.hubapi.com"
    HUBSPOT_TIMEOUT: float = 10.0
    TOKEN_EXCHANGE_TIMEOUT: float = 10.0

    # Slack app
    SLACK_CLIENT_ID: str = ""
    SLACK_CLIENT_SECRET: str = ""
    SLACK_SIGNING_SECRET: str = ""
    SLACK_BOT_TOKEN: str = ""  # Static fallback when Redis is unreachable
    SLACK_BASE_URL: str = "https://slack.com/api"
    SLACK_TIMEOUT: float = 2.5

    # LLM Providers
    ANTHROPIC_API_KEY: str = ""
    OPENAI_API_KEY: str = ""
    LLM_TIMEOUT: int = 20
    LLM_MAX_RETRIES: int = 1

    # Orchestration
    TIMEOUT_NOTICE_SECONDS: float = 8.0  # Below the host platform's hard limit
    THREAD_CONTEXT_TTL_SECONDS: int = 86400

    # Monitoring
    SENTRY_DSN: str = ""

    def hubspot_deal_url(self, deal_id: str) -> str:
        """Return the HubSpot UI link for a deal, portal-scoped when known."""
        if self.HUBSPOT_PORTAL_ID:
            return f"https://app.hubspot.com/contacts/{self.HUBSPOT_PORTAL_ID}/deal/{deal_id}"
        return f"https://app.hubspot.com/deals/{deal_id}"


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
