"""
Configuration Settings.
"""

from typing import Dict, Literal, Optional

from pydantic_settings import BaseSettings

from ..session.state import ModelVersion


class ConfigurationError(Exception):
    """Required configuration is missing; the process cannot start."""


class Settings(BaseSettings):
    """Application settings."""

    # App info
    app_name: str = "ChatRelay"
    app_version: str = "1.0.0"
    debug: bool = False

    # Storage
    database_url: str = "sqlite+aiosqlite:///./data/chatrelay.db"

    # Telegram transport
    telegram_bot_token: Optional[str] = None
    telegram_api_base: str = "https://api.telegram.org"
    telegram_mode: Literal["polling", "webhook"] = "polling"
    telegram_webhook_url: Optional[str] = None  # public URL of /telegram/webhook
    telegram_webhook_secret: Optional[str] = None
    telegram_polling_timeout: int = 30  # seconds, long polling

    # LLM Provider settings
    llm_provider: str = "openai"  # "openai" or "volcengine"
    llm_api_key: Optional[str] = None
    llm_base_url: Optional[str] = None  # uses provider default if not set
    llm_timeout: float = 120.0
    # Provider model ids for /gpt3 and /gpt4 (unset: the provider's own mapping)
    llm_model_fast: Optional[str] = None
    llm_model_capable: Optional[str] = None

    # Legacy key (still accepted)
    openai_api_key: Optional[str] = None

    # Conversation
    typing_interval_seconds: float = 10.0

    # Logging configuration
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file_path: str = "./logs/chatrelay.log"
    log_file_enabled: bool = True
    log_console_enabled: bool = True
    log_json_format: bool = True  # JSON format for files, human-readable for console
    log_api_requests: bool = True  # Log webhook requests
    log_llm_calls: bool = True  # Log LLM calls with token usage

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def llm_model_map(self) -> Dict[str, str]:
        """Chat model choice -> provider model id, for the configured overrides."""
        model_map = {}
        if self.llm_model_fast:
            model_map[ModelVersion.GPT35_TURBO.value] = self.llm_model_fast
        if self.llm_model_capable:
            model_map[ModelVersion.GPT4.value] = self.llm_model_capable
        return model_map

    @property
    def completion_api_key(self) -> Optional[str]:
        return self.llm_api_key or self.openai_api_key

    def validate_required(self) -> None:
        """
        Check the settings the bot cannot run without.

        Raises:
            ConfigurationError: naming every missing setting
        """
        missing = []
        if not self.telegram_bot_token:
            missing.append("TELEGRAM_BOT_TOKEN")
        if not self.completion_api_key:
            missing.append("LLM_API_KEY")
        if self.telegram_mode == "webhook" and not self.telegram_webhook_url:
            missing.append("TELEGRAM_WEBHOOK_URL")
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )


settings = Settings()
