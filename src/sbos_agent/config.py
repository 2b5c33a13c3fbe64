"""Configuration settings for the application."""

from typing import (
    Any,
    Dict,
    List,
)

from pydantic_settings import (
    BaseSettings,
    SettingsConfigDict,
)


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = False
    DATA_DIR: str = "./data"
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # Provider configuration
    PROVIDER: str = "openai"  # Options: openai, openrouter, anthropic
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str | None = None
    OPENROUTER_API_KEY: str | None = None
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    ANTHROPIC_API_KEY: str | None = None
    SITE_URL: str = "http://localhost:5000"
    APP_TITLE: str = "SB-OS Agent"

    # Model cascade, in preference order
    MODEL_CASCADE: List[Dict[str, Any]] = [
        {"identifier": "gpt-4o", "max_retries": 2, "label": "Primary - Best quality"},
        {"identifier": "gpt-4o-mini", "max_retries": 2, "label": "Fallback 1 - Fast and efficient"},
        {"identifier": "gpt-4-turbo", "max_retries": 1, "label": "Fallback 2 - Reliable alternative"},
    ]
    COMPLEXITY_MODELS: Dict[str, str] = {
        "simple": "gpt-4o-mini",
        "moderate": "gpt-4o-mini",
        "complex": "gpt-4o",
    }
    PREFERRED_MODEL_RETRIES: int = 2

    # Retry / backoff
    BACKOFF_BASE_SECONDS: float = 1.0
    BACKOFF_CAP_SECONDS: float = 10.0

    # Agent turn loop
    DEFAULT_TEMPERATURE: float = 0.7
    MAX_TURNS: int = 5
    HISTORY_WINDOW: int = 10

    # Deadlines (seconds)
    REQUEST_TIMEOUT: float = 60.0
    TOOL_TIMEOUT: float = 30.0
    TURN_TIMEOUT: float | None = 180.0
    # Budget for writing the cancellation marker once the turn deadline has passed
    CANCEL_FLUSH_TIMEOUT: float = 5.0


settings = Settings()
