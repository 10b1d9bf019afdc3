"""
Configuration Settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # App info
    app_name: str = "Parley"
    app_version: str = "1.0.0"
    debug: bool = False

    # Storage
    local_storage_path: str = "./data"

    # Default provider, created on first start when none is stored
    llm_provider: str = "openai"  # "openai", "anthropic" or "google"
    llm_api_key: Optional[str] = None
    llm_base_url: Optional[str] = None  # uses provider default if not set
    llm_timeout: float = 120.0

    # Conversation engine
    ui_flush_interval: float = 0.2  # seconds between visible content updates while streaming
    autogen_title: bool = True
    max_tool_rounds: int = 8  # tool dispatch rounds per run before giving up

    # Tools
    web_search_api_key: Optional[str] = None
    web_search_provider: str = "tavily"
    image_api_key: Optional[str] = None
    image_base_url: Optional[str] = None
    image_model: str = "dall-e-3"

    # CORS
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Logging configuration
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file_path: str = "./logs/parley.log"
    log_file_enabled: bool = True
    log_console_enabled: bool = True
    log_json_format: bool = True  # JSON format for files, human-readable for console


settings = Settings()
