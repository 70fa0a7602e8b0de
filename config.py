"""
config.py

Centralized configuration management using pydantic-settings.
All modules must import settings from this file.
Direct os.getenv() calls are prohibited elsewhere.
"""

from typing import Literal

from pydantic import BaseModel
from pydantic_settings import BaseSettings


class TextProviderSettings(BaseModel):
    """One entry of the ordered text-generation provider chain."""

    kind: Literal["openai", "gemini"] = "openai"
    endpoint: str = ""
    model: str
    api_key: str = ""
    timeout_seconds: float = 10.0
    max_chars: int = 220


class Settings(BaseSettings):
    """Application-wide settings loaded from .env file."""

    # Database
    mysql_host: str = "127.0.0.1"
    mysql_port: int = 3306
    mysql_user: str = "portal"
    mysql_password: str = ""
    mysql_db: str = "health_portal"
    db_pool_size: int = 10
    db_pool_timeout: float = 30.0

    # Engine lifecycle
    notification_engine_enabled: bool = True
    notification_interval_ms: int = 60000
    notification_advance_minutes: int = 15
    worker_concurrency: int = 10
    notification_body_max_length: int = 220
    vitals_lookback_minutes: int = 60

    # Alert rules (JSON file; built-in table when empty)
    alert_rules_path: str = ""

    # Text generation chain (JSON list in TEXT_PROVIDERS)
    text_providers: list[TextProviderSettings] = []

    # Legacy per-vendor keys, used when text_providers is empty
    openai_api_key: str = ""
    openai_api_url: str = "https://api.openai.com/v1/chat/completions"
    openai_model: str = "gpt-4o-mini"
    glm_api_key: str = ""
    glm_api_url: str = "https://open.bigmodel.cn/api/paas/v4/chat/completions"
    glm_model: str = "glm-4"
    google_api_key: str = ""
    llm_model: str = "gemini-2.0-flash"
    ai_request_timeout_seconds: float = 10.0

    # Push notifications
    # Service-account JSON; with only a project id, application default credentials are used
    firebase_credentials_path: str = ""
    firebase_project_id: str = ""
    push_timeout_seconds: float = 5.0

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


settings = Settings()
