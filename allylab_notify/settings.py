# allylab_notify/settings.py
"""
Application settings.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Application configuration."""

    # Webhook delivery
    webhook_timeout_seconds: float = float(os.getenv("WEBHOOK_TIMEOUT", "10"))
    webhook_max_retries: int = int(os.getenv("WEBHOOK_MAX_RETRIES", "5"))
    webhook_base_delay_ms: int = int(os.getenv("WEBHOOK_BASE_DELAY_MS", "1000"))
    webhook_max_delay_ms: int = int(os.getenv("WEBHOOK_MAX_DELAY_MS", "60000"))
    webhook_backoff_multiplier: float = float(os.getenv("WEBHOOK_BACKOFF_MULTIPLIER", "2"))
    webhook_max_workers: int = int(os.getenv("WEBHOOK_MAX_WORKERS", "8"))
    webhook_delivery_log_size: int = int(os.getenv("WEBHOOK_DELIVERY_LOG_SIZE", "500"))
    webhook_user_agent: str = os.getenv("WEBHOOK_USER_AGENT", "AllyLab-Webhook/1.0")

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_json: bool = _env_bool("LOG_JSON", "true")
    log_file: Optional[str] = os.getenv("LOG_FILE")

    # API settings
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    allowed_origins: str = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:8000")


# Global settings instance
settings = Settings()
