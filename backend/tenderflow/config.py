"""Application configuration using Pydantic Settings."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """TenderFlow application settings.

    Loaded from environment variables or .env file.
    """

    # --- Application ---
    APP_NAME: str = "TenderFlow"
    DEBUG: bool = False
    CORS_ORIGINS: str = "*"  # comma-separated

    # --- Workflow backend (Dify-compatible) ---
    WORKFLOW_BASE_URL: str = "http://localhost/v1"
    WORKFLOW_API_KEY: str = ""
    WORKFLOW_USER: str = "tenderflow"
    WORKFLOW_TIMEOUT: int = 600
    USER_REQUIREMENTS_KEY: str = "user_requirements"

    # --- Progress persistence ---
    PROGRESS_BACKEND: str = "redis"  # redis | memory
    REDIS_URL: str = "redis://localhost:6379/0"
    PROGRESS_KEY_PREFIX: str = "batchSubmit_"
    PROGRESS_TTL_SECONDS: int = 0  # 0 = keep until cleared
    REDIS_SOCKET_TIMEOUT: float = 3.0
    PROGRESS_IO_TIMEOUT: float = 5.0  # per save/load/clear from async code

    # --- Callbacks ---
    CALLBACK_TIMEOUT: float = 5.0

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton."""
    return Settings()
