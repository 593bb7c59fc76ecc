import os
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional, List

env = os.getenv("APP_ENV", "development")
env_file = f".env.{env}"

class Settings(BaseSettings):
    # postgresql+asyncpg://... in production, sqlite+aiosqlite://... for local runs
    database_url: str
    # Conversational memory lives in Redis; unset means in-process memory
    redis_url: Optional[str] = None
    # CORS origins can be overridden via CORS_ORIGINS env var (JSON list or comma-separated)
    cors_origins: List[str] = Field(default=["http://localhost:3001"])
    # JWT configuration
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    refresh_token_expire_days: int = 7

    # API keys
    google_api_key: Optional[str] = None

    # AI assistant
    ai_model: str = "gemini-2.5-flash"
    ai_mention_trigger: str = "@ai"
    ai_sender_name: str = "AI Assistant"
    context_window_size: int = Field(50, ge=1)
    prompt_context_size: int = Field(10, ge=1)

    # Messaging
    max_message_length: int = Field(5000, ge=1)
    purge_memory_on_end: bool = False

    create_tables_on_startup: bool = False
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=env_file,
        env_file_encoding="utf-8",
        extra="ignore",
    )

settings = Settings()
