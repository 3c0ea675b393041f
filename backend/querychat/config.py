"""
Application settings (Pydantic Settings).
"""
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env next to backend/ (parent of querychat/)
_env_path = Path(__file__).resolve().parent.parent / ".env"


class Settings(BaseSettings):
    database_url: str = "sqlite:///./querychat.db"
    # Remote query service: API_BASE_URL in .env
    api_base_url: str = "http://localhost:8000"
    request_timeout_seconds: float = 60.0
    stream_timeout_seconds: float = 300.0
    max_messages_per_chat: int = 6
    max_sessions: int = 10
    context_window: int = 5  # prior messages sent with each question
    log_level: str = "INFO"

    class Config:
        env_file = _env_path
        extra = "ignore"

    @field_validator("api_base_url", mode="after")
    @classmethod
    def strip_base_url(cls, v: str) -> str:
        return (v or "").strip().rstrip("/")

    @field_validator("log_level", mode="after")
    @classmethod
    def upper_log_level(cls, v: str) -> str:
        return (v or "INFO").strip().upper()


settings = Settings()
