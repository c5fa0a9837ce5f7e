from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# The .env file lives in the backend folder
env_path = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(dotenv_path=env_path)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Centralised runtime configuration for the Wrapper Studio backend."""

    # LLM provider selection
    llm_provider: Literal["gemini", "openai"] = Field(
        default="gemini", description="Which LLM provider answers chat requests."
    )
    llm_timeout_seconds: float = Field(
        default=60.0,
        description="Upper bound on a single model call before it is reported as failed.",
    )

    # Gemini configuration
    google_api_key: str | None = Field(default=None)
    gemini_model: str = Field(
        default="gemini-pro",
        description="Model id used when a wrapper's base model has no entry in the name table.",
    )

    # OpenAI configuration
    openai_api_key: str | None = Field(default=None)
    openai_model: str = Field(default="gpt-4o-mini")

    # Storage configuration
    storage_backend: Literal["memory", "supabase"] = Field(default="memory")
    supabase_url: str | None = Field(default=None)
    supabase_key: str | None = Field(default=None)
    seed_demo_data: bool = Field(default=True)

    # HTTP
    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables and sensible defaults."""

    llm_provider = os.getenv("LLM_PROVIDER", "gemini").lower()
    storage_backend = os.getenv("STORAGE_BACKEND", "memory").lower()

    return Settings(
        llm_provider=llm_provider if llm_provider in {"gemini", "openai"} else "gemini",
        llm_timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "60")),
        google_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-pro"),
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        storage_backend=storage_backend if storage_backend in {"memory", "supabase"} else "memory",
        supabase_url=os.getenv("SUPABASE_URL"),
        supabase_key=os.getenv("SUPABASE_KEY"),
        seed_demo_data=_env_flag("SEED_DEMO_DATA", True),
        api_prefix=os.getenv("API_PREFIX", "/api").rstrip("/"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


__all__ = ["Settings", "get_settings"]
