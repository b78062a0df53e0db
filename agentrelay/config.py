from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from agentrelay.logging import get_logger

logger = get_logger(__name__)


class SlotBackend(str, Enum):
    """Response slot store implementations."""

    MEMORY = "memory"
    REDIS = "redis"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings read from the environment and an optional .env file."""

    slot_store_backend: SlotBackend = env_field(
        SlotBackend.REDIS,
        "SLOT_STORE_BACKEND",
        description="memory keeps slots in-process; redis shares them across instances",
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    redis_token: str | None = env_field(
        None, "REDIS_TOKEN", description="Access token sent as the Redis password"
    )
    redis_socket_timeout: float = env_field(5.0, "REDIS_SOCKET_TIMEOUT")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Use synchronous Redis clients and permit runtime resets",
    )
    completion_api_key: str | None = env_field(None, "OPENAI_API_KEY")
    completion_base_url: str = env_field("https://api.openai.com/v1", "OPENAI_BASE_URL")
    completion_model: str = env_field("gpt-4o-mini", "COMPLETION_MODEL")
    completion_temperature: float = env_field(0.7, "COMPLETION_TEMPERATURE")
    completion_timeout_seconds: float = env_field(30.0, "COMPLETION_TIMEOUT_SECONDS")
    agent_system_prompt: str = env_field(
        "You are a friendly assistant replying to direct messages. Keep answers short.",
        "AGENT_SYSTEM_PROMPT",
    )
    memory_sweep_interval_seconds: int = env_field(
        60,
        "MEMORY_SWEEP_INTERVAL_SECONDS",
        description="How often the in-process store purges expired slots",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("slot_store_backend", mode="before")
    @classmethod
    def _validate_backend(cls, value: Any) -> SlotBackend:
        if isinstance(value, str):
            value = value.strip().lower()
        return SlotBackend(value)

    @field_validator("memory_sweep_interval_seconds")
    @classmethod
    def _validate_sweep_interval(cls, value: int) -> int:
        if value < 1:
            logger.warning(
                "memory_sweep_interval_clamped",
                requested=value,
                message="Sweep interval must be at least 1 second",
            )
            return 1
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
