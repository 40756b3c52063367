"""Configuration models for the consultation service."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field, ValidationError

from consult_agent.errors import ConfigurationError


class RateLimitConfig(BaseModel):
    """Per-client request and token budgets over a rolling window."""

    max_requests_per_window: int = Field(default=100, ge=1)
    max_tokens_per_request: int = Field(default=50_000, ge=1)
    max_tokens_per_window: int = Field(default=500_000, ge=1)
    window_seconds: float = Field(default=3600.0, gt=0.0)


class CacheConfig(BaseModel):
    """Configures the in-memory response cache."""

    enabled: bool = True
    max_entries: int = Field(default=1000, ge=1)
    consultation_ttl_seconds: float = Field(default=3600.0, gt=0.0)
    debug: bool = False


class ContextConfig(BaseModel):
    """Configures multi-source context gathering."""

    enabled: bool = True
    max_context_tokens: int = Field(default=32_000, ge=1)
    source_timeout_seconds: float = Field(default=5.0, gt=0.0)
    disabled_sources: list[str] = Field(default_factory=list)
    workspace_root: str = "."


class ModelConfig(BaseModel):
    """Configures the model-invocation backend."""

    model: str = "gpt-5-mini"
    api_key: str | None = None
    max_tokens: int = Field(default=1024, ge=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    request_timeout_seconds: float = Field(default=60.0, gt=0.0)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_format: bool = True


class BatchConfig(BaseModel):
    max_items: int = Field(default=10, ge=1, le=10)


class ConsultantConfig(BaseModel):
    """Aggregate service configuration."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    maintenance_interval_seconds: float = Field(default=300.0, gt=0.0)


def load_config_from_env(environ: Mapping[str, str] | None = None) -> ConsultantConfig:
    """Build a `ConsultantConfig` from environment variables.

    This is the only place environment variables are read. Unset variables keep
    the model defaults; malformed ones raise `ConfigurationError`.
    """

    env = os.environ if environ is None else environ

    def _get(name: str) -> str | None:
        value = env.get(name)
        if value is None or value.strip() == "":
            return None
        return value.strip()

    def _flag(name: str) -> bool | None:
        value = _get(name)
        if value is None:
            return None
        return value.lower() in ("true", "1", "yes")

    def _section(**values: object) -> dict[str, object]:
        return {key: value for key, value in values.items() if value is not None}

    disabled = _get("DISABLED_CONTEXT_SOURCES")
    raw = {
        "model": _section(
            api_key=_get("OPENAI_API_KEY"),
            model=_get("OPENAI_MODEL"),
            max_tokens=_get("OPENAI_MAX_TOKENS"),
            request_timeout_seconds=_get("REQUEST_TIMEOUT_SECONDS"),
        ),
        "rate_limit": _section(
            max_requests_per_window=_get("RATE_LIMIT_MAX_REQUESTS"),
            max_tokens_per_request=_get("RATE_LIMIT_MAX_TOKENS_PER_REQUEST"),
            max_tokens_per_window=_get("RATE_LIMIT_MAX_TOKENS"),
            window_seconds=_get("RATE_LIMIT_WINDOW_SECONDS"),
        ),
        "cache": _section(
            enabled=_flag("ENABLE_RESPONSE_CACHE"),
            consultation_ttl_seconds=_get("CACHE_TTL_SECONDS"),
            max_entries=_get("CACHE_MAX_ENTRIES"),
        ),
        "context": _section(
            max_context_tokens=_get("MAX_CONTEXT_TOKENS"),
            source_timeout_seconds=_get("CONTEXT_SOURCE_TIMEOUT_SECONDS"),
            disabled_sources=(
                [name.strip() for name in disabled.split(",") if name.strip()]
                if disabled
                else None
            ),
            workspace_root=_get("WORKSPACE_ROOT"),
        ),
        "logging": _section(
            level=_get("LOG_LEVEL"),
            json_format=_flag("LOG_JSON"),
        ),
    }

    try:
        return ConsultantConfig.model_validate(raw)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(part) for part in err["loc"]) for err in exc.errors())
        raise ConfigurationError(f"Invalid environment configuration: {fields}") from exc
