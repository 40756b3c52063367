import pytest

from consult_agent.config import ConsultantConfig, load_config_from_env
from consult_agent.errors import ConfigurationError


def test_defaults_without_environment() -> None:
    config = load_config_from_env({})

    assert config == ConsultantConfig()
    assert config.rate_limit.max_requests_per_window == 100
    assert config.rate_limit.max_tokens_per_request == 50_000
    assert config.rate_limit.max_tokens_per_window == 500_000
    assert config.rate_limit.window_seconds == 3600.0
    assert config.cache.enabled is True
    assert config.cache.consultation_ttl_seconds == 3600.0
    assert config.context.max_context_tokens == 32_000
    assert config.model.api_key is None


def test_environment_overrides() -> None:
    config = load_config_from_env(
        {
            "OPENAI_API_KEY": "sk-test",
            "OPENAI_MODEL": "gpt-5",
            "RATE_LIMIT_MAX_REQUESTS": "5",
            "RATE_LIMIT_WINDOW_SECONDS": "60",
            "ENABLE_RESPONSE_CACHE": "false",
            "CACHE_TTL_SECONDS": "120",
            "DISABLED_CONTEXT_SOURCES": "file, web ,",
            "LOG_LEVEL": "debug",
            "LOG_JSON": "0",
        }
    )

    assert config.model.api_key == "sk-test"
    assert config.model.model == "gpt-5"
    assert config.rate_limit.max_requests_per_window == 5
    assert config.rate_limit.window_seconds == 60.0
    assert config.cache.enabled is False
    assert config.cache.consultation_ttl_seconds == 120.0
    assert config.context.disabled_sources == ["file", "web"]
    assert config.logging.level == "debug"
    assert config.logging.json_format is False


def test_blank_values_keep_defaults() -> None:
    config = load_config_from_env({"OPENAI_API_KEY": "  ", "CACHE_MAX_ENTRIES": ""})

    assert config.model.api_key is None
    assert config.cache.max_entries == 1000


def test_malformed_values_raise_configuration_error() -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        load_config_from_env({"RATE_LIMIT_MAX_REQUESTS": "lots", "CACHE_TTL_SECONDS": "-1"})

    assert excinfo.value.code == "CONFIGURATION_ERROR"
    assert "rate_limit.max_requests_per_window" in excinfo.value.message
    assert "cache.consultation_ttl_seconds" in excinfo.value.message
