import pytest

from relay_config import RelaySettings, load_settings
from relay_errors import ConfigurationError

ENV_NAMES = (
    "HOST",
    "PORT",
    "LLM_API_KEY",
    "LLM_BASE_URL",
    "LLM_MODEL",
    "LLM_MAX_TOKENS",
    "LLM_TEMPERATURE",
    "LLM_TIMEOUT_SECONDS",
    "CONTEXT_MAX_TURNS",
    "MAILBOX_MAX_PENDING",
    "CORS_ORIGINS",
    "STATIC_DIR",
    "LOG_LEVEL",
)


@pytest.fixture
def env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_missing_api_key_is_configuration_error(env):
    env.setenv("PORT", "4000")
    with pytest.raises(ConfigurationError) as excinfo:
        load_settings(env_file=None)
    assert excinfo.value.code == "missing_api_key"


def test_blank_api_key_is_configuration_error(env):
    env.setenv("LLM_API_KEY", "   ")
    with pytest.raises(ConfigurationError) as excinfo:
        load_settings(env_file=None)
    assert excinfo.value.code == "missing_api_key"


def test_defaults(env):
    env.setenv("LLM_API_KEY", "secret")
    settings = load_settings(env_file=None)

    assert settings.host == "0.0.0.0"
    assert settings.port == 3000
    assert settings.context_max_turns == 10
    assert settings.mailbox_max_pending == 32
    assert settings.cors_origins == ["*"]
    assert settings.llm_base_url == "http://localhost:8000/v1"


def test_overrides_from_environment(env):
    env.setenv("LLM_API_KEY", "secret")
    env.setenv("HOST", "127.0.0.1")
    env.setenv("PORT", "8080")
    env.setenv("LLM_TIMEOUT_SECONDS", "5")
    env.setenv("CONTEXT_MAX_TURNS", "4")
    env.setenv("CORS_ORIGINS", "http://a.example, http://b.example")

    settings = load_settings(env_file=None)

    assert settings.host == "127.0.0.1"
    assert settings.port == 8080
    assert settings.llm_timeout_seconds == 5.0
    assert settings.context_max_turns == 4
    assert settings.cors_origins == ["http://a.example", "http://b.example"]


def test_env_file_is_read(env, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("LLM_API_KEY=from-file\nLLM_MODEL=tiny-model\n", encoding="utf-8")

    settings = load_settings(env_file=str(env_file))

    assert settings.llm_api_key == "from-file"
    assert settings.llm_model == "tiny-model"


def test_invalid_number_is_configuration_error(env):
    env.setenv("LLM_API_KEY", "secret")
    env.setenv("PORT", "not-a-port")
    with pytest.raises(ConfigurationError) as excinfo:
        load_settings(env_file=None)
    assert excinfo.value.code == "invalid_setting"


def test_constructs_by_field_name():
    settings = RelaySettings(llm_api_key="key", port=9000, _env_file=None)
    assert settings.port == 9000
