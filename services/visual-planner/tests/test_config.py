from visual_planner.config import (
    COOLDOWN_SECONDS,
    DEFAULT_BASE_URL,
    DEFAULT_MODEL,
    load_model_pools,
    load_settings,
)


def test_defaults_without_environment():
    settings = load_settings({})
    assert settings.base_url == DEFAULT_BASE_URL
    assert settings.default_model == DEFAULT_MODEL
    assert settings.cooldown_seconds == COOLDOWN_SECONDS
    assert settings.high_reasoning_models == []
    assert settings.fast_models == []


def test_environment_overrides():
    settings = load_settings({
        "LLM_BASE_URL": "http://proxy:9000",
        "LLM_API_KEY": "sk-real",
        "LLM_MODEL": "claude-opus",
        "LLM_TIMEOUT_SECONDS": "12.5",
        "HIGH_REASONING_MODELS": "pro-1, pro-2,,",
        "FAST_MODELS": "flash",
        "MODEL_COOLDOWN_SECONDS": "30",
    })
    assert settings.base_url == "http://proxy:9000"
    assert settings.api_key == "sk-real"
    assert settings.default_model == "claude-opus"
    assert settings.timeout_seconds == 12.5
    assert settings.high_reasoning_models == ["pro-1", "pro-2"]
    assert settings.fast_models == ["flash"]
    assert settings.cooldown_seconds == 30.0


def write_pools(tmp_path):
    path = tmp_path / "models.yaml"
    path.write_text("high_reasoning:\n  - gemini-3-pro-preview\n  - claude-opus\nfast:\n  - gemini-2.5-flash\n")
    return str(path)


def test_pools_from_yaml(tmp_path):
    settings = load_settings({"MODEL_POOLS_PATH": write_pools(tmp_path)})
    assert settings.high_reasoning_models == ["gemini-3-pro-preview", "claude-opus"]
    assert settings.fast_models == ["gemini-2.5-flash"]


def test_environment_pools_take_precedence_over_yaml(tmp_path):
    settings = load_settings({"MODEL_POOLS_PATH": write_pools(tmp_path), "FAST_MODELS": "flash-lite"})
    assert settings.high_reasoning_models == []
    assert settings.fast_models == ["flash-lite"]


def test_missing_or_empty_yaml(tmp_path):
    assert load_model_pools(str(tmp_path / "missing.yaml")) == ([], [])
    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    assert load_model_pools(str(empty)) == ([], [])


def test_listen_address():
    assert (load_settings({}).host, load_settings({}).port) == ("0.0.0.0", 8010)
    settings = load_settings({"HOST": "127.0.0.1", "PORT": "9100"})
    assert (settings.host, settings.port) == ("127.0.0.1", 9100)
