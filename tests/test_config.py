from __future__ import annotations

import pytest

from dialogue import config as config_module
from dialogue.config import SimulationConfig
from dialogue.exceptions import ConfigError


_ENV_KEYS = [
    "MAX_TURNS", "INFINITE_MODE", "USE_PAST_MEMORIES", "MEMORY_DB_PATH", "LULL_THRESHOLD",
    "LOW_ENGAGEMENT_THRESHOLD", "MIN_PAUSE_SECONDS", "MAX_PAUSE_SECONDS", "ENABLE_PAUSES",
    "ENABLE_THINKING", "OPENAI_API_KEY", "OPENAI_BASE_URL", "OPENAI_MODEL", "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(config_module, "load_env_files", lambda: None)


def test_defaults(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    cfg = SimulationConfig.from_env()
    assert cfg.max_turns == 10
    assert cfg.infinite_mode is False
    assert cfg.use_past_memories is False
    assert cfg.memory_injection_window == 3
    assert cfg.lull_threshold == 3
    assert cfg.min_message_length == 20
    assert cfg.engagement_window == 10
    assert (cfg.low_engagement_threshold, cfg.high_engagement_threshold) == (0.4, 0.7)
    assert (cfg.min_pause_seconds, cfg.max_pause_seconds) == (0.5, 2.0)
    assert cfg.max_context_messages == 25
    assert cfg.enable_summarization is True
    assert cfg.db_path == "conversations.db"
    assert cfg.model == "gpt-4o-mini"
    assert cfg.pacing_enabled is True


def test_environment_overrides_defaults(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("MAX_TURNS", "4")
    monkeypatch.setenv("INFINITE_MODE", "true")
    monkeypatch.setenv("USE_PAST_MEMORIES", "1")
    monkeypatch.setenv("MEMORY_DB_PATH", "/tmp/other.db")
    monkeypatch.setenv("ENABLE_PAUSES", "false")
    monkeypatch.setenv("ENABLE_THINKING", "no")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    cfg = SimulationConfig.from_env()
    assert cfg.max_turns == 4
    assert cfg.infinite_mode is True
    assert cfg.use_past_memories is True
    assert cfg.db_path == "/tmp/other.db"
    assert cfg.pacing_enabled is False
    assert cfg.log_level == "DEBUG"


def test_explicit_overrides_win(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("MAX_TURNS", "4")
    cfg = SimulationConfig.from_env(max_turns=7, db_path=None)
    assert cfg.max_turns == 7
    assert cfg.db_path == "conversations.db"

    with pytest.raises(ConfigError):
        SimulationConfig.from_env(not_a_setting=1)


def test_api_key_required_unless_local_server(monkeypatch):
    with pytest.raises(ConfigError):
        SimulationConfig.from_env()

    assert SimulationConfig.from_env(require_api_key=False).api_key is None

    monkeypatch.setenv("OPENAI_BASE_URL", "http://localhost:11434/v1")
    assert SimulationConfig.from_env().base_url == "http://localhost:11434/v1"


@pytest.mark.parametrize(
    "key, value",
    [
        ("MAX_TURNS", "many"),
        ("MAX_TURNS", "0"),
        ("LOW_ENGAGEMENT_THRESHOLD", "1.5"),
        ("LULL_THRESHOLD", "0"),
    ],
)
def test_invalid_values_fail_fast(monkeypatch, key, value):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv(key, value)
    with pytest.raises(ConfigError):
        SimulationConfig.from_env()


def test_pause_bounds_validated():
    with pytest.raises(ConfigError):
        SimulationConfig(min_pause_seconds=3.0, max_pause_seconds=1.0).validate(require_api_key=False)
    cfg = SimulationConfig().with_overrides(max_turns=2)
    assert cfg.max_turns == 2
