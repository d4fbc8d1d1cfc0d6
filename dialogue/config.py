from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .exceptions import ConfigError


_TRUE = ("1", "true", "yes", "on")


def load_env_files() -> None:
    """Load the first .env found next to the project or in the working directory."""
    here = Path(__file__).resolve().parents[1]
    for env_path in (here / ".env", Path.cwd() / ".env"):
        if env_path.is_file():
            load_dotenv(dotenv_path=str(env_path), override=False)
            return


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE


def _env_int(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from e


def _env_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from e


@dataclass
class SimulationConfig:
    # turn loop
    max_turns: int = 10
    infinite_mode: bool = False
    low_engagement_patience: int = 3

    # episodic memory
    use_past_memories: bool = False
    memory_injection_window: int = 3
    memory_fragment_words: int = 30
    memory_limit: int = 5
    db_path: str = "conversations.db"

    # topics / engagement
    lull_threshold: int = 3
    min_message_length: int = 20
    max_message_length: int = 200
    engagement_window: int = 10
    low_engagement_threshold: float = 0.4
    high_engagement_threshold: float = 0.7

    # pacing
    enable_pauses: bool = True
    enable_thinking: bool = True
    enable_acknowledgment: bool = True
    min_pause_seconds: float = 0.5
    max_pause_seconds: float = 2.0
    thinking_seconds: float = 0.8
    thinking_probability: float = 0.1
    acknowledgment_probability: float = 0.15

    # hub
    max_context_messages: int = 25
    enable_summarization: bool = True
    enable_trace_plugin: bool = False

    # model
    model: str = "gpt-4o-mini"
    temperature: float = 0.8
    max_tokens: int = 300
    base_url: Optional[str] = None
    api_key: Optional[str] = None

    # logging
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    @property
    def pacing_enabled(self) -> bool:
        return self.enable_pauses or self.enable_thinking

    @classmethod
    def from_env(cls, require_api_key: bool = True, **overrides: Any) -> "SimulationConfig":
        """Build the config from defaults, then environment (and .env), then ``overrides``.

        Env vars mirror the field names upper-cased (MAX_TURNS, INFINITE_MODE, ...);
        model settings use OPENAI_MODEL, OPENAI_TEMPERATURE, OPENAI_MAX_TOKENS,
        OPENAI_BASE_URL and OPENAI_API_KEY; the database path is MEMORY_DB_PATH.
        """
        load_env_files()
        d = cls()
        values: Dict[str, Any] = {
            "max_turns": _env_int("MAX_TURNS", d.max_turns),
            "infinite_mode": _env_bool("INFINITE_MODE", d.infinite_mode),
            "low_engagement_patience": _env_int("LOW_ENGAGEMENT_PATIENCE", d.low_engagement_patience),
            "use_past_memories": _env_bool("USE_PAST_MEMORIES", d.use_past_memories),
            "memory_injection_window": _env_int("MEMORY_INJECTION_WINDOW", d.memory_injection_window),
            "memory_fragment_words": _env_int("MEMORY_FRAGMENT_WORDS", d.memory_fragment_words),
            "memory_limit": _env_int("MEMORY_LIMIT", d.memory_limit),
            "db_path": os.getenv("MEMORY_DB_PATH", d.db_path),
            "lull_threshold": _env_int("LULL_THRESHOLD", d.lull_threshold),
            "min_message_length": _env_int("MIN_MESSAGE_LENGTH", d.min_message_length),
            "max_message_length": _env_int("MAX_MESSAGE_LENGTH", d.max_message_length),
            "engagement_window": _env_int("ENGAGEMENT_WINDOW", d.engagement_window),
            "low_engagement_threshold": _env_float("LOW_ENGAGEMENT_THRESHOLD", d.low_engagement_threshold),
            "high_engagement_threshold": _env_float("HIGH_ENGAGEMENT_THRESHOLD", d.high_engagement_threshold),
            "enable_pauses": _env_bool("ENABLE_PAUSES", d.enable_pauses),
            "enable_thinking": _env_bool("ENABLE_THINKING", d.enable_thinking),
            "enable_acknowledgment": _env_bool("ENABLE_ACKNOWLEDGMENT", d.enable_acknowledgment),
            "min_pause_seconds": _env_float("MIN_PAUSE_SECONDS", d.min_pause_seconds),
            "max_pause_seconds": _env_float("MAX_PAUSE_SECONDS", d.max_pause_seconds),
            "thinking_seconds": _env_float("THINKING_SECONDS", d.thinking_seconds),
            "thinking_probability": _env_float("THINKING_PROBABILITY", d.thinking_probability),
            "acknowledgment_probability": _env_float("ACKNOWLEDGMENT_PROBABILITY", d.acknowledgment_probability),
            "max_context_messages": _env_int("MAX_CONTEXT_MESSAGES", d.max_context_messages),
            "enable_summarization": _env_bool("ENABLE_SUMMARIZATION", d.enable_summarization),
            "enable_trace_plugin": _env_bool("ENABLE_TRACE_PLUGIN", d.enable_trace_plugin),
            "model": os.getenv("OPENAI_MODEL", d.model),
            "temperature": _env_float("OPENAI_TEMPERATURE", d.temperature),
            "max_tokens": _env_int("OPENAI_MAX_TOKENS", d.max_tokens),
            "base_url": os.getenv("OPENAI_BASE_URL") or None,
            "api_key": os.getenv("OPENAI_API_KEY") or None,
            "log_level": os.getenv("LOG_LEVEL", d.log_level).upper(),
            "log_dir": os.getenv("LOG_DIR") or None,
        }
        known = {f.name for f in fields(cls)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigError(f"Unknown config overrides: {sorted(unknown)}")
        values.update({k: v for k, v in overrides.items() if v is not None})
        cfg = cls(**values)
        cfg.validate(require_api_key=require_api_key)
        return cfg

    def with_overrides(self, **overrides: Any) -> "SimulationConfig":
        cfg = replace(self, **{k: v for k, v in overrides.items() if v is not None})
        cfg.validate(require_api_key=False)
        return cfg

    def validate(self, require_api_key: bool = True) -> None:
        if self.max_turns < 1:
            raise ConfigError("max_turns must be at least 1")
        if self.lull_threshold < 1:
            raise ConfigError("lull_threshold must be at least 1")
        if self.engagement_window < 1:
            raise ConfigError("engagement_window must be at least 1")
        if self.max_context_messages < 1:
            raise ConfigError("max_context_messages must be at least 1")
        if self.min_message_length < 0 or self.max_message_length < self.min_message_length:
            raise ConfigError("message length bounds must satisfy 0 <= min <= max")
        for name in (
            "low_engagement_threshold",
            "high_engagement_threshold",
            "thinking_probability",
            "acknowledgment_probability",
        ):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"{name} must be within [0, 1], got {value}")
        if self.min_pause_seconds < 0 or self.max_pause_seconds < self.min_pause_seconds:
            raise ConfigError("pause bounds must satisfy 0 <= min <= max")
        if require_api_key and not self.api_key and not self.base_url:
            raise ConfigError("OPENAI_API_KEY not set (or set OPENAI_BASE_URL for a local server)")
