"""Service configuration.

Connection settings come from environment variables.  Model pools come from
``HIGH_REASONING_MODELS`` / ``FAST_MODELS`` (comma separated) or, when those
are unset, from the YAML file at ``MODEL_POOLS_PATH``::

    high_reasoning:
      - gemini-3-pro-preview
      - claude-opus
    fast:
      - gemini-2.5-flash
"""

from __future__ import annotations

import logging
import os
from typing import Mapping

import yaml
from pydantic import BaseModel, Field

log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:8317"
DEFAULT_MODEL = "gemini-3-pro-preview"
DEFAULT_API_KEY = "sk-dummy"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8010

# Tunables.  Overridable per call; these are the production defaults.
COOLDOWN_SECONDS = 120.0
CHAT_MAX_ATTEMPTS = 3
CLASSIFY_WITH_PROMPTS_BATCH_SIZE = 10
CLASSIFY_ONLY_BATCH_SIZE = 15
BATCH_CONCURRENCY = 15
PROMPT_CONCURRENCY = 5
PROMPT_MAX_ATTEMPTS = 3
PROMPT_RETRY_DELAY_SECONDS = 2.0
CONTEXT_WINDOW_SIZE = 2
MAX_BATCH_TOKENS = 4000
SEARCH_CONCURRENCY = 4


class Settings(BaseModel):
    base_url: str = DEFAULT_BASE_URL
    api_key: str = DEFAULT_API_KEY
    default_model: str = DEFAULT_MODEL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    high_reasoning_models: list[str] = Field(default_factory=list)
    fast_models: list[str] = Field(default_factory=list)
    cooldown_seconds: float = COOLDOWN_SECONDS
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT


def _split_models(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [m.strip() for m in raw.split(",") if m.strip()]


def load_model_pools(path: str) -> tuple[list[str], list[str]]:
    """Read ``(high_reasoning, fast)`` pools from a YAML file."""
    if not os.path.exists(path):
        log.warning("model pools file not found at path=%s -- using default model only", path)
        return [], []
    with open(path, "r") as f:
        config = yaml.safe_load(f) or {}
    high = [str(m) for m in config.get("high_reasoning") or []]
    fast = [str(m) for m in config.get("fast") or []]
    log.info("model pools loaded: high_reasoning=%d fast=%d path=%s", len(high), len(fast), path)
    return high, fast


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if env is None else env

    high = _split_models(env.get("HIGH_REASONING_MODELS"))
    fast = _split_models(env.get("FAST_MODELS"))
    pools_path = env.get("MODEL_POOLS_PATH")
    if pools_path and not high and not fast:
        high, fast = load_model_pools(pools_path)

    return Settings(
        base_url=env.get("LLM_BASE_URL", DEFAULT_BASE_URL),
        api_key=env.get("LLM_API_KEY", DEFAULT_API_KEY),
        default_model=env.get("LLM_MODEL", DEFAULT_MODEL),
        timeout_seconds=float(env.get("LLM_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)),
        high_reasoning_models=high,
        fast_models=fast,
        cooldown_seconds=float(env.get("MODEL_COOLDOWN_SECONDS", COOLDOWN_SECONDS)),
        host=env.get("HOST", DEFAULT_HOST),
        port=int(env.get("PORT", DEFAULT_PORT)),
    )
