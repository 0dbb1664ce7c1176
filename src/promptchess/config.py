"""
Configuration and environment loading for PromptChess.

- Loads settings.yml (YAML) from repo root if present; falls back to environment variables
  (a local .env file is loaded into the environment first).
- Exposes SETTINGS with keys used across the project (LLM provider/key/model, engine knobs,
  retry budgets).
- The engine binary path is resolved once here; EngineProcess receives it as a plain value.
"""
from dataclasses import dataclass
import logging
import os
import shutil
from typing import Any, Callable

import yaml
from dotenv import load_dotenv

load_dotenv()

log = logging.getLogger("config")

# Checked in order when STOCKFISH_PATH is not set
STOCKFISH_SEARCH_PATHS = (
    "/opt/homebrew/bin/stockfish",  # Homebrew on Apple Silicon
    "/usr/local/bin/stockfish",     # Homebrew on Intel Mac
    "/usr/bin/stockfish",           # Linux package manager
)


def _repo_root() -> str:
    # this file: src/promptchess/config.py → repo root is two levels up
    return os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))


def _load_yaml(path: str) -> dict:
    if not os.path.isfile(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError):
        log.exception("Failed to read %s; using environment only", path)
        return {}
    return data if isinstance(data, dict) else {}


_cfg = _load_yaml(os.path.join(_repo_root(), "settings.yml"))


def _get(name: str, default: Any, cast: Callable[[Any], Any] | None = None) -> Any:
    if name in _cfg:
        val = _cfg[name]
        return cast(val) if cast else val
    env = os.environ.get(name)
    if env is not None:
        return cast(env) if cast else env
    return default


def resolve_stockfish_path(explicit: str | None = None) -> str:
    """Return the engine binary to launch.

    Precedence:
      1. explicit value (STOCKFISH_PATH from settings/env)
      2. first existing well-known install location
      3. 'stockfish' on PATH
      4. the bare name 'stockfish' (spawn will fail loudly later)
    """
    if explicit:
        return explicit
    for path in STOCKFISH_SEARCH_PATHS:
        if os.path.isfile(path):
            return path
    return shutil.which("stockfish") or "stockfish"


@dataclass(frozen=True)
class Settings:
    # Language-model endpoint (OpenAI-compatible wire format)
    llm_provider: str
    llm_model: str
    llm_api_key: str
    api_base: str
    responses_timeout_s: float
    llm_max_tokens: int
    llm_temperature: float

    # Engine subprocess
    stockfish_path: str
    engine_handshake_timeout_s: float
    engine_move_timeout_s: float
    engine_think_ms: int
    engine_quit_timeout_s: float

    # Move generation / accounting
    max_move_attempts: int
    cost_cents_per_1k_tokens: float

    # Job layer
    max_concurrency: int
    retry_engine_timeout: int
    retry_engine_crash: int
    retry_llm_api: int
    retry_wait_s: float


SETTINGS = Settings(
    llm_provider=_get("PROMPTCHESS_LLM_PROVIDER", "openai"),
    llm_model=_get("PROMPTCHESS_LLM_MODEL", ""),
    llm_api_key=_get("PROMPTCHESS_LLM_API_KEY", _get("OPENAI_API_KEY", "")),
    api_base=_get("PROMPTCHESS_LLM_BASE_URL", ""),
    responses_timeout_s=float(_get("PROMPTCHESS_RESPONSES_TIMEOUT_S", 60.0, cast=float)),
    llm_max_tokens=int(_get("PROMPTCHESS_LLM_MAX_TOKENS", 1000, cast=int)),
    llm_temperature=float(_get("PROMPTCHESS_LLM_TEMPERATURE", 0.7, cast=float)),
    stockfish_path=resolve_stockfish_path(_get("STOCKFISH_PATH", None)),
    engine_handshake_timeout_s=float(_get("PROMPTCHESS_ENGINE_HANDSHAKE_TIMEOUT_S", 5.0, cast=float)),
    engine_move_timeout_s=float(_get("PROMPTCHESS_ENGINE_MOVE_TIMEOUT_S", 5.0, cast=float)),
    engine_think_ms=int(_get("PROMPTCHESS_ENGINE_THINK_MS", 1000, cast=int)),
    engine_quit_timeout_s=float(_get("PROMPTCHESS_ENGINE_QUIT_TIMEOUT_S", 2.0, cast=float)),
    max_move_attempts=int(_get("PROMPTCHESS_MAX_MOVE_ATTEMPTS", 3, cast=int)),
    cost_cents_per_1k_tokens=float(_get("PROMPTCHESS_COST_CENTS_PER_1K_TOKENS", 0.0, cast=float)),
    max_concurrency=int(_get("PROMPTCHESS_MAX_CONCURRENCY", 4, cast=int)),
    retry_engine_timeout=int(_get("PROMPTCHESS_RETRY_ENGINE_TIMEOUT", 3, cast=int)),
    retry_engine_crash=int(_get("PROMPTCHESS_RETRY_ENGINE_CRASH", 2, cast=int)),
    retry_llm_api=int(_get("PROMPTCHESS_RETRY_LLM_API", 3, cast=int)),
    retry_wait_s=float(_get("PROMPTCHESS_RETRY_WAIT_S", 5.0, cast=float)),
)
