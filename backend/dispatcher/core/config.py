"""
Runtime configuration read from the environment.

Environment configuration:
- GEMINI_API_KEY / MANUS_API_KEY: backend credentials (absent → backend not configured)
- GEMINI_API_BASE: Base URL (default: https://generativelanguage.googleapis.com/v1beta)
- GEMINI_MODELS: Comma separated model cascade, tried in order
- GEMINI_TIMEOUT_SECONDS: Per-model request deadline (default: 30)
- MANUS_API_BASE: Base URL (default: https://api.manus.ai/v1)
- MANUS_AGENT_PROFILE: Agent profile sent on task creation (default: manus-1.6)
- MANUS_POLL_INTERVAL_SECONDS: Delay between task status polls (default: 3)
- MANUS_MAX_WAIT_SECONDS: Poll budget for synchronous requests (default: 180)
- MANUS_ASYNC_MAX_WAIT_SECONDS: Poll budget for background tasks (default: 600)
- MANUS_IN_FLIGHT_CUTOFF_SECONDS: How long partial output may sit in a
  non-terminal task before it is returned as final (default: 30)
- TASK_RETENTION_SECONDS: Task lifetime in the store (default: 3600)
- TASK_SWEEP_INTERVAL_SECONDS: Cadence of the retention sweep (default: 600)
- TASK_DEADLINE_SECONDS: Hard budget for one background task (default: async wait + 120)
- MAX_PROMPT_CHARS: Prompt length ceiling (default: 50000)
- DISPATCHER_API_KEY: Expected X-API-Key header value (absent → auth disabled)
- RATE_LIMIT_REQUESTS: Requests allowed per client IP per window on /api and /chat (default: 100, 0 disables)
- RATE_LIMIT_WINDOW_SECONDS: Rate limit window (default: 900)
"""
import os
from dataclasses import dataclass
from typing import Optional, Tuple

DEFAULT_GEMINI_MODELS = ("gemini-2.5-flash", "gemini-2.0-flash", "gemini-2.5-pro")


def _float_env(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)) or default)


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)) or default)


def _models_env(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    models = tuple(m.strip() for m in raw.split(",") if m.strip())
    return models or default


@dataclass(frozen=True)
class Settings:
    """Immutable snapshot of the dispatcher configuration."""

    gemini_api_key: Optional[str] = None
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_models: Tuple[str, ...] = DEFAULT_GEMINI_MODELS
    gemini_timeout_seconds: float = 30.0

    manus_api_key: Optional[str] = None
    manus_api_base: str = "https://api.manus.ai/v1"
    manus_agent_profile: str = "manus-1.6"
    manus_poll_interval_seconds: float = 3.0
    manus_max_wait_seconds: float = 180.0
    manus_async_max_wait_seconds: float = 600.0
    manus_in_flight_cutoff_seconds: float = 30.0

    task_retention_seconds: float = 3600.0
    task_sweep_interval_seconds: float = 600.0
    task_deadline_seconds: float = 720.0

    max_prompt_chars: int = 50000
    api_key: Optional[str] = None

    rate_limit_requests: int = 100
    rate_limit_window_seconds: float = 900.0

    @classmethod
    def from_env(cls) -> "Settings":
        async_wait = _float_env("MANUS_ASYNC_MAX_WAIT_SECONDS", 600.0)
        return cls(
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            gemini_api_base=os.getenv(
                "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
            ),
            gemini_models=_models_env("GEMINI_MODELS", DEFAULT_GEMINI_MODELS),
            gemini_timeout_seconds=_float_env("GEMINI_TIMEOUT_SECONDS", 30.0),
            manus_api_key=os.getenv("MANUS_API_KEY") or None,
            manus_api_base=os.getenv("MANUS_API_BASE", "https://api.manus.ai/v1"),
            manus_agent_profile=os.getenv("MANUS_AGENT_PROFILE", "manus-1.6"),
            manus_poll_interval_seconds=_float_env("MANUS_POLL_INTERVAL_SECONDS", 3.0),
            manus_max_wait_seconds=_float_env("MANUS_MAX_WAIT_SECONDS", 180.0),
            manus_async_max_wait_seconds=async_wait,
            manus_in_flight_cutoff_seconds=_float_env("MANUS_IN_FLIGHT_CUTOFF_SECONDS", 30.0),
            task_retention_seconds=_float_env("TASK_RETENTION_SECONDS", 3600.0),
            task_sweep_interval_seconds=_float_env("TASK_SWEEP_INTERVAL_SECONDS", 600.0),
            task_deadline_seconds=_float_env("TASK_DEADLINE_SECONDS", async_wait + 120.0),
            max_prompt_chars=_int_env("MAX_PROMPT_CHARS", 50000),
            api_key=os.getenv("DISPATCHER_API_KEY") or None,
            rate_limit_requests=_int_env("RATE_LIMIT_REQUESTS", 100),
            rate_limit_window_seconds=_float_env("RATE_LIMIT_WINDOW_SECONDS", 900.0),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Global settings accessor (read once from the environment)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings

