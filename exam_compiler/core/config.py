from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


def _int_from_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True, slots=True)
class Settings:
    piston_url: str = "https://emkc.org/api/v2/piston/execute"
    exec_timeout_ms: int = 20_000      # hard timeout per attempt
    exec_max_retries: int = 1          # retries after the first attempt
    run_cooldown_ms: int = 2_000       # minimum gap between accepted Run actions
    max_source_chars: int = 20_000
    max_stdin_chars: int = 5_000
    history_limit: int = 200           # undo snapshots kept per session
    store_path: str | None = None      # None keeps saved code in memory only

    @staticmethod
    def from_env() -> "Settings":
        return Settings(
            piston_url=os.environ.get("PISTON_URL", "https://emkc.org/api/v2/piston/execute"),
            exec_timeout_ms=_int_from_env("EXEC_TIMEOUT_MS", 20_000),
            exec_max_retries=_int_from_env("EXEC_MAX_RETRIES", 1),
            run_cooldown_ms=_int_from_env("RUN_COOLDOWN_MS", 2_000),
            max_source_chars=_int_from_env("MAX_SOURCE_CHARS", 20_000),
            max_stdin_chars=_int_from_env("MAX_STDIN_CHARS", 5_000),
            history_limit=_int_from_env("HISTORY_LIMIT", 200),
            store_path=os.environ.get("EXAM_STORE_PATH") or None,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
