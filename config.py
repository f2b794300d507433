"""
Battle and server settings.

Values come from the environment (optionally a .env file next to this module),
so a deployment can tune round timing without code changes.
"""
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent
_ENV_PATH = BASE_DIR / ".env"
if _ENV_PATH.is_file():
    load_dotenv(_ENV_PATH)


def _get(key: str, default: str = "") -> str:
    return (os.environ.get(key) or default).strip()


def _get_int(key: str, default: int) -> int:
    raw = _get(key)
    return int(raw) if raw else default


def _get_float(key: str, default: float) -> float:
    raw = _get(key)
    return float(raw) if raw else default


# Server
SECRET_KEY = _get("SECRET_KEY") or "sort-battle-dev-secret"
HOST = _get("HOST") or "0.0.0.0"
PORT = _get_int("PORT", 5000)
LOG_LEVEL = (_get("LOG_LEVEL") or "INFO").upper()


@dataclass
class BattleConfig:
    array_length: int = 100
    min_value: int = 0
    max_value: int = 999
    countdown_ticks: int = 3
    tick_seconds: float = 1.0
    submission_timeout_ms: int = 2000
    round_timeout_ms: int = 10000
    memory_limit_mb: int = 256
    max_workers: int = 8
    max_code_bytes: int = 64 * 1024

    def __post_init__(self):
        self.validate()

    @classmethod
    def from_env(cls) -> "BattleConfig":
        return cls(
            array_length=_get_int("SORT_BATTLE_ARRAY_LENGTH", cls.array_length),
            min_value=_get_int("SORT_BATTLE_MIN_VALUE", cls.min_value),
            max_value=_get_int("SORT_BATTLE_MAX_VALUE", cls.max_value),
            countdown_ticks=_get_int("SORT_BATTLE_COUNTDOWN_TICKS", cls.countdown_ticks),
            tick_seconds=_get_float("SORT_BATTLE_TICK_SECONDS", cls.tick_seconds),
            submission_timeout_ms=_get_int("SORT_BATTLE_SUBMISSION_TIMEOUT_MS", cls.submission_timeout_ms),
            round_timeout_ms=_get_int("SORT_BATTLE_ROUND_TIMEOUT_MS", cls.round_timeout_ms),
            memory_limit_mb=_get_int("SORT_BATTLE_MEMORY_LIMIT_MB", cls.memory_limit_mb),
            max_workers=_get_int("SORT_BATTLE_MAX_WORKERS", cls.max_workers),
            max_code_bytes=_get_int("SORT_BATTLE_MAX_CODE_BYTES", cls.max_code_bytes),
        )

    def validate(self) -> None:
        if self.array_length <= 0:
            raise ValueError("array_length must be positive")
        if self.min_value > self.max_value:
            raise ValueError("min_value must not exceed max_value")
        if self.countdown_ticks < 0:
            raise ValueError("countdown_ticks must not be negative")
        if self.tick_seconds < 0:
            raise ValueError("tick_seconds must not be negative")
        if self.submission_timeout_ms <= 0:
            raise ValueError("submission_timeout_ms must be positive")
        # The round timer has to outlive any single sandbox run.
        if self.round_timeout_ms <= self.submission_timeout_ms:
            raise ValueError("round_timeout_ms must exceed submission_timeout_ms")
        if self.max_workers <= 0:
            raise ValueError("max_workers must be positive")
