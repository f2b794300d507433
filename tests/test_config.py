import pytest

from config import BattleConfig


def test_defaults():
    config = BattleConfig()
    config.validate()
    assert config.array_length == 100
    assert config.countdown_ticks == 3
    assert config.submission_timeout_ms == 2000
    assert config.round_timeout_ms == 10000


def test_from_env(monkeypatch):
    monkeypatch.setenv("SORT_BATTLE_ARRAY_LENGTH", "25")
    monkeypatch.setenv("SORT_BATTLE_TICK_SECONDS", "0.5")
    monkeypatch.setenv("SORT_BATTLE_ROUND_TIMEOUT_MS", "6000")
    config = BattleConfig.from_env()
    assert config.array_length == 25
    assert config.tick_seconds == 0.5
    assert config.round_timeout_ms == 6000
    assert config.submission_timeout_ms == 2000


@pytest.mark.parametrize("overrides", [
    {"array_length": 0},
    {"min_value": 10, "max_value": 1},
    {"countdown_ticks": -1},
    {"submission_timeout_ms": 3000, "round_timeout_ms": 3000},
    {"max_workers": 0},
])
def test_invalid_settings(overrides):
    with pytest.raises(ValueError):
        BattleConfig(**overrides).validate()


def test_construction_validates():
    with pytest.raises(ValueError, match="round_timeout_ms"):
        BattleConfig(submission_timeout_ms=3000, round_timeout_ms=3000)
