"""Minimal tests for config."""

from polybot import config
from polybot.models import DirectionBias, RiskPolicy


def test_config_import_and_defaults():
    """Config loads and exposes expected types (PAPER_MODE bool, intervals and risk defaults numeric)."""
    assert isinstance(config.PAPER_MODE, bool)
    assert isinstance(config.ENGINE_TICK_INTERVAL, float)
    assert config.ENGINE_TICK_INTERVAL > 0
    assert config.COOLDOWN_SECONDS >= 0
    assert config.PRICE_WINDOW_SECONDS == 1200
    assert config.EXPIRY_CHECK_INTERVAL == 1.0
    assert isinstance(config.MAX_BUY_COUNT_PER_MARKET, int)


def test_default_risk_policy_is_valid():
    policy = config.default_risk_policy()
    assert isinstance(policy, RiskPolicy)
    assert isinstance(policy.direction_bias, DirectionBias)
    assert policy.max_position_size > 0


def test_bool_env(monkeypatch):
    monkeypatch.setenv("POLYBOT_FLAG", "true")
    assert config._bool_env("POLYBOT_FLAG") is True
    monkeypatch.setenv("POLYBOT_FLAG", "0")
    assert config._bool_env("POLYBOT_FLAG", True) is False
    monkeypatch.setenv("POLYBOT_FLAG", "  ")
    assert config._bool_env("POLYBOT_FLAG", True) is True
    monkeypatch.delenv("POLYBOT_FLAG")
    assert config._bool_env("POLYBOT_FLAG") is False
