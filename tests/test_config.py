"""Tests for agent configuration loading."""
from agentfleet.config import Config, load_agent_specs


def test_slots_without_key_or_strategy_are_skipped():
    assert load_agent_specs({}) == []


def test_default_profile_for_slot():
    specs = load_agent_specs({"AGENT_1_API_KEY": "key-1", "AGENT_1_API_SECRET": "secret-1"})
    assert len(specs) == 1
    spec = specs[0]
    assert spec.agent_id == "agent-1"
    assert spec.strategy == "arbitrage"
    assert spec.risk_limits.max_position_size_percent == 12
    assert spec.credentials.is_complete()
    assert spec.symbols is None


def test_overrides_are_applied():
    environ = {
        "AGENT_3_API_KEY": "key-3",
        "AGENT_3_API_SECRET": "secret-3",
        "AGENT_3_ID": "grid-bot",
        "AGENT_3_NAME": "Grid Bot",
        "AGENT_3_STRATEGY": "Momentum",
        "AGENT_3_SYMBOLS": "btcusdt, ethusdt",
        "AGENT_3_MAX_DRAWDOWN": "20",
        "AGENT_3_MAX_TRADES_PER_DAY": "7",
    }
    spec = load_agent_specs(environ)[0]
    assert spec.agent_id == "grid-bot"
    assert spec.name == "Grid Bot"
    assert spec.strategy == "momentum"
    assert spec.symbols == ["BTCUSDT", "ETHUSDT"]
    assert spec.risk_limits.max_drawdown_percent == 20
    assert spec.risk_limits.max_trades_per_day == 7
    assert spec.risk_limits.max_position_size_percent == 15


def test_disabled_slot_is_skipped():
    environ = {"AGENT_2_API_KEY": "key-2", "AGENT_2_ENABLED": "false"}
    assert load_agent_specs(environ) == []


def test_missing_secret_keeps_agent_with_incomplete_credentials():
    spec = load_agent_specs({"AGENT_5_API_KEY": "key-5"})[0]
    assert spec.strategy == "buy_and_hold"
    assert not spec.credentials.is_complete()


def test_secret_is_not_in_repr():
    spec = load_agent_specs({"AGENT_1_API_KEY": "key-1", "AGENT_1_API_SECRET": "very-secret"})[0]
    assert "very-secret" not in repr(spec)


def test_mode_controls_dry_run():
    settings = Config()
    settings.MODE = "DRY_RUN"
    assert settings.dry_run
    settings.MODE = "LIVE"
    assert not settings.dry_run
