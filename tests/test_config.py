"""
Tests for Settings loading and validation.
"""
import dataclasses
import logging

import pytest

from hedgebot.config.config import LIGHTER_URLS, PARADEX_URLS, Settings, env_bool

HEDGE_VARS = [
    "HEDGE_NETWORK", "HEDGE_SYMBOL", "HEDGE_ORDER_SIZE", "HEDGE_ORDER_TYPE",
    "HEDGE_HOLD_TIME_MIN_SEC", "HEDGE_HOLD_TIME_MAX_SEC", "HEDGE_MAX_NET_POSITION",
    "HEDGE_MAX_RETRIES", "HEDGE_ALERT_WEBHOOK_TYPE", "HEDGE_SIGNER_FACTORY",
    "LIGHTER_ACCOUNT_INDEX", "PARADEX_JWT", "TELEGRAM_BOT_TOKEN", "HEDGE_LOG_LEVEL", "HEDGE_LOG_FILE",
]


@pytest.fixture
def clean_env(monkeypatch):
    for key in HEDGE_VARS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestSettingsLoad:

    def test_defaults(self, clean_env):
        cfg = Settings.load(env_files=False)
        assert cfg.network == "testnet"
        assert cfg.symbol == "ETH"
        assert cfg.order_size == 0.01
        assert cfg.order_type == "market"
        assert (cfg.hold_time_min_sec, cfg.hold_time_max_sec) == (60, 120)
        assert (cfg.interval_time_min_sec, cfg.interval_time_max_sec) == (10, 20)
        assert cfg.fill_timeout_ms == 5000
        assert cfg.max_retries == 3
        assert cfg.max_net_position == 0.1
        assert cfg.monitor_interval_sec == 300
        assert cfg.lighter_account_index is None
        assert cfg.paradex_base_url == PARADEX_URLS["testnet"]
        assert cfg.lighter_base_url == LIGHTER_URLS["testnet"]

    def test_overrides(self, clean_env):
        clean_env.setenv("HEDGE_NETWORK", "MAINNET")
        clean_env.setenv("HEDGE_SYMBOL", "btc")
        clean_env.setenv("HEDGE_ORDER_SIZE", "0.002")
        clean_env.setenv("LIGHTER_ACCOUNT_INDEX", "42")
        clean_env.setenv("HEDGE_SIGNER_FACTORY", "mysigners:build")

        cfg = Settings.load(env_files=False)

        assert cfg.network == "mainnet"
        assert cfg.symbol == "BTC"
        assert cfg.order_size == 0.002
        assert cfg.lighter_account_index == 42
        assert cfg.signer_factory == "mysigners:build"
        assert cfg.lighter_base_url == LIGHTER_URLS["mainnet"]

    def test_frozen(self, clean_env):
        cfg = Settings.load(env_files=False)
        with pytest.raises(dataclasses.FrozenInstanceError):
            cfg.order_size = 1.0

    def test_risk_thresholds(self, clean_env):
        thresholds = Settings.load(env_files=False).risk_thresholds()
        assert thresholds.max_net_position == 0.1
        assert thresholds.max_position_deviation == 0.05
        assert thresholds.price_slippage_tolerance == 0.002

    def test_dump_masks_secrets(self, clean_env):
        clean_env.setenv("PARADEX_JWT", "secret-token")
        data = Settings.load(env_files=False).dump()
        assert data["paradex_jwt"] == "***"

    @pytest.mark.parametrize("key,value", [
        ("HEDGE_NETWORK", "devnet"),
        ("HEDGE_ORDER_TYPE", "stop"),
        ("HEDGE_ORDER_SIZE", "0"),
        ("HEDGE_MAX_NET_POSITION", "-1"),
        ("HEDGE_MAX_RETRIES", "0"),
        ("HEDGE_HOLD_TIME_MIN_SEC", "500"),
        ("HEDGE_ALERT_WEBHOOK_TYPE", "pager"),
        ("HEDGE_SIGNER_FACTORY", "no_colon"),
        ("HEDGE_LOG_LEVEL", "loud"),
    ])
    def test_invalid_values_rejected(self, clean_env, key, value):
        clean_env.setenv(key, value)
        with pytest.raises(ValueError):
            Settings.load(env_files=False)

    def test_limit_order_type_warns(self, clean_env, caplog):
        clean_env.setenv("HEDGE_ORDER_TYPE", "limit")
        cfg = Settings.load(env_files=False)
        with caplog.at_level(logging.INFO, logger="hedgebot"):
            cfg.log_summary()
        assert cfg.order_type == "limit"
        messages = [r.getMessage() for r in caplog.records]
        assert any("market orders" in m for m in messages)
        assert any('"event":"config_loaded"' in m for m in messages)

    def test_log_settings(self, clean_env):
        clean_env.setenv("HEDGE_LOG_LEVEL", "debug")
        clean_env.setenv("HEDGE_LOG_FILE", "/tmp/bot.log")
        cfg = Settings.load(env_files=False)
        assert cfg.log_level == "DEBUG"
        assert cfg.log_file == "/tmp/bot.log"


class TestEnvBool:

    @pytest.mark.parametrize("raw,expected", [("1", True), ("yes", True), ("off", False), ("", True)])
    def test_values(self, monkeypatch, raw, expected):
        monkeypatch.setenv("HEDGE_TEST_FLAG", raw)
        assert env_bool("HEDGE_TEST_FLAG", True) is expected
