"""
Environment-driven configuration with validation.

Values are read once at startup (``Settings.load()``) and never change while
the process runs. A network-specific dotenv file (``.env.testnet`` /
``.env.mainnet``) is loaded first when present, then ``.env``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from dotenv import load_dotenv

from hedgebot.core.json_utils import dumps
from hedgebot.core.types import RiskThresholds
from hedgebot.infra.logging_cfg import parse_level

log = logging.getLogger("hedgebot")

NETWORKS = ("testnet", "mainnet")
ORDER_TYPES = ("market", "limit")
WEBHOOK_TYPES = ("generic", "slack", "discord", "telegram")

PARADEX_URLS: Dict[str, str] = {
    "testnet": "https://api.testnet.paradex.trade/v1",
    "mainnet": "https://api.prod.paradex.trade/v1",
}
LIGHTER_URLS: Dict[str, str] = {
    "testnet": "https://testnet.zklighter.elliot.ai",
    "mainnet": "https://mainnet.zklighter.elliot.ai",
}

_SECRET_FIELDS = {"paradex_jwt", "telegram_bot_token", "alert_webhook_url"}


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None or val == "":
        return default
    return val.strip().lower() in {"1", "true", "yes", "y", "on"}


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return int(raw)


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return float(raw)


def _str_env(key: str, default: Optional[str] = None) -> Optional[str]:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip()


def load_env_files(network: Optional[str] = None) -> None:
    """Load ``.env.<network>`` (if present) and then ``.env``; real env vars win."""
    network = network or os.getenv("HEDGE_NETWORK", "testnet")
    network_file = f".env.{network}"
    if os.path.exists(network_file):
        load_dotenv(network_file)
    load_dotenv()


@dataclass(frozen=True)
class Settings:
    network: str
    symbol: str
    order_size: float
    order_type: str
    hold_time_min_sec: int
    hold_time_max_sec: int
    interval_time_min_sec: int
    interval_time_max_sec: int
    fill_timeout_ms: int
    fill_check_interval_ms: int
    max_retries: int
    max_net_position: float
    max_position_deviation: float
    price_slippage_tolerance: float
    monitor_interval_sec: float
    retry_backoff_sec: float
    close_settle_sec: float
    recovery_wait_sec: float
    error_cooldown_sec: float
    health_interval_sec: float
    pnl_lookback: int
    pnl_settle_delay_sec: float
    http_timeout: float
    metrics_port: int
    # Alerting
    alert_webhook_url: Optional[str]
    alert_webhook_type: str  # generic, slack, discord, telegram
    alert_enabled: bool
    telegram_bot_token: Optional[str]
    telegram_chat_id: Optional[str]
    # Venue credentials
    paradex_jwt: Optional[str]
    paradex_account_address: Optional[str]
    lighter_account_index: Optional[int]
    lighter_api_key_index: int
    signer_factory: Optional[str]  # "package.module:callable" returning an OrderSigner per venue
    # Logging
    log_level: str
    log_file: Optional[str]

    @property
    def paradex_base_url(self) -> str:
        return PARADEX_URLS[self.network]

    @property
    def lighter_base_url(self) -> str:
        return LIGHTER_URLS[self.network]

    def risk_thresholds(self) -> RiskThresholds:
        return RiskThresholds(
            max_net_position=self.max_net_position,
            max_position_deviation=self.max_position_deviation,
            price_slippage_tolerance=self.price_slippage_tolerance,
        )

    def dump(self) -> dict:
        """Settings as a dict with secrets masked, for logging."""
        data = asdict(self)
        for key in _SECRET_FIELDS:
            if data.get(key):
                data[key] = "***"
        return data

    @classmethod
    def load(cls, env_files: bool = True) -> "Settings":
        if env_files:
            load_env_files()

        lighter_account = _str_env("LIGHTER_ACCOUNT_INDEX")
        cfg = cls(
            network=(_str_env("HEDGE_NETWORK", "testnet") or "testnet").lower(),
            symbol=(_str_env("HEDGE_SYMBOL", "ETH") or "ETH").upper(),
            order_size=_float_env("HEDGE_ORDER_SIZE", 0.01),
            order_type=(_str_env("HEDGE_ORDER_TYPE", "market") or "market").lower(),
            hold_time_min_sec=_int_env("HEDGE_HOLD_TIME_MIN_SEC", 60),
            hold_time_max_sec=_int_env("HEDGE_HOLD_TIME_MAX_SEC", 120),
            interval_time_min_sec=_int_env("HEDGE_INTERVAL_TIME_MIN_SEC", 10),
            interval_time_max_sec=_int_env("HEDGE_INTERVAL_TIME_MAX_SEC", 20),
            fill_timeout_ms=_int_env("HEDGE_FILL_TIMEOUT_MS", 5000),
            fill_check_interval_ms=_int_env("HEDGE_FILL_CHECK_INTERVAL_MS", 500),
            max_retries=_int_env("HEDGE_MAX_RETRIES", 3),
            max_net_position=_float_env("HEDGE_MAX_NET_POSITION", 0.1),
            max_position_deviation=_float_env("HEDGE_MAX_POSITION_DEVIATION", 0.05),
            price_slippage_tolerance=_float_env("HEDGE_PRICE_SLIPPAGE_TOLERANCE", 0.002),
            monitor_interval_sec=_float_env("HEDGE_MONITOR_INTERVAL_SEC", 300),
            retry_backoff_sec=_float_env("HEDGE_RETRY_BACKOFF_SEC", 1.0),
            close_settle_sec=_float_env("HEDGE_CLOSE_SETTLE_SEC", 2.0),
            recovery_wait_sec=_float_env("HEDGE_RECOVERY_WAIT_SEC", 1.0),
            error_cooldown_sec=_float_env("HEDGE_ERROR_COOLDOWN_SEC", 60),
            health_interval_sec=_float_env("HEDGE_HEALTH_INTERVAL_SEC", 60),
            pnl_lookback=_int_env("HEDGE_PNL_LOOKBACK", 10),
            pnl_settle_delay_sec=_float_env("HEDGE_PNL_SETTLE_DELAY_SEC", 1.0),
            http_timeout=_float_env("HEDGE_HTTP_TIMEOUT", 10.0),
            metrics_port=_int_env("HEDGE_METRICS_PORT", 0),
            alert_webhook_url=_str_env("HEDGE_ALERT_WEBHOOK_URL"),
            alert_webhook_type=(_str_env("HEDGE_ALERT_WEBHOOK_TYPE", "generic") or "generic").lower(),
            alert_enabled=env_bool("HEDGE_ALERT_ENABLED", True),
            telegram_bot_token=_str_env("TELEGRAM_BOT_TOKEN"),
            telegram_chat_id=_str_env("TELEGRAM_CHAT_ID"),
            paradex_jwt=_str_env("PARADEX_JWT"),
            paradex_account_address=_str_env("PARADEX_ACCOUNT_ADDRESS"),
            lighter_account_index=int(lighter_account) if lighter_account is not None else None,
            lighter_api_key_index=_int_env("LIGHTER_API_KEY_INDEX", 0),
            signer_factory=_str_env("HEDGE_SIGNER_FACTORY"),
            log_level=(_str_env("HEDGE_LOG_LEVEL", "INFO") or "INFO").upper(),
            log_file=_str_env("HEDGE_LOG_FILE", "hedgebot.log"),
        )
        cfg._validate()
        return cfg

    def _validate(self) -> None:
        if self.network not in NETWORKS:
            raise ValueError(f"HEDGE_NETWORK must be one of {NETWORKS}, got {self.network!r}")
        if self.order_type not in ORDER_TYPES:
            raise ValueError(f"HEDGE_ORDER_TYPE must be one of {ORDER_TYPES}, got {self.order_type!r}")
        if self.alert_webhook_type not in WEBHOOK_TYPES:
            raise ValueError(f"HEDGE_ALERT_WEBHOOK_TYPE must be one of {WEBHOOK_TYPES}")
        if not self.symbol:
            raise ValueError("HEDGE_SYMBOL must be set")
        if self.order_size <= 0:
            raise ValueError("HEDGE_ORDER_SIZE must be > 0")
        if self.hold_time_min_sec < 0 or self.hold_time_min_sec > self.hold_time_max_sec:
            raise ValueError("HEDGE_HOLD_TIME_MIN_SEC must be >= 0 and <= HEDGE_HOLD_TIME_MAX_SEC")
        if self.interval_time_min_sec < 0 or self.interval_time_min_sec > self.interval_time_max_sec:
            raise ValueError("HEDGE_INTERVAL_TIME_MIN_SEC must be >= 0 and <= HEDGE_INTERVAL_TIME_MAX_SEC")
        if self.fill_timeout_ms <= 0 or self.fill_check_interval_ms <= 0:
            raise ValueError("Fill timeout and check interval must be > 0")
        if self.max_retries < 1:
            raise ValueError("HEDGE_MAX_RETRIES must be >= 1")
        if self.max_net_position <= 0:
            raise ValueError("HEDGE_MAX_NET_POSITION must be > 0")
        if self.max_position_deviation < 0:
            raise ValueError("HEDGE_MAX_POSITION_DEVIATION must be >= 0")
        if self.price_slippage_tolerance < 0:
            raise ValueError("HEDGE_PRICE_SLIPPAGE_TOLERANCE must be >= 0")
        if self.monitor_interval_sec <= 0 or self.health_interval_sec <= 0:
            raise ValueError("Monitor intervals must be > 0")
        if self.pnl_lookback < 2:
            raise ValueError("HEDGE_PNL_LOOKBACK must be >= 2")
        if self.http_timeout <= 0:
            raise ValueError("HEDGE_HTTP_TIMEOUT must be > 0")
        if self.signer_factory is not None and ":" not in self.signer_factory:
            raise ValueError("HEDGE_SIGNER_FACTORY must look like 'package.module:callable'")
        try:
            parse_level(self.log_level)
        except ValueError:
            raise ValueError(f"HEDGE_LOG_LEVEL must be a logging level name, got {self.log_level!r}") from None

    def log_summary(self) -> None:
        """
        Log the settings that matter once at startup so overrides are obvious.

        Called after logging is configured from these settings.
        """
        if self.order_type == "limit":
            log.warning(
                "WARNING: HEDGE_ORDER_TYPE=limit is accepted but orders are still "
                "submitted as market orders."
            )
        if self.max_net_position < self.order_size:
            log.warning(
                f"WARNING: HEDGE_MAX_NET_POSITION ({self.max_net_position}) is below the "
                f"order size ({self.order_size}); a single one-sided fill will trigger an unwind."
            )
        if self.network == "mainnet" and self.order_size > 1:
            log.warning(
                f"WARNING: HEDGE_ORDER_SIZE={self.order_size} on mainnet. "
                "Double-check the size before leaving the bot unattended."
            )

        payload = {
            "event": "config_loaded",
            "network": self.network,
            "symbol": self.symbol,
            "order_size": self.order_size,
            "hold_time_sec": [self.hold_time_min_sec, self.hold_time_max_sec],
            "interval_time_sec": [self.interval_time_min_sec, self.interval_time_max_sec],
            "max_net_position": self.max_net_position,
            "max_retries": self.max_retries,
            "alerts": bool(self.alert_enabled and (self.alert_webhook_url or self.telegram_bot_token)),
        }
        log.info(dumps(payload))
