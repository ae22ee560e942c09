"""
Wiring: builds every component from Settings and supervises the tasks.

Tasks:
    engine    HedgeEngine.run(), the round loop
    risk      RiskMonitor.run(), observational net-exposure check
    liveness  LivenessMonitor.run(), venue reachability check

A stop request (signal or fatal engine error) lets the current round's
network calls finish; the loops exit before their next iteration. Shutdown
always logs the final PnL summary, sends the stop alert and closes the
venue clients.
"""

from __future__ import annotations

import asyncio
import importlib
import logging
import signal
import time
from typing import Callable, List, Optional, Tuple

from hedgebot.config.config import Settings
from hedgebot.connectors.base import OrderSigner, VenueConnector
from hedgebot.connectors.lighter import LighterConnector
from hedgebot.connectors.paradex import ParadexConnector
from hedgebot.execution.fill_monitor import FillMonitor, FillMonitorConfig
from hedgebot.execution.partial_fill_recovery import PartialFillRecovery, PartialFillRecoveryConfig
from hedgebot.infra.logging_cfg import CRITICAL_SAFETY, log_event
from hedgebot.monitoring.alerting import AlertConfig, AlertManager, AlertSeverity
from hedgebot.monitoring.metrics import HedgeMetrics
from hedgebot.orchestrator.hedge_engine import HedgeEngine, HedgeEngineConfig
from hedgebot.risk.liveness_monitor import LivenessMonitor, LivenessMonitorConfig
from hedgebot.risk.risk_monitor import RiskMonitor, RiskMonitorConfig
from hedgebot.state.pnl_accountant import PnLAccountant, PnLAccountantConfig

log = logging.getLogger("hedgebot")

SignerFactory = Callable[[Settings, str], OrderSigner]


def load_signer_factory(path: Optional[str]) -> SignerFactory:
    """Resolve ``package.module:callable``."""
    if not path:
        raise ValueError("HEDGE_SIGNER_FACTORY is not set; venue signing must be provided")
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"HEDGE_SIGNER_FACTORY must look like 'package.module:callable', got {path!r}")
    module = importlib.import_module(module_name)
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ValueError(f"{path!r} is not callable")
    return factory


def build_alerts(settings: Settings) -> AlertManager:
    webhook_type = settings.alert_webhook_type
    if not settings.alert_webhook_url and settings.telegram_bot_token and settings.telegram_chat_id:
        webhook_type = "telegram"
    return AlertManager(AlertConfig(
        webhook_url=settings.alert_webhook_url,
        webhook_type=webhook_type,
        telegram_bot_token=settings.telegram_bot_token,
        telegram_chat_id=settings.telegram_chat_id,
        min_severity=AlertSeverity.INFO,
        http_timeout_sec=settings.http_timeout,
        enabled=settings.alert_enabled,
        bot_name=f"HedgeBot {settings.symbol}",
    ))


def build_connectors(
    settings: Settings,
    signer_factory: SignerFactory,
) -> Tuple[ParadexConnector, LighterConnector]:
    if settings.lighter_account_index is None:
        raise ValueError("LIGHTER_ACCOUNT_INDEX must be set")
    venue_a = ParadexConnector(
        symbol=settings.symbol,
        base_url=settings.paradex_base_url,
        signer=signer_factory(settings, "paradex"),
        timeout=settings.http_timeout,
    )
    venue_b = LighterConnector(
        symbol=settings.symbol,
        base_url=settings.lighter_base_url,
        signer=signer_factory(settings, "lighter"),
        account_index=settings.lighter_account_index,
        api_key_index=settings.lighter_api_key_index,
        timeout=settings.http_timeout,
    )
    return venue_a, venue_b


class HedgeApp:
    """All long-lived components for one process."""

    def __init__(
        self,
        settings: Settings,
        venue_a: VenueConnector,
        venue_b: VenueConnector,
        alerts: AlertManager,
        metrics: Optional[HedgeMetrics] = None,
    ) -> None:
        self.settings = settings
        self.venue_a = venue_a
        self.venue_b = venue_b
        self.alerts = alerts
        self.metrics = metrics or HedgeMetrics()
        thresholds = settings.risk_thresholds()

        self.pnl = PnLAccountant(
            alerts,
            PnLAccountantConfig(
                lookback=settings.pnl_lookback,
                settle_delay_sec=settings.pnl_settle_delay_sec,
            ),
            metrics=self.metrics,
        )
        self.fill_monitor = FillMonitor(
            venue_a, venue_b,
            FillMonitorConfig(
                timeout_ms=settings.fill_timeout_ms,
                check_interval_ms=settings.fill_check_interval_ms,
            ),
        )
        self.recovery = PartialFillRecovery(
            venue_a, venue_b, alerts,
            PartialFillRecoveryConfig(recovery_wait_sec=settings.recovery_wait_sec),
            metrics=self.metrics,
        )
        self.engine = HedgeEngine(
            venue_a, venue_b, thresholds, alerts, self.pnl, self.fill_monitor, self.recovery,
            HedgeEngineConfig.from_settings(settings),
            metrics=self.metrics,
        )
        self.risk = RiskMonitor(
            venue_a, venue_b, thresholds, alerts,
            RiskMonitorConfig(interval_sec=settings.monitor_interval_sec),
            metrics=self.metrics,
        )
        self.liveness = LivenessMonitor(
            venue_a, venue_b, alerts,
            LivenessMonitorConfig(
                interval_sec=settings.health_interval_sec,
                check_timeout_sec=settings.http_timeout,
            ),
            metrics=self.metrics,
        )
        self._started_at = time.time()
        self._stop_reason = "normal"

    def request_stop(self, reason: str = "signal") -> None:
        if not self.engine.stopping:
            self._stop_reason = reason
            log_event(log, "shutdown_requested", reason=reason)
        self.engine.stop()
        self.risk.stop()
        self.liveness.stop()

    async def initialize(self) -> None:
        """Authenticate both venues. Any failure is fatal."""
        await asyncio.gather(self.venue_a.initialize(), self.venue_b.initialize())
        log_event(
            log, "venues_initialized",
            venue_a=self.venue_a.name, venue_b=self.venue_b.name, symbol=self.settings.symbol,
        )

    async def run(self) -> int:
        """Run until stopped. Returns the process exit code."""
        try:
            await self.initialize()
        except Exception as exc:
            log_event(log, "startup_failed", CRITICAL_SAFETY, error=str(exc), error_type=type(exc).__name__)
            await self.alerts.alert_fatal(f"startup failed: {exc}")
            await self.shutdown("startup_failed")
            return 1

        await self.alerts.alert_startup(
            self.settings.symbol, self.settings.order_size,
            network=self.settings.network,
            max_net_position=self.settings.max_net_position,
        )
        engine_task = asyncio.create_task(self.engine.run(), name="engine")
        monitor_tasks: List[asyncio.Task] = [
            asyncio.create_task(self.risk.run(), name="risk_monitor"),
            asyncio.create_task(self.liveness.run(), name="liveness_monitor"),
        ]

        exit_code = 0
        try:
            await engine_task
        except Exception as exc:
            exit_code = 1
            log_event(log, "engine_fatal", CRITICAL_SAFETY, error=str(exc), error_type=type(exc).__name__)
            self.request_stop("fatal_error")
        finally:
            self.risk.stop()
            self.liveness.stop()
            await asyncio.gather(*monitor_tasks, return_exceptions=True)

        await self.shutdown(self._stop_reason)
        return exit_code

    async def shutdown(self, reason: str) -> None:
        summary = self.pnl.log_final_summary()
        runtime_min = (time.time() - self._started_at) / 60
        await self.alerts.alert_shutdown(
            summary["rounds"], summary["total_pnl"], runtime_min, reason=reason,
        )
        await self.alerts.flush()
        await asyncio.gather(self.venue_a.close(), self.venue_b.close(), return_exceptions=True)
        log_event(log, "shutdown_complete", reason=reason, alerts_sent=self.alerts.sent_count)


def install_signal_handlers(app: HedgeApp) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, app.request_stop, sig.name.lower())
        except NotImplementedError:
            # Windows: KeyboardInterrupt handling in main.py
            pass


def create_app(settings: Settings, metrics: Optional[HedgeMetrics] = None) -> HedgeApp:
    """Build the production app: real connectors, alerting and metrics."""
    factory = load_signer_factory(settings.signer_factory)
    venue_a, venue_b = build_connectors(settings, factory)
    metrics = metrics or HedgeMetrics()
    if settings.metrics_port:
        metrics.serve(settings.metrics_port)
        log_event(log, "metrics_server_started", port=settings.metrics_port)
    return HedgeApp(settings, venue_a, venue_b, build_alerts(settings), metrics)
