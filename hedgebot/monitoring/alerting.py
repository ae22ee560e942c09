"""
Webhook alerting for hedge bot events.

- Delivery to Slack, Discord, Telegram or a generic HTTP webhook
- Per-type rate limiting (CRITICAL alerts are never rate limited)
- Alerts arriving within the batch window are delivered together
- Delivery runs in a detached task; callers never wait on the network
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from hedgebot.core.json_utils import dumps_bytes
from hedgebot.infra.logging_cfg import log_event

logger = logging.getLogger("hedgebot")

TELEGRAM_API = "https://api.telegram.org"
_JSON_HEADERS = {"Content-Type": "application/json"}


class AlertSeverity(Enum):
    """Alert severity levels."""
    CRITICAL = auto()  # Immediate attention required
    WARNING = auto()   # Potential issue
    INFO = auto()      # Informational


class AlertType(Enum):
    """Types of alerts."""
    PARTIAL_FILL = auto()
    NET_POSITION_BREACH = auto()
    EMERGENCY_CLOSE = auto()
    ROUND_COMPLETED = auto()
    ORDER_FAILURE = auto()
    VENUE_UNHEALTHY = auto()
    FATAL_ERROR = auto()
    STARTUP = auto()
    SHUTDOWN = auto()
    CUSTOM = auto()


@dataclass
class Alert:
    """An alert to be sent."""
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    details: Dict[str, Any] = field(default_factory=dict)
    venue: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.alert_type.name,
            "severity": self.severity.name,
            "title": self.title,
            "message": self.message,
            "timestamp_ms": self.timestamp_ms,
            "timestamp_iso": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.timestamp_ms / 1000)),
            "details": self.details,
            "venue": self.venue,
        }


@dataclass
class AlertConfig:
    """Configuration for alerting."""
    webhook_url: Optional[str] = None
    webhook_type: str = "generic"  # generic, slack, discord, telegram
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    min_severity: AlertSeverity = AlertSeverity.INFO
    rate_limit_seconds: int = 60  # Min seconds between alerts of one type
    batch_window_ms: int = 2000
    http_timeout_sec: float = 10.0
    enabled: bool = True
    include_details: bool = True
    bot_name: str = "HedgeBot"

    @property
    def target_url(self) -> Optional[str]:
        if self.webhook_type == "telegram":
            if not (self.telegram_bot_token and self.telegram_chat_id):
                return None
            return f"{TELEGRAM_API}/bot{self.telegram_bot_token}/sendMessage"
        return self.webhook_url


def _md_escape(text: Any) -> str:
    # Telegram legacy Markdown rejects unbalanced markers.
    out = str(text)
    for ch in ("_", "*", "`", "["):
        out = out.replace(ch, "\\" + ch)
    return out


class WebhookFormatter:
    """Formats alerts for different webhook types."""

    @staticmethod
    def format_generic(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
        return alert.to_dict()

    @staticmethod
    def format_slack(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
        emoji = {
            AlertSeverity.CRITICAL: "🚨",
            AlertSeverity.WARNING: "⚠️",
            AlertSeverity.INFO: "ℹ️",
        }.get(alert.severity, "📢")
        color = {
            AlertSeverity.CRITICAL: "#FF0000",
            AlertSeverity.WARNING: "#FFA500",
            AlertSeverity.INFO: "#0000FF",
        }.get(alert.severity, "#808080")

        fields = []
        if alert.venue:
            fields.append({"title": "Venue", "value": alert.venue, "short": True})
        fields.append({"title": "Type", "value": alert.alert_type.name, "short": True})
        if config.include_details and alert.details:
            for key, value in list(alert.details.items())[:6]:
                fields.append({"title": key, "value": str(value), "short": True})

        return {
            "username": config.bot_name,
            "icon_emoji": ":robot_face:",
            "attachments": [{
                "color": color,
                "title": f"{emoji} {alert.title}",
                "text": alert.message,
                "fields": fields,
                "footer": f"{config.bot_name} | {alert.severity.name}",
                "ts": alert.timestamp_ms // 1000,
            }],
        }

    @staticmethod
    def format_discord(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
        color = {
            AlertSeverity.CRITICAL: 0xFF0000,
            AlertSeverity.WARNING: 0xFFA500,
            AlertSeverity.INFO: 0x0000FF,
        }.get(alert.severity, 0x808080)

        fields = []
        if alert.venue:
            fields.append({"name": "Venue", "value": alert.venue, "inline": True})
        fields.append({"name": "Type", "value": alert.alert_type.name, "inline": True})
        if config.include_details and alert.details:
            for key, value in list(alert.details.items())[:6]:
                fields.append({"name": key, "value": str(value), "inline": True})

        return {
            "username": config.bot_name,
            "embeds": [{
                "title": alert.title,
                "description": alert.message,
                "color": color,
                "fields": fields,
                "footer": {"text": f"{config.bot_name} | {alert.severity.name}"},
                "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(alert.timestamp_ms / 1000)),
            }],
        }

    @staticmethod
    def telegram_text(alert: Alert, config: AlertConfig) -> str:
        prefix = "🚨" if alert.severity is AlertSeverity.CRITICAL else "⚠️" if alert.severity is AlertSeverity.WARNING else "ℹ️"
        lines = [f"{prefix} *{_md_escape(alert.title)}*", "", _md_escape(alert.message)]
        if config.include_details and alert.details:
            lines.append("")
            for key, value in alert.details.items():
                lines.append(f"{_md_escape(key)}: {_md_escape(value)}")
        lines.append(time.strftime("%Y-%m-%d %H:%M:%S UTC", time.gmtime(alert.timestamp_ms / 1000)))
        return "\n".join(lines)

    @staticmethod
    def format_telegram(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
        return {
            "chat_id": config.telegram_chat_id,
            "text": WebhookFormatter.telegram_text(alert, config),
            "parse_mode": "Markdown",
        }


class AlertManager:
    """
    Alert delivery with rate limiting and batching.

    ``send_alert`` and the ``alert_*`` helpers return immediately; the
    webhook POST happens in a background task. Nothing here raises into
    the caller.
    """

    def __init__(self, config: Optional[AlertConfig] = None) -> None:
        self.config = config or AlertConfig()
        self._last_alert_times: Dict[Tuple[AlertType, Optional[str]], int] = {}
        self._pending_alerts: List[Alert] = []
        self._batch_task: Optional[asyncio.Task] = None
        self._flush_now: Optional[asyncio.Event] = None
        self.sent_count = 0
        self.failed_count = 0

    @property
    def active(self) -> bool:
        return self.config.enabled and self.config.target_url is not None

    async def send_alert(self, alert: Alert) -> bool:
        """
        Queue an alert for delivery.

        Returns:
            True if queued, False if disabled, below min severity or rate limited.
        """
        try:
            return self._enqueue(alert)
        except Exception as exc:
            logger.warning(f"Alert enqueue failed: {exc}")
            return False

    def _enqueue(self, alert: Alert) -> bool:
        if not self.active:
            logger.debug(f"Alert not sent (alerting inactive): {alert.title}")
            return False

        if alert.severity.value > self.config.min_severity.value:
            return False

        now_ms = int(time.time() * 1000)
        key = (alert.alert_type, alert.venue)
        if alert.severity is not AlertSeverity.CRITICAL:
            last_time = self._last_alert_times.get(key)
            if last_time is not None and now_ms - last_time < self.config.rate_limit_seconds * 1000:
                logger.debug(f"Alert rate limited: {alert.alert_type.name}")
                return False
        self._last_alert_times[key] = now_ms

        self._pending_alerts.append(alert)
        if self._batch_task is None or self._batch_task.done():
            self._flush_now = asyncio.Event()
            self._batch_task = asyncio.create_task(self._batch_deliver(self._flush_now))
        return True

    async def notify(self, message: str, severity: AlertSeverity = AlertSeverity.WARNING, **details) -> bool:
        """Free-form alert."""
        return await self.send_alert(Alert(
            alert_type=AlertType.CUSTOM,
            severity=severity,
            title="Notice",
            message=message,
            details=details,
        ))

    async def flush(self, timeout: float = 15.0) -> None:
        """Deliver anything still pending. Called once at shutdown."""
        task = self._batch_task
        if task is None or task.done():
            return
        if self._flush_now is not None:
            self._flush_now.set()
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Alert flush timed out; pending alerts dropped")

    async def _batch_deliver(self, flush_now: asyncio.Event) -> None:
        try:
            await asyncio.wait_for(flush_now.wait(), timeout=self.config.batch_window_ms / 1000)
        except asyncio.TimeoutError:
            pass

        alerts = self._pending_alerts.copy()
        self._pending_alerts.clear()
        if not alerts:
            return

        try:
            if len(alerts) == 1:
                ok = await self._http_post(self._format_alert(alerts[0]))
            else:
                ok = await self._http_post(self._format_batch(alerts))
        except Exception as exc:
            logger.warning(f"Alert delivery error: {exc}")
            ok = False
        if ok:
            self.sent_count += len(alerts)
        else:
            self.failed_count += len(alerts)
            log_event(logger, "alert_delivery_failed", logging.WARNING, count=len(alerts))

    def _format_batch(self, alerts: List[Alert]) -> Dict[str, Any]:
        kind = self.config.webhook_type
        if kind == "slack":
            payload = self._format_alert(alerts[0])
            for alert in alerts[1:]:
                payload["attachments"].extend(self._format_alert(alert)["attachments"])
            return payload
        if kind == "discord":
            payload = self._format_alert(alerts[0])
            for alert in alerts[1:]:
                payload["embeds"].extend(self._format_alert(alert)["embeds"])
            return payload
        if kind == "telegram":
            text = "\n\n".join(WebhookFormatter.telegram_text(a, self.config) for a in alerts)
            return {"chat_id": self.config.telegram_chat_id, "text": text, "parse_mode": "Markdown"}
        return {"alerts": [alert.to_dict() for alert in alerts]}

    def _format_alert(self, alert: Alert) -> Dict[str, Any]:
        formatters = {
            "generic": WebhookFormatter.format_generic,
            "slack": WebhookFormatter.format_slack,
            "discord": WebhookFormatter.format_discord,
            "telegram": WebhookFormatter.format_telegram,
        }
        formatter = formatters.get(self.config.webhook_type, WebhookFormatter.format_generic)
        return formatter(alert, self.config)

    async def _http_post(self, payload: Dict[str, Any], retries: int = 2) -> bool:
        url = self.config.target_url
        if not url:
            return False

        body = dumps_bytes(payload)
        timeout = aiohttp.ClientTimeout(total=self.config.http_timeout_sec)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            for attempt in range(retries + 1):
                try:
                    async with session.post(url, data=body, headers=_JSON_HEADERS) as resp:
                        if resp.status < 300:
                            logger.debug("Alert delivered")
                            return True
                        logger.warning(f"Alert delivery failed: HTTP {resp.status}")
                except asyncio.TimeoutError:
                    logger.warning(f"Alert delivery timeout (attempt {attempt + 1})")
                except aiohttp.ClientError as exc:
                    logger.warning(f"Alert delivery error: {exc}")

                if attempt < retries:
                    await asyncio.sleep(1 * (attempt + 1))
        return False

    # ─────────────────────────────────────────────────────────────────────
    # Convenience methods for hedge events
    # ─────────────────────────────────────────────────────────────────────

    async def alert_partial_fill(self, venue_a: str, venue_a_filled: bool, venue_b: str, venue_b_filled: bool) -> bool:
        def mark(ok: bool) -> str:
            return "filled" if ok else "NOT filled"

        return await self.send_alert(Alert(
            alert_type=AlertType.PARTIAL_FILL,
            severity=AlertSeverity.CRITICAL,
            title="One-sided fill detected",
            message=f"{venue_a}: {mark(venue_a_filled)}, {venue_b}: {mark(venue_b_filled)}",
            details={venue_a: venue_a_filled, venue_b: venue_b_filled},
        ))

    async def alert_net_position(self, net_position: float, threshold: float, **details) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.NET_POSITION_BREACH,
            severity=AlertSeverity.CRITICAL,
            title="Net position over limit",
            message=f"Net position {net_position:.4f} exceeds {threshold}",
            details={"net_position": round(net_position, 8), "threshold": threshold, **details},
        ))

    async def alert_emergency_close(self, reason: str, net_position: Optional[float] = None) -> bool:
        details: Dict[str, Any] = {"reason": reason}
        if net_position is not None:
            details["net_position"] = round(net_position, 8)
        return await self.send_alert(Alert(
            alert_type=AlertType.EMERGENCY_CLOSE,
            severity=AlertSeverity.CRITICAL,
            title="Emergency close",
            message=f"Flattening both venues: {reason}",
            details=details,
        ))

    async def alert_round_completed(self, round_number: int, total_pnl: float, venue_a_pnl: float, venue_b_pnl: float) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.ROUND_COMPLETED,
            severity=AlertSeverity.INFO,
            title=f"Round {round_number} settled",
            message=f"Round PnL {total_pnl:+.4f} USD",
            details={"venue_a_pnl": round(venue_a_pnl, 6), "venue_b_pnl": round(venue_b_pnl, 6)},
        ))

    async def alert_order_failure(self, venue: str, error: str) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.ORDER_FAILURE,
            severity=AlertSeverity.WARNING,
            title="Order failed",
            message=error,
            venue=venue,
        ))

    async def alert_venue_unhealthy(self, venue: str, error: str) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.VENUE_UNHEALTHY,
            severity=AlertSeverity.WARNING,
            title="Venue unreachable",
            message=error,
            venue=venue,
        ))

    async def alert_fatal(self, error: str, **details) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.FATAL_ERROR,
            severity=AlertSeverity.CRITICAL,
            title="Fatal error, bot stopping",
            message=error,
            details=details,
        ))

    async def alert_startup(self, symbol: str, order_size: float, **details) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.STARTUP,
            severity=AlertSeverity.INFO,
            title="Bot started",
            message=f"{self.config.bot_name} hedging {order_size} {symbol}",
            details={"symbol": symbol, "order_size": order_size, **details},
        ))

    async def alert_shutdown(self, rounds: int, total_pnl: float, runtime_min: float, reason: str = "normal") -> bool:
        severity = AlertSeverity.INFO if reason == "normal" else AlertSeverity.WARNING
        return await self.send_alert(Alert(
            alert_type=AlertType.SHUTDOWN,
            severity=severity,
            title="Bot stopped",
            message=f"{rounds} rounds, total PnL {total_pnl:+.4f} USD, ran {runtime_min:.1f} min ({reason})",
            details={"rounds": rounds, "total_pnl": round(total_pnl, 6), "runtime_min": round(runtime_min, 1)},
        ))
