"""
VCP Watch - Notification Hub

Multi-channel notification dispatch for pattern and entry-signal alerts:
- Protocol-based channel abstraction
- Log, Console, Webhook and Callback channels
- NotificationHub.notify() is the dispatcher the monitor talks to
"""

import copy
import json
import logging
import threading
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Protocol, Tuple

from .models import AlertKind, AlertPayload


logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    """What the monitor needs from a notifier."""

    def notify(self, payload: AlertPayload) -> bool:
        """Deliver an alert. Returns True if it reached at least one channel."""
        ...


class NotificationChannel(Protocol):
    """Protocol for notification channels."""

    @property
    def name(self) -> str:
        """Channel name."""
        ...

    @property
    def alert_kinds(self) -> List[AlertKind]:
        """Alert kinds this channel handles."""
        ...

    def send(self, payload: AlertPayload) -> bool:
        """Send an alert notification. Returns True if successful."""
        ...

    def format_message(self, payload: AlertPayload) -> str:
        """Format alert into a message string."""
        ...


def _title(payload: AlertPayload) -> str:
    if payload.alert_kind == AlertKind.ENTRY_SIGNAL:
        return f"Entry Signal: {payload.symbol}"
    return f"VCP Pattern Detected: {payload.symbol}"


def _details(payload: AlertPayload) -> List[Tuple[str, str]]:
    """(label, value) rows shared by the text formatters."""
    rows = []
    if payload.name:
        rows.append(("Name", payload.name))
    if payload.current_price is not None:
        rows.append(("Price", f"${payload.current_price:.2f}"))
    if payload.pattern_score is not None:
        rows.append(("VCP Score", f"{payload.pattern_score:.0f}"))

    signal = payload.signal
    if signal is not None:
        rows.extend([
            ("Strategy", f"{signal.strategy_kind.value} ({signal.timeframe})"),
            ("Confidence", f"{signal.confidence:.0f}%"),
            ("Target", f"${signal.target_price:.2f}"),
            ("Stop", f"${signal.stop_loss:.2f}"),
            ("Risk/Reward", f"{signal.risk_reward_ratio:.2f}"),
            ("Reason", signal.reason),
        ])
    else:
        for entry in payload.entry_points:
            rows.append((
                f"Entry ({entry.kind.value})",
                f"${entry.price:.2f} at {entry.confidence:.0f}% confidence",
            ))

    if payload.scan_name:
        rows.append(("Scan", payload.scan_name))
    return rows


class BaseNotificationChannel(ABC):
    """Base class for notification channels."""

    def __init__(
        self,
        name: str,
        alert_kinds: Optional[List[AlertKind]] = None,
    ):
        """
        Initialize the channel.

        Args:
            name: Channel name
            alert_kinds: Alert kinds to handle (None = all kinds)
        """
        self._name = name
        self._alert_kinds = alert_kinds or list(AlertKind)

    @property
    def name(self) -> str:
        """Channel name."""
        return self._name

    @property
    def alert_kinds(self) -> List[AlertKind]:
        """Alert kinds this channel handles."""
        return self._alert_kinds

    def format_message(self, payload: AlertPayload) -> str:
        """
        Format alert into a message string.

        Default implementation creates a markdown-ish text message.
        Override for channel-specific formatting.
        """
        lines = [f"**{_title(payload)}**", ""]
        lines.extend(f"**{label}:** {value}" for label, value in _details(payload))
        lines.extend(["", f"*{payload.created_at.strftime('%Y-%m-%d %H:%M:%S')}*"])
        return "\n".join(lines)

    @abstractmethod
    def send(self, payload: AlertPayload) -> bool:
        """Send an alert notification."""
        ...


class LogNotificationChannel(BaseNotificationChannel):
    """
    Notification channel that logs alerts.

    Useful for development, testing, and audit trails.
    """

    def __init__(
        self,
        name: str = "log",
        alert_kinds: Optional[List[AlertKind]] = None,
        log_level: int = logging.INFO,
    ):
        super().__init__(name, alert_kinds)
        self.log_level = log_level
        self.logger = logging.getLogger(f"vcpwatch.notifications.{name}")

    def send(self, payload: AlertPayload) -> bool:
        """Log the alert notification."""
        message = self.format_message(payload)
        self.logger.log(self.log_level, f"Alert notification:\n{message}")
        return True

    def format_message(self, payload: AlertPayload) -> str:
        """Format for logging (plain text)."""
        lines = [f"[{payload.alert_kind.value.upper()}] {payload.symbol}"]
        lines.extend(f"  {label}: {value}" for label, value in _details(payload))
        lines.append(f"  Time: {payload.created_at.strftime('%Y-%m-%d %H:%M:%S')}")
        return "\n".join(lines)


class ConsoleNotificationChannel(BaseNotificationChannel):
    """
    Notification channel that prints alerts to console.

    Useful for development and the CLI.
    """

    def __init__(
        self,
        name: str = "console",
        alert_kinds: Optional[List[AlertKind]] = None,
        use_colors: bool = True,
    ):
        super().__init__(name, alert_kinds)
        self.use_colors = use_colors

    def send(self, payload: AlertPayload) -> bool:
        """Print the alert to console."""
        print(self.format_message(payload))
        return True

    def format_message(self, payload: AlertPayload) -> str:
        """Format for console with optional colors."""
        colors = {
            AlertKind.VCP_FOUND: "\033[94m",     # Blue
            AlertKind.ENTRY_SIGNAL: "\033[92m",  # Green
        }
        reset = "\033[0m"

        color = colors.get(payload.alert_kind, "") if self.use_colors else ""
        end = reset if self.use_colors else ""

        lines = [
            f"{color}{'='*50}{end}",
            f"{color}{_title(payload).upper()}{end}",
            f"{'='*50}",
        ]
        lines.extend(f"  {label}: {value}" for label, value in _details(payload))
        lines.append(f"  Time: {payload.created_at.strftime('%Y-%m-%d %H:%M:%S')}")
        lines.append(f"{'='*50}")
        return "\n".join(lines)


class WebhookNotificationChannel(BaseNotificationChannel):
    """
    Notification channel that POSTs alerts as JSON to a webhook URL.
    """

    def __init__(
        self,
        name: str,
        webhook_url: str,
        alert_kinds: Optional[List[AlertKind]] = None,
        headers: Optional[dict] = None,
        timeout: float = 10.0,
    ):
        """
        Initialize the webhook channel.

        Args:
            name: Channel name
            webhook_url: URL to POST alerts to
            alert_kinds: Alert kinds to handle
            headers: Optional HTTP headers
            timeout: Request timeout in seconds
        """
        super().__init__(name, alert_kinds)
        self.webhook_url = webhook_url
        self.headers = headers or {"Content-Type": "application/json"}
        self.timeout = timeout

    def send(self, payload: AlertPayload) -> bool:
        """Send alert to webhook."""
        data = json.dumps(self._build_payload(payload)).encode("utf-8")
        request = urllib.request.Request(
            self.webhook_url,
            data=data,
            headers=self.headers,
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                if 200 <= response.status < 300:
                    logger.info(f"Webhook sent successfully to {self.name}")
                    return True
                logger.warning(f"Webhook returned status {response.status}")
                return False
        except (urllib.error.URLError, OSError) as e:
            logger.error(f"Failed to send webhook: {e}")
            return False

    def _build_payload(self, payload: AlertPayload) -> dict:
        """Build JSON body for the webhook."""
        body = payload.to_dict()
        body["message"] = self.format_message(payload)
        return body


class CallbackNotificationChannel(BaseNotificationChannel):
    """
    Notification channel that calls a callback function.

    Useful for integrating with existing systems or for testing.
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[AlertPayload, str], object],
        alert_kinds: Optional[List[AlertKind]] = None,
    ):
        """
        Initialize the callback channel.

        Args:
            name: Channel name
            callback: Function to call with (payload, message)
            alert_kinds: Alert kinds to handle
        """
        super().__init__(name, alert_kinds)
        self.callback = callback

    def send(self, payload: AlertPayload) -> bool:
        """Call the callback with the alert."""
        self.callback(payload, self.format_message(payload))
        return True


class NotificationHub:
    """
    Central hub for dispatching notifications to multiple channels.

    Features:
    - Register multiple notification channels
    - Dispatch alerts to channels that handle their kind
    - Track notification statistics

    A failing channel is logged and counted; it never affects the others.
    Dispatch may be called from several threads; channel registration and
    statistics are guarded by one lock, channel sends run outside it.
    """

    def __init__(self):
        """Initialize the notification hub."""
        self._channels: List[BaseNotificationChannel] = []
        self._lock = threading.Lock()
        self._stats = self._empty_stats()

    def _empty_stats(self) -> dict:
        return {
            "dispatched": 0,
            "successful": 0,
            "failed": 0,
            "by_kind": {k.value: 0 for k in AlertKind},
            "by_channel": {c.name: {"sent": 0, "failed": 0} for c in self._channels},
        }

    def register_channel(self, channel: BaseNotificationChannel) -> None:
        """Register a notification channel."""
        with self._lock:
            self._channels.append(channel)
            self._stats["by_channel"][channel.name] = {"sent": 0, "failed": 0}
        logger.info(f"Registered notification channel: {channel.name}")

    def unregister_channel(self, name: str) -> bool:
        """
        Unregister a notification channel by name.

        Returns:
            True if channel was found and removed
        """
        with self._lock:
            for i, channel in enumerate(self._channels):
                if channel.name == name:
                    self._channels.pop(i)
                    break
            else:
                return False
        logger.info(f"Unregistered notification channel: {name}")
        return True

    def dispatch(self, payload: AlertPayload) -> int:
        """
        Dispatch an alert to all appropriate channels.

        Returns:
            Number of successful notifications
        """
        with self._lock:
            self._stats["dispatched"] += 1
            self._stats["by_kind"][payload.alert_kind.value] += 1
            channels = list(self._channels)

        successful = 0

        for channel in channels:
            if payload.alert_kind not in channel.alert_kinds:
                continue

            try:
                sent = channel.send(payload)
            except Exception as e:
                logger.error(f"Error dispatching to {channel.name}: {e}")
                sent = False

            if sent:
                successful += 1
            self._count(channel.name, sent)

        return successful

    def _count(self, channel_name: str, sent: bool) -> None:
        with self._lock:
            counts = self._stats["by_channel"].setdefault(channel_name, {"sent": 0, "failed": 0})
            if sent:
                self._stats["successful"] += 1
                counts["sent"] += 1
            else:
                self._stats["failed"] += 1
                counts["failed"] += 1

    def notify(self, payload: AlertPayload) -> bool:
        """Dispatch and report whether any channel delivered the alert."""
        delivered = self.dispatch(payload) > 0
        if not delivered:
            logger.warning(f"No channel delivered {payload.alert_kind.value} alert for {payload.symbol}")
        return delivered

    def get_stats(self) -> dict:
        """Get a snapshot of notification statistics."""
        with self._lock:
            return copy.deepcopy(self._stats)

    def reset_stats(self) -> None:
        """Reset notification statistics."""
        with self._lock:
            self._stats = self._empty_stats()

    @property
    def channels(self) -> List[BaseNotificationChannel]:
        """Get registered channels."""
        with self._lock:
            return self._channels.copy()

    @property
    def channel_names(self) -> List[str]:
        """Get names of registered channels."""
        with self._lock:
            return [c.name for c in self._channels]
