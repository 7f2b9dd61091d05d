"""Connection-state monitor.

Fuses three independent inputs into one ``ConnectionStatus``:

- network reachability reported by the host (``handle_network_online`` /
  ``handle_network_offline``)
- realtime channel health (``handle_channel_signal``)
- presence of an authenticated session (``handle_auth_change``)

Channel failures schedule reconnect attempts with exponential backoff. Once
``max_attempts`` have been spent the monitor stays in ``error`` until
``reset()`` or a fresh network-online signal.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from offline_sync.core.async_utils import cancel_task
from offline_sync.core.backoff import backoff_delay
from offline_sync.core.observers import ObserverList, Unsubscribe
from offline_sync.domain.exceptions import ReconnectExhaustedError
from offline_sync.domain.models import ChannelSignal, ConnectionStatus, derive_connection_status

logger = logging.getLogger(__name__)

DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_ATTEMPTS = 5

# Resubscribes realtime channels. May return the signal the channel reported;
# otherwise the outcome arrives later through ``handle_channel_signal``.
ReconnectHook = Callable[[], Awaitable["ChannelSignal | None"]]
SleepFunc = Callable[[float], Awaitable[None]]


class ConnectionMonitor:
    """Single source of truth for "can we reach the remote service right now"."""

    def __init__(
        self,
        *,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        reconnect: ReconnectHook | None = None,
        sleep: SleepFunc = asyncio.sleep,
        network_online: bool = True,
        authenticated: bool = False,
    ) -> None:
        if max_attempts < 1:
            msg = "max_attempts must be at least 1"
            raise ValueError(msg)
        self._base_delay = base_delay
        self._max_attempts = max_attempts
        self._reconnect = reconnect
        self._sleep = sleep

        self._network_online = network_online
        self._authenticated = authenticated
        self._channel_status = ConnectionStatus.CONNECTED if authenticated else ConnectionStatus.DISCONNECTED
        self._status = self._derive()
        self._attempts = 0
        self._exhausted = False
        self._timer: asyncio.Task[None] | None = None
        self._started = False

        self._status_observers: ObserverList[[ConnectionStatus]] = ObserverList("connection_status")
        self._online_observers: ObserverList[[bool]] = ObserverList("connection_online")
        self._exhausted_observers: ObserverList[[ReconnectExhaustedError]] = ObserverList(
            "reconnect_exhausted"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._started:
            logger.warning("connection_monitor_already_started")
            return
        self._started = True
        logger.info(
            "connection_monitor_started",
            extra={"status": self._status.value, "max_attempts": self._max_attempts},
        )

    async def dispose(self) -> None:
        """Cancel any pending reconnect timer and drop every observer."""
        timer, self._timer = self._timer, None
        await cancel_task(timer, logger=logger)
        self._status_observers.clear()
        self._online_observers.clear()
        self._exhausted_observers.clear()
        self._started = False
        logger.info("connection_monitor_disposed")

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_online(self) -> bool:
        return self._status is ConnectionStatus.CONNECTED

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    @property
    def is_exhausted(self) -> bool:
        return self._exhausted

    def subscribe(self, callback: Callable[[ConnectionStatus], None]) -> Unsubscribe:
        """Deliver the current status immediately, then every transition in order."""
        unsubscribe = self._status_observers.subscribe(callback)
        callback(self._status)
        return unsubscribe

    def subscribe_online(self, callback: Callable[[bool], None]) -> Unsubscribe:
        """Boolean mirror of ``subscribe``: current value now, then each time online-ness flips."""
        unsubscribe = self._online_observers.subscribe(callback)
        callback(self.is_online)
        return unsubscribe

    def on_exhausted(self, callback: Callable[[ReconnectExhaustedError], None]) -> Unsubscribe:
        return self._exhausted_observers.subscribe(callback)

    # ------------------------------------------------------------------
    # Input signals
    # ------------------------------------------------------------------

    def handle_network_online(self) -> None:
        self._network_online = True
        self._clear_reconnect_state()
        if self._authenticated:
            self._channel_status = ConnectionStatus.CONNECTED
        self._publish("network_online")

    def handle_network_offline(self) -> None:
        self._network_online = False
        self._cancel_timer()
        self._channel_status = ConnectionStatus.DISCONNECTED
        self._publish("network_offline")

    def handle_auth_change(self, authenticated: bool) -> None:
        self._authenticated = authenticated
        if authenticated:
            self._clear_reconnect_state()
            self._channel_status = ConnectionStatus.CONNECTED
        else:
            self._cancel_timer()
            self._channel_status = ConnectionStatus.DISCONNECTED
        self._publish("auth_change")

    def handle_channel_signal(self, signal: ChannelSignal | str) -> None:
        signal = ChannelSignal(signal)
        logger.debug("channel_signal_received", extra={"signal": signal.value})
        if self._exhausted and signal is not ChannelSignal.SUBSCRIBED:
            # Pinned to error until reset() or a fresh network-online signal.
            return
        if signal is ChannelSignal.SUBSCRIBED:
            self._clear_reconnect_state()
            self._channel_status = ConnectionStatus.CONNECTED
            self._publish("channel_subscribed")
        elif signal is ChannelSignal.CHANNEL_ERROR:
            self._channel_status = ConnectionStatus.ERROR
            self._publish("channel_error")
            self._schedule_reconnect()
        else:
            self._channel_status = ConnectionStatus.DISCONNECTED
            self._publish("channel_timed_out")
            self._schedule_reconnect()

    def reset(self) -> None:
        """Clear the attempt counter; reconnect again unless already connected."""
        was_exhausted = self._exhausted
        self._clear_reconnect_state()
        logger.info("reconnect_reset", extra={"was_exhausted": was_exhausted})
        if was_exhausted or self._status is not ConnectionStatus.CONNECTED:
            self._schedule_reconnect()

    # ------------------------------------------------------------------
    # Reconnect machinery
    # ------------------------------------------------------------------

    def _schedule_reconnect(self) -> None:
        # The running timer may reschedule from inside itself after a failed hook.
        if self._timer is not None and self._timer is not asyncio.current_task():
            self._timer.cancel()
        self._timer = None

        if not self._network_online or not self._authenticated:
            logger.debug("reconnect_skipped_no_transport")
            return

        if self._attempts >= self._max_attempts:
            self._exhausted = True
            self._channel_status = ConnectionStatus.ERROR
            self._publish("reconnect_exhausted")
            error = ReconnectExhaustedError(self._attempts)
            logger.error("reconnect_exhausted", extra={"attempts": self._attempts})
            self._exhausted_observers.notify(error)
            return

        delay = backoff_delay(self._attempts, self._base_delay)
        logger.info(
            "reconnect_scheduled",
            extra={
                "attempt": self._attempts + 1,
                "max_attempts": self._max_attempts,
                "delay_sec": delay,
            },
        )
        self._channel_status = ConnectionStatus.CONNECTING
        self._publish("reconnect_scheduled")
        self._timer = asyncio.create_task(self._reconnect_after(delay), name="connection-reconnect")

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        self._attempts += 1
        if self._reconnect is None:
            return
        try:
            signal = await self._reconnect()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "reconnect_attempt_failed",
                extra={"attempt": self._attempts, "error": str(exc)},
            )
            self.handle_channel_signal(ChannelSignal.CHANNEL_ERROR)
            return
        if signal is not None:
            self.handle_channel_signal(signal)

    def _clear_reconnect_state(self) -> None:
        self._cancel_timer()
        self._attempts = 0
        self._exhausted = False

    def _cancel_timer(self) -> None:
        if self._timer is not None and self._timer is not asyncio.current_task():
            self._timer.cancel()
        self._timer = None

    # ------------------------------------------------------------------
    # Status publication
    # ------------------------------------------------------------------

    def _derive(self) -> ConnectionStatus:
        return derive_connection_status(
            self._network_online, self._channel_status, self._authenticated
        )

    def _publish(self, reason: str) -> None:
        previous = self._status
        current = self._derive()
        if current is previous:
            return
        self._status = current
        logger.info(
            "connection_status_changed",
            extra={"from_status": previous.value, "to_status": current.value, "reason": reason},
        )
        self._status_observers.notify(current)
        was_online = previous is ConnectionStatus.CONNECTED
        if was_online != self.is_online:
            self._online_observers.notify(self.is_online)
