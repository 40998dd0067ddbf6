"""
Staleness monitor deriving live / stale / offline health per device.

Health is level-triggered: it is recomputed from scratch on a fixed tick
(default 1 s) and immediately whenever the store accepts a reading, never
carried forward from a previous state. The inputs are the store's
last-accepted time, the channel's transport connectivity, and the current
time from an injected monotonic clock.

Rules, in order:
1. No reading ever accepted -> ``offline``.
2. A reading accepted within the freshness window -> ``live``.
3. Otherwise, transport connected -> ``stale``; disconnected -> ``offline``.

CHANGELOG:
- 2026-10-19: Log state transitions at INFO (STORY-012)
- 2026-10-19: Initial creation (STORY-008)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from dashboard.src.models import HealthState

if TYPE_CHECKING:
    from dashboard.src.store import ReadingStore

logger = logging.getLogger(__name__)

DEFAULT_FRESHNESS_WINDOW_S: float = 30.0
"""Maximum age of the last accepted reading for a device to count as live."""

DEFAULT_TICK_INTERVAL_S: float = 1.0
"""Seconds between periodic health recomputations."""

HealthCallback = Callable[[str, HealthState], None]


class StalenessMonitor:
    """Computes :class:`HealthState` per device and publishes it on a tick.

    Args:
        store: Reading store providing last-accepted times. Must share its
            clock with this monitor.
        is_connected: Probe returning the transport's current connectivity.
        freshness_window_s: Seconds a reading counts as fresh.
        tick_interval_s: Seconds between periodic recomputations.
        clock: Monotonic clock; defaults to ``time.monotonic``.

    Raises:
        ValueError: If the window or tick interval is not positive.
    """

    def __init__(
        self,
        store: ReadingStore,
        is_connected: Callable[[], bool],
        *,
        freshness_window_s: float = DEFAULT_FRESHNESS_WINDOW_S,
        tick_interval_s: float = DEFAULT_TICK_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if freshness_window_s <= 0:
            raise ValueError("freshness_window_s must be > 0")
        if tick_interval_s <= 0:
            raise ValueError("tick_interval_s must be > 0")
        self._store = store
        self._is_connected = is_connected
        self._freshness_window_s = freshness_window_s
        self._tick_interval_s = tick_interval_s
        self._clock = clock
        self._watched: dict[str, None] = {}
        self._last_states: dict[str, HealthState] = {}
        self._callbacks: list[HealthCallback] = []
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def freshness_window_s(self) -> float:
        return self._freshness_window_s

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, device_id: str) -> HealthState:
        """Return the current health of *device_id*. Pure; safe at any rate."""
        last = self._store.last_accepted_at(device_id)
        if last is None:
            return HealthState.OFFLINE
        if self._clock() - last <= self._freshness_window_s:
            return HealthState.LIVE
        return HealthState.STALE if self._is_connected() else HealthState.OFFLINE

    def seconds_since_update(self, device_id: str) -> float | None:
        """Seconds since the last accepted reading, or None if never."""
        last = self._store.last_accepted_at(device_id)
        if last is None:
            return None
        return max(0.0, self._clock() - last)

    def tracked_devices(self) -> tuple[str, ...]:
        """Watched devices followed by any other device the store knows."""
        devices = dict(self._watched)
        devices.update(dict.fromkeys(self._store.devices()))
        return tuple(devices)

    # ------------------------------------------------------------------
    # Subscriptions and tracking
    # ------------------------------------------------------------------

    def on_tick(self, callback: HealthCallback) -> Callable[[], None]:
        """Subscribe to recomputation events; returns an unsubscribe function.

        *callback* receives ``(device_id, state)`` for every tracked device on
        every tick, and for the affected device on every accepted reading.
        """
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._callbacks.remove(callback)

        return _unsubscribe

    def watch(self, device_id: str) -> None:
        """Track *device_id* even before any reading for it arrives."""
        self._watched[device_id] = None

    def unwatch(self, device_id: str) -> None:
        self._watched.pop(device_id, None)
        self._last_states.pop(device_id, None)

    # ------------------------------------------------------------------
    # Recomputation
    # ------------------------------------------------------------------

    def notify_accepted(self, device_id: str) -> HealthState:
        """Recompute and publish health for one device after an acceptance."""
        return self._publish(device_id)

    def tick(self) -> dict[str, HealthState]:
        """Recompute and publish health for every tracked device."""
        return {device_id: self._publish(device_id) for device_id in self.tracked_devices()}

    def _publish(self, device_id: str) -> HealthState:
        state = self.evaluate(device_id)
        previous = self._last_states.get(device_id)
        if previous is not state:
            logger.info(
                "Device %s health %s -> %s",
                device_id,
                previous.value if previous is not None else "unknown",
                state.value,
            )
            self._last_states[device_id] = state
        for callback in list(self._callbacks):
            try:
                callback(device_id, state)
            except Exception:
                logger.error("Error in health callback", exc_info=True)
        return state

    # ------------------------------------------------------------------
    # Tick loop
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the periodic tick task. Calling start twice is a no-op."""
        if self._task is not None:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._tick_loop(self._stop_event), name="staleness_monitor")
        logger.info(
            "Staleness monitor started (freshness_window=%ss, tick=%ss)",
            self._freshness_window_s,
            self._tick_interval_s,
        )

    async def stop(self) -> None:
        """Stop the tick task and wait for it to finish."""
        if self._task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        task, self._task = self._task, None
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Staleness monitor stopped")

    async def _tick_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.error("Health tick error", exc_info=True)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=self._tick_interval_s)
