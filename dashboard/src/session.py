"""
Monitoring session wiring the update channel, reading store and monitor.

One SyncSession owns every handle for one dashboard monitoring session: the
push subscription, the pull timer, the per-device store and the health tick.
Nothing is kept at module level, so sessions can be built and torn down
independently (e.g. per test, or when the operator switches device).

Flow per reading: channel delivers -> store.upsert -> on accept the monitor
recomputes health for that device -> ``on_update`` consumers are notified.

CHANGELOG:
- 2026-10-19: Add manual refresh and device switching (STORY-014)
- 2026-10-19: Initial creation (STORY-009)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Protocol

from dashboard.src.channel import DEFAULT_POLL_INTERVAL_S, DEFAULT_PULL_TIMEOUT_S, UpdateChannel
from dashboard.src.errors import InvalidReading, PullTransportError
from dashboard.src.models import DataReport, HealthState, Reading, StatusSnapshot, UpsertResult
from dashboard.src.monitor import DEFAULT_FRESHNESS_WINDOW_S, DEFAULT_TICK_INTERVAL_S, StalenessMonitor
from dashboard.src.store import DEFAULT_HISTORY_CAPACITY, ReadingStore
from dashboard.src.verifier import verify_history

if TYPE_CHECKING:
    from dashboard.src.health import HealthWriter
    from dashboard.src.pull import PullSource
    from dashboard.src.push import PushTransport

logger = logging.getLogger(__name__)


class HistorySource(Protocol):
    """Query endpoint returning recent raw readings, oldest first."""

    async def fetch_history(self, device_id: str, limit: int) -> list[Mapping[str, Any]]: ...


class SyncSession:
    """Owns the synchronization core for one monitored device.

    Args:
        device_id: Device monitored initially.
        pull: Pull source for the fallback timer, or None.
        push: Push transport, or None.
        history: Source used to seed the history buffer on start, or None.
        poll_interval_s: Seconds between pulls.
        pull_timeout_s: Timeout for each pull and for the history seed.
        freshness_window_s: Seconds a reading counts as live.
        tick_interval_s: Seconds between health recomputations.
        history_capacity: Readings kept per device.
        health_writer: Optional status file writer, updated on every tick.
        clock: Monotonic clock shared by store and monitor.

    Usage::

        async with SyncSession(device_id="ESP32-PUMP-01", pull=source, push=transport) as session:
            session.on_update(lambda result: print(result.reading))
            await shutdown_event.wait()
    """

    def __init__(
        self,
        *,
        device_id: str,
        pull: PullSource | None = None,
        push: PushTransport | None = None,
        history: HistorySource | None = None,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        pull_timeout_s: float = DEFAULT_PULL_TIMEOUT_S,
        freshness_window_s: float = DEFAULT_FRESHNESS_WINDOW_S,
        tick_interval_s: float = DEFAULT_TICK_INTERVAL_S,
        history_capacity: int = DEFAULT_HISTORY_CAPACITY,
        health_writer: HealthWriter | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = ReadingStore(capacity=history_capacity, clock=clock)
        self.channel = UpdateChannel(
            device_id=device_id,
            pull=pull,
            push=push,
            poll_interval_s=poll_interval_s,
            pull_timeout_s=pull_timeout_s,
        )
        self.monitor = StalenessMonitor(
            self.store,
            lambda: self.channel.connected,
            freshness_window_s=freshness_window_s,
            tick_interval_s=tick_interval_s,
            clock=clock,
        )
        self._history = history
        self._pull_timeout_s = pull_timeout_s
        self._health_writer = health_writer
        self._update_callbacks: list[Callable[[UpsertResult], None]] = []

        self.channel.on_reading(self._handle_reading)
        self.channel.on_connect(self._handle_connectivity_change)
        self.channel.on_disconnect(self._handle_connectivity_change)
        self.monitor.watch(self.channel.device_id)
        if self._health_writer is not None:
            self.monitor.on_tick(self._write_status)

    @property
    def device_id(self) -> str:
        """Device currently being monitored."""
        return self.channel.device_id

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Seed history (if configured), then start the channel and monitor."""
        await self._seed_history(self.device_id)
        await self.channel.start()
        await self.monitor.start()

    async def stop(self) -> None:
        """Stop the monitor and channel; stored readings remain readable."""
        await self.monitor.stop()
        await self.channel.stop()

    async def __aenter__(self) -> SyncSession:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def refresh(self) -> bool:
        """Manual recovery: pull the latest reading immediately.

        Returns:
            True if a reading was delivered.
        """
        logger.info("Manual refresh requested for device=%s", self.device_id)
        delivered = await self.channel.poll_once()
        self.monitor.tick()
        return delivered

    async def switch_device(self, device_id: str) -> None:
        """Monitor *device_id* instead of the current device.

        Clears the previous device's stored state, retargets the pull source
        and, while running, seeds history and pulls once for the new device.
        """
        old = self.device_id
        self.channel.device_id = device_id
        new = self.channel.device_id
        if new == old:
            return
        self.store.clear(old)
        self.monitor.unwatch(old)
        self.monitor.watch(new)
        logger.info("Switched monitored device %s -> %s", old, new)
        if self.channel.active:
            await self._seed_history(new)
            await self.channel.poll_once()
        self.monitor.tick()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def on_update(self, callback: Callable[[UpsertResult], None]) -> Callable[[], None]:
        """Subscribe to accepted readings; returns an unsubscribe function."""
        self._update_callbacks.append(callback)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._update_callbacks.remove(callback)

        return _unsubscribe

    def latest(self) -> Reading | None:
        return self.store.get_latest(self.device_id)

    def history(self) -> tuple[Reading, ...]:
        return self.store.get_history(self.device_id)

    def health(self) -> HealthState:
        return self.monitor.evaluate(self.device_id)

    def snapshot(self) -> StatusSnapshot:
        """Return a point-in-time view of the monitored device."""
        device_id = self.device_id
        return StatusSnapshot(
            device_id=device_id,
            state=self.monitor.evaluate(device_id),
            connected=self.channel.connected,
            latest=self.store.get_latest(device_id),
            history_length=len(self.store.get_history(device_id)),
            seconds_since_update=self.monitor.seconds_since_update(device_id),
        )

    def verify(self) -> DataReport:
        """Run the integrity check over the active device's history."""
        return verify_history(self.store.get_history(self.device_id))

    # ------------------------------------------------------------------
    # Internal handlers
    # ------------------------------------------------------------------

    def _handle_reading(self, reading: Reading) -> None:
        try:
            result = self.store.upsert(reading)
        except InvalidReading as exc:
            logger.warning("Store rejected reading: %s", exc)
            return
        if not result.accepted:
            return

        self.monitor.notify_accepted(reading.device_id)
        for callback in list(self._update_callbacks):
            try:
                callback(result)
            except Exception:
                logger.error("Error in update callback", exc_info=True)

    def _handle_connectivity_change(self) -> None:
        self.monitor.tick()

    def _write_status(self, device_id: str, state: HealthState) -> None:
        if device_id != self.device_id or self._health_writer is None:
            return
        try:
            self._health_writer.write(self.snapshot())
        except Exception:
            logger.warning("Failed to write status file", exc_info=True)

    async def _seed_history(self, device_id: str) -> int:
        """Pre-fill the history buffer; failures are logged and ignored."""
        if self._history is None:
            return 0
        try:
            items = await asyncio.wait_for(
                self._history.fetch_history(device_id, self.store.capacity),
                timeout=self._pull_timeout_s,
            )
        except (PullTransportError, TimeoutError) as exc:
            logger.warning("History seed failed for device=%s: %s", device_id, exc)
            return 0
        stored = self.store.seed(items)
        logger.info("Seeded %d history reading(s) for device=%s", stored, device_id)
        return stored
