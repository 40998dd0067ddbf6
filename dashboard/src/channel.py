"""
Update channel merging push messages and periodic pulls into one stream.

Two sources feed the same normalized reading stream:

1. **Push**: a long-lived :class:`~dashboard.src.push.PushTransport`
   subscription. Every message is normalized and delivered as it arrives.
2. **Pull**: a fixed-cadence timer (default 5 s, first tick immediately on
   start) that asks a :class:`~dashboard.src.pull.PullSource` for the latest
   reading and delivers it as if it had been pushed.

Delivery is in receipt order; ordering by producer timestamp is the
ReadingStore's job. Failures never stop the channel:

- A failed pull is reported through ``on_error`` and retried on the next
  tick. There is no backoff; cadence is unaffected by failures.
- A push disconnect fires ``on_disconnect``; pulls continue as the
  degraded-mode fallback. Reconnection belongs to the transport.
- A payload that cannot be normalized is reported through ``on_error`` and
  dropped.

``stop()`` cancels the timer and every in-flight pull and releases the push
subscription. A pull result that still arrives after ``stop()`` (or after a
restart), or after ``device_id`` was retargeted, is discarded without invoking
any callback.

CHANGELOG:
- 2026-10-19: Discard pull results for a device that is no longer targeted
- 2026-10-19: Log repeated identical pull failures once (STORY-011)
- 2026-10-19: Run each tick's pull as its own task so slow pulls keep cadence
- 2026-10-19: Initial creation (STORY-007)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from dashboard.src.errors import InvalidReading, PullTransportError, PushTransportError
from dashboard.src.normalizer import normalize

if TYPE_CHECKING:
    from dashboard.src.models import Reading
    from dashboard.src.pull import PullSource
    from dashboard.src.push import PushTransport

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_S: float = 5.0
"""Seconds between pull ticks."""

DEFAULT_PULL_TIMEOUT_S: float = 10.0
"""Upper bound on a single pull so a hung request cannot pile up forever."""


def _subscribe(callbacks: list[Callable[..., None]], callback: Callable[..., None]) -> Callable[[], None]:
    """Append *callback* and return a function that removes it again."""
    callbacks.append(callback)

    def _unsubscribe() -> None:
        with contextlib.suppress(ValueError):
            callbacks.remove(callback)

    return _unsubscribe


def _fire(callbacks: list[Callable[..., None]], *args: Any, what: str) -> None:
    """Invoke every callback in registration order; failures are logged."""
    for callback in list(callbacks):
        try:
            callback(*args)
        except Exception:
            logger.error("Error in %s callback", what, exc_info=True)


class UpdateChannel:
    """Normalized reading stream over a push transport and a pull source.

    Either source may be omitted (push-only or pull-only operation).

    Args:
        device_id: Device whose latest reading the pull source is asked for.
        pull: Pull source polled on every tick, or None.
        push: Push transport, or None.
        poll_interval_s: Seconds between pull ticks.
        pull_timeout_s: Timeout applied to each pull request.

    Raises:
        ValueError: If *device_id* is empty or an interval is not positive.

    Usage::

        channel = UpdateChannel(device_id="ESP32-PUMP-01", pull=source, push=transport)
        channel.on_reading(store.upsert)
        async with channel:
            await shutdown_event.wait()
    """

    def __init__(
        self,
        *,
        device_id: str,
        pull: PullSource | None = None,
        push: PushTransport | None = None,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        pull_timeout_s: float = DEFAULT_PULL_TIMEOUT_S,
    ) -> None:
        if poll_interval_s <= 0:
            raise ValueError("poll_interval_s must be > 0")
        if pull_timeout_s <= 0:
            raise ValueError("pull_timeout_s must be > 0")
        self._device_id = self._validate_device_id(device_id)
        self._pull = pull
        self._push = push
        self._poll_interval_s = poll_interval_s
        self._pull_timeout_s = pull_timeout_s

        self._reading_callbacks: list[Callable[[Reading], None]] = []
        self._error_callbacks: list[Callable[[Exception], None]] = []
        self._connect_callbacks: list[Callable[[], None]] = []
        self._disconnect_callbacks: list[Callable[[], None]] = []

        self._active = False
        self._generation = 0
        self._stop_event: asyncio.Event | None = None
        self._timer_task: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[bool]] = set()

        self._consecutive_failures = 0
        self._last_failure: str | None = None

        if self._push is not None:
            self._push.on_connect(self._handle_push_connect)
            self._push.on_disconnect(self._handle_push_disconnect)
            self._push.on_message(self._handle_push_message)
            self._push.on_error(self._handle_push_error)

    @staticmethod
    def _validate_device_id(device_id: str) -> str:
        device_id = device_id.strip() if device_id else ""
        if not device_id:
            raise ValueError("device_id must not be empty")
        return device_id

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def device_id(self) -> str:
        """Device targeted by pull requests."""
        return self._device_id

    @device_id.setter
    def device_id(self, value: str) -> None:
        self._device_id = self._validate_device_id(value)
        self._consecutive_failures = 0
        self._last_failure = None

    @property
    def active(self) -> bool:
        """True between ``start()`` and ``stop()``."""
        return self._active

    @property
    def connected(self) -> bool:
        """Transport-level connectivity of the push source."""
        return self._push is not None and self._push.connected

    @property
    def consecutive_failures(self) -> int:
        """Number of pulls that failed since the last successful one."""
        return self._consecutive_failures

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on_reading(self, callback: Callable[[Reading], None]) -> Callable[[], None]:
        """Register a reading consumer; returns an unsubscribe function."""
        return _subscribe(self._reading_callbacks, callback)

    def on_error(self, callback: Callable[[Exception], None]) -> Callable[[], None]:
        """Register a non-fatal error consumer; returns an unsubscribe function."""
        return _subscribe(self._error_callbacks, callback)

    def on_connect(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a push-connected consumer; returns an unsubscribe function."""
        return _subscribe(self._connect_callbacks, callback)

    def on_disconnect(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a push-disconnected consumer; returns an unsubscribe function."""
        return _subscribe(self._disconnect_callbacks, callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the pull timer and connect the push transport.

        A push connect failure is reported through ``on_error`` and the
        channel keeps running on pulls alone. Calling start twice is a no-op.
        """
        if self._active:
            return
        self._active = True
        self._generation += 1
        self._stop_event = asyncio.Event()
        logger.info(
            "Update channel started (device=%s, poll_interval=%ss, push=%s, pull=%s)",
            self._device_id,
            self._poll_interval_s,
            self._push is not None,
            self._pull is not None,
        )

        if self._pull is not None:
            self._timer_task = asyncio.create_task(
                self._pull_loop(self._stop_event),
                name="update_channel_pull_timer",
            )

        if self._push is not None:
            try:
                await self._push.connect()
            except PushTransportError as exc:
                logger.warning("Push connect failed, continuing on pull only: %s", exc)
                _fire(self._error_callbacks, exc, what="error")

    async def stop(self) -> None:
        """Cancel the timer and in-flight pulls, then release the push transport.

        Safe to call while a pull is in flight and safe to call twice.
        """
        if not self._active:
            return
        self._active = False
        if self._stop_event is not None:
            self._stop_event.set()

        current = asyncio.current_task()
        tasks = [
            task
            for task in (self._timer_task, *self._inflight)
            if task is not None and task is not current
        ]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._timer_task = None
        self._inflight.clear()

        if self._push is not None:
            try:
                await self._push.disconnect()
            except Exception:
                logger.warning("Push disconnect failed", exc_info=True)
        logger.info("Update channel stopped (device=%s)", self._device_id)

    async def __aenter__(self) -> UpdateChannel:
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
    # Pull
    # ------------------------------------------------------------------

    async def _pull_loop(self, stop_event: asyncio.Event) -> None:
        """Fire one pull per tick until *stop_event* is set.

        Ticks are anchored to the loop clock, so neither a slow nor a failed
        pull shifts the cadence. Missed ticks are skipped, not replayed.
        """
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while not stop_event.is_set():
            task = asyncio.create_task(self.poll_once(), name="update_channel_pull")
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

            now = loop.time()
            next_tick += self._poll_interval_s
            while next_tick <= now:
                next_tick += self._poll_interval_s
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=next_tick - now)

    async def poll_once(self) -> bool:
        """Run a single pull-normalize-deliver cycle.

        Never raises for transport failures: they are logged and reported
        through ``on_error``.

        Returns:
            True if a reading was delivered to the ``on_reading`` callbacks.
        """
        if self._pull is None or not self._active:
            return False

        generation = self._generation
        device_id = self._device_id
        error: PullTransportError | None = None
        payload: Any = None
        try:
            payload = await asyncio.wait_for(
                self._pull.fetch_latest(device_id),
                timeout=self._pull_timeout_s,
            )
        except TimeoutError:
            error = PullTransportError(
                f"Pull for device {device_id} timed out after {self._pull_timeout_s}s"
            )
        except PullTransportError as exc:
            error = exc
        except Exception as exc:
            logger.error("Unexpected pull error for device=%s", device_id, exc_info=True)
            error = PullTransportError(f"Unexpected pull error: {exc}")

        if not self._active or generation != self._generation:
            logger.debug("Discarding pull result for device=%s that arrived after stop", device_id)
            return False
        if device_id != self._device_id:
            logger.debug(
                "Discarding pull result for device=%s after retarget to %s",
                device_id,
                self._device_id,
            )
            return False

        if error is not None:
            self._record_pull_failure(device_id, error)
            return False

        self._record_pull_success(device_id)
        return self._receive(payload, source="pull")

    def _record_pull_failure(self, device_id: str, error: PullTransportError) -> None:
        """Count a failure; identical consecutive failures are logged once."""
        self._consecutive_failures += 1
        key = str(error)
        if key != self._last_failure:
            logger.warning("Pull failed for device=%s: %s", device_id, error)
            self._last_failure = key
        else:
            logger.debug(
                "Pull failed for device=%s (%d consecutive): %s",
                device_id,
                self._consecutive_failures,
                error,
            )
        _fire(self._error_callbacks, error, what="error")

    def _record_pull_success(self, device_id: str) -> None:
        if self._consecutive_failures:
            logger.info(
                "Pull recovered for device=%s after %d failure(s)",
                device_id,
                self._consecutive_failures,
            )
        self._consecutive_failures = 0
        self._last_failure = None

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def _handle_push_message(self, data: Any) -> None:
        if not self._active:
            return
        self._receive(data, source="push")

    def _handle_push_connect(self) -> None:
        _fire(self._connect_callbacks, what="connect")

    def _handle_push_disconnect(self) -> None:
        _fire(self._disconnect_callbacks, what="disconnect")

    def _handle_push_error(self, error: Exception) -> None:
        if not self._active:
            return
        _fire(self._error_callbacks, error, what="error")

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _receive(self, payload: Any, *, source: str) -> bool:
        """Normalize *payload* and hand it to every reading consumer."""
        try:
            reading = normalize(payload)
        except InvalidReading as exc:
            logger.warning("Dropped invalid %s payload: %s", source, exc)
            _fire(self._error_callbacks, exc, what="error")
            return False

        logger.debug(
            "Received %s reading for device=%s ts=%s",
            source,
            reading.device_id,
            reading.timestamp.isoformat(),
        )
        _fire(self._reading_callbacks, reading, what="reading")
        return True
