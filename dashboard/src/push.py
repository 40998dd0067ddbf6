"""
Socket.IO push transport for real-time ESP32 readings.

Wraps ``socketio.AsyncClient`` behind the small capability surface the update
channel consumes: ``connect``/``disconnect`` plus ``on_connect``,
``on_disconnect``, ``on_message`` and ``on_error`` hooks. Reconnection is left
to the Socket.IO client itself (1 s initial delay, 5 s cap, unlimited
attempts); this module never retries on its own.

The client retries the initial connection too: ``connect()`` starts the
connection in a background task and returns at once. A server that is down
at startup is reported through ``on_error`` and picked up by the client's
retry loop once it comes back; ``disconnect()`` stops that loop.

CHANGELOG:
- 2026-10-19: Retry the initial connect in the background; shut down on disconnect
- 2026-10-19: Initial creation (STORY-006)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any, Protocol

import socketio
from socketio.exceptions import ConnectionError as SocketIOConnectionError

from dashboard.src.errors import PushTransportError

logger = logging.getLogger(__name__)

RECONNECTION_DELAY_S: float = 1.0
"""Initial Socket.IO reconnection delay in seconds."""

RECONNECTION_DELAY_MAX_S: float = 5.0
"""Cap on the Socket.IO reconnection delay in seconds."""


class PushTransport(Protocol):
    """Capability hooks of a long-lived push subscription."""

    @property
    def connected(self) -> bool: ...

    async def connect(self) -> None:
        """Start connecting in the background and return immediately.

        The Socket.IO client keeps retrying until the server answers or
        ``disconnect()`` is called. Failed attempts are reported through
        ``on_error``. Calling connect while an attempt is pending is a no-op.
        """
        if self._connect_task is not None and not self._connect_task.done():
            return
        logger.info("Connecting push channel to %s (event=%s)", self._url, self._event)
        self._connect_task = asyncio.create_task(self._run_connect(), name="socketio_connect")

    async def _run_connect(self) -> None:
        try:
            await self._sio.connect(
                self._url,
                wait_timeout=self._connect_timeout_s,
                retry=True,
            )
        except SocketIOConnectionError as exc:
            logger.warning("Push channel gave up connecting to %s: %s", self._url, exc)
            self._fire(
                self._error_callbacks,
                PushTransportError(f"Push connect to {self._url} failed: {exc}"),
            )

    async def disconnect(self) -> None:
        """Close the connection and stop the client's reconnection loop."""
        task, self._connect_task = self._connect_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._sio.shutdown()
        if self._connected:
            self._connected = False
            self._fire(self._disconnect_callbacks)


    # ------------------------------------------------------------------
    # Socket.IO event handlers
    # ------------------------------------------------------------------

    async def _handle_connect(self) -> None:
        logger.info("Push channel connected")
        self._connect_error_logged = False
        self._connected = True
        self._fire(self._connect_callbacks)

    async def _handle_disconnect(self, *args: Any) -> None:
        if not self._connected:
            return
        logger.warning("Push channel disconnected")
        self._connected = False
        self._fire(self._disconnect_callbacks)

    async def _handle_connect_error(self, data: Any = None) -> None:
        if self._connect_error_logged:
            logger.debug("Push channel connection error: %s", data)
        else:
            logger.warning("Push channel connection error: %s", data)
            self._connect_error_logged = True
        self._fire(self._error_callbacks, PushTransportError(f"Push connection error: {data}"))

    async def _handle_message(self, data: Any) -> None:
        self._fire(self._message_callbacks, data)

    @staticmethod
    def _fire(callbacks: list[Callable[..., None]], *args: Any) -> None:
        """Invoke every callback; a failing callback is logged and skipped."""
        for callback in list(callbacks):
            try:
                callback(*args)
            except Exception:
                logger.error("Push callback error", exc_info=True)
