"""
Command-line entrypoint running one ESP32 monitoring session.

Loads :class:`~dashboard.src.config.SyncSettings`, builds the HTTP pull
source and the Socket.IO push transport, and runs a
:class:`~dashboard.src.session.SyncSession` until SIGTERM/SIGINT. Accepted
readings and health transitions are written to the structured JSON log;
when ``STATUS_FILE`` is set, the session status is also written there on
every health tick.

Graceful shutdown on SIGTERM/SIGINT sets a shared asyncio.Event; the session
then stops its timer, cancels in-flight pulls and releases the push
connection before the process exits.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-015)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from dashboard.src.health import HealthWriter
from dashboard.src.pull import HttpPullSource
from dashboard.src.push import SocketIOPushTransport
from dashboard.src.session import SyncSession

if TYPE_CHECKING:
    from dashboard.src.config import SyncSettings
    from dashboard.src.models import UpsertResult

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structured JSON logging on stderr for the root logger."""

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def log_config_summary(settings: SyncSettings) -> None:
    """Log the effective configuration at startup."""
    logger.info(
        "Sync session starting with config: "
        "api_base_url=%s, socket_url=%s, device_id=%s, push_event=%s, "
        "poll_interval_s=%s, pull_timeout_s=%s, freshness_window_s=%s, "
        "tick_interval_s=%s, history_capacity=%s, seed_history=%s, status_file=%s",
        settings.api_base_url,
        settings.socket_url,
        settings.device_id,
        settings.push_event,
        settings.poll_interval_s,
        settings.pull_timeout_s,
        settings.freshness_window_s,
        settings.tick_interval_s,
        settings.history_capacity,
        settings.seed_history,
        settings.status_file or "disabled",
    )


def _log_update(result: UpsertResult) -> None:
    """Log an accepted reading and the fields that changed."""
    reading = result.reading
    logger.info(
        "Reading accepted: device=%s ts=%s voltage=%s current=%s power=%s "
        "energy=%s pir=%s pump=%s changes=%s",
        reading.device_id,
        reading.timestamp.isoformat(),
        reading.voltage,
        reading.current,
        reading.power,
        reading.energy,
        reading.pir_status,
        reading.pump_status,
        sorted(result.changes),
    )


# ---------------------------------------------------------------------------
# Session construction
# ---------------------------------------------------------------------------


def build_session(settings: SyncSettings) -> SyncSession:
    """Build a SyncSession with HTTP pull and Socket.IO push from *settings*."""
    pull = HttpPullSource(settings.api_base_url, timeout_s=settings.pull_timeout_s)
    push = SocketIOPushTransport(settings.socket_url, event=settings.push_event)
    health = HealthWriter(settings.status_file) if settings.status_file else None

    return SyncSession(
        device_id=settings.device_id,
        pull=pull,
        push=push,
        history=pull if settings.seed_history else None,
        poll_interval_s=settings.poll_interval_s,
        pull_timeout_s=settings.pull_timeout_s,
        freshness_window_s=settings.freshness_window_s,
        tick_interval_s=settings.tick_interval_s,
        history_capacity=settings.history_capacity,
        health_writer=health,
    )


async def run_session(session: SyncSession, shutdown_event: asyncio.Event) -> None:
    """Run *session* until *shutdown_event* is set, then stop it."""
    session.on_update(_log_update)
    async with session:
        await shutdown_event.wait()
        report = session.verify()
        logger.info(
            "History check for device=%s: points=%d unknown=%d unordered=%d anomalies=%s",
            session.device_id,
            report.total_points,
            report.unknown_count,
            report.unordered_points,
            report.anomalies,
        )
        logger.info("Stopping session for device=%s", session.device_id)
    logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load config, build the session, run it.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.
    """
    configure_logging()

    from dashboard.src.config import SyncSettings

    settings = SyncSettings()
    log_config_summary(settings)

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    await run_session(build_session(settings), shutdown_event)


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event."""
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the sync session CLI."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
