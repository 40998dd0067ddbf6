"""
Exception types raised by the synchronization core.

None of these are fatal to the process: invalid readings are rejected at the
store boundary, and transport errors are reported through ``on_error``
notifications while polling continues.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for synchronization core errors."""


class InvalidReading(SyncError, ValueError):
    """A payload is missing its device_id or timestamp and cannot be stored."""


class PullTransportError(SyncError):
    """A pull request failed (network, timeout, HTTP status or envelope)."""


class PushTransportError(SyncError):
    """The push channel failed to connect or reported a transport error."""
