"""
HTTP pull source for the latest ESP32 reading and a short history seed.

Issues read-only ``GET`` requests against the dashboard API and unwraps its
response envelope (``{"status": "success", "data": ...}``). Any network
error, timeout, non-2xx status or non-success envelope is raised as
:class:`PullTransportError`; the caller decides whether to retry (the update
channel simply waits for its next tick).

Operations:
- fetch_latest(device_id): ``GET {base}/esp32/data/latest?device_id=...``
- fetch_history(device_id, limit): ``GET {base}/sensors/device/{id}?limit=N``

CHANGELOG:
- 2026-10-19: Flatten the all-devices ``{device, reading}`` shape
- 2026-10-19: Initial creation (STORY-005)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

import httpx

from dashboard.src.errors import PullTransportError

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_S = 10.0


class PullSource(Protocol):
    """Read-only query endpoint polled by the update channel."""

    async def fetch_latest(self, device_id: str) -> Mapping[str, Any]: ...


def _unwrap_envelope(response: httpx.Response) -> Any:
    """Return the ``data`` member of a success envelope.

    Raises:
        PullTransportError: On non-2xx status, non-JSON body, or a
            ``status`` other than ``"success"``.
    """
    if not response.is_success:
        raise PullTransportError(
            f"Pull failed (HTTP {response.status_code}) for {response.request.url}"
        )
    try:
        body = response.json()
    except ValueError as exc:
        raise PullTransportError("Pull response is not valid JSON") from exc

    if not isinstance(body, Mapping) or body.get("status") != "success":
        message = body.get("message") if isinstance(body, Mapping) else None
        raise PullTransportError(f"Pull returned non-success envelope: {message or body!r}")
    return body.get("data")


def _flatten_item(item: Any) -> Any:
    """Flatten ``{"device": {"id": ...}, "reading": {...}}`` into one reading dict."""
    if isinstance(item, Mapping) and isinstance(item.get("reading"), Mapping):
        flat = dict(item["reading"])
        device = item.get("device")
        if isinstance(device, Mapping) and not flat.get("device_id"):
            flat["device_id"] = device.get("id")
        return flat
    return item


def _select_latest(data: Any, device_id: str) -> Mapping[str, Any] | None:
    """Pick the single most recent reading for *device_id* from *data*.

    The API returns either one reading object or a list ordered newest
    first. List entries that name a different device are skipped.
    """
    if isinstance(data, Mapping):
        return _flatten_item(data)
    if isinstance(data, list):
        for item in data:
            flat = _flatten_item(item)
            if not isinstance(flat, Mapping):
                continue
            item_device = flat.get("device_id")
            if item_device in (None, "", device_id):
                return flat
    return None


class HttpPullSource:
    """Read-only client for the dashboard's sensor query endpoints.

    A fresh ``httpx.AsyncClient`` is opened per request so that no socket
    outlives a stopped monitoring session.

    Args:
        api_base_url: Base URL of the dashboard API, e.g.
            ``http://localhost:5000/api``.
        timeout_s: Per-request timeout in seconds.
        transport: Optional httpx transport (used by tests to inject
            ``httpx.MockTransport``).

    Raises:
        ValueError: If *api_base_url* is not an http(s) URL.

    Usage::

        source = HttpPullSource("http://localhost:5000/api")
        payload = await source.fetch_latest("ESP32-PUMP-01")
    """

    def __init__(
        self,
        api_base_url: str,
        timeout_s: float = _DEFAULT_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_base_url.lower().startswith(("http://", "https://")):
            raise ValueError(f"API base URL must be http(s) (got: '{api_base_url}')")
        self._api_base_url = api_base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._transport = transport

    @property
    def api_base_url(self) -> str:
        """Base URL without a trailing slash."""
        return self._api_base_url

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET *path* and return the unwrapped envelope data."""
        url = f"{self._api_base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.get(url, params=params)
        except httpx.TimeoutException as exc:
            raise PullTransportError(f"Pull timed out after {self._timeout_s}s: {url}") from exc
        except httpx.HTTPError as exc:
            raise PullTransportError(f"Pull failed (network error): {exc}") from exc
        return _unwrap_envelope(response)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_latest(self, device_id: str) -> Mapping[str, Any]:
        """Fetch the most recent raw reading for *device_id*.

        Returns:
            The raw reading payload, ready for the normalizer.

        Raises:
            PullTransportError: On any transport or envelope failure, or
                when the response holds no reading for the device.
        """
        data = await self._get("/esp32/data/latest", params={"device_id": device_id})
        payload = _select_latest(data, device_id)
        if payload is None:
            raise PullTransportError(f"No latest reading returned for device {device_id}")
        return payload

    async def fetch_history(self, device_id: str, limit: int) -> list[Mapping[str, Any]]:
        """Fetch up to *limit* recent raw readings, oldest first.

        Raises:
            PullTransportError: On any transport or envelope failure.
        """
        data = await self._get(f"/sensors/device/{device_id}", params={"limit": limit})
        if not isinstance(data, list):
            raise PullTransportError("History response data is not a list")
        items = [_flatten_item(item) for item in data if isinstance(item, Mapping)]
        # The API returns newest first.
        items.reverse()
        logger.debug("Fetched %d history readings for device=%s", len(items), device_id)
        return items
