"""
Sensor data synchronization core for the ESP32 irrigation dashboard.

Merges Socket.IO push updates with a periodic HTTP pull fallback, keeps the
latest reading and a bounded history per device, and derives per-device
health (live / stale / offline) for the dashboard views.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-001)

TODO:
- None
"""
