"""
Status file writer for a monitoring session.

Writes a JSON status file at a configurable path with the monitored device,
its health state, push connectivity, the latest reading and history length.
The file is rewritten on every health tick, giving external tools (a kiosk
display, a container HEALTHCHECK) a simple view of the session without
talking to it.

CHANGELOG:
- 2026-10-19: Include seconds since last update
- 2026-10-19: Initial creation (STORY-009)

TODO:
- None
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dashboard.src.models import StatusSnapshot


class HealthWriter:
    """Writes session status to a JSON file.

    Args:
        path: Filesystem path for the status JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._writes: int = 0

    @property
    def writes(self) -> int:
        """Number of successful writes so far."""
        return self._writes

    def write(self, snapshot: StatusSnapshot) -> None:
        """Overwrite the status file with *snapshot* plus a write timestamp."""
        data = json.loads(snapshot.model_dump_json())
        data["written_at"] = datetime.now(tz=UTC).isoformat()
        self.path.write_text(json.dumps(data))
        self._writes += 1
