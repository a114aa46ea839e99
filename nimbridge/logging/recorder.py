"""Records the most recent inbound request for the /whoami debug endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger("nimbridge")


@dataclass(frozen=True)
class Hit:
    time: str
    method: str
    path: str

    def as_dict(self) -> dict[str, Any]:
        return {"time": self.time, "method": self.method, "path": self.path}


class HitRecorder:
    """Keeps the last request seen by the proxy.

    Requests from concurrent clients overwrite each other; the value is only
    meant as a quick "is my client reaching this server" check.
    """

    def __init__(self) -> None:
        self._last: Optional[Hit] = None

    def record(self, method: str, path: str) -> Hit:
        hit = Hit(
            time=datetime.now(timezone.utc).isoformat(),
            method=method,
            path=path,
        )
        self._last = hit
        logger.info("HIT: %s %s", method, path)
        return hit

    @property
    def last_hit(self) -> Optional[dict[str, Any]]:
        if self._last is None:
            return None
        return self._last.as_dict()
