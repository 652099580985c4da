from __future__ import annotations

import logging
from typing import Any, Dict, Protocol

log = logging.getLogger("lanrelay.transport")


class Pusher(Protocol):
    """One-way notification capability the core pushes frames through.

    ``push`` must not block: implementations hand the frame to a per-connection
    outbox and return. Unknown connection ids are dropped silently.
    """

    def push(self, connection_id: str, frame: Dict[str, Any]) -> None: ...


def safe_push(pusher: Pusher, connection_id: str, frame: Dict[str, Any]) -> bool:
    """Push and swallow transport failures; returns False if the push raised."""
    try:
        pusher.push(connection_id, frame)
    except Exception:
        log.warning("Push of %s to %s failed", frame.get("type"), connection_id, exc_info=True)
        return False
    return True


__all__ = ["Pusher", "safe_push"]
