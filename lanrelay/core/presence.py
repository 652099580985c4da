from __future__ import annotations

import logging
from typing import Iterable, List

from .proto import BROADCAST, SERVER_NAME, T_DEVICES, build_frame
from .registry import DirectoryEntry
from .transport import Pusher, safe_push


"""
Directory announcements
-----------------------
Every registry mutation (register, rename, disconnect) is followed by one
DEVICES frame pushed to every live connection, registered or not.

  • The frame carries the whole snapshot, not a delta
  • Each recipient gets the same frame object; pushes are fire-and-forget
  • A recipient that fails does not stop the announce to the rest

Clients hide their own entry when rendering; the server does not filter.
"""


log = logging.getLogger("lanrelay.presence")


def devices_frame(snapshot: Iterable[DirectoryEntry], to: str = BROADCAST) -> dict:
    return build_frame(T_DEVICES, SERVER_NAME, to, {"devices": [e.to_wire() for e in snapshot]})


def announce_directory(
    snapshot: List[DirectoryEntry],
    recipients: Iterable[str],
    pusher: Pusher,
) -> int:
    """Push the directory to every connection in ``recipients``.

    Returns how many pushes went through.
    """
    frame = devices_frame(snapshot)
    delivered = 0
    failed = 0
    for connection_id in recipients:
        if safe_push(pusher, connection_id, frame):
            delivered += 1
        else:
            failed += 1
    if failed:
        log.warning("Directory announce failed for %d connection(s)", failed)
    log.debug("Announced %d device(s) to %d connection(s)", len(snapshot), delivered)
    return delivered


__all__ = ["devices_frame", "announce_directory"]
