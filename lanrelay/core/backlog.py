from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .errors import QueueFullError
from .files import FilePayload

log = logging.getLogger("lanrelay.backlog")


@dataclass(frozen=True, slots=True)
class QueuedItem:
    payload: FilePayload
    from_display_name: str
    enqueued_at: float = field(default_factory=time.time)


class PendingQueue:
    """Per-clientId FIFO of files waiting for their recipient to come back.

    Lives in process memory only. Limits apply per clientId; ``0`` or
    ``None`` disables a limit. Not thread-safe on its own, see ``RelayCore``.
    """

    def __init__(self, max_items: Optional[int] = 100, max_bytes: Optional[int] = 256 * 1024 * 1024):
        self.max_items = max_items or None
        self.max_bytes = max_bytes or None
        self._items: Dict[str, List[QueuedItem]] = {}

    def enqueue(self, client_id: str, item: QueuedItem) -> None:
        self.enqueue_many(client_id, [item])

    def enqueue_many(self, client_id: str, items: Iterable[QueuedItem]) -> None:
        """Append ``items`` in order. All or nothing: on QueueFullError the backlog is untouched."""
        if not client_id:
            raise ValueError("client_id is required")
        batch = list(items)
        if not batch:
            return

        current = self._items.get(client_id, [])
        new_count = len(current) + len(batch)
        if self.max_items is not None and new_count > self.max_items:
            raise QueueFullError(
                client_id,
                f"backlog for {client_id} would hold {new_count} files (limit {self.max_items})",
            )
        new_bytes = self.pending_bytes(client_id) + sum(i.payload.size_bytes for i in batch)
        if self.max_bytes is not None and new_bytes > self.max_bytes:
            raise QueueFullError(
                client_id,
                f"backlog for {client_id} would hold {new_bytes} bytes (limit {self.max_bytes})",
            )

        self._items[client_id] = current + batch
        log.debug("Queued %d file(s) for %s (%d pending)", len(batch), client_id, new_count)

    def drain_for(self, client_id: Optional[str]) -> List[QueuedItem]:
        if not client_id:
            return []
        return self._items.pop(client_id, [])

    def pending_count(self, client_id: str) -> int:
        return len(self._items.get(client_id, ()))

    def pending_bytes(self, client_id: str) -> int:
        return sum(i.payload.size_bytes for i in self._items.get(client_id, ()))

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._items


__all__ = ["QueuedItem", "PendingQueue"]
