from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .proto import normalize_name

log = logging.getLogger("lanrelay.registry")


@dataclass(frozen=True, slots=True)
class DirectoryEntry:
    connection_id: str
    client_id: Optional[str]
    display_name: str

    def to_wire(self) -> dict:
        return {
            "connectionId": self.connection_id,
            "clientId": self.client_id,
            "name": self.display_name,
        }


class IdentityRegistry:
    """Live connection -> declared identity.

    Not thread-safe on its own; ``RelayCore`` serializes every call.
    Iteration order is registration order. A rename from the same connection
    keeps its slot.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, DirectoryEntry] = {}

    def register(
        self,
        connection_id: str,
        client_id: Optional[str],
        display_name: Optional[str],
    ) -> DirectoryEntry:
        client_id = client_id or None
        if client_id is not None:
            stale = self.resolve(client_id)
            if stale is not None and stale != connection_id:
                # identity migrates to the newest connection
                self._entries.pop(stale, None)
                log.info("Client %s moved from %s to %s", client_id, stale, connection_id)

        entry = DirectoryEntry(
            connection_id=connection_id,
            client_id=client_id,
            display_name=normalize_name(display_name),
        )
        self._entries[connection_id] = entry
        return entry

    def unregister(self, connection_id: str) -> Optional[DirectoryEntry]:
        return self._entries.pop(connection_id, None)

    def resolve(self, client_id: Optional[str]) -> Optional[str]:
        if not client_id:
            return None
        for connection_id, entry in self._entries.items():
            if entry.client_id == client_id:
                return connection_id
        return None

    def get(self, connection_id: Optional[str]) -> Optional[DirectoryEntry]:
        if not connection_id:
            return None
        return self._entries.get(connection_id)

    def snapshot(self) -> List[DirectoryEntry]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._entries


__all__ = ["DirectoryEntry", "IdentityRegistry"]
