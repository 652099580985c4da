from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Union

from .backlog import PendingQueue
from .files import FilePayload
from .presence import announce_directory, devices_frame
from .registry import DirectoryEntry, IdentityRegistry
from .router import DeliveryResult, DeliveryRouter
from .transport import Pusher, safe_push

log = logging.getLogger("lanrelay.relay")


# ---------------------------------------------------------------------------
# Inbound events
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Connect:
    connection_id: str


@dataclass(frozen=True, slots=True)
class Register:
    connection_id: str
    client_id: Optional[str] = None
    display_name: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Disconnect:
    connection_id: str


@dataclass(frozen=True, slots=True)
class Submit:
    payloads: Sequence[FilePayload]
    target_client_id: Optional[str] = None
    target_connection_id: Optional[str] = None
    from_display_name: Optional[str] = None


Event = Union[Connect, Register, Disconnect, Submit]


@dataclass(frozen=True, slots=True)
class Registration:
    entry: DirectoryEntry
    flushed: int = 0


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class RelayCore:
    """Single owner of the identity registry and the pending queue.

    One map-wide lock covers both structures for the whole of each event.
    Frames leave through ``pusher`` which only enqueues, so nothing under the
    lock waits on the network.
    """

    def __init__(
        self,
        pusher: Pusher,
        *,
        max_items: Optional[int] = 100,
        max_bytes: Optional[int] = 256 * 1024 * 1024,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.pusher = pusher
        self.registry = IdentityRegistry()
        self.backlog = PendingQueue(max_items=max_items, max_bytes=max_bytes)
        self.router = DeliveryRouter(self.registry, self.backlog, pusher, clock=clock)
        self._live: Dict[str, None] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Event entry points
    # ------------------------------------------------------------------

    def handle(self, event: Event):
        if isinstance(event, Connect):
            return self.connect(event.connection_id)
        if isinstance(event, Register):
            return self.register(event.connection_id, event.client_id, event.display_name)
        if isinstance(event, Disconnect):
            return self.disconnect(event.connection_id)
        if isinstance(event, Submit):
            return self.submit(
                event.payloads,
                target_client_id=event.target_client_id,
                target_connection_id=event.target_connection_id,
                from_display_name=event.from_display_name,
            )
        raise TypeError(f"unsupported event {event!r}")

    def connect(self, connection_id: str) -> None:
        with self._lock:
            self._live[connection_id] = None
        log.debug("Connected: %s", connection_id)

    def register(
        self,
        connection_id: str,
        client_id: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> Registration:
        with self._lock:
            self._live.setdefault(connection_id, None)
            entry = self.registry.register(connection_id, client_id, display_name)
            log.info("Registered %s as %r (client %s)", connection_id, entry.display_name, entry.client_id)
            announce_directory(self.registry.snapshot(), list(self._live), self.pusher)
            flushed = self.router.flush(entry.client_id, connection_id)
        return Registration(entry=entry, flushed=flushed)

    def disconnect(self, connection_id: str) -> Optional[DirectoryEntry]:
        with self._lock:
            self._live.pop(connection_id, None)
            removed = self.registry.unregister(connection_id)
            if removed is not None:
                log.info("Disconnected %s (%r)", connection_id, removed.display_name)
                announce_directory(self.registry.snapshot(), list(self._live), self.pusher)
        return removed

    def submit(
        self,
        payloads: Sequence[FilePayload],
        *,
        target_client_id: Optional[str] = None,
        target_connection_id: Optional[str] = None,
        from_display_name: Optional[str] = None,
    ) -> DeliveryResult:
        with self._lock:
            return self.router.submit(
                payloads,
                target_client_id=target_client_id,
                target_connection_id=target_connection_id,
                from_display_name=from_display_name,
            )

    def list_directory(self, connection_id: str) -> None:
        """Push the current directory to one connection only."""
        with self._lock:
            frame = devices_frame(self.registry.snapshot(), to=connection_id)
        safe_push(self.pusher, connection_id, frame)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def snapshot(self) -> List[DirectoryEntry]:
        with self._lock:
            return self.registry.snapshot()

    def stats(self) -> dict:
        with self._lock:
            return {
                "connections": len(self._live),
                "devices": len(self.registry),
                "backlogs": len(self.backlog),
            }


__all__ = [
    "Connect",
    "Register",
    "Disconnect",
    "Submit",
    "Registration",
    "RelayCore",
]
