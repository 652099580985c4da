from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from .backlog import PendingQueue, QueuedItem
from .errors import NoFilesError, NoTargetError, TargetUnavailableError
from .files import FilePayload
from .proto import SERVER_NAME, T_FILE_TRANSFER, build_frame, normalize_name
from .registry import IdentityRegistry
from .transport import Pusher, safe_push

log = logging.getLogger("lanrelay.router")

STATUS_SENT = "sent"
STATUS_QUEUED = "queued"


@dataclass(frozen=True, slots=True)
class FileResult:
    name: str
    status: str

    def to_wire(self) -> dict:
        return {"name": self.name, "status": self.status}


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    target_client_id: Optional[str]
    per_file: Tuple[FileResult, ...]

    @property
    def status(self) -> str:
        # all files share one status, see DeliveryRouter.submit
        return self.per_file[0].status

    def to_wire(self) -> dict:
        return {
            "message": "ok",
            "toClientId": self.target_client_id,
            "delivered": [r.to_wire() for r in self.per_file],
        }


def file_transfer_frame(connection_id: str, payload: FilePayload, from_name: str) -> dict:
    body = {
        "fileName": payload.name,
        "mimeType": payload.mime_type,
        "fileData": payload.encode_for_transfer(),
        "from": from_name,
        "size": payload.size_bytes,
    }
    return build_frame(T_FILE_TRANSFER, SERVER_NAME, connection_id, body)


def push_file(pusher: Pusher, connection_id: str, payload: FilePayload, from_name: str) -> bool:
    return safe_push(pusher, connection_id, file_transfer_frame(connection_id, payload, from_name))


class DeliveryRouter:
    """Decides, per submission, between an immediate push and the backlog.

    The target is resolved once and the outcome applies to every file in the
    submission, so a result is never part sent, part queued.
    """

    def __init__(
        self,
        registry: IdentityRegistry,
        backlog: PendingQueue,
        pusher: Pusher,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.backlog = backlog
        self.pusher = pusher
        self.clock = clock

    def resolve_target(
        self,
        target_client_id: Optional[str],
        target_connection_id: Optional[str],
    ) -> Tuple[Optional[str], Optional[str]]:
        """Return ``(connection_id, client_id)``; either may be None."""
        if target_client_id:
            return self.registry.resolve(target_client_id), target_client_id
        if target_connection_id:
            entry = self.registry.get(target_connection_id)
            if entry is None:
                return None, None
            return entry.connection_id, entry.client_id
        raise NoTargetError()

    def submit(
        self,
        payloads: Sequence[FilePayload],
        *,
        target_client_id: Optional[str] = None,
        target_connection_id: Optional[str] = None,
        from_display_name: Optional[str] = None,
    ) -> DeliveryResult:
        if not payloads:
            raise NoFilesError()
        from_name = normalize_name(from_display_name)
        connection_id, client_id = self.resolve_target(target_client_id, target_connection_id)

        if connection_id is not None:
            for payload in payloads:
                push_file(self.pusher, connection_id, payload, from_name)
            log.info("Sent %d file(s) from %s to %s", len(payloads), from_name, client_id or connection_id)
            return self._result(client_id, payloads, STATUS_SENT)

        if client_id is None:
            raise TargetUnavailableError()

        now = self.clock()
        items: List[QueuedItem] = [
            QueuedItem(payload=p, from_display_name=from_name, enqueued_at=now) for p in payloads
        ]
        self.backlog.enqueue_many(client_id, items)
        log.info("Queued %d file(s) from %s for offline client %s", len(payloads), from_name, client_id)
        return self._result(client_id, payloads, STATUS_QUEUED)

    def flush(self, client_id: Optional[str], connection_id: str) -> int:
        """Drain the backlog for ``client_id`` onto ``connection_id``, oldest first."""
        items = self.backlog.drain_for(client_id)
        for item in items:
            push_file(self.pusher, connection_id, item.payload, item.from_display_name)
        if items:
            log.info("Delivered %d queued file(s) to %s (connection %s)", len(items), client_id, connection_id)
        return len(items)

    @staticmethod
    def _result(client_id: Optional[str], payloads: Sequence[FilePayload], status: str) -> DeliveryResult:
        return DeliveryResult(
            target_client_id=client_id,
            per_file=tuple(FileResult(name=p.name, status=status) for p in payloads),
        )


__all__ = [
    "STATUS_SENT",
    "STATUS_QUEUED",
    "FileResult",
    "DeliveryResult",
    "DeliveryRouter",
    "file_transfer_frame",
    "push_file",
]
