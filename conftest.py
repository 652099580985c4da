from __future__ import annotations

from typing import Any, Dict, List, Tuple

import pytest

from lanrelay.core.files import FilePayload
from lanrelay.core.relay import RelayCore


class RecordingPusher:
    """Fake transport: remembers every (connection_id, frame) pushed."""

    def __init__(self) -> None:
        self.pushes: List[Tuple[str, Dict[str, Any]]] = []
        self.broken: set[str] = set()

    def push(self, connection_id: str, frame: Dict[str, Any]) -> None:
        if connection_id in self.broken:
            raise ConnectionError(f"{connection_id} is gone")
        self.pushes.append((connection_id, frame))

    def of_type(self, type_: str) -> List[Tuple[str, Dict[str, Any]]]:
        return [(cid, f) for cid, f in self.pushes if f["type"] == type_]

    def files_to(self, connection_id: str) -> List[Dict[str, Any]]:
        return [f["payload"] for cid, f in self.of_type("FILE_TRANSFER") if cid == connection_id]

    def clear(self) -> None:
        self.pushes.clear()


@pytest.fixture
def pusher() -> RecordingPusher:
    return RecordingPusher()


@pytest.fixture
def core(pusher) -> RelayCore:
    return RelayCore(pusher, max_items=10, max_bytes=1024)


@pytest.fixture
def make_file():
    def _make(name: str = "note.txt", data: bytes = b"hello", mime: str = "text/plain") -> FilePayload:
        return FilePayload(name=name, mime_type=mime, data=data)
    return _make
