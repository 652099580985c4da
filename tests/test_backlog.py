import pytest

from lanrelay.core.backlog import PendingQueue, QueuedItem
from lanrelay.core.errors import QueueFullError
from lanrelay.core.files import FilePayload


def _item(name: str, size: int = 4, sender: str = "Alice") -> QueuedItem:
    return QueuedItem(payload=FilePayload(name, "text/plain", b"x" * size), from_display_name=sender)


def test_fifo_and_atomic_drain():
    q = PendingQueue()
    q.enqueue("B", _item("one"))
    q.enqueue_many("B", [_item("two"), _item("three")])

    assert q.pending_count("B") == 3
    drained = q.drain_for("B")
    assert [i.payload.name for i in drained] == ["one", "two", "three"]
    assert q.drain_for("B") == []
    assert "B" not in q
    assert len(q) == 0


def test_drain_without_client_id_is_empty():
    q = PendingQueue()
    assert q.drain_for(None) == []
    assert q.drain_for("") == []


def test_item_limit_rejects_whole_batch():
    q = PendingQueue(max_items=3, max_bytes=None)
    q.enqueue_many("B", [_item("a"), _item("b")])

    with pytest.raises(QueueFullError) as exc:
        q.enqueue_many("B", [_item("c"), _item("d")])

    assert exc.value.client_id == "B"
    assert exc.value.code == "QUEUE_FULL"
    assert [i.payload.name for i in q.drain_for("B")] == ["a", "b"]


def test_byte_limit():
    q = PendingQueue(max_items=None, max_bytes=10)
    q.enqueue("B", _item("a", size=6))
    with pytest.raises(QueueFullError):
        q.enqueue("B", _item("b", size=5))
    q.enqueue("B", _item("c", size=4))
    assert q.pending_bytes("B") == 10


def test_limits_are_per_client():
    q = PendingQueue(max_items=1, max_bytes=0)
    q.enqueue("A", _item("a"))
    q.enqueue("B", _item("b"))
    assert len(q) == 2


def test_enqueue_requires_client_id():
    with pytest.raises(ValueError):
        PendingQueue().enqueue("", _item("a"))
