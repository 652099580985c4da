import random
import threading

import pytest

from lanrelay.core.errors import NoFilesError, NoTargetError
from lanrelay.core.relay import Connect, Disconnect, Register, RelayCore, Submit


def test_alice_bob_scenario(core, pusher, make_file):
    """Live send, offline queue, then flush on re-register from a new connection."""
    core.handle(Register("conn1", "A", "Alice"))
    core.handle(Register("conn2", "B", "Bob"))
    pusher.clear()

    file1 = make_file("file1.txt", b"one")
    result = core.handle(Submit([file1], target_client_id="B", from_display_name="Alice"))
    assert result.to_wire() == {
        "message": "ok",
        "toClientId": "B",
        "delivered": [{"name": "file1.txt", "status": "sent"}],
    }
    assert [p["from"] for p in pusher.files_to("conn2")] == ["Alice"]

    core.handle(Disconnect("conn2"))
    file2 = make_file("file2.txt", b"two")
    result = core.handle(Submit([file2], target_client_id="B", from_display_name="Alice"))
    assert result.target_client_id == "B"
    assert [r.status for r in result.per_file] == ["queued"]

    pusher.clear()
    registration = core.handle(Register("conn3", "B", "Bob"))
    assert registration.flushed == 1
    delivered = pusher.files_to("conn3")
    assert [(p["fileName"], p["from"]) for p in delivered] == [("file2.txt", "Alice")]
    assert core.backlog.pending_count("B") == 0


def test_register_announces_before_flush(core, pusher, make_file):
    core.handle(Submit([make_file("a"), make_file("b")], target_client_id="B", from_display_name="Alice"))
    core.handle(Connect("watcher"))

    core.handle(Register("conn2", "B", "Bob"))

    types_to_conn2 = [f["type"] for cid, f in pusher.pushes if cid == "conn2"]
    assert types_to_conn2 == ["DEVICES", "FILE_TRANSFER", "FILE_TRANSFER"]
    assert [p["fileName"] for p in pusher.files_to("conn2")] == ["a", "b"]
    # unregistered connections still hear the announcement
    assert [cid for cid, _ in pusher.of_type("DEVICES")] == ["watcher", "conn2"]


def test_announce_carries_full_snapshot(core, pusher):
    core.handle(Register("conn1", "A", "Alice"))
    core.handle(Register("conn2", None, ""))

    _, frame = pusher.of_type("DEVICES")[-1]
    assert frame["payload"]["devices"] == [
        {"connectionId": "conn1", "clientId": "A", "name": "Alice"},
        {"connectionId": "conn2", "clientId": None, "name": "Unknown"},
    ]


def test_same_client_on_new_connection_replaces_old(core, pusher):
    core.handle(Register("conn1", "A", "Alice"))
    core.handle(Register("conn2", "A", "Alice"))

    assert [e.connection_id for e in core.snapshot()] == ["conn2"]
    # the old socket is still open and learns about the change
    assert "conn1" in [cid for cid, _ in pusher.of_type("DEVICES")[-2:]]


def test_double_disconnect_matches_single(core, pusher):
    core.handle(Register("conn1", "A", "Alice"))
    core.handle(Register("conn2", "B", "Bob"))
    pusher.clear()

    core.handle(Disconnect("conn2"))
    after_one = (list(pusher.pushes), core.snapshot())
    core.handle(Disconnect("conn2"))

    assert (pusher.pushes, core.snapshot()) == after_one
    assert len(pusher.of_type("DEVICES")) == 1


def test_disconnect_of_unregistered_connection_is_silent(core, pusher):
    core.handle(Connect("lurker"))
    core.handle(Disconnect("lurker"))
    assert pusher.pushes == []
    assert core.stats() == {"connections": 0, "devices": 0, "backlogs": 0}


def test_rejected_submissions_leave_state_alone(core, pusher, make_file):
    core.handle(Register("conn1", "A", "Alice"))
    pusher.clear()

    with pytest.raises(NoTargetError):
        core.handle(Submit([make_file()]))
    with pytest.raises(NoFilesError):
        core.handle(Submit([], target_client_id="A"))

    assert pusher.pushes == []
    assert len(core.backlog) == 0
    assert [e.client_id for e in core.snapshot()] == ["A"]


def test_broken_connection_does_not_block_announce(core, pusher):
    core.handle(Connect("dead"))
    core.handle(Connect("alive"))
    pusher.broken.add("dead")

    core.handle(Register("conn1", "A", "Alice"))

    assert [cid for cid, _ in pusher.of_type("DEVICES")] == ["alive", "conn1"]
    assert [e.connection_id for e in core.snapshot()] == ["conn1"]


def test_list_directory_is_unicast(core, pusher):
    core.handle(Register("conn1", "A", "Alice"))
    core.handle(Connect("conn2"))
    pusher.clear()

    core.list_directory("conn2")

    assert [(cid, f["to"]) for cid, f in pusher.pushes] == [("conn2", "conn2")]


def test_random_churn_snapshot_matches_model(pusher):
    """After any register/disconnect sequence the directory equals the live registrations."""
    rng = random.Random(1234)
    core = RelayCore(pusher)
    model = {}

    for _ in range(500):
        conn = f"conn{rng.randrange(8)}"
        if rng.random() < 0.6:
            client = rng.choice(["A", "B", "C", None])
            name = rng.choice(["Alice", "Bob", "", "Carol"])
            core.handle(Register(conn, client, name))
            if client is not None:
                for other, (other_client, _) in list(model.items()):
                    if other != conn and other_client == client:
                        del model[other]
            model[conn] = (client, name or "Unknown")
        else:
            core.handle(Disconnect(conn))
            model.pop(conn, None)

        snap = {e.connection_id: (e.client_id, e.display_name) for e in core.snapshot()}
        assert snap == model
        live_clients = [c for c, _ in snap.values() if c is not None]
        assert len(live_clients) == len(set(live_clients))


def test_concurrent_submissions_keep_every_file(pusher, make_file):
    core = RelayCore(pusher, max_items=None, max_bytes=None)

    def worker(n):
        for i in range(50):
            core.submit([make_file(f"{n}-{i}")], target_client_id="B")

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert core.backlog.pending_count("B") == 200
    core.register("conn1", "B", "Bob")
    names = [p["fileName"] for p in pusher.files_to("conn1")]
    assert len(names) == 200
    for n in range(4):
        mine = [x for x in names if x.startswith(f"{n}-")]
        assert mine == [f"{n}-{i}" for i in range(50)]
