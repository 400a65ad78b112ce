import pytest

from raftlet.memstore import ClientRequest, ClientResponse, MemStore, MemStoreStateMachine
from raftlet.types import (
    EffectiveMembership,
    Entry,
    LeaderId,
    LogId,
    Membership,
    SnapshotMeta,
    StorageError,
    Vote,
)


def log_id(term, index):
    return LogId(LeaderId(term, 0), index)


def normal(term, index, request):
    return Entry(log_id(term, index), request)


@pytest.fixture
def store():
    return MemStore()


def test_make_request():
    req = ClientRequest.make_request("c1", 7)
    assert req == ClientRequest(client="c1", serial=7, status="request-7")


def test_vote_round_trip(store):
    assert store.read_vote() is None
    store.save_vote(Vote(3, 1, False))
    assert store.read_vote() == Vote(3, 1, False)


def test_initial_state(store):
    state = store.get_log_state()
    assert state.last_purged_log_id is None
    assert state.last_log_id is None
    assert store.last_applied_state() == (None, None)
    assert store.get_membership() is None
    assert store.get_current_snapshot() is None


def test_append_and_read_entries(store):
    store.append_to_log([Entry.blank(1, i) for i in range(5)])
    assert [e.log_id.index for e in store.try_get_log_entries()] == [0, 1, 2, 3, 4]
    assert [e.log_id.index for e in store.try_get_log_entries(1, 3)] == [1, 2]
    assert [e.log_id.index for e in store.try_get_log_entries(3)] == [3, 4]
    assert store.try_get_log_entry(2) == Entry.blank(1, 2)
    assert store.try_get_log_entry(9) is None
    assert store.get_log_state().last_log_id == log_id(1, 4)


def test_append_overrides_same_index(store):
    store.append_to_log([Entry.blank(1, 0), Entry.blank(1, 1)])
    store.append_to_log([Entry.blank(2, 1)])
    assert store.try_get_log_entry(1) == Entry.blank(2, 1)


def test_delete_conflict_logs_since(store):
    store.append_to_log([Entry.blank(1, i) for i in range(5)])
    store.delete_conflict_logs_since(log_id(1, 2))
    assert [e.log_id.index for e in store.try_get_log_entries()] == [0, 1]
    assert store.get_log_state().last_log_id == log_id(1, 1)


def test_purge_logs_upto(store):
    store.append_to_log([Entry.blank(1, i) for i in range(5)])
    store.purge_logs_upto(log_id(1, 2))
    assert [e.log_id.index for e in store.try_get_log_entries()] == [3, 4]
    state = store.get_log_state()
    assert state.last_purged_log_id == log_id(1, 2)
    assert state.last_log_id == log_id(1, 4)


def test_purge_all_reports_purged_as_last(store):
    store.append_to_log([Entry.blank(1, i) for i in range(3)])
    store.purge_logs_upto(log_id(1, 2))
    state = store.get_log_state()
    assert state.last_log_id == log_id(1, 2)
    assert state.last_purged_log_id == log_id(1, 2)


def test_purge_backwards_is_rejected(store):
    store.purge_logs_upto(log_id(1, 5))
    with pytest.raises(ValueError):
        store.purge_logs_upto(log_id(1, 3))


def test_apply_client_requests(store):
    responses = store.apply_to_state_machine(
        [
            Entry.blank(1, 0),
            normal(1, 1, ClientRequest("foo", 1, "a")),
            normal(1, 2, ClientRequest("foo", 2, "b")),
            normal(1, 3, ClientRequest("foo", 2, "c")),
        ]
    )
    assert responses == [
        ClientResponse(None),
        ClientResponse(None),
        ClientResponse("a"),
        ClientResponse("a"),
    ]
    sm = store.get_state_machine()
    assert sm.client_status == {"foo": "b"}
    assert sm.client_serial_responses == {"foo": (2, "a")}
    assert sm.last_applied_log == log_id(1, 3)


def test_apply_membership(store):
    membership = Membership([{1, 2}])
    responses = store.apply_to_state_machine([Entry(log_id(1, 0), membership)])
    assert responses == [ClientResponse(None)]
    applied, effective = store.last_applied_state()
    assert applied == log_id(1, 0)
    assert effective == EffectiveMembership(log_id(1, 0), membership)


def test_apply_unknown_payload(store):
    with pytest.raises(TypeError):
        store.apply_to_state_machine([Entry(log_id(1, 0), 42)])


def test_get_membership_prefers_unapplied_log(store):
    first = Membership([{1}])
    second = Membership([{1, 2, 3}])
    store.append_to_log([Entry(log_id(1, 0), first), Entry.blank(1, 1), Entry(log_id(1, 2), second)])
    assert store.get_membership() == EffectiveMembership(log_id(1, 2), second)
    store.apply_to_state_machine([Entry(log_id(1, 0), first)])
    store.delete_conflict_logs_since(log_id(1, 1))
    assert store.get_membership() == EffectiveMembership(log_id(1, 0), first)


def test_get_state_machine_is_a_copy(store):
    store.apply_to_state_machine([normal(1, 0, ClientRequest("x", 1, "s"))])
    sm = store.get_state_machine()
    sm.client_status["x"] = "changed"
    assert store.get_state_machine().client_status == {"x": "s"}


def test_state_machine_json_round_trip():
    sm = MemStoreStateMachine(
        last_applied_log=log_id(2, 7),
        last_membership=EffectiveMembership(log_id(1, 1), Membership([{0, 1}], {2})),
        client_serial_responses={"a": (3, None), "b": (1, "old")},
        client_status={"a": "x", "b": "y"},
    )
    assert MemStoreStateMachine.from_json(sm.to_json()) == sm


def test_build_snapshot_on_empty_state_machine(store):
    with pytest.raises(ValueError):
        store.build_snapshot()


def test_build_snapshot_ids_and_current(store):
    store.apply_to_state_machine([Entry.blank(1, i) for i in range(6)])
    snap = store.build_snapshot()
    assert snap.meta.snapshot_id == "1-0-5-1"
    assert snap.meta.last_log_id == log_id(1, 5)
    second = store.build_snapshot()
    assert second.meta.snapshot_id == "1-0-5-2"
    current = store.get_current_snapshot()
    assert current.meta == second.meta
    assert current.snapshot.read() == snap.snapshot.read()


def test_install_snapshot_into_another_store(store):
    store.apply_to_state_machine(
        [Entry(log_id(1, 0), Membership([{0}])), normal(1, 1, ClientRequest("k", 1, "v"))]
    )
    snap = store.build_snapshot()

    other = MemStore()
    buf = other.begin_receiving_snapshot()
    buf.write(snap.snapshot.read())
    changes = other.install_snapshot(snap.meta, buf)
    assert changes.last_applied == log_id(1, 1)
    assert changes.is_snapshot is True
    assert other.get_state_machine() == store.get_state_machine()
    assert other.get_current_snapshot().meta == snap.meta


def test_install_invalid_snapshot(store):
    meta = SnapshotMeta(last_log_id=log_id(1, 1), snapshot_id="bad")
    buf = store.begin_receiving_snapshot()
    buf.write(b"not json")
    with pytest.raises(StorageError):
        store.install_snapshot(meta, buf)
    assert store.get_current_snapshot() is None


def test_begin_receiving_snapshot_is_empty(store):
    assert store.begin_receiving_snapshot().getvalue() == b""