import io

import pytest

from raftlet.kvstore import (
    ExampleResponse,
    ExampleStateMachine,
    ExampleStore,
    SetRequest,
)
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


def set_entry(term, index, key, value):
    return Entry(log_id(term, index), SetRequest(key, value))


@pytest.fixture
def store():
    return ExampleStore()


def test_set_request_wire_form():
    req = SetRequest("foo", "bar")
    assert req.to_dict() == {"Set": {"key": "foo", "value": "bar"}}


def test_set_request_round_trip():
    req = SetRequest("foo", "wow")
    assert SetRequest.from_dict(req.to_dict()) == req


@pytest.mark.parametrize(
    "data",
    [{"Get": {"key": "foo"}}, {"Set": {"key": "foo"}}, {"Set": "foo"}, [], {"Set": {"key": 1, "value": "x"}}],
)
def test_set_request_rejects_malformed(data):
    with pytest.raises(ValueError):
        SetRequest.from_dict(data)


def test_apply_set_then_read(store):
    responses = store.apply_to_state_machine([set_entry(1, 1, "foo", "bar")])
    assert responses == [ExampleResponse("bar")]
    assert store.read("foo") == "bar"


def test_read_missing_key_is_empty(store):
    assert store.read("missing") == ""


def test_later_set_overrides(store):
    store.apply_to_state_machine([set_entry(1, 1, "foo", "bar"), set_entry(1, 2, "foo", "wow")])
    assert store.read("foo") == "wow"
    assert store.last_applied_state()[0] == log_id(1, 2)


def test_apply_blank_and_membership(store):
    membership = Membership([{1, 2, 3}])
    entries = [Entry.blank(1, 1), Entry(log_id(1, 2), membership)]
    responses = store.apply_to_state_machine(entries)
    assert responses == [ExampleResponse(None), ExampleResponse(None)]
    applied, last_membership = store.last_applied_state()
    assert applied == log_id(1, 2)
    assert last_membership == EffectiveMembership(log_id(1, 2), membership)


def test_apply_unsupported_payload(store):
    with pytest.raises(TypeError):
        store.apply_to_state_machine([Entry(log_id(1, 1), 42)])


def test_empty_log_state(store):
    state = store.get_log_state()
    assert state.last_purged_log_id is None
    assert state.last_log_id is None


def test_append_and_read_log(store):
    entries = [Entry.blank(1, i) for i in range(5)]
    store.append_to_log(entries)
    assert store.try_get_log_entries() == entries
    assert store.try_get_log_entries(1, 3) == entries[1:3]
    assert store.try_get_log_entry(4) == entries[4]
    assert store.try_get_log_entry(9) is None
    assert store.get_log_state().last_log_id == log_id(1, 4)


def test_delete_conflict_logs_since(store):
    store.append_to_log([Entry.blank(1, i) for i in range(5)])
    store.delete_conflict_logs_since(log_id(1, 2))
    assert [e.log_id.index for e in store.try_get_log_entries()] == [0, 1]


def test_purge_logs_upto(store):
    store.append_to_log([Entry.blank(1, i) for i in range(5)])
    store.purge_logs_upto(log_id(1, 2))
    assert [e.log_id.index for e in store.try_get_log_entries()] == [3, 4]
    state = store.get_log_state()
    assert state.last_purged_log_id == log_id(1, 2)
    assert state.last_log_id == log_id(1, 4)


def test_purge_all_keeps_last_log_id(store):
    store.append_to_log([Entry.blank(1, i) for i in range(3)])
    store.purge_logs_upto(log_id(1, 2))
    assert store.try_get_log_entries() == []
    assert store.get_log_state().last_log_id == log_id(1, 2)


def test_purge_backwards_raises(store):
    store.purge_logs_upto(log_id(1, 5))
    with pytest.raises(ValueError):
        store.purge_logs_upto(log_id(1, 3))


def test_vote_round_trip(store):
    assert store.read_vote() is None
    vote = Vote(3, 0)
    store.save_vote(vote)
    assert store.read_vote() == vote


def test_membership_from_unapplied_log(store):
    m1 = Membership([{1, 2}])
    m2 = Membership([{1, 2, 3, 4}])
    store.append_to_log([Entry(log_id(1, 1), m1), Entry.blank(1, 2), Entry(log_id(1, 3), m2)])
    assert store.get_membership() == EffectiveMembership(log_id(1, 3), m2)


def test_membership_falls_back_to_state_machine(store):
    m1 = Membership([{1}])
    entry = Entry(log_id(1, 1), m1)
    store.append_to_log([entry])
    store.apply_to_state_machine([entry])
    assert store.get_membership() == EffectiveMembership(log_id(1, 1), m1)
    assert ExampleStore().get_membership() is None


def test_build_snapshot_of_empty_state_machine_raises(store):
    with pytest.raises(ValueError):
        store.build_snapshot()


def test_build_snapshot_id_and_current(store):
    store.apply_to_state_machine([set_entry(1, 5, "foo", "bar")])
    snap = store.build_snapshot()
    assert snap.meta.snapshot_id == "1-0-5-1"
    assert snap.meta.last_log_id == log_id(1, 5)
    current = store.get_current_snapshot()
    assert current.meta == snap.meta
    assert current.snapshot.read() == snap.snapshot.read()


def test_snapshot_counter_increases(store):
    store.apply_to_state_machine([set_entry(1, 5, "foo", "bar")])
    first = store.build_snapshot().meta.snapshot_id
    second = store.build_snapshot().meta.snapshot_id
    assert first != second
    assert second.endswith("-2")


def test_no_current_snapshot_initially(store):
    assert store.get_current_snapshot() is None


def test_install_snapshot_replaces_state(store):
    membership = Membership([{1}])
    store.apply_to_state_machine(
        [Entry(log_id(1, 1), membership), set_entry(1, 2, "foo", "bar"), set_entry(1, 3, "a", "b")]
    )
    snap = store.build_snapshot()

    other = ExampleStore()
    other.apply_to_state_machine([set_entry(2, 1, "stale", "x")])
    buf = other.begin_receiving_snapshot()
    buf.write(snap.snapshot.read())
    changes = other.install_snapshot(snap.meta, buf)

    assert changes.last_applied == log_id(1, 3)
    assert changes.is_snapshot is True
    assert other.read("foo") == "bar"
    assert other.read("a") == "b"
    assert other.read("stale") == ""
    assert other.last_applied_state() == store.last_applied_state()
    assert other.get_current_snapshot().meta == snap.meta


def test_install_invalid_snapshot_raises(store):
    meta = SnapshotMeta(last_log_id=log_id(1, 1), snapshot_id="ss1")
    with pytest.raises(StorageError):
        store.install_snapshot(meta, io.BytesIO(b"not json"))
    assert store.get_current_snapshot() is None


def test_begin_receiving_snapshot_is_empty(store):
    assert store.begin_receiving_snapshot().getvalue() == b""


def test_state_machine_json_round_trip():
    sm = ExampleStateMachine(
        last_applied_log=log_id(2, 7),
        last_membership=EffectiveMembership(log_id(2, 3), Membership([{0, 1}], {2})),
        data={"foo": "bar", "x": "y"},
    )
    assert ExampleStateMachine.from_json(sm.to_json()) == sm


def test_empty_state_machine_json_round_trip():
    sm = ExampleStateMachine()
    assert ExampleStateMachine.from_json(sm.to_json()) == sm


def test_state_machine_from_json_rejects_non_object():
    with pytest.raises(ValueError):
        ExampleStateMachine.from_json(b"[1, 2]")