# raftlet

Building blocks for a Raft-replicated service:

- `raftlet.config`: the runtime `Config` with its defaults, `RAFT_*`
  environment variables, validation and command-line style building
  (`Config.build([...])`). It also holds `SnapshotPolicy`, the parsers
  `parse_snapshot_policy` and `parse_bytes_with_unit`, and the `ConfigError`
  family.
- `raftlet.types`: log identifiers (`LeaderId`, `LogId`), `Vote`,
  `Membership`, `EffectiveMembership`, log `Entry`, the snapshot types
  (`SnapshotMeta`, `Snapshot`), `LogState`, `StateMachineChanges` and
  `StorageError`.
- `raftlet.memstore`: `MemStore`, an in-memory log and state machine that
  records client status updates (`ClientRequest` / `ClientResponse`).
- `raftlet.kvstore`: `ExampleStore`, an in-memory key/value state machine
  driven by `SetRequest` entries.
- `raftlet.append_entries`: `LogReplica`, which handles append-entries
  requests against a store. It checks log consistency, deletes conflicting
  entries, updates membership and applies committed entries.
- `raftlet.client` and `raftlet.network`: HTTP clients. The first talks to a
  key/value cluster. The second sends Raft RPCs from one node to another.

## Install

```
pip install raftlet
```

## Configuration

```python
from raftlet.config import Config, SnapshotPolicy

config = Config.build([
    "node",
    "--cluster-name=bar",
    "--election-timeout-min=10",
    "--election-timeout-max=20",
    "--heartbeat-interval=5",
    "--snapshot-policy=since_last:203",
    "--snapshot-max-chunk-size=3MiB",
])
assert config.snapshot_policy == SnapshotPolicy(203)
```

`Config.build` ignores the first argument, which is taken as the program name.

Settings that are not given on the command line come from environment
variables such as `RAFT_HEARTBEAT_INTERVAL`. If a variable is not set, the
built-in default is used.

An invalid setting raises a subclass of `ConfigError`:

- `ElectionTimeoutError`: the minimum election timeout is not below the maximum.
- `ElectionTimeoutLTHeartBeatError`: the minimum election timeout is not above the heartbeat interval.
- `MaxPayloadIs0Error`: `max_payload_entries` is 0.
- `InvalidSnapshotPolicyError`: a snapshot policy string does not follow its syntax.
- `InvalidNumberError`: a number could not be parsed.

## Stores

`MemStore` and `ExampleStore` keep the log, the vote, the state machine and
the current snapshot in memory. They are safe to use from several threads.

```python
from raftlet.kvstore import ExampleStore, SetRequest
from raftlet.types import Entry, LeaderId, LogId

store = ExampleStore()
entry = Entry(LogId(LeaderId(1, 0), 1), SetRequest(key="foo", value="bar"))
store.append_to_log([entry])
store.apply_to_state_machine([entry])
assert store.read("foo") == "bar"

snapshot = store.build_snapshot()   # serializes the state machine to JSON
```

## Replicating a log

```python
from raftlet.append_entries import AppendEntriesRequest, LogReplica
from raftlet.memstore import MemStore
from raftlet.types import Entry, LeaderId, LogId, Vote

replica = LogReplica(node_id=0, store=MemStore())
resp = replica.handle_append_entries_request(AppendEntriesRequest(
    vote=Vote(1, 0),
    prev_log_id=None,
    entries=[Entry.blank(0, 0), Entry.blank(1, 1)],
    leader_commit=LogId(LeaderId(1, 0), 1),
))
assert resp.success and not resp.conflict
```

## Talking to a cluster

```python
from raftlet.client import ExampleClient
from raftlet.kvstore import SetRequest

client = ExampleClient(1, "127.0.0.1:21001")
client.init()
client.add_learner(2, "127.0.0.1:21002")
client.change_membership({1, 2})
client.write(SetRequest(key="foo", value="bar"))
print(client.read("foo"))
```

The client retries `write`, `add_learner` and `change_membership` against the
leader that a follower names in its reply. It makes at most three attempts in
all.

Failures are raised as `NetworkError` or `RemoteError`. Both are subclasses
of `RPCError`.

To send node-to-node Raft RPCs, open a connection with
`ExampleNetwork().connect(target, addr)`. It posts to the `raft-append`,
`raft-snapshot` and `raft-vote` endpoints of the target node.

## What it does not do

raftlet does not run a Raft node:

- There is no HTTP server that answers the endpoints the clients call.
- There is no leader election and no leader-side replication.
- There is no command-line program.

`ExampleClient` and `ExampleNetwork` therefore need nodes served by something
else.

## Tests

```
pip install "raftlet[test]"
pytest
```