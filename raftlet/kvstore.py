"""An in-memory Raft store whose state machine is a string key/value map."""

from __future__ import annotations

import copy
import io
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import BinaryIO, Optional, Sequence

from raftlet.types import (
    EffectiveMembership,
    Entry,
    LogId,
    LogState,
    Membership,
    Snapshot,
    SnapshotMeta,
    StateMachineChanges,
    StorageError,
    Vote,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SetRequest:
    """Write ``value`` under ``key`` on every node of the cluster."""

    key: str
    value: str

    def to_dict(self) -> dict:
        """Return the wire form: ``{"Set": {"key": ..., "value": ...}}``."""
        return {"Set": {"key": self.key, "value": self.value}}

    @classmethod
    def from_dict(cls, data: dict) -> "SetRequest":
        """Decode the wire form produced by :meth:`to_dict`."""
        if not isinstance(data, dict) or set(data) != {"Set"}:
            raise ValueError(f"unknown request: {data!r}")
        body = data["Set"]
        if not isinstance(body, dict):
            raise ValueError(f"malformed Set request: {body!r}")
        try:
            key, value = body["key"], body["value"]
        except KeyError as err:
            raise ValueError(f"Set request lacks field {err.args[0]!r}") from None
        if not isinstance(key, str) or not isinstance(value, str):
            raise ValueError("Set request key and value must be strings")
        return cls(key=key, value=value)


@dataclass(frozen=True)
class ExampleResponse:
    """The value written by a request, or None for blank and membership entries."""

    value: Optional[str] = None


@dataclass
class ExampleStateMachine:
    """State machine of :class:`ExampleStore`."""

    last_applied_log: Optional[LogId] = None
    last_membership: Optional[EffectiveMembership] = None
    data: dict = field(default_factory=dict)

    def to_json(self) -> bytes:
        """Serialize the state machine to JSON bytes."""
        doc = {
            "last_applied_log": self.last_applied_log.to_dict() if self.last_applied_log else None,
            "last_membership": self.last_membership.to_dict() if self.last_membership else None,
            "data": {key: self.data[key] for key in sorted(self.data)},
        }
        return json.dumps(doc).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes | str) -> "ExampleStateMachine":
        """Decode a state machine from JSON produced by :meth:`to_json`."""
        doc = json.loads(data)
        if not isinstance(doc, dict):
            raise ValueError("state machine JSON must be an object")
        applied = doc.get("last_applied_log")
        membership = doc.get("last_membership")
        values = doc.get("data") or {}
        if not isinstance(values, dict):
            raise ValueError("state machine data must be an object")
        return cls(
            last_applied_log=LogId.from_dict(applied) if applied else None,
            last_membership=EffectiveMembership.from_dict(membership) if membership else None,
            data={str(k): str(v) for k, v in values.items()},
        )


@dataclass
class _StoredSnapshot:
    meta: SnapshotMeta
    data: bytes


class ExampleStore:
    """An in-memory implementation of Raft log, vote and key/value state machine storage."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._last_purged_log_id: Optional[LogId] = None
        self._log: dict[int, Entry] = {}
        self._state_machine = ExampleStateMachine()
        self._vote: Optional[Vote] = None
        self._snapshot_idx = 0
        self._current_snapshot: Optional[_StoredSnapshot] = None

    # --- application reads

    def read(self, key: str) -> str:
        """Return the value stored under ``key``, or an empty string."""
        with self._lock:
            return self._state_machine.data.get(key, "")

    # --- log reading

    def try_get_log_entries(self, start: Optional[int] = None, stop: Optional[int] = None) -> list:
        """Return the present entries with ``start <= index < stop``, in index order."""
        with self._lock:
            return [
                self._log[index]
                for index in sorted(self._log)
                if (start is None or index >= start) and (stop is None or index < stop)
            ]

    def try_get_log_entry(self, index: int) -> Optional[Entry]:
        """Return the entry at ``index``, or None if it is absent."""
        with self._lock:
            return self._log.get(index)

    def get_log_state(self) -> LogState:
        """Return the last purged and the last known log ids."""
        with self._lock:
            last = self._log[max(self._log)].log_id if self._log else self._last_purged_log_id
            return LogState(last_purged_log_id=self._last_purged_log_id, last_log_id=last)

    def get_membership(self) -> Optional[EffectiveMembership]:
        """Return the latest membership, from the unapplied log or else from the state machine."""
        with self._lock:
            applied = self._state_machine.last_applied_log
            for index in sorted(self._log, reverse=True):
                if applied is not None and index <= applied.index:
                    break
                entry = self._log[index]
                if entry.is_membership():
                    return EffectiveMembership(entry.log_id, entry.payload)
            return self._state_machine.last_membership

    # --- snapshots

    def build_snapshot(self) -> Snapshot:
        """Serialize the state machine into a new current snapshot."""
        with self._lock:
            data = self._state_machine.to_json()
            last_applied_log = self._state_machine.last_applied_log
            if last_applied_log is None:
                raise ValueError("can not compact empty state machine")
            self._snapshot_idx += 1
            snapshot_id = f"{last_applied_log.leader_id}-{last_applied_log.index}-{self._snapshot_idx}"
            meta = SnapshotMeta(last_log_id=last_applied_log, snapshot_id=snapshot_id)
            self._current_snapshot = _StoredSnapshot(meta=meta, data=data)
        return Snapshot(meta=meta, snapshot=io.BytesIO(data))

    # --- vote

    def save_vote(self, vote: Vote) -> None:
        with self._lock:
            self._vote = vote

    def read_vote(self) -> Optional[Vote]:
        with self._lock:
            return self._vote

    def last_applied_state(self) -> tuple:
        """Return the last applied log id and the last applied membership."""
        with self._lock:
            return self._state_machine.last_applied_log, self._state_machine.last_membership

    # --- log writing

    def delete_conflict_logs_since(self, log_id: LogId) -> None:
        """Remove every entry with index ``>= log_id.index``."""
        logger.debug("delete_log: [%s, +oo)", log_id)
        with self._lock:
            for index in [i for i in self._log if i >= log_id.index]:
                del self._log[index]

    def purge_logs_upto(self, log_id: LogId) -> None:
        """Remove every entry with index ``<= log_id.index`` and remember the purge point."""
        logger.debug("purge_log: (-oo, %s]", log_id)
        with self._lock:
            if self._last_purged_log_id is not None and self._last_purged_log_id > log_id:
                raise ValueError(
                    f"cannot purge up to {log_id}: already purged up to {self._last_purged_log_id}"
                )
            self._last_purged_log_id = log_id
            for index in [i for i in self._log if i <= log_id.index]:
                del self._log[index]

    def append_to_log(self, entries: Sequence[Entry]) -> None:
        with self._lock:
            for entry in entries:
                self._log[entry.log_id.index] = entry

    def apply_to_state_machine(self, entries: Sequence[Entry]) -> list:
        """Apply entries in order and return one :class:`ExampleResponse` per entry."""
        responses = []
        with self._lock:
            sm = self._state_machine
            for entry in entries:
                logger.debug("replicate to sm: %s", entry.log_id)
                sm.last_applied_log = entry.log_id
                payload = entry.payload
                if payload is None:
                    responses.append(ExampleResponse(None))
                elif isinstance(payload, Membership):
                    sm.last_membership = EffectiveMembership(entry.log_id, payload)
                    responses.append(ExampleResponse(None))
                elif isinstance(payload, SetRequest):
                    sm.data[payload.key] = payload.value
                    responses.append(ExampleResponse(payload.value))
                else:
                    raise TypeError(f"unsupported entry payload: {payload!r}")
        return responses

    def begin_receiving_snapshot(self) -> BinaryIO:
        """Return an empty buffer to receive snapshot data into."""
        return io.BytesIO()

    def install_snapshot(self, meta: SnapshotMeta, snapshot: BinaryIO) -> StateMachineChanges:
        """Replace the state machine with the snapshot's content."""
        snapshot.seek(0)
        data = snapshot.read()
        logger.info("decoding snapshot for installation, snapshot_size=%d", len(data))
        try:
            new_sm = ExampleStateMachine.from_json(data)
        except (ValueError, TypeError, KeyError) as err:
            raise StorageError(f"snapshot {meta.snapshot_id}", "read", err) from err
        with self._lock:
            self._state_machine = new_sm
            self._current_snapshot = _StoredSnapshot(meta=meta, data=data)
        return StateMachineChanges(last_applied=meta.last_log_id, is_snapshot=True)

    def get_current_snapshot(self) -> Optional[Snapshot]:
        """Return the current snapshot with a fresh stream over its data, if any."""
        with self._lock:
            current = self._current_snapshot
            if current is None:
                return None
            return Snapshot(meta=current.meta, snapshot=io.BytesIO(current.data))

    def __deepcopy__(self, memo: dict) -> "ExampleStore":
        clone = ExampleStore()
        with self._lock:
            clone._last_purged_log_id = self._last_purged_log_id
            clone._log = dict(self._log)
            clone._state_machine = copy.deepcopy(self._state_machine, memo)
            clone._vote = self._vote
            clone._snapshot_idx = self._snapshot_idx
            clone._current_snapshot = self._current_snapshot
        return clone