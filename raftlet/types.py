"""Core Raft value types shared by stores and the replication logic."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, BinaryIO, Iterable, Optional


@dataclass(frozen=True, order=True)
class LeaderId:
    """The term and node id of a leader."""

    term: int
    node_id: int

    def __str__(self) -> str:
        return f"{self.term}-{self.node_id}"

    def to_dict(self) -> dict:
        return {"term": self.term, "node_id": self.node_id}

    @classmethod
    def from_dict(cls, data: dict) -> "LeaderId":
        return cls(term=int(data["term"]), node_id=int(data["node_id"]))


@dataclass(frozen=True, order=True)
class LogId:
    """Identity of a log entry: the leader that proposed it and its index."""

    leader_id: LeaderId
    index: int

    def __str__(self) -> str:
        return f"{self.leader_id}-{self.index}"

    def to_dict(self) -> dict:
        return {"leader_id": self.leader_id.to_dict(), "index": self.index}

    @classmethod
    def from_dict(cls, data: dict) -> "LogId":
        return cls(leader_id=LeaderId.from_dict(data["leader_id"]), index=int(data["index"]))


@dataclass(frozen=True, order=True)
class Vote:
    """A vote granted to a node in a term, possibly committed by a quorum."""

    term: int
    node_id: int
    committed: bool = False

    def to_dict(self) -> dict:
        return {"term": self.term, "node_id": self.node_id, "committed": self.committed}

    @classmethod
    def from_dict(cls, data: dict) -> "Vote":
        return cls(
            term=int(data["term"]),
            node_id=int(data["node_id"]),
            committed=bool(data.get("committed", False)),
        )


@dataclass(frozen=True)
class Membership:
    """Voter configurations (one, or two during a joint change) and learners."""

    configs: tuple = ()
    learners: frozenset = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        object.__setattr__(self, "configs", tuple(frozenset(c) for c in self.configs))
        object.__setattr__(self, "learners", frozenset(self.learners or ()))

    def all_members(self) -> frozenset:
        """Return every voter of every configuration."""
        return frozenset().union(*self.configs)

    def is_member(self, node_id: int) -> bool:
        return node_id in self.all_members()

    def to_dict(self) -> dict:
        return {
            "configs": [sorted(c) for c in self.configs],
            "learners": sorted(self.learners),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Membership":
        configs: Iterable[Iterable[int]] = data.get("configs", [])
        return cls(
            configs=tuple(frozenset(int(n) for n in c) for c in configs),
            learners=frozenset(int(n) for n in (data.get("learners") or ())),
        )


@dataclass(frozen=True)
class EffectiveMembership:
    """A membership together with the id of the log that introduced it."""

    log_id: LogId
    membership: Membership

    @classmethod
    def new_initial(cls, node_id: int) -> "EffectiveMembership":
        """Membership of a single node that has not seen any log."""
        return cls(LogId(LeaderId(0, 0), 0), Membership([{node_id}]))

    def to_dict(self) -> dict:
        return {"log_id": self.log_id.to_dict(), "membership": self.membership.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> "EffectiveMembership":
        return cls(
            log_id=LogId.from_dict(data["log_id"]),
            membership=Membership.from_dict(data["membership"]),
        )


@dataclass(frozen=True)
class Entry:
    """A log entry.

    The payload is ``None`` for a blank entry, a :class:`Membership` for a
    membership change, and application data otherwise.
    """

    log_id: LogId
    payload: Any = None

    @classmethod
    def blank(cls, term: int, index: int) -> "Entry":
        return cls(LogId(LeaderId(term, 0), index))

    def is_blank(self) -> bool:
        return self.payload is None

    def is_membership(self) -> bool:
        return isinstance(self.payload, Membership)


@dataclass(frozen=True)
class SnapshotMeta:
    """What a snapshot covers and how it is named."""

    last_log_id: LogId
    snapshot_id: str


@dataclass
class Snapshot:
    """A snapshot's metadata and a readable stream of its data."""

    meta: SnapshotMeta
    snapshot: BinaryIO


@dataclass(frozen=True)
class LogState:
    """The last purged and the last present log ids of a store."""

    last_purged_log_id: Optional[LogId]
    last_log_id: Optional[LogId]


@dataclass(frozen=True)
class StateMachineChanges:
    """What changed in the state machine after installing a snapshot."""

    last_applied: Optional[LogId]
    is_snapshot: bool


class StorageError(Exception):
    """A storage operation failed."""

    def __init__(self, subject: str, verb: str, source: Optional[BaseException] = None) -> None:
        super().__init__(subject, verb, source)
        self.subject = subject
        self.verb = verb
        self.source = source

    def __str__(self) -> str:
        return f"when {self.verb} {self.subject}: {self.source}"