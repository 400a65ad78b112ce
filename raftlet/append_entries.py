"""Follower-side handling of the Raft append-entries RPC."""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from raftlet.config import Config
from raftlet.types import EffectiveMembership, Entry, LogId, StorageError, Vote

logger = logging.getLogger(__name__)


class ServerState(enum.Enum):
    """The role a Raft node is playing or is about to play."""

    LEARNER = "Learner"
    FOLLOWER = "Follower"
    CANDIDATE = "Candidate"
    LEADER = "Leader"
    SHUTDOWN = "Shutdown"


@dataclass
class AppendEntriesRequest:
    """Replicates log entries from a leader; with no entries it is a heartbeat."""

    vote: Vote
    prev_log_id: Optional[LogId]
    entries: list = field(default_factory=list)
    leader_commit: Optional[LogId] = None

    def summary(self) -> str:
        ids = ",".join(str(e.log_id) for e in self.entries)
        return (
            f"vote={self.vote}, prev_log_id={self.prev_log_id}, "
            f"leader_commit={self.leader_commit}, entries=[{ids}]"
        )


@dataclass(frozen=True)
class AppendEntriesResponse:
    """The receiver's vote and whether the entries were accepted or conflict."""

    vote: Vote
    success: bool
    conflict: bool


def _vote_cmp(a: Vote, b: Vote) -> Optional[int]:
    """Partially order two votes: -1, 0, 1, or None when incomparable."""
    if a.term != b.term:
        return -1 if a.term < b.term else 1
    if a.committed != b.committed:
        return -1 if b.committed else 1
    if a.node_id == b.node_id:
        return 0
    return None


def _opt_le(a: Optional[LogId], b: Optional[LogId]) -> bool:
    if a is None:
        return True
    if b is None:
        return False
    return a <= b


def _opt_min(a: Optional[LogId], b: Optional[LogId]) -> Optional[LogId]:
    if a is None or b is None:
        return None
    return min(a, b)


def _next_index(log_id: Optional[LogId]) -> int:
    return 0 if log_id is None else log_id.index + 1


class LogReplica:
    """The log-keeping part of a Raft node that receives append-entries requests.

    ``store`` is a Raft store such as :class:`raftlet.memstore.MemStore`.
    """

    def __init__(self, node_id: int, store: Any, config: Optional[Config] = None) -> None:
        self.id = node_id
        self.store = store
        self.config = config if config is not None else Config().validate()
        self.vote: Vote = store.read_vote() or Vote(0, 0)
        self.last_log_id: Optional[LogId] = store.get_log_state().last_log_id
        last_applied, _ = store.last_applied_state()
        self.last_applied: Optional[LogId] = last_applied
        self.committed: Optional[LogId] = last_applied
        self.membership: EffectiveMembership = (
            store.get_membership() or EffectiveMembership.new_initial(node_id)
        )
        self.target_state = ServerState.LEARNER
        self.next_election_timeout = 0.0

    def _update_next_election_timeout(self) -> None:
        timeout_ms = self.config.new_rand_election_timeout()
        self.next_election_timeout = time.monotonic() + timeout_ms / 1000.0

    def _response(self, success: bool, conflict: bool) -> AppendEntriesResponse:
        return AppendEntriesResponse(vote=self.vote, success=success, conflict=conflict)

    def handle_append_entries_request(self, req: AppendEntriesRequest) -> AppendEntriesResponse:
        """Accept or reject entries from a leader and apply what became committed."""
        logger.debug(
            "handle_append_entries_request: last_log_id=%s last_applied=%s msg=%s",
            self.last_log_id,
            self.last_applied,
            req.summary(),
        )
        order = _vote_cmp(req.vote, self.vote)
        if order == -1:
            logger.debug("append-entries vote %s is less than current %s", req.vote, self.vote)
            return self._response(success=False, conflict=False)

        self._update_next_election_timeout()

        if order == 1:
            self.vote = req.vote
            self.store.save_vote(self.vote)
            if self.target_state not in (ServerState.FOLLOWER, ServerState.LEARNER):
                self.target_state = ServerState.FOLLOWER

        entries = list(req.entries)
        valid_commit_index = entries[-1].log_id if entries else req.prev_log_id
        valid_committed = _opt_min(req.leader_commit, valid_commit_index)

        return self._append_apply_log_entries(req.prev_log_id, entries, valid_committed)

    def _delete_conflict_logs_since(self, start: LogId) -> None:
        self.store.delete_conflict_logs_since(start)
        self.last_log_id = self.store.get_log_state().last_log_id
        membership = self.store.get_membership()
        self.membership = membership or EffectiveMembership.new_initial(self.id)

    def _find_and_delete_conflict_logs(self, entries: Sequence[Entry]) -> None:
        if not entries:
            return
        first = entries[0].log_id
        if self.last_log_id is not None and first.index > self.last_log_id.index:
            return
        logger.debug(
            "delete inconsistent log entries [%s, %s), last_log_id: %s",
            first,
            entries[-1].log_id,
            self.last_log_id,
        )
        self._delete_conflict_logs_since(first)

    def _append_apply_log_entries(
        self,
        prev_log_id: Optional[LogId],
        entries: Sequence[Entry],
        committed: Optional[LogId],
    ) -> AppendEntriesResponse:
        mismatched = self.does_log_id_match(prev_log_id)
        if mismatched is not None:
            if self.last_log_id is not None and mismatched.index <= self.last_log_id.index:
                logger.debug("delete inconsistent log since prev_log_id %s", mismatched)
                self._delete_conflict_logs_since(mismatched)
            return self._response(success=False, conflict=True)

        _, remaining = self.skip_matching_entries(entries)
        self._find_and_delete_conflict_logs(remaining)
        self._append_log_entries(remaining)

        self.committed = committed
        self._replicate_to_state_machine_if_needed()
        return self._response(success=True, conflict=False)

    def skip_matching_entries(self, entries: Sequence[Entry]) -> tuple:
        """Return how many leading entries are already present locally and the rest."""
        entries = list(entries)
        for position, entry in enumerate(entries):
            log_id = entry.log_id
            if _opt_le(log_id, self.committed):
                continue
            local = self.store.try_get_log_entry(log_id.index)
            if local is not None and local.log_id == log_id:
                continue
            return position, entries[position:]
        return len(entries), []

    def does_log_id_match(self, remote_log_id: Optional[LogId]) -> Optional[LogId]:
        """Return ``remote_log_id`` if it conflicts with the local log, else None."""
        if remote_log_id is None:
            return None
        if _opt_le(remote_log_id, self.committed):
            return None
        local = self.store.try_get_log_entry(remote_log_id.index)
        logger.debug(
            "check log id matching: local: %s remote: %s",
            local.log_id if local is not None else None,
            remote_log_id,
        )
        if local is not None and local.log_id == remote_log_id:
            return None
        return remote_log_id

    def _append_log_entries(self, entries: Sequence[Entry]) -> None:
        if not entries:
            return
        memberships = [
            EffectiveMembership(e.log_id, e.payload) for e in entries if e.is_membership()
        ]
        if memberships:
            self.membership = memberships[-1]
        self.store.append_to_log(entries)
        self.last_log_id = entries[-1].log_id

    def _replicate_to_state_machine_if_needed(self) -> bool:
        if _opt_le(self.committed, self.last_applied):
            return False
        start = _next_index(self.last_applied)
        stop = _next_index(self.committed)
        entries = self.store.try_get_log_entries(start, stop)
        if len(entries) != stop - start:
            raise StorageError(
                "logs",
                "read",
                LookupError(f"expected {stop - start} log entries in [{start}, {stop})"),
            )
        self.store.apply_to_state_machine(entries)
        self.last_applied = entries[-1].log_id
        return True