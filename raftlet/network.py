"""HTTP transport for Raft RPCs between nodes."""

from __future__ import annotations

import dataclasses
import enum
from typing import Any, Optional

import requests

from raftlet.append_entries import AppendEntriesResponse
from raftlet.client import NetworkError, _send
from raftlet.types import Vote


def _to_wire(value: Any) -> Any:
    """Convert request objects into JSON-compatible data."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _to_wire(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (bytes, bytearray)):
        return list(value)
    if isinstance(value, dict):
        return {str(k): _to_wire(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted(_to_wire(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [_to_wire(v) for v in value]
    return value


class ExampleNetwork:
    """Creates connections to other nodes and sends RPCs to them over HTTP."""

    def __init__(self, session: Optional[requests.Session] = None) -> None:
        self._session = session if session is not None else requests.Session()

    def send_rpc(self, target: int, target_addr: Optional[str], uri: str, req: Any) -> Any:
        """POST ``req`` to ``uri`` on the target node and return its ``Ok`` value."""
        if target_addr is None:
            raise ValueError(f"no address known for node {target}")
        url = f"http://{target_addr}/{uri}"
        return _send(self._session, url, _to_wire(req), target)

    def connect(self, target: int, addr: Optional[str]) -> "ExampleNetworkConnection":
        return ExampleNetworkConnection(owner=self, target=target, target_addr=addr)


class ExampleNetworkConnection:
    """A connection to one target node."""

    def __init__(self, owner: ExampleNetwork, target: int, target_addr: Optional[str]) -> None:
        self.owner = owner
        self.target = target
        self.target_addr = target_addr

    def send_append_entries(self, req: Any) -> AppendEntriesResponse:
        reply = self.owner.send_rpc(self.target, self.target_addr, "raft-append", req)
        try:
            return AppendEntriesResponse(
                vote=Vote.from_dict(reply["vote"]),
                success=bool(reply["success"]),
                conflict=bool(reply["conflict"]),
            )
        except (KeyError, TypeError, ValueError) as err:
            raise NetworkError(err) from err

    def send_install_snapshot(self, req: Any) -> Any:
        return self.owner.send_rpc(self.target, self.target_addr, "raft-snapshot", req)

    def send_vote(self, req: Any) -> Any:
        return self.owner.send_rpc(self.target, self.target_addr, "raft-vote", req)