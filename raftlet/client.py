"""HTTP client for the key/value Raft example cluster."""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Iterable, Optional

import requests

logger = logging.getLogger(__name__)

_RETRIES = 3


class RPCError(Exception):
    """An RPC to a Raft node failed."""


class NetworkError(RPCError):
    """The request could not be delivered or its reply could not be read."""

    def __init__(self, source: BaseException) -> None:
        super().__init__(source)
        self.source = source

    def __str__(self) -> str:
        return f"network error: {self.source}"


class RemoteError(RPCError):
    """The remote node handled the request and answered with an error."""

    def __init__(self, target: int, source: Any) -> None:
        super().__init__(target, source)
        self.target = target
        self.source = source

    def __str__(self) -> str:
        return f"error occur on remote peer {self.target}: {_describe(self.source)}"


def _format_node(node: Optional[dict]) -> str:
    if node is None:
        return "None"
    data = node.get("data") or {}
    items = ", ".join(f"{json.dumps(k)}: {json.dumps(v)}" for k, v in data.items())
    return f"Some(Node {{ addr: {json.dumps(node.get('addr', ''))}, data: {{{items}}} }})"


def _describe(error: Any) -> str:
    if isinstance(error, dict) and set(error) == {"ForwardToLeader"}:
        forward = error["ForwardToLeader"] or {}
        leader_id = forward.get("leader_id")
        leader = "None" if leader_id is None else f"Some({leader_id})"
        return f"has to forward request to: {leader}, {_format_node(forward.get('leader_node'))}"
    if isinstance(error, str):
        return error
    return json.dumps(error)


def _find_forward(error: Any) -> Optional[dict]:
    """Return the ForwardToLeader body inside a remote error, if there is one."""
    if not isinstance(error, dict):
        return None
    forward = error.get("ForwardToLeader")
    if isinstance(forward, dict):
        return forward
    for value in error.values():
        found = _find_forward(value)
        if found is not None:
            return found
    return None


def _send(
    session: requests.Session,
    url: str,
    body: Any,
    target: int,
    *,
    use_get: bool = False,
) -> Any:
    """Send a request and unwrap a ``{"Ok": ...}`` / ``{"Err": ...}`` reply."""
    try:
        if use_get:
            logger.info(">>> client send request to %s", url)
            resp = session.get(url)
        else:
            logger.info(">>> client send request to %s: %s", url, json.dumps(body, indent=2))
            resp = session.post(url, json=body)
        reply = resp.json()
    except (requests.RequestException, ValueError) as err:
        raise NetworkError(err) from err

    logger.info("<<< client recv reply from %s: %s", url, json.dumps(reply, indent=2))

    if not isinstance(reply, dict) or len(reply) != 1 or not ({"Ok", "Err"} & set(reply)):
        raise NetworkError(ValueError(f"malformed reply: {reply!r}"))
    if "Err" in reply:
        raise RemoteError(target, reply["Err"])
    return reply["Ok"]


class ExampleClient:
    """Sends application and cluster-management requests to a leader node."""

    def __init__(
        self,
        leader_id: int,
        leader_addr: str,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._leader = (leader_id, leader_addr)
        self._session = session if session is not None else requests.Session()

    @property
    def leader(self) -> tuple:
        """The ``(node_id, address)`` requests are currently sent to."""
        with self._lock:
            return self._leader

    # --- application API

    def write(self, req: Any) -> Any:
        """Submit a write; it is replicated to a quorum and applied."""
        body = req.to_dict() if hasattr(req, "to_dict") else req
        return self._send_to_leader("write", body)

    def read(self, key: str) -> str:
        """Read a value without checking leadership; it may be stale."""
        return self._do_send("read", key)

    def consistent_read(self, key: str) -> str:
        """Read a value only if the target is the current leader."""
        return self._do_send("consistent_read", key)

    # --- cluster management API

    def init(self) -> Any:
        """Initialize a single-node cluster on the target node."""
        return self._do_send("init", {})

    def add_learner(self, node_id: int, addr: str) -> Any:
        """Add a node as a learner that receives log replication."""
        return self._send_to_leader("add-learner", [node_id, addr])

    def change_membership(self, members: Iterable[int]) -> Any:
        """Change the voter set to ``members``."""
        return self._send_to_leader("change-membership", sorted(members))

    def metrics(self) -> Any:
        """Return the metrics of the target node."""
        return self._do_send("metrics", None, use_get=True)

    # --- internals

    def _do_send(self, uri: str, body: Any, *, use_get: bool = False) -> Any:
        leader_id, addr = self.leader
        url = f"http://{addr}/{uri}"
        return _send(self._session, url, body, leader_id, use_get=use_get)

    def _send_to_leader(self, uri: str, body: Any) -> Any:
        retries = _RETRIES
        while True:
            try:
                return self._do_send(uri, body)
            except RemoteError as err:
                forward = _find_forward(err.source)
                leader_id = forward.get("leader_id") if forward else None
                leader_node = forward.get("leader_node") if forward else None
                if leader_id is None or not leader_node:
                    raise
                with self._lock:
                    self._leader = (leader_id, leader_node["addr"])
                retries -= 1
                if retries > 0:
                    continue
                raise