"""Runtime configuration for a Raft node."""

from __future__ import annotations

import argparse
import json
import os
import random
import re
from dataclasses import dataclass, field, fields
from decimal import Decimal
from typing import Any, Callable, Sequence

_U64_MAX = 2**64 - 1
_SNAPSHOT_POLICY_SYNTAX = "since_last:<num>"


def _quoted(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


class ConfigError(Exception):
    """Base class of all configuration errors."""

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConfigError):
            return NotImplemented
        return type(self) is type(other) and self.args == other.args

    def __hash__(self) -> int:
        return hash((type(self), self.args))


class ElectionTimeoutError(ConfigError):
    """The minimum election timeout is not below the maximum."""

    def __init__(self, minimum: int, maximum: int) -> None:
        super().__init__(minimum, maximum)
        self.minimum = minimum
        self.maximum = maximum

    def __str__(self) -> str:
        return f"election timeout: min({self.minimum}) must be < max({self.maximum})"


class MaxPayloadIs0Error(ConfigError):
    """max_payload_entries is zero."""

    def __str__(self) -> str:
        return "max_payload_entries must be > 0"


class ElectionTimeoutLTHeartBeatError(ConfigError):
    """The minimum election timeout is not above the heartbeat interval."""

    def __init__(self, election_timeout_min: int, heartbeat_interval: int) -> None:
        super().__init__(election_timeout_min, heartbeat_interval)
        self.election_timeout_min = election_timeout_min
        self.heartbeat_interval = heartbeat_interval

    def __str__(self) -> str:
        return (
            f"election_timeout_min({self.election_timeout_min}) "
            f"must be > heartbeat_interval({self.heartbeat_interval})"
        )


class InvalidSnapshotPolicyError(ConfigError):
    """A snapshot policy string does not follow the expected syntax."""

    def __init__(self, invalid: str, syntax: str) -> None:
        super().__init__(invalid, syntax)
        self.invalid = invalid
        self.syntax = syntax

    def __str__(self) -> str:
        return f"snapshot policy string is invalid: '{_quoted(self.invalid)}' expect: '{self.syntax}'"


class InvalidNumberError(ConfigError):
    """A number in the configuration could not be parsed."""

    def __init__(self, invalid: str, reason: str) -> None:
        super().__init__(invalid, reason)
        self.invalid = invalid
        self.reason = reason

    def __str__(self) -> str:
        return f"{self.reason} when parsing {_quoted(self.invalid)}"


@dataclass(frozen=True)
class SnapshotPolicy:
    """Take a snapshot once this many logs were added since the last one."""

    logs_since_last: int


def _parse_u64(src: str) -> int:
    digits = src[1:] if src.startswith("+") else src
    if src == "":
        raise InvalidNumberError(src, "cannot parse integer from empty string")
    if not digits or not (digits.isascii() and digits.isdigit()):
        raise InvalidNumberError(src, "invalid digit found in string")
    value = int(digits)
    if value > _U64_MAX:
        raise InvalidNumberError(src, "number too large to fit in target type")
    return value


_BYTES_RE = re.compile(r"\s*(?P<value>\d+(?:\.\d+)?)\s*(?P<unit>[A-Za-z]*)\s*")
_UNIT_RE = re.compile(r"(?P<prefix>[kKmMgGtTpPeEzZ]?)(?P<binary>[iI]?)[bB]?")
_PREFIX_POWERS = {"": 0, "k": 1, "m": 2, "g": 3, "t": 4, "p": 5, "e": 6, "z": 7}


def parse_bytes_with_unit(src: str) -> int:
    """Parse a byte size such as ``5.3 KB`` or ``3MiB`` into a number of bytes."""
    match = _BYTES_RE.fullmatch(src)
    if match is None:
        raise InvalidNumberError(src, "the value is not a valid byte size")
    unit = match["unit"]
    unit_match = _UNIT_RE.fullmatch(unit)
    if unit_match is None or (unit_match["binary"] and not unit_match["prefix"]):
        raise InvalidNumberError(src, f"the unit {unit!r} is incorrect")
    base = 1024 if unit_match["binary"] else 1000
    power = _PREFIX_POWERS[unit_match["prefix"].lower()]
    n_bytes = int(Decimal(match["value"]) * base**power)
    if n_bytes > _U64_MAX:
        raise InvalidNumberError(src, "number too large to fit in target type")
    return n_bytes


def parse_snapshot_policy(src: str) -> SnapshotPolicy:
    """Parse a policy of the form ``since_last:<num>``."""
    parts = src.split(":")
    if len(parts) != 2 or parts[0] != "since_last":
        raise InvalidSnapshotPolicyError(src, _SNAPSHOT_POLICY_SYNTAX)
    try:
        n_logs = _parse_u64(parts[1])
    except InvalidNumberError as err:
        raise InvalidNumberError(src, err.reason) from None
    return SnapshotPolicy(n_logs)


def _setting(env: str, default: str, parse: Callable[[str], Any]) -> Any:
    def factory() -> Any:
        return parse(os.environ.get(env, default))

    return field(default_factory=factory, metadata={"parse": parse})


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str):  # type: ignore[override]
        raise ConfigError(message)


@dataclass
class Config:
    """Runtime configuration of a Raft node.

    Every field falls back to its ``RAFT_*`` environment variable, then to
    the built-in default.
    """

    cluster_name: str = _setting("RAFT_CLUSTER_NAME", "foo", str)
    election_timeout_min: int = _setting("RAFT_ELECTION_TIMEOUT_MIN", "150", _parse_u64)
    election_timeout_max: int = _setting("RAFT_ELECTION_TIMEOUT_MAX", "300", _parse_u64)
    heartbeat_interval: int = _setting("RAFT_HEARTBEAT_INTERVAL", "50", _parse_u64)
    install_snapshot_timeout: int = _setting("RAFT_INSTALL_SNAPSHOT_TIMEOUT", "200", _parse_u64)
    max_payload_entries: int = _setting("RAFT_MAX_PAYLOAD_ENTRIES", "300", _parse_u64)
    replication_lag_threshold: int = _setting("RAFT_REPLICATION_LAG_THRESHOLD", "1000", _parse_u64)
    snapshot_policy: SnapshotPolicy = _setting(
        "RAFT_SNAPSHOT_POLICY", "since_last:5000", parse_snapshot_policy
    )
    snapshot_max_chunk_size: int = _setting(
        "RAFT_SNAPSHOT_MAX_CHUNK_SIZE", "3MiB", parse_bytes_with_unit
    )
    max_applied_log_to_keep: int = _setting("RAFT_MAX_APPLIED_LOG_TO_KEEP", "1000", _parse_u64)

    def new_rand_election_timeout(self) -> int:
        """Return a random election timeout in ``[min, max)``."""
        return random.randrange(self.election_timeout_min, self.election_timeout_max)

    @classmethod
    def build(cls, args: Sequence[str]) -> "Config":
        """Build a validated config from command-line style arguments.

        The first argument is the program name and is ignored.
        """
        prog = args[0] if args else "raft"
        parser = _ArgumentParser(prog=prog, add_help=False, allow_abbrev=False)
        for spec in fields(cls):
            parser.add_argument(
                "--" + spec.name.replace("_", "-"),
                dest=spec.name,
                type=spec.metadata["parse"],
                default=None,
            )
        parsed = parser.parse_args(list(args[1:]))
        given = {name: value for name, value in vars(parsed).items() if value is not None}
        return cls(**given).validate()

    def validate(self) -> "Config":
        """Return this config if it is consistent, else raise a ConfigError."""
        if self.election_timeout_min >= self.election_timeout_max:
            raise ElectionTimeoutError(self.election_timeout_min, self.election_timeout_max)
        if self.election_timeout_min <= self.heartbeat_interval:
            raise ElectionTimeoutLTHeartBeatError(self.election_timeout_min, self.heartbeat_interval)
        if self.max_payload_entries == 0:
            raise MaxPayloadIs0Error()
        return self