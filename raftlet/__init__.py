"""Raft configuration, in-memory log stores, append-entries handling and HTTP clients."""

__version__ = "0.1.0"
__all__ = ["append_entries", "client", "config", "kvstore", "memstore", "network", "types"]