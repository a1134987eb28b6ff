"""peerdoctor.transport: overlay bindings used by the prober.

Exports:
    Transport, Connection, Server: the contract the core depends on
    MemoryNetwork / MemoryTransport: in-process overlay
    WebSocketTransport: ``websockets``-backed overlay stand-in
"""

from __future__ import annotations

from peerdoctor.transport.base import (
    NAT_OPEN,
    NAT_PORT_CONSISTENT,
    NAT_PORT_INCREMENTING,
    NAT_PORT_RANDOMIZED,
    NAT_UNKNOWN,
    Connection,
    ConnectionHandler,
    Server,
    Transport,
)
from peerdoctor.transport.memory import MemoryNetwork, MemoryTransport
from peerdoctor.transport.ws import WebSocketTransport

__all__ = [
    "NAT_OPEN",
    "NAT_PORT_CONSISTENT",
    "NAT_PORT_INCREMENTING",
    "NAT_PORT_RANDOMIZED",
    "NAT_UNKNOWN",
    "Connection",
    "ConnectionHandler",
    "Server",
    "Transport",
    "MemoryNetwork",
    "MemoryTransport",
    "WebSocketTransport",
]
