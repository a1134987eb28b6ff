"""Transport contract consumed by the prober.

The overlay itself (routing, NAT traversal, handshakes) lives behind this
interface.  A binding provides three things: connect to a public key,
listen on a key pair, and report the local node's externally visible
address.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable

if TYPE_CHECKING:
    from peerdoctor.keys import KeyPair

logger = logging.getLogger(__name__)

NAT_UNKNOWN = 0
NAT_OPEN = 1
NAT_PORT_CONSISTENT = 2
NAT_PORT_INCREMENTING = 3
NAT_PORT_RANDOMIZED = 4


class Connection(ABC):
    """Duplex, message-preserving byte stream to one peer.

    Iterating a connection yields each inbound write as one ``bytes``
    chunk and stops when the peer ends its output.  Iteration raises
    :class:`~peerdoctor.errors.PeerConnectionError` if the peer destroys
    the connection.
    """

    @abstractmethod
    async def write(self, data: bytes) -> None: ...

    @abstractmethod
    async def end(self) -> None:
        """Signal end-of-output on our direction."""

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[bytes]: ...

    @abstractmethod
    async def close(self) -> None:
        """End our output and release the connection.  Idempotent."""

    @abstractmethod
    async def destroy(self, error: BaseException | None = None) -> None:
        """Tear the connection down, reporting *error* to the peer."""


ConnectionHandler = Callable[[Connection], Awaitable[None]]


class Server(ABC):
    """Handle for a listening identity; closing it stops accepting."""

    def __init__(self, key_pair: KeyPair) -> None:
        self.key_pair = key_pair
        self.closed = False
        self._close_callbacks: list[Callable[[Server], None]] = []

    @property
    def public_key(self) -> bytes:
        return self.key_pair.public_key

    def on_close(self, callback: Callable[[Server], None]) -> None:
        self._close_callbacks.append(callback)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._close()
        for cb in self._close_callbacks:
            try:
                cb(self)
            except Exception:  # noqa: BLE001
                logger.exception("Error in server close callback")

    @abstractmethod
    async def _close(self) -> None: ...


class Transport(ABC):
    @abstractmethod
    async def connect(self, public_key: bytes) -> Connection:
        """Return an open connection or raise ``PeerConnectionError``."""

    @abstractmethod
    async def listen(self, key_pair: KeyPair, handler: ConnectionHandler) -> Server: ...

    @abstractmethod
    def remote_address(self) -> dict:
        """``{"host": ..., "port": ..., "type": <NAT code>}``"""

    def add_peer(self, public_key: bytes, address: str) -> None:
        """Hint where *public_key* can be reached.  Ignored by default."""

    async def destroy(self) -> None:
        return None
