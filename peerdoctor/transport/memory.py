"""In-process overlay.

A :class:`MemoryNetwork` is a shared registry of listening public keys.
Every :class:`MemoryTransport` created from it can reach every server on
the same network.  Connections are pairs of asyncio queues, so message
boundaries are preserved exactly like on the real overlay.

Used by the test-suite and for local demos::

    network = MemoryNetwork()
    a, b = network.transport(), network.transport()
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, AsyncIterator

from peerdoctor.errors import PeerConnectionError
from peerdoctor.transport.base import (
    NAT_OPEN,
    Connection,
    ConnectionHandler,
    Server,
    Transport,
)

if TYPE_CHECKING:
    from peerdoctor.keys import KeyPair

logger = logging.getLogger(__name__)

_EOF = object()


class _Destroyed:
    def __init__(self, error: BaseException) -> None:
        self.error = error


class MemoryConnection(Connection):
    """One end of an in-memory duplex pipe."""

    def __init__(self, remote_public_key: bytes) -> None:
        self.remote_public_key = remote_public_key
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._peer: MemoryConnection | None = None
        self._ended = False
        self._closed = False
        self._remote_ended = False
        self._error: BaseException | None = None

    @classmethod
    def pair(cls, client_key: bytes, server_key: bytes) -> tuple[MemoryConnection, MemoryConnection]:
        client, server = cls(server_key), cls(client_key)
        client._peer, server._peer = server, client
        return client, server

    @property
    def destroyed(self) -> bool:
        return self._error is not None

    async def write(self, data: bytes) -> None:
        if self._error is not None:
            raise PeerConnectionError(f"Connection destroyed: {self._error}")
        if self._ended:
            raise PeerConnectionError("Write after end")
        peer = self._peer
        if peer is not None and not peer._closed:
            peer._inbox.put_nowait(bytes(data))

    async def end(self) -> None:
        if self._ended or self._error is not None:
            return
        self._ended = True
        if self._peer is not None:
            self._peer._inbox.put_nowait(_EOF)

    async def _read(self) -> AsyncIterator[bytes]:
        while not self._remote_ended:
            item = await self._inbox.get()
            if item is _EOF:
                self._remote_ended = True
                return
            if isinstance(item, _Destroyed):
                raise PeerConnectionError(f"Connection destroyed: {item.error}")
            yield item

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._read()

    async def close(self) -> None:
        if self._closed:
            return
        await self.end()
        self._closed = True

    async def destroy(self, error: BaseException | None = None) -> None:
        if self._error is not None:
            return
        err = error if error is not None else PeerConnectionError("Connection destroyed")
        self._error = err
        self._closed = True
        self._inbox.put_nowait(_Destroyed(err))
        peer = self._peer
        if peer is not None and peer._error is None:
            peer._error = err
            peer._inbox.put_nowait(_Destroyed(err))


class MemoryServer(Server):
    def __init__(self, network: MemoryNetwork, key_pair: KeyPair, handler: ConnectionHandler) -> None:
        super().__init__(key_pair)
        self._network = network
        self._handler = handler
        self._tasks: set[asyncio.Task] = set()

    def _accept(self, conn: MemoryConnection) -> None:
        task = asyncio.get_running_loop().create_task(self._run_handler(conn))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_handler(self, conn: MemoryConnection) -> None:
        try:
            await self._handler(conn)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Connection handler failed")
            await conn.destroy(exc)
        finally:
            await conn.close()

    async def _close(self) -> None:
        self._network._unregister(self)
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


class MemoryTransport(Transport):
    def __init__(
        self,
        network: MemoryNetwork,
        host: str = "127.0.0.1",
        port: int = 0,
        nat_type: int = NAT_OPEN,
    ) -> None:
        self.network = network
        self.host = host
        self.port = port
        self.nat_type = nat_type
        self.client_key = network._next_client_key()
        self._servers: list[MemoryServer] = []

    async def connect(self, public_key: bytes) -> Connection:
        server = self.network._lookup(public_key)
        if server is None:
            raise PeerConnectionError(f"Could not connect to peer {public_key.hex()}")
        client_end, server_end = MemoryConnection.pair(self.client_key, public_key)
        server._accept(server_end)
        return client_end

    async def listen(self, key_pair: KeyPair, handler: ConnectionHandler) -> Server:
        server = MemoryServer(self.network, key_pair, handler)
        self.network._register(server)
        self._servers.append(server)
        server.on_close(lambda s: self._servers.remove(s) if s in self._servers else None)
        return server

    def remote_address(self) -> dict:
        return {"host": self.host, "port": self.port, "type": self.nat_type}

    async def destroy(self) -> None:
        for server in list(self._servers):
            await server.close()


class MemoryNetwork:
    """Registry of servers reachable by public key."""

    def __init__(self) -> None:
        self._servers: dict[bytes, MemoryServer] = {}
        self._clients = 0

    def transport(self, **kwargs) -> MemoryTransport:
        return MemoryTransport(self, **kwargs)

    def _next_client_key(self) -> bytes:
        self._clients += 1
        return self._clients.to_bytes(32, "big")

    def _register(self, server: MemoryServer) -> None:
        if server.public_key in self._servers:
            raise PeerConnectionError(f"Already listening on {server.public_key.hex()}")
        self._servers[server.public_key] = server

    def _unregister(self, server: MemoryServer) -> None:
        if self._servers.get(server.public_key) is server:
            del self._servers[server.public_key]

    def _lookup(self, public_key: bytes) -> MemoryServer | None:
        return self._servers.get(public_key)
