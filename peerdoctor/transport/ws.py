"""WebSocket binding of the transport contract.

Each listening identity gets its own ``websockets`` server and only accepts
upgrades on ``/<hex public key>``.  Peers are located through a directory
mapping hex public keys to base URLs (``ws://host:port``); entries are added
by :meth:`WebSocketTransport.listen`, by configuration, or from manifest
``url`` hints.

Framing:
  - every ``write`` is one binary message
  - ``end()`` sends the text frame ``"end"``
  - close code 1011 means the peer destroyed the connection with an error
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from http import HTTPStatus
from typing import TYPE_CHECKING, AsyncIterator

from websockets.asyncio.client import ClientConnection, connect
from websockets.asyncio.server import Server as _WSServer
from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    InvalidHandshake,
    InvalidStatus,
    InvalidURI,
)

from peerdoctor.errors import PeerConnectionError
from peerdoctor.transport.base import (
    NAT_UNKNOWN,
    Connection,
    ConnectionHandler,
    Server,
    Transport,
)

if TYPE_CHECKING:
    from websockets.http11 import Request

    from peerdoctor.keys import KeyPair

logger = logging.getLogger(__name__)

END_OF_OUTPUT = "end"
CLOSE_DESTROYED = 1011
DEFAULT_MAX_SIZE = 2**20


def _describe(exc: ConnectionClosed) -> str:
    frame = exc.rcvd or exc.sent
    if frame is not None and frame.reason:
        return f"Connection destroyed: {frame.reason}"
    return f"Connection closed: {exc}"


class WebSocketConnection(Connection):
    def __init__(self, ws: ClientConnection | ServerConnection, remote_public_key: bytes = b"") -> None:
        self.remote_public_key = remote_public_key
        self._ws = ws
        self._ended = False
        self._closed = False
        self._remote_ended = False

    async def write(self, data: bytes) -> None:
        if self._ended:
            raise PeerConnectionError("Write after end")
        try:
            await self._ws.send(bytes(data))
        except ConnectionClosed as exc:
            raise PeerConnectionError(_describe(exc)) from exc

    async def end(self) -> None:
        if self._ended:
            return
        self._ended = True
        try:
            await self._ws.send(END_OF_OUTPUT)
        except ConnectionClosed as exc:
            raise PeerConnectionError(_describe(exc)) from exc

    async def _read(self) -> AsyncIterator[bytes]:
        if self._remote_ended:
            return
        try:
            async for message in self._ws:
                if isinstance(message, str):
                    if message == END_OF_OUTPUT:
                        self._remote_ended = True
                        return
                    logger.debug("Ignoring unknown control frame %r", message)
                    continue
                yield message
        except ConnectionClosedError as exc:
            raise PeerConnectionError(_describe(exc)) from exc
        # A clean close without an explicit end still ends the stream.
        self._remote_ended = True

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._read()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if not self._ended:
            self._ended = True
            with contextlib.suppress(ConnectionClosed):
                await self._ws.send(END_OF_OUTPUT)
        await self._ws.close()

    async def destroy(self, error: BaseException | None = None) -> None:
        self._closed = True
        self._ended = True
        reason = str(error) if error is not None else "destroyed"
        await self._ws.close(code=CLOSE_DESTROYED, reason=reason[:120])


class WebSocketServer(Server):
    def __init__(self, key_pair: KeyPair, ws_server: _WSServer, url: str) -> None:
        super().__init__(key_pair)
        self.url = url
        self._ws_server = ws_server

    @property
    def port(self) -> int:
        return self._ws_server.sockets[0].getsockname()[1]

    async def _close(self) -> None:
        self._ws_server.close()
        await self._ws_server.wait_closed()


class WebSocketTransport(Transport):
    """Overlay stand-in that routes public keys to WebSocket URLs.

    Parameters
    ----------
    directory:
        Mapping of hex public key to base URL.  Pass the same dict to
        several transports to let them find each other.
    public_host:
        Host advertised in listening URLs and reported by
        :meth:`remote_address`.  Defaults to ``listen_host``.
    """

    def __init__(
        self,
        directory: dict[str, str] | None = None,
        listen_host: str = "127.0.0.1",
        listen_port: int = 0,
        public_host: str | None = None,
        nat_type: int = NAT_UNKNOWN,
        open_timeout: float = 10.0,
        max_size: int = DEFAULT_MAX_SIZE,
    ) -> None:
        self.directory = directory if directory is not None else {}
        self.listen_host = listen_host
        self.listen_port = listen_port
        self.public_host = public_host or listen_host
        self.nat_type = nat_type
        self.open_timeout = open_timeout
        self.max_size = max_size
        self._servers: list[WebSocketServer] = []

    def add_peer(self, public_key: bytes, address: str) -> None:
        self.directory[public_key.hex()] = address.rstrip("/")

    async def connect(self, public_key: bytes) -> Connection:
        key_hex = public_key.hex()
        base = self.directory.get(key_hex)
        if base is None:
            raise PeerConnectionError(f"No route to peer {key_hex}")
        uri = f"{base}/{key_hex}"
        try:
            ws = await connect(uri, open_timeout=self.open_timeout, max_size=self.max_size)
        except InvalidStatus as exc:
            raise PeerConnectionError(
                f"Peer {key_hex} rejected connection (HTTP {exc.response.status_code})"
            ) from exc
        except (InvalidHandshake, InvalidURI, OSError, asyncio.TimeoutError) as exc:
            raise PeerConnectionError(f"Could not connect to peer {key_hex}: {exc}") from exc
        logger.debug("Connected to %s via %s", key_hex, base)
        return WebSocketConnection(ws, public_key)

    async def listen(self, key_pair: KeyPair, handler: ConnectionHandler) -> Server:
        key_hex = key_pair.public_key_hex

        def process_request(connection: ServerConnection, request: Request):
            if request.path.strip("/") != key_hex:
                return connection.respond(HTTPStatus.NOT_FOUND, "Unknown peer\n")
            return None

        async def on_connection(ws: ServerConnection) -> None:
            conn = WebSocketConnection(ws)
            try:
                await handler(conn)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Connection handler failed")
                await conn.destroy(exc)
            finally:
                await conn.close()

        ws_server = await serve(
            on_connection,
            self.listen_host,
            self.listen_port,
            process_request=process_request,
            max_size=self.max_size,
        )
        port = ws_server.sockets[0].getsockname()[1]
        url = f"ws://{self.public_host}:{port}"
        server = WebSocketServer(key_pair, ws_server, url)
        self.directory[key_hex] = url
        self._servers.append(server)
        server.on_close(self._forget)
        logger.info("Listening on %s as %s", url, key_hex)
        return server

    def _forget(self, server: Server) -> None:
        if server in self._servers:
            self._servers.remove(server)
        if isinstance(server, WebSocketServer) and self.directory.get(server.public_key.hex()) == server.url:
            del self.directory[server.public_key.hex()]

    def remote_address(self) -> dict:
        port = self._servers[0].port if self._servers else self.listen_port or None
        return {"host": self.public_host, "port": port, "type": self.nat_type}

    async def destroy(self) -> None:
        for server in list(self._servers):
            await server.close()
