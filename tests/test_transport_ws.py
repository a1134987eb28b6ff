"""Tests for the WebSocket transport, over real sockets on localhost."""

from __future__ import annotations

import pytest

from peerdoctor.doctor import Doctor
from peerdoctor.errors import PeerConnectionError
from peerdoctor.keys import KeyPair
from peerdoctor.transport.ws import WebSocketTransport

SMALL_CHUNKS = (1024, 4096, 32768)


async def _erroring(conn):
    raise RuntimeError("handler exploded")


class TestWebSocketTransport:
    @pytest.mark.asyncio
    async def test_listen_registers_url(self):
        directory = {}
        doctor = Doctor(WebSocketTransport(directory=directory))
        server, key_pair = await doctor.listen()
        try:
            assert directory[key_pair.public_key_hex] == server.url
            assert server.url == f"ws://127.0.0.1:{server.port}"
        finally:
            await doctor.destroy()
        assert key_pair.public_key_hex not in directory

    @pytest.mark.asyncio
    async def test_ping_and_exchange(self):
        directory = {}
        server_doctor = Doctor(WebSocketTransport(directory=directory))
        client = Doctor(WebSocketTransport(directory=directory), chunk_sizes=SMALL_CHUNKS)
        _, key_pair = await server_doctor.listen()
        try:
            await client.ping(key_pair.public_key)
            exchange = await client.ping_with_data(key_pair.public_key)
            assert len(exchange.responses) == len(SMALL_CHUNKS)
            assert exchange.responses == exchange.hashes
        finally:
            await client.destroy()
            await server_doctor.destroy()

    @pytest.mark.asyncio
    async def test_full_default_plan(self):
        directory = {}
        server_doctor = Doctor(WebSocketTransport(directory=directory))
        client = Doctor(WebSocketTransport(directory=directory))
        _, key_pair = await server_doctor.listen()
        try:
            report = await client.generate_server_report(key_pair.public_key)
            assert report.ok
        finally:
            await client.destroy()
            await server_doctor.destroy()

    @pytest.mark.asyncio
    async def test_unknown_key_has_no_route(self):
        client = Doctor(WebSocketTransport())
        with pytest.raises(PeerConnectionError, match="No route"):
            await client.ping(KeyPair.generate().public_key)

    @pytest.mark.asyncio
    async def test_wrong_key_rejected_with_404(self):
        directory = {}
        server_doctor = Doctor(WebSocketTransport(directory=directory))
        server, _ = await server_doctor.listen()
        client_transport = WebSocketTransport()
        other = KeyPair.generate().public_key
        client_transport.add_peer(other, server.url + "/")
        try:
            with pytest.raises(PeerConnectionError, match="404"):
                await client_transport.connect(other)
        finally:
            await server_doctor.destroy()

    @pytest.mark.asyncio
    async def test_refused_connection(self):
        transport = WebSocketTransport(open_timeout=2)
        key = KeyPair.generate().public_key
        transport.add_peer(key, "ws://127.0.0.1:1")
        with pytest.raises(PeerConnectionError, match="Could not connect"):
            await transport.connect(key)

    @pytest.mark.asyncio
    async def test_erroring_server(self):
        directory = {}
        server_transport = WebSocketTransport(directory=directory)
        key_pair = KeyPair.generate()
        server = await server_transport.listen(key_pair, _erroring)
        client = Doctor(WebSocketTransport(directory=directory), chunk_sizes=SMALL_CHUNKS)
        try:
            report = await client.generate_server_report(key_pair.public_key)
            assert report.first_ping.ok
            assert report.ping_with_data.err.kind == "PeerConnectionError"
            assert len(report.many_pings) == 3
        finally:
            await client.destroy()
            await server.close()

    def test_remote_address_uses_public_host(self):
        transport = WebSocketTransport(public_host="203.0.113.9", listen_port=4000, nat_type=1)
        assert transport.remote_address() == {"host": "203.0.113.9", "port": 4000, "type": 1}

    def test_remote_address_without_port(self):
        assert WebSocketTransport().remote_address()["port"] is None
