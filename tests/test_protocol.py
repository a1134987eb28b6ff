"""Tests for the echo-verification protocol."""

from __future__ import annotations

import asyncio

import pytest

from peerdoctor.errors import (
    ExcessDataError,
    InsufficientDataError,
    IntegrityError,
    PeerConnectionError,
)
from peerdoctor.hashing import DIGEST_SIZE, digest
from peerdoctor.keys import KeyPair
from peerdoctor.models import ExchangeResult
from peerdoctor.protocol import (
    CHUNK_SIZES,
    build_requests,
    classify,
    send_data,
    serve_echo,
)
from peerdoctor.transport.memory import MemoryConnection

SMALL_CHUNKS = (64, 128, 256)


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #

async def _listen(network, handler):
    transport = network.transport()
    key_pair = KeyPair.generate()
    await transport.listen(key_pair, handler)
    return key_pair.public_key


async def _exchange(network, handler, chunk_sizes=SMALL_CHUNKS):
    key = await _listen(network, handler)
    conn = await network.transport().connect(key)
    try:
        return await send_data(conn, chunk_sizes)
    finally:
        await conn.close()


# ------------------------------------------------------------------ #
# Tests
# ------------------------------------------------------------------ #

class TestDigest:
    def test_deterministic(self):
        assert digest(b"hello world") == digest(b"hello world")

    def test_size(self):
        assert len(digest(b"")) == DIGEST_SIZE
        assert len(digest(b"x" * 100_000)) == DIGEST_SIZE

    def test_known_value(self):
        assert digest(b"abc").hex() == (
            "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        )

    def test_distinct_inputs(self):
        assert digest(b"a") != digest(b"b")


class TestBuildRequests:
    def test_default_plan(self):
        assert CHUNK_SIZES == (32768, 65536, 98304, 131072, 163840)

    def test_one_request_per_size(self):
        exchange = build_requests([10, 20, 30])
        assert [len(r) for r in exchange.requests] == [10, 20, 30]
        assert exchange.responses == []

    def test_requests_are_single_byte_fill(self):
        exchange = build_requests([50])
        assert len(set(exchange.requests[0])) == 1

    def test_hashes_precomputed(self):
        exchange = build_requests([10, 20])
        assert exchange.hashes == [digest(r) for r in exchange.requests]


class TestClassify:
    def _exchange(self, responses):
        requests = [b"a" * 4, b"b" * 4]
        return ExchangeResult(
            requests=requests,
            responses=responses,
            hashes=[digest(r) for r in requests],
        )

    def test_matching_passes(self):
        ex = self._exchange([digest(b"a" * 4), digest(b"b" * 4)])
        classify(ex)

    def test_too_few(self):
        ex = self._exchange([digest(b"a" * 4)])
        with pytest.raises(InsufficientDataError, match="did not respond with enough data") as info:
            classify(ex)
        assert info.value.exchange is ex

    def test_too_many(self):
        ex = self._exchange([digest(b"a" * 4), digest(b"b" * 4), b"extra"])
        with pytest.raises(ExcessDataError, match="too much data"):
            classify(ex)

    def test_mismatch(self):
        ex = self._exchange([digest(b"a" * 4), b"wrong"])
        with pytest.raises(IntegrityError, match="invalid data"):
            classify(ex)

    def test_count_checked_before_content(self):
        ex = self._exchange([b"wrong"])
        with pytest.raises(InsufficientDataError):
            classify(ex)


class TestSendData:
    @pytest.mark.asyncio
    async def test_echo_server_round_trip(self, network):
        async def handler(conn):
            await serve_echo(conn, timeout=5)

        exchange = await _exchange(network, handler)
        assert len(exchange.requests) == len(SMALL_CHUNKS)
        assert exchange.responses == exchange.hashes

    @pytest.mark.asyncio
    async def test_single_response(self, network):
        async def handler(conn):
            await conn.write(b"hello world")
            await conn.end()

        with pytest.raises(InsufficientDataError) as info:
            await _exchange(network, handler, chunk_sizes=[10, 20, 30, 40, 50])
        assert info.value.exchange.responses == [b"hello world"]
        assert len(info.value.exchange.hashes) == 5

    @pytest.mark.asyncio
    async def test_wrong_hashes(self, network):
        async def handler(conn):
            for _ in range(5):
                await conn.write(b"hello world")
            await conn.end()

        with pytest.raises(IntegrityError) as info:
            await _exchange(network, handler, chunk_sizes=[10, 20, 30, 40, 50])
        assert len(info.value.exchange.responses) == 5
        assert len(info.value.exchange.hashes) == 5

    @pytest.mark.asyncio
    async def test_extra_response(self, network):
        async def handler(conn):
            async for data in conn:
                await conn.write(digest(data))
            await conn.write(b"one more")
            await conn.end()

        with pytest.raises(ExcessDataError):
            await _exchange(network, handler)

    @pytest.mark.asyncio
    async def test_destroyed_by_peer(self, network):
        async def handler(conn):
            raise RuntimeError("boom")

        with pytest.raises(PeerConnectionError, match="boom"):
            await _exchange(network, handler)


class TestServeEcho:
    @pytest.mark.asyncio
    async def test_answers_each_write(self):
        client, server = MemoryConnection.pair(b"\x01" * 32, b"\x02" * 32)
        task = asyncio.ensure_future(serve_echo(server, timeout=5))
        await client.write(b"one")
        await client.write(b"two")
        await client.end()
        received = [data async for data in client]
        await task
        assert received == [digest(b"one"), digest(b"two")]

    @pytest.mark.asyncio
    async def test_timeout_destroys_connection(self):
        client, server = MemoryConnection.pair(b"\x01" * 32, b"\x02" * 32)
        await serve_echo(server, timeout=0.05)
        assert server.destroyed
        with pytest.raises(PeerConnectionError, match="timed out"):
            async for _ in client:
                pass

    @pytest.mark.asyncio
    async def test_dropped_connection_is_not_raised(self):
        client, server = MemoryConnection.pair(b"\x01" * 32, b"\x02" * 32)
        await client.destroy(RuntimeError("gone"))
        await serve_echo(server, timeout=5)
