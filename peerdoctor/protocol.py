"""Echo-verification protocol.

The prober writes a fixed plan of randomly filled buffers, ends its
output, and reads back whatever the peer sends until the peer ends its
output.  A healthy peer (see :func:`serve_echo`) answers every inbound
write with the SHA-256 digest of that write, in order.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Sequence

from peerdoctor.errors import (
    ExcessDataError,
    InsufficientDataError,
    IntegrityError,
    PeerConnectionError,
    ProbeTimeoutError,
)
from peerdoctor.hashing import digest
from peerdoctor.models import ExchangeResult
from peerdoctor.transport.base import Connection

logger = logging.getLogger(__name__)

CHUNK_SIZES: tuple[int, ...] = tuple(s * 1024 * 32 for s in (1, 2, 3, 4, 5))
CONNECTION_TIMEOUT = 10.0


def build_requests(chunk_sizes: Sequence[int]) -> ExchangeResult:
    """Synthesize one buffer per chunk size and hash it before any I/O."""
    exchange = ExchangeResult()
    for size in chunk_sizes:
        buf = bytes([random.randrange(256)]) * size
        exchange.requests.append(buf)
        exchange.hashes.append(digest(buf))
    return exchange


def classify(exchange: ExchangeResult) -> None:
    """Raise the matching :class:`~peerdoctor.errors.ExchangeError`, if any."""
    if len(exchange.responses) < len(exchange.hashes):
        raise InsufficientDataError("Server did not respond with enough data", exchange)
    if len(exchange.responses) > len(exchange.hashes):
        raise ExcessDataError("Server responded with too much data", exchange)
    for expected, got in zip(exchange.hashes, exchange.responses):
        if expected != got:
            raise IntegrityError("Server responded with invalid data", exchange)


async def send_data(conn: Connection, chunk_sizes: Sequence[int] = CHUNK_SIZES) -> ExchangeResult:
    """Run one full request/response exchange over an open connection."""
    exchange = build_requests(chunk_sizes)

    async def _write_all() -> None:
        for req in exchange.requests:
            await conn.write(req)
        await conn.end()

    async def _read_all() -> None:
        async for data in conn:
            exchange.responses.append(data)

    writer = asyncio.ensure_future(_write_all())
    try:
        await _read_all()
        try:
            await writer
        except PeerConnectionError as exc:
            # The peer already ended its output; the responses decide the outcome.
            logger.debug("Write side failed after peer ended: %s", exc)
    finally:
        if not writer.done():
            writer.cancel()
        elif not writer.cancelled():
            # Mark retrieved; a reader error takes precedence.
            writer.exception()
    classify(exchange)
    return exchange


async def serve_echo(conn: Connection, timeout: float = CONNECTION_TIMEOUT) -> None:
    """Answer every inbound chunk with its digest until the peer ends.

    The whole exchange must finish within *timeout* seconds, otherwise the
    connection is destroyed.
    """

    async def _pump() -> None:
        async for data in conn:
            await conn.write(digest(data))
        await conn.end()

    try:
        await asyncio.wait_for(_pump(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.info("Echo connection timed out after %.1fs", timeout)
        await conn.destroy(ProbeTimeoutError("Connection timed out"))
    except PeerConnectionError as exc:
        logger.debug("Echo connection dropped: %s", exc)
    finally:
        await conn.close()
