"""The prober: single probes, per-target reports and fleet reports.

A :class:`Doctor` wraps one transport.  It can probe remote peers
(:meth:`Doctor.ping`, :meth:`Doctor.ping_with_data`), run the full battery
of tests against one peer (:meth:`Doctor.generate_server_report`) or
against every peer in a manifest (:meth:`Doctor.generate_full_report`),
and serve the echo protocol for other doctors (:meth:`Doctor.listen`).

Probes run one at a time.  Test failures are recorded in the report, never
raised; only a malformed manifest, a destroyed doctor or cancellation
abort a run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Coroutine, Sequence, TypeVar

from peerdoctor.errors import DoctorDestroyedError, ExchangeError, ProbeTimeoutError
from peerdoctor.events import (
    ProbeEnded,
    ProbeName,
    ProbeStarted,
    ProbesTerminated,
    ProgressCallback,
    ProgressEvent,
    RunEnded,
    RunStarted,
    TargetEnded,
    TargetStarted,
)
from peerdoctor.keys import KeyPair, as_public_key
from peerdoctor.models import (
    ErrorInfo,
    ExchangeResult,
    FullReport,
    Manifest,
    RemoteAddress,
    ServerReport,
    TimedOutcome,
)
from peerdoctor.protocol import CHUNK_SIZES, CONNECTION_TIMEOUT, send_data, serve_echo
from peerdoctor.transport.base import (
    NAT_OPEN,
    NAT_PORT_CONSISTENT,
    NAT_PORT_INCREMENTING,
    NAT_PORT_RANDOMIZED,
    Connection,
    Server,
    Transport,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MANY_PINGS = 3

_NAT_NAMES = {
    NAT_PORT_RANDOMIZED: "randomized",
    NAT_PORT_INCREMENTING: "incrementing",
    NAT_PORT_CONSISTENT: "consistent",
    NAT_OPEN: "open",
}


def nat_type_to_string(nat_type: Any) -> str:
    return _NAT_NAMES.get(nat_type, "unknown")


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 3)


async def time_and_catch(f: Callable[[], Awaitable[Any]]) -> TimedOutcome:
    """Run *f*, timing it and capturing any error instead of raising.

    Cancellation and a destroyed doctor are not captured.
    """
    start = time.monotonic()
    try:
        result = await f()
    except DoctorDestroyedError:
        raise
    except Exception as exc:  # noqa: BLE001
        info = exc.exchange if isinstance(exc, ExchangeError) else None
        return TimedOutcome(duration=_elapsed_ms(start), err=ErrorInfo.from_exception(exc), info=info)
    return TimedOutcome(duration=_elapsed_ms(start), result=result)


class Doctor:
    """Reachability and data-integrity prober for overlay peers.

    Parameters
    ----------
    transport:
        Overlay binding used for every connection.
    chunk_sizes:
        Buffer sizes sent by :meth:`ping_with_data`.
    probe_timeout:
        Deadline in seconds for each probe; ``None`` waits indefinitely.
    connection_timeout:
        Deadline the echo server gives each inbound connection.
    max_concurrent_probes:
        Probe slots; the default of one keeps a single connection in flight.
    """

    def __init__(
        self,
        transport: Transport,
        chunk_sizes: Sequence[int] | None = None,
        probe_timeout: float | None = None,
        connection_timeout: float = CONNECTION_TIMEOUT,
        max_concurrent_probes: int = 1,
    ) -> None:
        self.transport = transport
        self.chunk_sizes = tuple(CHUNK_SIZES if chunk_sizes is None else chunk_sizes)
        self.probe_timeout = probe_timeout
        self.connection_timeout = connection_timeout
        self.destroyed = False
        self._slots = asyncio.Semaphore(max_concurrent_probes)
        self._run_lock = asyncio.Lock()
        self._servers: set[Server] = set()
        self._inflight: set[asyncio.Task] = set()

    # ── Probes ─────────────────────────────────────────────────────

    async def ping(self, public_key: bytes | str) -> None:
        """Connect to *public_key*, wait for the connection to open, close it."""
        key = as_public_key(public_key)

        async def _ping() -> None:
            conn = await self.transport.connect(key)
            await conn.close()

        await self._run_probe(_ping())

    async def ping_with_data(self, public_key: bytes | str) -> ExchangeResult:
        """Connect to *public_key* and run the echo-verification protocol."""
        key = as_public_key(public_key)

        async def _ping_with_data() -> ExchangeResult:
            conn = await self.transport.connect(key)
            try:
                return await send_data(conn, self.chunk_sizes)
            finally:
                await conn.close()

        return await self._run_probe(_ping_with_data())

    async def _run_probe(self, coro: Coroutine[Any, Any, T]) -> T:
        if self.destroyed:
            coro.close()
            raise DoctorDestroyedError("Doctor has been destroyed")
        async with self._slots:
            # destroy() may have run while we waited for the slot
            if self.destroyed:
                coro.close()
                raise DoctorDestroyedError("Doctor has been destroyed")
            task = asyncio.ensure_future(self._with_timeout(coro))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            return await task

    async def _with_timeout(self, coro: Coroutine[Any, Any, T]) -> T:
        if self.probe_timeout is None:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout=self.probe_timeout)
        except asyncio.TimeoutError:
            raise ProbeTimeoutError(f"Probe timed out after {self.probe_timeout}s") from None

    # ── Reports ────────────────────────────────────────────────────

    async def generate_server_report(
        self,
        public_key: bytes | str,
        on_progress: ProgressCallback | None = None,
    ) -> ServerReport:
        """Run first-ping, ping-with-data and three pings against one peer.

        If the first ping fails the remaining tests are skipped.
        """
        if self.destroyed:
            raise DoctorDestroyedError("Doctor has been destroyed")
        key = as_public_key(public_key)

        def emit(event: ProgressEvent) -> None:
            _emit(on_progress, event)

        # Ping once to see if we can connect at all
        emit(ProbeStarted(ProbeName.FIRST_PING, key))
        first_ping = await time_and_catch(lambda: self.ping(key))
        emit(ProbeEnded(ProbeName.FIRST_PING, key, first_ping))

        if first_ping.err:
            logger.info("First ping to %s failed: %s", key.hex(), first_ping.err.message)
            emit(ProbesTerminated(key))
            return ServerReport(first_ping=first_ping)

        emit(ProbeStarted(ProbeName.PING_WITH_DATA, key))
        data_result = await time_and_catch(lambda: self.ping_with_data(key))
        ping_with_data = TimedOutcome(
            duration=data_result.duration,
            err=data_result.err,
            info=data_result.info.summarize() if isinstance(data_result.info, ExchangeResult) else None,
        )
        emit(ProbeEnded(ProbeName.PING_WITH_DATA, key, ping_with_data))

        # Three pings in quick succession, one at a time
        many_pings: list[TimedOutcome] = []
        emit(ProbeStarted(ProbeName.MANY_PINGS, key))
        for i in range(1, MANY_PINGS + 1):
            name = ProbeName.many_pings(i)
            emit(ProbeStarted(name, key))
            outcome = await time_and_catch(lambda: self.ping(key))
            many_pings.append(outcome)
            emit(ProbeEnded(name, key, outcome))
        emit(ProbeEnded(ProbeName.MANY_PINGS, key))

        return ServerReport(first_ping=first_ping, ping_with_data=ping_with_data, many_pings=many_pings)

    async def generate_full_report(
        self,
        manifest: Any,
        on_progress: ProgressCallback | None = None,
    ) -> FullReport:
        """Generate a :class:`ServerReport` for every server in *manifest*.

        Raises :class:`~peerdoctor.errors.MalformedManifestError` before any
        probing if the manifest is unusable.
        """
        if self.destroyed:
            raise DoctorDestroyedError("Doctor has been destroyed")
        parsed = manifest if isinstance(manifest, Manifest) else Manifest.parse(manifest)

        async with self._run_lock:
            addr = self.transport.remote_address()
            report = FullReport(
                remote_address=RemoteAddress(
                    host=addr.get("host"),
                    port=addr.get("port"),
                    type=nat_type_to_string(addr.get("type")),
                ),
                manifest=parsed,
            )

            _emit(on_progress, RunStarted())
            start = time.monotonic()
            for entry in parsed.servers:
                if entry.key_hex in report.result:
                    logger.warning("Skipping duplicate manifest entry %s", entry.key_hex)
                    continue
                if entry.url:
                    self.transport.add_peer(entry.public_key, entry.url)
                _emit(on_progress, TargetStarted(entry.public_key))
                server_report = await self.generate_server_report(entry.public_key, on_progress)
                report.result[entry.key_hex] = server_report
                _emit(on_progress, TargetEnded(entry.public_key, server_report))
            report.duration = _elapsed_ms(start)
            _emit(on_progress, RunEnded(report))

        logger.info(
            "Report complete: %d server(s) in %.0fms", len(report.result), report.duration
        )
        return report

    # ── Echo server ────────────────────────────────────────────────

    async def listen(self, key_pair: KeyPair | None = None) -> tuple[Server, KeyPair]:
        """Serve the echo protocol on *key_pair* (random if omitted)."""
        if self.destroyed:
            raise DoctorDestroyedError("Doctor has been destroyed")
        key_pair = key_pair or KeyPair.generate()

        async def _handler(conn: Connection) -> None:
            await serve_echo(conn, timeout=self.connection_timeout)

        server = await self.transport.listen(key_pair, _handler)
        self._servers.add(server)
        server.on_close(self._servers.discard)
        return server, key_pair

    # ── Teardown ───────────────────────────────────────────────────

    async def destroy(self) -> None:
        """Cancel in-flight probes, close every server, destroy the transport."""
        if self.destroyed:
            return
        self.destroyed = True
        for task in list(self._inflight):
            task.cancel()
        for server in list(self._servers):
            await server.close()
        await self.transport.destroy()


def _emit(on_progress: ProgressCallback | None, event: ProgressEvent) -> None:
    if on_progress is None:
        return
    try:
        on_progress(event)
    except Exception:  # noqa: BLE001
        logger.exception("Error in progress callback")
