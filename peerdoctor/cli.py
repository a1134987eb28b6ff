"""peer-doctor command line.

Usage::

    peer-doctor [--config PATH] [--debug] test [--url URL] [--yes] [--verbose]
    peer-doctor [--config PATH] [--debug] serve [SEED]

``test`` is the default command.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Callable

from rich.console import Console
from rich.status import Status

from peerdoctor.client import CoordinationClient
from peerdoctor.config import DoctorConfig
from peerdoctor.doctor import Doctor
from peerdoctor.events import (
    ProbeEnded,
    ProbeName,
    ProbeStarted,
    ProbesTerminated,
    ProgressEvent,
)
from peerdoctor.keys import SEED_SIZE, KeyPair
from peerdoctor.transport.base import Transport
from peerdoctor.transport.ws import WebSocketTransport

logger = logging.getLogger(__name__)

CONSENT_PROMPT = """
  Thanks for helping us test the overlay network.

  To help us debug, this tool will send the following information to our server:
  1. Your public IP address
  2. Your NAT configuration

  Do you want to continue with the test? [N/y] """
DID_CONSENT = {"y", "Y", "yes", "YES"}


def make_transport(config: DoctorConfig) -> Transport:
    return WebSocketTransport(
        directory=dict(config.peers),
        listen_host=config.listen_host,
        listen_port=config.listen_port,
        public_host=config.public_host,
        nat_type=config.nat_type,
    )


def ask_consent(input_fn: Callable[[str], str] | None = None) -> bool:
    read = input_fn or input
    try:
        answer = read(CONSENT_PROMPT)
    except EOFError:
        return False
    return answer.strip() in DID_CONSENT


# ── Progress rendering ────────────────────────────────────────────

def _title(name: ProbeName, key_hex: str) -> str | None:
    if name is ProbeName.FIRST_PING:
        return f"Attempting first connection to: {key_hex}"
    if name is ProbeName.PING_WITH_DATA:
        return f"Sending data to {key_hex}"
    if name is ProbeName.MANY_PINGS:
        return f"Pinging {key_hex} several times in quick succession"
    return None


class ProgressRenderer:
    """Renders probe progress events as a spinner per running test."""

    def __init__(self, console: Console) -> None:
        self.console = console
        self._status: Status | None = None
        self._group_failed = False

    def __call__(self, event: ProgressEvent) -> None:
        if isinstance(event, ProbeStarted):
            if event.name is ProbeName.MANY_PINGS:
                self._group_failed = False
            title = _title(event.name, event.public_key.hex())
            if title:
                self._stop()
                self._status = self.console.status(title)
                self._status.start()
        elif isinstance(event, ProbeEnded):
            failed = event.outcome is not None and not event.outcome.ok
            if failed:
                self._group_failed = True
            title = _title(event.name, event.public_key.hex())
            if not title:
                return
            if event.name is ProbeName.MANY_PINGS:
                failed = self._group_failed
            self._stop()
            mark = "[red]✖[/red]" if failed else "[green]✔[/green]"
            self.console.print(f"  {mark} {title}")
            if failed and event.outcome is not None and event.outcome.err:
                self.console.print(f"      [dim]{event.outcome.err.message}[/dim]")
        elif isinstance(event, ProbesTerminated):
            self.console.print(
                f"  [yellow]Skipping remaining tests for {event.public_key.hex()}[/yellow]"
            )

    def _stop(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None

    def close(self) -> None:
        self._stop()


# ── Commands ──────────────────────────────────────────────────────

async def run_test(
    config: DoctorConfig,
    console: Console,
    verbose: bool = False,
    transport: Transport | None = None,
    client: CoordinationClient | None = None,
) -> int:
    doctor = Doctor(
        transport or make_transport(config),
        chunk_sizes=config.chunk_sizes,
        probe_timeout=config.probe_timeout,
        connection_timeout=config.connection_timeout,
    )
    client = client or CoordinationClient(config.manifest_url, user_agent=config.user_agent)
    renderer = ProgressRenderer(console)

    console.print("\n Your Remote Address:", doctor.transport.remote_address())
    console.print()

    try:
        with console.status("Loading manifest"):
            manifest = await client.load_manifest()
        console.print("[green]✔[/green] Loaded manifest")

        console.print("Running tests")
        report = await doctor.generate_full_report(manifest, renderer)
        renderer.close()

        with console.status("Submitting report"):
            await client.submit_report(report)
        console.print("[green]✔[/green] Submitted report")

        console.print("\n Test Completed! \n")
        if verbose:
            console.print_json(json.dumps(report.to_dict()))
        return 0
    except Exception as err:  # noqa: BLE001
        renderer.close()
        logger.debug("Test run failed", exc_info=True)
        console.print(f"\n Test Failed: {err}\n")
        return 1
    finally:
        await doctor.destroy()
        await client.close()


async def run_serve(config: DoctorConfig, seed_hex: str, console: Console) -> int:
    doctor = Doctor(make_transport(config), connection_timeout=config.connection_timeout)
    server, key_pair = await doctor.listen(KeyPair.from_hex_seed(seed_hex))
    console.print(
        "Doctor server listening on:", key_pair.public_key_hex, "with seed", seed_hex
    )
    url = getattr(server, "url", None)
    if url:
        console.print("Reachable at:", url)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
    finally:
        console.print("Exiting...")
        await server.close()
        await doctor.destroy()
    return 0


# ── Entry point ───────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="peer-doctor",
        description="Diagnose reachability and data integrity of overlay peers",
    )
    parser.add_argument("--config", "-c", default=None, help="Path to config.json")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command")

    test = sub.add_parser("test", help="Run the test battery and submit a report (default)")
    test.add_argument("--url", default=None, help="Coordination service URL (overrides config)")
    test.add_argument("--yes", "-y", action="store_true", help="Skip the consent prompt")
    test.add_argument("--verbose", "-v", action="store_true", help="Print the full report")

    serve = sub.add_parser("serve", help="Run an echo server")
    serve.add_argument("seed", nargs="?", default=None, help=f"{SEED_SIZE * 2} hex character seed")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    config = DoctorConfig.load(args.config)
    console = Console()

    if args.command == "serve":
        seed = args.seed
        if seed is not None:
            try:
                KeyPair.from_hex_seed(seed)
            except ValueError:
                print(f"Seed must be {SEED_SIZE * 2} hex characters", file=sys.stderr)
                return 1
        else:
            seed = KeyPair.generate().seed.hex()
        return asyncio.run(run_serve(config, seed, console))

    if getattr(args, "url", None):
        config.manifest_url = args.url

    if not getattr(args, "yes", False):
        consented = ask_consent()
        console.print()
        if not consented:
            console.print("Exiting...")
            return 0

    return asyncio.run(run_test(config, console, verbose=getattr(args, "verbose", False)))


if __name__ == "__main__":
    sys.exit(main())
