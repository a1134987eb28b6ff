"""Tests for the peer-doctor command line."""

from __future__ import annotations

import io
import json
from unittest.mock import patch

import httpx
import pytest
from rich.console import Console

from peerdoctor.cli import ProgressRenderer, ask_consent, build_parser, main, run_test
from peerdoctor.client import CoordinationClient
from peerdoctor.config import DoctorConfig
from peerdoctor.doctor import Doctor
from peerdoctor.events import ProbeEnded, ProbeName, ProbeStarted, ProbesTerminated
from peerdoctor.models import ErrorInfo, TimedOutcome


def _console() -> tuple[Console, io.StringIO]:
    buf = io.StringIO()
    return Console(file=buf, force_terminal=False, width=200), buf


def _coordination(manifest, posted):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json=manifest)
        posted.append(json.loads(request.content))
        return httpx.Response(200, json={"key": "v1!1"})

    return CoordinationClient("http://coord", transport=httpx.MockTransport(handler))


class TestArguments:
    def test_default_command(self):
        args = build_parser().parse_args([])
        assert args.command is None

    def test_test_flags(self):
        args = build_parser().parse_args(["--debug", "test", "--url", "http://x", "--yes", "-v"])
        assert args.debug
        assert args.url == "http://x"
        assert args.yes and args.verbose

    def test_serve_seed_optional(self):
        assert build_parser().parse_args(["serve"]).seed is None
        assert build_parser().parse_args(["serve", "ab" * 32]).seed == "ab" * 32


class TestConsent:
    @pytest.mark.parametrize("answer", ["y", "Y", "yes", "YES", " yes\n"])
    def test_accepted(self, answer):
        assert ask_consent(lambda _: answer)

    @pytest.mark.parametrize("answer", ["", "n", "no", "Yes", "sure"])
    def test_declined(self, answer):
        assert not ask_consent(lambda _: answer)

    def test_default_reads_input(self):
        with patch("builtins.input", return_value="YES"):
            assert ask_consent()

    def test_eof_declines(self):
        def raise_eof(_):
            raise EOFError

        assert not ask_consent(raise_eof)

    def test_declined_exits_without_testing(self, monkeypatch):
        monkeypatch.delenv("PEER_DOCTOR_URL", raising=False)
        with patch("builtins.input", return_value="n"), \
             patch("peerdoctor.cli.run_test") as run:
            assert main(["test"]) == 0
        run.assert_not_called()


class TestServeSeed:
    @pytest.mark.parametrize("seed", ["abc", "zz" * 32, "00" * 33])
    def test_invalid_seed_exits_1(self, seed, capsys):
        assert main(["serve", seed]) == 1
        assert "64 hex characters" in capsys.readouterr().err


class TestProgressRenderer:
    def test_renders_outcomes(self):
        console, buf = _console()
        renderer = ProgressRenderer(console)
        key = b"\xab" * 32
        err = ErrorInfo(message="Server responded with invalid data", stack="", kind="IntegrityError")

        renderer(ProbeStarted(ProbeName.FIRST_PING, key))
        renderer(ProbeEnded(ProbeName.FIRST_PING, key, TimedOutcome(duration=1.0)))
        renderer(ProbeStarted(ProbeName.PING_WITH_DATA, key))
        renderer(ProbeEnded(ProbeName.PING_WITH_DATA, key, TimedOutcome(duration=1.0, err=err)))
        renderer(ProbeStarted(ProbeName.MANY_PINGS, key))
        renderer(ProbeStarted(ProbeName.MANY_PINGS_1, key))
        renderer(ProbeEnded(ProbeName.MANY_PINGS_1, key, TimedOutcome(duration=1.0, err=err)))
        renderer(ProbeEnded(ProbeName.MANY_PINGS, key))
        renderer.close()

        out = buf.getvalue()
        assert f"✔ Attempting first connection to: {key.hex()}" in out
        assert f"✖ Sending data to {key.hex()}" in out
        assert "Server responded with invalid data" in out
        assert f"✖ Pinging {key.hex()} several times in quick succession" in out

    def test_renders_termination(self):
        console, buf = _console()
        ProgressRenderer(console)(ProbesTerminated(b"\x01" * 32))
        assert "Skipping remaining tests" in buf.getvalue()


class TestRunTest:
    @pytest.mark.asyncio
    async def test_completed(self, network):
        echo = Doctor(network.transport())
        _, key_pair = await echo.listen()
        posted = []
        client = _coordination({"servers": [{"publicKey": key_pair.public_key_hex}]}, posted)
        console, buf = _console()

        code = await run_test(
            DoctorConfig(chunk_sizes=[64, 128]),
            console,
            verbose=True,
            transport=network.transport(),
            client=client,
        )

        assert code == 0
        assert "Test Completed!" in buf.getvalue()
        assert posted[0]["result"][key_pair.public_key_hex]["firstPing"]["err"] is None
        await echo.destroy()

    @pytest.mark.asyncio
    async def test_malformed_manifest_fails(self, network):
        posted = []
        client = _coordination({"nope": []}, posted)
        console, buf = _console()

        code = await run_test(DoctorConfig(), console, transport=network.transport(), client=client)

        assert code == 1
        assert "Test Failed: Malformed manifest" in buf.getvalue()
        assert posted == []
