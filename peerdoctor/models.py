"""Report data model.

Every entity is built bottom-up by the orchestrator that owns it and is
never mutated after being attached to its parent.  ``to_dict()`` produces
the JSON wire shape submitted to the coordination service (camelCase keys,
bytes rendered as hex).
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from typing import Any, Mapping

from peerdoctor.errors import MalformedManifestError
from peerdoctor.keys import as_public_key


@dataclass
class ExchangeResult:
    """Everything sent and received during one echo exchange."""

    requests: list[bytes] = field(default_factory=list)
    responses: list[bytes] = field(default_factory=list)
    hashes: list[bytes] = field(default_factory=list)

    def summarize(self) -> ExchangeSummary:
        """Drop the requests and hex-encode hashes and responses."""
        return ExchangeSummary(
            hashes=[h.hex() for h in self.hashes],
            responses=[r.hex() for r in self.responses],
        )


@dataclass(frozen=True)
class ExchangeSummary:
    hashes: list[str]
    responses: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {"hashes": list(self.hashes), "responses": list(self.responses)}


@dataclass(frozen=True)
class ErrorInfo:
    message: str
    stack: str
    kind: str

    @classmethod
    def from_exception(cls, exc: BaseException) -> ErrorInfo:
        return cls(
            message=str(exc),
            stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            kind=type(exc).__name__,
        )

    def to_dict(self) -> dict[str, str]:
        return {"message": self.message, "stack": self.stack, "kind": self.kind}


@dataclass
class TimedOutcome:
    """Result of one timed test.  ``duration`` (ms) is set even on failure."""

    duration: float
    result: Any = None
    err: ErrorInfo | None = None
    info: ExchangeResult | ExchangeSummary | None = None

    @property
    def ok(self) -> bool:
        return self.err is None

    def to_dict(self) -> dict[str, Any]:
        info: dict[str, Any] | None = None
        if isinstance(self.info, ExchangeSummary):
            info = self.info.to_dict()
        elif isinstance(self.info, ExchangeResult):
            info = self.info.summarize().to_dict()
        return {
            "duration": self.duration,
            "err": self.err.to_dict() if self.err else None,
            "info": info,
        }


@dataclass
class ServerReport:
    """Diagnostic result for a single target.

    When ``first_ping`` failed the remaining tests never ran:
    ``ping_with_data`` stays ``None`` and ``many_pings`` stays empty.
    """

    first_ping: TimedOutcome
    ping_with_data: TimedOutcome | None = None
    many_pings: list[TimedOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return (
            self.first_ping.ok
            and self.ping_with_data is not None
            and self.ping_with_data.ok
            and all(p.ok for p in self.many_pings)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "firstPing": self.first_ping.to_dict(),
            "pingWithData": self.ping_with_data.to_dict() if self.ping_with_data else None,
            "manyPings": [p.to_dict() for p in self.many_pings],
        }


@dataclass(frozen=True)
class RemoteAddress:
    host: str | None
    port: int | None
    type: str

    def to_dict(self) -> dict[str, Any]:
        return {"host": self.host, "port": self.port, "type": self.type}


@dataclass(frozen=True)
class ManifestEntry:
    public_key: bytes
    type: str | None = None
    url: str | None = None

    @property
    def key_hex(self) -> str:
        return self.public_key.hex()


@dataclass(frozen=True)
class Manifest:
    """Validated, ordered list of targets plus the raw input it came from."""

    servers: tuple[ManifestEntry, ...]
    raw: Mapping[str, Any]

    @classmethod
    def parse(cls, raw: Any) -> Manifest:
        if not isinstance(raw, Mapping):
            raise MalformedManifestError("Malformed manifest")
        servers = raw.get("servers")
        if servers is None or not isinstance(servers, (list, tuple)):
            raise MalformedManifestError("Malformed manifest")

        entries: list[ManifestEntry] = []
        for i, item in enumerate(servers):
            if not isinstance(item, Mapping) or "publicKey" not in item:
                raise MalformedManifestError(f"Malformed manifest entry at index {i}")
            try:
                key = as_public_key(item["publicKey"])
            except ValueError as exc:
                raise MalformedManifestError(
                    f"Malformed manifest entry at index {i}: {exc}"
                ) from exc
            entries.append(ManifestEntry(public_key=key, type=item.get("type"), url=item.get("url")))
        return cls(servers=tuple(entries), raw=raw)

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(self.raw)


@dataclass
class FullReport:
    remote_address: RemoteAddress
    manifest: Manifest
    result: dict[str, ServerReport] = field(default_factory=dict)
    duration: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "remoteAddress": self.remote_address.to_dict(),
            "manifest": self.manifest.to_dict(),
            "result": {k: v.to_dict() for k, v in self.result.items()},
            "duration": self.duration,
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    if isinstance(value, Mapping):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
