"""Progress events emitted while reports are generated.

Callers (the CLI, a UI) receive every event through one ``on_progress``
callback and dispatch on the event type.  The orchestrators never render
anything themselves.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Union

if TYPE_CHECKING:
    from peerdoctor.models import FullReport, ServerReport, TimedOutcome


class ProbeName(str, Enum):
    FIRST_PING = "first-ping"
    PING_WITH_DATA = "ping-with-data"
    MANY_PINGS = "many-pings"
    MANY_PINGS_1 = "many-pings-1"
    MANY_PINGS_2 = "many-pings-2"
    MANY_PINGS_3 = "many-pings-3"

    @classmethod
    def many_pings(cls, n: int) -> ProbeName:
        return cls(f"many-pings-{n}")


@dataclass(frozen=True)
class RunStarted:
    pass


@dataclass(frozen=True)
class RunEnded:
    report: FullReport


@dataclass(frozen=True)
class TargetStarted:
    public_key: bytes


@dataclass(frozen=True)
class TargetEnded:
    public_key: bytes
    report: ServerReport


@dataclass(frozen=True)
class ProbeStarted:
    name: ProbeName
    public_key: bytes


@dataclass(frozen=True)
class ProbeEnded:
    name: ProbeName
    public_key: bytes
    outcome: TimedOutcome | None = None


@dataclass(frozen=True)
class ProbesTerminated:
    """The first ping failed; no further tests run against this target."""

    public_key: bytes


ProgressEvent = Union[
    RunStarted,
    RunEnded,
    TargetStarted,
    TargetEnded,
    ProbeStarted,
    ProbeEnded,
    ProbesTerminated,
]

ProgressCallback = Callable[[ProgressEvent], None]
