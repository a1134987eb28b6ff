"""Exception hierarchy for peer-doctor.

Probe failures are caught and recorded by the report orchestrators; only
manifest validation errors, a destroyed doctor and cancellation escape a
report run.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from peerdoctor.models import ExchangeResult


class DoctorError(Exception):
    """Base class for all peer-doctor errors."""


class PeerConnectionError(DoctorError, ConnectionError):
    """The transport could not establish, or lost, a connection to a peer."""


class ProbeTimeoutError(DoctorError, TimeoutError):
    """A probe or echo connection ran past its deadline."""


class MalformedManifestError(DoctorError, ValueError):
    """The manifest handed to the fleet orchestrator is not usable."""


class ExchangeError(DoctorError):
    """A peer completed the echo exchange but answered incorrectly.

    ``exchange`` always holds every request, response and digest produced
    so the caller can inspect partial data.
    """

    def __init__(self, message: str, exchange: ExchangeResult) -> None:
        super().__init__(message)
        self.exchange = exchange


class InsufficientDataError(ExchangeError):
    """Fewer responses than requests."""


class ExcessDataError(ExchangeError):
    """More responses than requests."""


class IntegrityError(ExchangeError):
    """A response did not match the digest of its request."""


class DoctorDestroyedError(DoctorError):
    """The Doctor was destroyed; the run is aborted rather than recorded."""
