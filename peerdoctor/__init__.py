"""peer-doctor: reachability and data-integrity diagnostics for overlay peers.

  - Doctor: single probes, per-target reports and fleet reports
  - Protocol: chunked echo exchange verified with SHA-256 digests
  - Transport: in-memory and WebSocket overlay bindings
  - Coordination: manifest distribution and report collection service
"""

from __future__ import annotations

from peerdoctor.doctor import Doctor
from peerdoctor.errors import (
    DoctorDestroyedError,
    DoctorError,
    ExcessDataError,
    ExchangeError,
    InsufficientDataError,
    IntegrityError,
    MalformedManifestError,
    PeerConnectionError,
    ProbeTimeoutError,
)
from peerdoctor.keys import KeyPair
from peerdoctor.models import ExchangeResult, FullReport, ServerReport, TimedOutcome

__version__ = "1.0.0"

__all__ = [
    "Doctor",
    "DoctorDestroyedError",
    "DoctorError",
    "ExcessDataError",
    "ExchangeError",
    "ExchangeResult",
    "FullReport",
    "InsufficientDataError",
    "IntegrityError",
    "KeyPair",
    "MalformedManifestError",
    "PeerConnectionError",
    "ProbeTimeoutError",
    "ServerReport",
    "TimedOutcome",
]
