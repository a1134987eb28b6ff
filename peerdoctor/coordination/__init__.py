"""peerdoctor.coordination: manifest distribution and report collection.

Exports:
    CoordinationConfig: JSON/env configuration
    CoordinationServer: manifest refresher + report persistence
    ReportStore: SQLite report storage
    create_app: FastAPI app bound to a CoordinationServer
"""

from __future__ import annotations

from peerdoctor.coordination.server import (
    CoordinationConfig,
    CoordinationServer,
    create_app,
    main,
)
from peerdoctor.coordination.storage import ReportStore

__all__ = [
    "CoordinationConfig",
    "CoordinationServer",
    "ReportStore",
    "create_app",
    "main",
]
