"""Configuration for the peer-doctor client, loaded from config.json."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path

from peerdoctor.protocol import CHUNK_SIZES, CONNECTION_TIMEOUT
from peerdoctor.transport.base import NAT_UNKNOWN

logger = logging.getLogger(__name__)

MANIFEST_URL = "https://doctor.peer-doctor.org"
USER_AGENT = "peer-doctor/cli"


@dataclass
class DoctorConfig:
    manifest_url: str = MANIFEST_URL
    user_agent: str = USER_AGENT

    # Probing
    chunk_sizes: list[int] = field(default_factory=lambda: list(CHUNK_SIZES))
    probe_timeout: float | None = 30.0
    connection_timeout: float = CONNECTION_TIMEOUT

    # Transport
    listen_host: str = "127.0.0.1"
    listen_port: int = 0
    public_host: str | None = None
    nat_type: int = NAT_UNKNOWN
    peers: dict[str, str] = field(default_factory=dict)  # hex public key -> ws URL

    @classmethod
    def load(cls, path: str | Path | None = None) -> DoctorConfig:
        """Load *path* (if given and present), then apply env overrides."""
        config = cls()
        if path is not None:
            path = Path(path)
            if path.exists():
                with open(path) as f:
                    data = json.load(f)
                known = {k for k in cls.__dataclass_fields__}
                filtered = {k: v for k, v in data.items() if k in known}
                config = cls(**filtered)
            else:
                logger.warning("Config not found at %s, using defaults", path)
        config.apply_env()
        return config

    def apply_env(self) -> None:
        url = os.environ.get("PEER_DOCTOR_URL")
        if url:
            self.manifest_url = url
        timeout = os.environ.get("PEER_DOCTOR_PROBE_TIMEOUT")
        if timeout:
            self.probe_timeout = float(timeout) if float(timeout) > 0 else None

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(asdict(self), f, indent=2)
