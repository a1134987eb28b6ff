"""Coordination service: hands out manifests and collects reports.

Exposes:
  GET  /   manifest of the configured servers that answered the last ping
  POST /   store a submitted FullReport

Both endpoints require a ``User-Agent`` containing ``peer-doctor/cli``.

Start with::

    python -m peerdoctor.coordination
    # or, with CONFIG/STORAGE/PORT in the environment
    peer-doctor-coordination
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator

from fastapi import Depends, FastAPI, Header, HTTPException, status
from pydantic import BaseModel, ConfigDict

from peerdoctor.config import USER_AGENT
from peerdoctor.coordination.storage import ReportStore
from peerdoctor.doctor import Doctor
from peerdoctor.errors import DoctorError
from peerdoctor.keys import as_public_key
from peerdoctor.transport.ws import WebSocketTransport

logger = logging.getLogger(__name__)

PORT = 8080
REFRESH_INTERVAL = 60 * 5


# ──────────────────────────────────────────────────────────────────
# Configuration
# ──────────────────────────────────────────────────────────────────

@dataclass
class CoordinationConfig:
    servers: list[dict[str, Any]] = field(default_factory=list)
    storage: str = "./storage/reports.db"
    host: str = "0.0.0.0"
    port: int = PORT
    refresh_interval: float = REFRESH_INTERVAL
    probe_timeout: float | None = 10.0

    @classmethod
    def load(cls, path: str | Path | None = None) -> CoordinationConfig:
        """Read the JSON config at *path* (or ``$CONFIG``) plus env overrides."""
        path = Path(path or os.environ.get("CONFIG", "config.json"))
        with open(path) as f:
            data = json.load(f)
        if not isinstance(data, dict) or not isinstance(data.get("servers"), list):
            raise ValueError("Malformed configuration")
        known = {k for k in cls.__dataclass_fields__}
        config = cls(**{k: v for k, v in data.items() if k in known})

        if os.environ.get("STORAGE"):
            config.storage = os.environ["STORAGE"]
        if os.environ.get("PORT"):
            config.port = int(os.environ["PORT"])
        if os.environ.get("HOST"):
            config.host = os.environ["HOST"]
        if os.environ.get("REFRESH_INTERVAL"):
            config.refresh_interval = float(os.environ["REFRESH_INTERVAL"])
        return config


# ──────────────────────────────────────────────────────────────────
# Service
# ──────────────────────────────────────────────────────────────────

class CoordinationServer:
    """Keeps the reachable-server manifest fresh and persists reports."""

    def __init__(
        self,
        config: CoordinationConfig,
        doctor: Doctor | None = None,
        store: ReportStore | None = None,
    ) -> None:
        if not isinstance(config.servers, list):
            raise ValueError("Malformed configuration")
        self.config = config
        self.doctor = doctor or Doctor(
            WebSocketTransport(
                directory={str(s["publicKey"]).lower(): s["url"] for s in config.servers if s.get("url")}
            ),
            probe_timeout=config.probe_timeout,
        )
        self.store = store or ReportStore(config.storage)
        self.destroyed = False
        self._manifest: dict[str, Any] = {"servers": []}
        self._task: asyncio.Task | None = None
        self._refreshing: asyncio.Task | None = None

    @property
    def manifest(self) -> dict[str, Any]:
        return self._manifest

    async def start(self) -> None:
        self.store.open()
        await self.refresh()
        self._task = asyncio.get_event_loop().create_task(self._refresh_loop())
        logger.info("Coordination server started with %d configured server(s)", len(self.config.servers))

    async def stop(self) -> None:
        if self.destroyed:
            return
        self.destroyed = True
        for task in (self._task, self._refreshing):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self.store.close()
        await self.doctor.destroy()

    async def refresh(self) -> None:
        """Re-ping every configured server; concurrent callers share one run."""
        if self._refreshing is None or self._refreshing.done():
            self._refreshing = asyncio.get_event_loop().create_task(self._refresh_manifest())
        await asyncio.shield(self._refreshing)

    async def _refresh_manifest(self) -> None:
        servers = []
        for server in self.config.servers:
            key = server.get("publicKey")
            try:
                logger.info("pinging %s", key)
                await self.doctor.ping(as_public_key(key))
                logger.info("ping success %s", key)
                servers.append(server)
            except (DoctorError, ValueError) as exc:
                # Unreachable servers are not distributed to users.
                logger.error("ping errored %s: %s", key, exc)
        self._manifest = {"servers": servers}

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.refresh_interval)
            try:
                await self.refresh()
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                logger.exception("Manifest refresh failed")

    def save_report(self, report: dict[str, Any]) -> str:
        key = self.store.put_report(report)
        logger.info("saved report %s (%d server(s))", key, len(report.get("result") or {}))
        return key


# ──────────────────────────────────────────────────────────────────
# Request / Response models
# ──────────────────────────────────────────────────────────────────

class ServerEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    publicKey: str
    type: str | None = None


class ManifestResponse(BaseModel):
    servers: list[ServerEntry]


class ReportPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    remoteAddress: dict[str, Any]
    manifest: dict[str, Any]
    result: dict[str, Any]
    duration: float | None = None


class SaveResponse(BaseModel):
    key: str


async def require_client(user_agent: str | None = Header(default=None)) -> str:
    if not user_agent or USER_AGENT not in user_agent:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"User-Agent must contain {USER_AGENT}",
        )
    return user_agent


# ──────────────────────────────────────────────────────────────────
# FastAPI app
# ──────────────────────────────────────────────────────────────────

def create_app(server: CoordinationServer) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await server.start()
        try:
            yield
        finally:
            await server.stop()

    app = FastAPI(title="peer-doctor coordination", version="1.0.0", lifespan=lifespan)
    app.state.coordination = server

    @app.get("/", response_model=ManifestResponse, dependencies=[Depends(require_client)])
    async def send_manifest() -> dict[str, Any]:
        return server.manifest

    @app.post("/", response_model=SaveResponse, dependencies=[Depends(require_client)])
    async def save_report(report: ReportPayload) -> dict[str, str]:
        key = server.save_report(report.model_dump())
        return {"key": key}

    return app


# ──────────────────────────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────────────────────────

def main() -> None:
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    config = CoordinationConfig.load()
    app = create_app(CoordinationServer(config))
    logger.info("Starting coordination server on %s:%d", config.host, config.port)
    uvicorn.run(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
