"""HTTP client for the coordination service."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from peerdoctor.config import MANIFEST_URL, USER_AGENT
from peerdoctor.models import FullReport

logger = logging.getLogger(__name__)


class CoordinationClient:
    """Fetches manifests from, and submits reports to, the coordination service."""

    def __init__(
        self,
        base_url: str = MANIFEST_URL,
        user_agent: str = USER_AGENT,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"user-agent": user_agent},
            timeout=timeout,
            transport=transport,
        )

    async def load_manifest(self) -> dict[str, Any]:
        resp = await self._client.get("/")
        resp.raise_for_status()
        manifest = resp.json()
        logger.debug("Loaded manifest with %d server(s)", len(manifest.get("servers", [])))
        return manifest

    async def submit_report(self, report: FullReport | dict[str, Any]) -> dict[str, Any] | None:
        body = report.to_dict() if isinstance(report, FullReport) else report
        resp = await self._client.post("/", json=body)
        resp.raise_for_status()
        return resp.json() if resp.content else None

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> CoordinationClient:
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()
