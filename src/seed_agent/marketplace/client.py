"""Async HTTP client for the job marketplace API."""

from __future__ import annotations

import base64
import logging
import mimetypes
from pathlib import Path
from typing import Any

import httpx

from seed_agent.dispatcher.models import (
    AcceptJobResult,
    FileAttachment,
    Job,
    JobsPage,
    SubmissionReceipt,
)
from seed_agent.marketplace.base import MarketplaceError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://www.seedstr.io/api/v1"
DEFAULT_API_URL_V2 = "https://www.seedstr.io/api/v2"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_USER_AGENT = "seed-agent/0.1 (+https://www.seedstr.io)"


class MarketplaceClient:
    """Thin wrapper over the v1/v2 REST endpoints used by the worker."""

    def __init__(
        self,
        *,
        api_key: str,
        api_url: str = DEFAULT_API_URL,
        api_url_v2: str = DEFAULT_API_URL_V2,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.api_url_v2 = api_url_v2.rstrip("/")
        headers = {"User-Agent": DEFAULT_USER_AGENT, "Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=headers,
            transport=transport,
            follow_redirects=True,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_jobs(self, limit: int = 20, offset: int = 0) -> JobsPage:
        data = await self._request(
            "GET",
            "/jobs",
            params={"limit": limit, "offset": offset},
            v2=True,
        )
        pagination = data.get("pagination") or {}
        return JobsPage(
            jobs=[Job.from_payload(item) for item in data.get("jobs") or ()],
            limit=int(pagination.get("limit", limit)),
            offset=int(pagination.get("offset", offset)),
            has_more=bool(pagination.get("hasMore", False)),
        )

    async def get_job(self, job_id: str) -> Job:
        data = await self._request("GET", f"/jobs/{job_id}", v2=True)
        return Job.from_payload(data.get("job", data))

    async def accept_job(self, job_id: str) -> AcceptJobResult:
        data = await self._request("POST", f"/jobs/{job_id}/accept", v2=True)
        return AcceptJobResult.from_payload(data)

    async def decline_job(self, job_id: str, reason: str | None = None) -> None:
        await self._request("POST", f"/jobs/{job_id}/decline", json={"reason": reason}, v2=True)

    async def upload_files(self, paths: list[Path]) -> list[FileAttachment]:
        return [await self.upload_file(path) for path in paths]

    async def upload_file(self, path: Path) -> FileAttachment:
        """Upload one file as base64 JSON and return its attachment reference."""

        content = path.read_bytes()
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        logger.debug("Uploading file %s (%d bytes, %s)", path.name, len(content), mime_type)
        data = await self._request(
            "POST",
            "/upload",
            json={
                "files": [
                    {
                        "name": path.name,
                        "content": base64.b64encode(content).decode("ascii"),
                        "type": mime_type,
                    },
                ],
            },
        )
        files = data.get("files") or []
        if not data.get("success") or not files:
            raise MarketplaceError(f"Upload failed: no files returned for {path.name}")
        uploaded = files[0]
        return FileAttachment(
            url=str(uploaded["url"]),
            name=str(uploaded.get("name", path.name)),
            size=int(uploaded.get("size", len(content))),
            type=str(uploaded.get("type", mime_type)),
        )

    async def submit_response(self, job_id: str, text: str) -> SubmissionReceipt:
        data = await self._request(
            "POST",
            f"/jobs/{job_id}/respond",
            json={"content": text, "responseType": "TEXT"},
        )
        return _receipt(job_id, data, with_artifacts=False, alternate_endpoint=False)

    async def submit_response_with_artifacts(
        self,
        job_id: str,
        text: str,
        artifacts: list[FileAttachment],
    ) -> SubmissionReceipt:
        data = await self._request(
            "POST",
            f"/jobs/{job_id}/respond",
            json=_response_body(text, artifacts),
        )
        return _receipt(job_id, data, with_artifacts=bool(artifacts), alternate_endpoint=False)

    async def submit_response_v2(
        self,
        job_id: str,
        text: str,
        artifacts: list[FileAttachment] | None = None,
    ) -> SubmissionReceipt:
        data = await self._request(
            "POST",
            f"/jobs/{job_id}/respond",
            json=_response_body(text, artifacts or []),
            v2=True,
        )
        return _receipt(job_id, data, with_artifacts=bool(artifacts), alternate_endpoint=True)

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        v2: bool = False,
    ) -> dict[str, Any]:
        base = self.api_url_v2 if v2 else self.api_url
        logger.debug("API request: %s %s", method, endpoint)
        try:
            response = await self._client.request(
                method,
                f"{base}{endpoint}",
                params=params,
                json=json,
            )
        except httpx.HTTPError as exc:
            raise MarketplaceError(f"{method} {endpoint} failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {"data": data}

        if not response.is_success:
            message = str(data.get("message") or data.get("error") or "").strip()
            raise MarketplaceError(
                message or f"API request failed: {response.status_code}",
                status_code=response.status_code,
            )
        return data


def _response_body(text: str, artifacts: list[FileAttachment]) -> dict[str, Any]:
    body: dict[str, Any] = {"content": text, "responseType": "FILE" if artifacts else "TEXT"}
    if artifacts:
        body["files"] = [artifact.to_payload() for artifact in artifacts]
    return body


def _receipt(
    job_id: str,
    data: dict[str, Any],
    *,
    with_artifacts: bool,
    alternate_endpoint: bool,
) -> SubmissionReceipt:
    response = data.get("response") or {}
    response_id = response.get("id") if isinstance(response, dict) else None
    return SubmissionReceipt(
        job_id=job_id,
        response_id=str(response_id) if response_id is not None else None,
        with_artifacts=with_artifacts,
        alternate_endpoint=alternate_endpoint,
    )
