"""Job source interface consumed by the dispatcher."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from seed_agent.dispatcher.models import (
    AcceptJobResult,
    FileAttachment,
    Job,
    JobsPage,
    SubmissionReceipt,
)


class MarketplaceError(RuntimeError):
    """Marketplace API error with HTTP status when one was received."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class JobSource(Protocol):
    """Pull discovery, shared-job acceptance and response submission."""

    async def list_jobs(self, limit: int = 20, offset: int = 0) -> JobsPage:
        """List open jobs visible to this agent."""

    async def get_job(self, job_id: str) -> Job:
        """Fetch one job."""

    async def accept_job(self, job_id: str) -> AcceptJobResult:
        """Claim one slot of a shared job, first come first served."""

    async def decline_job(self, job_id: str, reason: str | None = None) -> None:
        """Tell the marketplace this agent passes on a job."""

    async def upload_files(self, paths: list[Path]) -> list[FileAttachment]:
        """Upload local files and return attachment references."""

    async def submit_response(self, job_id: str, text: str) -> SubmissionReceipt:
        """Submit a text-only response."""

    async def submit_response_with_artifacts(
        self,
        job_id: str,
        text: str,
        artifacts: list[FileAttachment],
    ) -> SubmissionReceipt:
        """Submit a response with uploaded file attachments."""

    async def submit_response_v2(
        self,
        job_id: str,
        text: str,
        artifacts: list[FileAttachment] | None = None,
    ) -> SubmissionReceipt:
        """Submit through the endpoint used for jobs accepted via the swarm path."""
