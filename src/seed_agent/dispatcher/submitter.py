"""Hands generated results back to the marketplace."""

from __future__ import annotations

import logging

from seed_agent.dispatcher.models import FileAttachment, GenerationResult, Job, SubmissionReceipt
from seed_agent.marketplace.base import JobSource, MarketplaceError

logger = logging.getLogger(__name__)

HTTP_CONFLICT = 409

_ALREADY_SUBMITTED_PATTERNS: tuple[str, ...] = (
    "already submitted",
    "already responded",
    "already has a response",
    "duplicate response",
)


class ResultSubmitter:
    """Uploads artifacts, then submits through the endpoint the job's path requires."""

    def __init__(self, source: JobSource) -> None:
        self.source = source

    async def submit(
        self,
        job: Job,
        result: GenerationResult,
        *,
        use_alternate_endpoint: bool,
    ) -> SubmissionReceipt:
        attachments = await self._upload_artifacts(job, result)
        try:
            if use_alternate_endpoint:
                return await self.source.submit_response_v2(
                    job.job_id,
                    result.text,
                    attachments or None,
                )
            if attachments:
                return await self.source.submit_response_with_artifacts(
                    job.job_id,
                    result.text,
                    attachments,
                )
            return await self.source.submit_response(job.job_id, result.text)
        except MarketplaceError as error:
            if not is_already_submitted(error):
                raise
            logger.info("Job %s already has our response; treating as submitted", job.job_id)
            return SubmissionReceipt(
                job_id=job.job_id,
                response_id=None,
                with_artifacts=bool(attachments),
                alternate_endpoint=use_alternate_endpoint,
                already_submitted=True,
            )

    async def _upload_artifacts(self, job: Job, result: GenerationResult) -> list[FileAttachment]:
        if not result.artifacts:
            return []
        try:
            return await self.source.upload_files([artifact.path for artifact in result.artifacts])
        except Exception as error:  # noqa: BLE001
            logger.warning(
                "Artifact upload for job %s failed, submitting text only: %s",
                job.job_id,
                error,
            )
            return []


def is_already_submitted(error: MarketplaceError) -> bool:
    message = str(error).lower()
    if any(pattern in message for pattern in _ALREADY_SUBMITTED_PATTERNS):
        return True
    return error.status_code == HTTP_CONFLICT
