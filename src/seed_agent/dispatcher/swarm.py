"""First-come-first-served acceptance for shared (swarm) jobs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from seed_agent.dispatcher.models import Job
from seed_agent.marketplace.base import JobSource, MarketplaceError

logger = logging.getLogger(__name__)

HTTP_CONFLICT = 409

_FULL_PATTERNS: tuple[str, ...] = (
    "job is full",
    "is full",
    "no slots",
    "no remaining slots",
    "all slots",
    "slots taken",
    "max agents",
)
_ALREADY_ACCEPTED_PATTERNS: tuple[str, ...] = (
    "already accepted",
    "already joined",
    "already claimed",
)


class AcceptanceStatus(str, Enum):
    ACCEPTED = "accepted"
    ALREADY_ACCEPTED = "already_accepted"
    FULL = "full"


@dataclass(slots=True)
class AcceptanceOutcome:
    """What the resolver decided for one shared job."""

    status: AcceptanceStatus
    job: Job
    slots_remaining: int | None = None

    @property
    def proceed(self) -> bool:
        return self.status != AcceptanceStatus.FULL


class SwarmAcceptanceResolver:
    """Claims a slot before any generation cost is spent."""

    def __init__(self, source: JobSource) -> None:
        self.source = source

    async def resolve(self, job: Job) -> AcceptanceOutcome:
        """Accept `job`; other failures than full/duplicate propagate."""

        try:
            result = await self.source.accept_job(job.job_id)
        except MarketplaceError as error:
            status = _status_from_error(error)
            if status is None:
                raise
            logger.info("Accept for job %s resolved as %s: %s", job.job_id, status.value, error)
            return AcceptanceOutcome(status=status, job=job)

        if not result.accepted:
            if result.is_full:
                return AcceptanceOutcome(
                    status=AcceptanceStatus.FULL,
                    job=job,
                    slots_remaining=result.slots_remaining,
                )
            raise MarketplaceError(f"Job {job.job_id} was not accepted by the marketplace.")

        accepted_job = job.with_budget_per_agent(result.effective_budget)
        logger.debug(
            "Accepted job %s (slots remaining: %s, budget per agent: %s)",
            job.job_id,
            result.slots_remaining,
            accepted_job.budget_per_agent,
        )
        return AcceptanceOutcome(
            status=AcceptanceStatus.ACCEPTED,
            job=accepted_job,
            slots_remaining=result.slots_remaining,
        )


def _status_from_error(error: MarketplaceError) -> AcceptanceStatus | None:
    message = str(error).lower()
    if any(pattern in message for pattern in _ALREADY_ACCEPTED_PATTERNS):
        return AcceptanceStatus.ALREADY_ACCEPTED
    if any(pattern in message for pattern in _FULL_PATTERNS):
        return AcceptanceStatus.FULL
    if error.status_code == HTTP_CONFLICT:
        return AcceptanceStatus.FULL
    return None
