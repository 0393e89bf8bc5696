"""In-flight and completed job bookkeeping owned by the dispatcher."""

from __future__ import annotations

import logging
from collections import OrderedDict

from seed_agent.dispatcher.models import JobOutcome
from seed_agent.dispatcher.repository import DEFAULT_DEDUP_CAPACITY, ProcessedJobRepository

logger = logging.getLogger(__name__)


class ProcessingRegistry:
    """Two disjoint id sets: jobs in flight and jobs with a terminal outcome.

    Every method is synchronous so a check followed by a mutation can never be
    interleaved with another job's coroutine. The completed set mirrors the
    durable repository and is warm-started from it, which is what keeps a
    restarted worker from answering the same job twice.
    """

    def __init__(
        self,
        repository: ProcessedJobRepository | None = None,
        *,
        capacity: int = DEFAULT_DEDUP_CAPACITY,
    ) -> None:
        self.repository = repository
        self.capacity = capacity
        self._in_flight: set[str] = set()
        self._completed: OrderedDict[str, JobOutcome | None] = OrderedDict()
        if repository is not None:
            for job_id in repository.load_completed_ids():
                self._remember(job_id, None)

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    @property
    def completed_count(self) -> int:
        return len(self._completed)

    def in_flight_ids(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    def completed_ids(self) -> list[str]:
        """Completed ids, oldest first."""

        return list(self._completed)

    def is_in_flight(self, job_id: str) -> bool:
        return job_id in self._in_flight

    def is_completed(self, job_id: str) -> bool:
        return job_id in self._completed

    def is_seen(self, job_id: str) -> bool:
        return job_id in self._in_flight or job_id in self._completed

    def begin(self, job_id: str) -> None:
        """Move a job into the in-flight set."""

        if self.is_seen(job_id):
            raise ValueError(f"Job {job_id} is already tracked.")
        self._in_flight.add(job_id)

    def mark_completed(self, job_id: str, outcome: JobOutcome) -> None:
        """Record a terminal outcome and drop the job from the in-flight set."""

        self._in_flight.discard(job_id)
        if job_id in self._completed:
            return
        self._remember(job_id, outcome)
        if self.repository is not None:
            self.repository.mark_completed(job_id, outcome)
        logger.debug("Job %s completed with outcome %s", job_id, outcome.value)

    def _remember(self, job_id: str, outcome: JobOutcome | None) -> None:
        self._completed[job_id] = outcome
        while len(self._completed) > self.capacity:
            evicted, _ = self._completed.popitem(last=False)
            logger.debug("Evicted job %s from completed set", evicted)
