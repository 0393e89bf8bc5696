"""Admission filtering for discovered jobs."""

from __future__ import annotations

from seed_agent.dispatcher.models import AdmissionDecision, Job, JobOutcome, SkipReason
from seed_agent.dispatcher.registry import ProcessingRegistry


class AdmissionController:
    """Applies dedup, capacity and budget checks, in that order."""

    def __init__(
        self,
        *,
        registry: ProcessingRegistry,
        min_budget: float,
        max_concurrent_jobs: int,
    ) -> None:
        self.registry = registry
        self.min_budget = min_budget
        self.max_concurrent_jobs = max_concurrent_jobs

    def evaluate(self, job: Job) -> AdmissionDecision:
        """Decide without touching the registry."""

        if self.registry.is_seen(job.job_id):
            return AdmissionDecision(admitted=False, reason=SkipReason.ALREADY_SEEN)

        if self.registry.in_flight_count >= self.max_concurrent_jobs:
            return AdmissionDecision(
                admitted=False,
                reason=SkipReason.AT_CAPACITY,
                detail=(
                    f"{self.registry.in_flight_count} of {self.max_concurrent_jobs} "
                    "job slots busy"
                ),
            )

        budget = job.effective_budget
        if budget < self.min_budget:
            return AdmissionDecision(
                admitted=False,
                reason=SkipReason.BUDGET_TOO_LOW,
                detail=f"Budget ${budget:.2f} below minimum ${self.min_budget:.2f}",
            )

        return AdmissionDecision(admitted=True)

    def admit(self, job: Job) -> AdmissionDecision:
        """Evaluate and apply registry side effects in one synchronous step."""

        decision = self.evaluate(job)
        if decision.admitted:
            self.registry.begin(job.job_id)
        elif decision.terminal:
            self.registry.mark_completed(job.job_id, JobOutcome.SKIPPED_BUDGET)
        return decision
