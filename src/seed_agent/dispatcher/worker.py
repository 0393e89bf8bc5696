"""Event-driven dispatcher: discovers jobs and runs each one to a terminal outcome."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from seed_agent.dispatcher.admission import AdmissionController
from seed_agent.dispatcher.events import EventBus, EventKind
from seed_agent.dispatcher.generation import GenerationOrchestrator
from seed_agent.dispatcher.models import Job, JobOutcome, SkipReason
from seed_agent.dispatcher.registry import ProcessingRegistry
from seed_agent.dispatcher.submitter import ResultSubmitter
from seed_agent.dispatcher.swarm import AcceptanceStatus, SwarmAcceptanceResolver
from seed_agent.dispatcher.usage import UsageSnapshot
from seed_agent.dispatcher.workdir import JobWorkdir, JobWorkdirManager
from seed_agent.marketplace.base import JobSource
from seed_agent.marketplace.push import PushChannel

logger = logging.getLogger(__name__)

PUSH_POLL_SLOWDOWN = 3

Sleep = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class DispatcherStats:
    """Counters reported by `JobDispatcher.stats()`."""

    processed: int
    skipped: int
    errors: int
    uptime_seconds: float
    active_jobs: int
    usage: UsageSnapshot


class JobDispatcher:
    """Owns discovery, admission and the per-job lifecycle.

    Jobs arrive from a periodic poll of the marketplace and, optionally, from a
    push channel. Both paths call `dispatch()`, which admits synchronously, so
    a job announced by both paths at the same time still runs once. Each
    admitted job gets its own task, workdir and generation call; a failing job
    is recorded as failed and never takes the dispatcher down with it.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        source: JobSource,
        orchestrator: GenerationOrchestrator,
        registry: ProcessingRegistry,
        workdir_manager: JobWorkdirManager,
        events: EventBus | None = None,
        push_channel: PushChannel | None = None,
        poll_interval_seconds: float = 30.0,
        page_size: int = 20,
        min_budget: float = 0.50,
        max_concurrent_jobs: int = 3,
        keep_workdirs: bool = False,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.source = source
        self.orchestrator = orchestrator
        self.registry = registry
        self.workdir_manager = workdir_manager
        self.events = events or EventBus()
        self.push_channel = push_channel
        self.poll_interval_seconds = poll_interval_seconds
        self.page_size = page_size
        self.keep_workdirs = keep_workdirs
        self.admission = AdmissionController(
            registry=registry,
            min_budget=min_budget,
            max_concurrent_jobs=max_concurrent_jobs,
        )
        self.swarm = SwarmAcceptanceResolver(source)
        self.submitter = ResultSubmitter(source)
        self._sleep = sleep
        self._running = False
        self._push_healthy = False
        self._started_monotonic: float | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._push_task: asyncio.Task[None] | None = None
        self._job_tasks: dict[str, asyncio.Task[None]] = {}
        self._background: set[asyncio.Task[None]] = set()
        self._processed = 0
        self._skipped = 0
        self._errors = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def push_healthy(self) -> bool:
        return self._push_healthy

    async def start(self) -> None:
        """Emit startup and launch the discovery loops."""

        if self._running:
            return
        self._running = True
        self._started_monotonic = time.monotonic()
        self.events.emit(
            EventKind.STARTUP,
            message="Dispatcher started",
            details={
                "poll_interval_seconds": self.poll_interval_seconds,
                "min_budget": self.admission.min_budget,
                "max_concurrent_jobs": self.admission.max_concurrent_jobs,
                "push": self.push_channel is not None,
            },
        )
        self._poll_task = asyncio.create_task(self._poll_loop(), name="seed-agent-poll")
        if self.push_channel is not None:
            self._push_task = asyncio.create_task(self._push_loop(), name="seed-agent-push")

    async def stop(self) -> None:
        """Stop discovery; jobs already in flight keep running."""

        if not self._running:
            return
        self._running = False
        self._push_healthy = False
        for task in (self._poll_task, self._push_task):
            if task is not None:
                task.cancel()
        for task in (self._poll_task, self._push_task):
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._poll_task = None
        self._push_task = None
        if self.push_channel is not None:
            try:
                await self.push_channel.close()
            except Exception as error:  # noqa: BLE001
                logger.warning("Closing push channel failed: %s", error)
        self.events.emit(
            EventKind.SHUTDOWN,
            message="Dispatcher stopped",
            details={"active_jobs": self.registry.in_flight_count},
        )

    async def wait_idle(self) -> None:
        """Wait until no job task is in flight."""

        while self._job_tasks or self._background:
            pending = list(self._job_tasks.values()) + list(self._background)
            await asyncio.gather(*pending, return_exceptions=True)

    def stats(self) -> DispatcherStats:
        uptime = 0.0
        if self._started_monotonic is not None:
            uptime = time.monotonic() - self._started_monotonic
        return DispatcherStats(
            processed=self._processed,
            skipped=self._skipped,
            errors=self._errors,
            uptime_seconds=uptime,
            active_jobs=self.registry.in_flight_count,
            usage=self.orchestrator.usage.snapshot(),
        )

    async def poll_once(self) -> int:
        """Run one poll pass; returns how many jobs were admitted."""

        self.events.emit(EventKind.POLLING, message="Checking for new jobs")
        try:
            page = await self.source.list_jobs(limit=self.page_size, offset=0)
        except Exception as error:  # noqa: BLE001
            self._errors += 1
            logger.warning("Polling the marketplace failed: %s", error)
            self.events.emit(
                EventKind.ERROR,
                message=f"Failed to poll jobs: {error}",
                error=error,
            )
            return 0

        admitted = 0
        for job in page.jobs:
            try:
                decision_reason = self.dispatch(job)
            except Exception as error:  # noqa: BLE001
                self._report_job_error(job, f"Failed to dispatch job {job.job_id}", error)
                continue
            if decision_reason is None:
                admitted += 1
            elif decision_reason == SkipReason.AT_CAPACITY:
                break
        return admitted

    def dispatch(self, job: Job) -> SkipReason | None:
        """Admit `job` and start it, or record why it was skipped.

        Admission and in-flight insertion happen with no await in between.
        Returns None when the job was admitted.
        """

        decision = self.admission.admit(job)
        if decision.admitted:
            self.events.emit(EventKind.JOB_FOUND, job=job)
            task = asyncio.create_task(
                self._process_job(job),
                name=f"seed-agent-job-{job.job_id}",
            )
            self._job_tasks[job.job_id] = task
            task.add_done_callback(lambda _: self._job_tasks.pop(job.job_id, None))
            return None

        reason = decision.reason
        if reason == SkipReason.ALREADY_SEEN:
            logger.debug("Job %s already seen, ignoring", job.job_id)
            return reason

        self._skipped += 1
        logger.info("Skipping job %s: %s", job.job_id, decision.detail or reason)
        self.events.emit(EventKind.JOB_SKIPPED, job=job, reason=reason, message=decision.detail)
        if reason == SkipReason.BUDGET_TOO_LOW and job.is_shared:
            self._spawn_background(self._decline(job, "budget below minimum"))
        return reason

    async def _poll_loop(self) -> None:
        while self._running:
            await self.poll_once()
            interval = self.poll_interval_seconds
            if self._push_healthy:
                interval *= PUSH_POLL_SLOWDOWN
            await self._sleep(interval)

    async def _push_loop(self) -> None:
        channel = self.push_channel
        if channel is None:
            return
        while self._running:
            try:
                await channel.connect()
                self._push_healthy = True
                self.events.emit(EventKind.PUSH_CONNECTED, message="Push channel connected")
                async for payload in channel.notifications():
                    self._dispatch_notification(payload)
                message = "Push channel closed"
            except asyncio.CancelledError:
                self._push_healthy = False
                raise
            except Exception as error:  # noqa: BLE001
                message = f"Push channel failed: {error}"
                logger.warning("%s", message)
            self._push_healthy = False
            if not self._running:
                return
            self.events.emit(EventKind.PUSH_DISCONNECTED, message=message)
            await self._sleep(self.poll_interval_seconds)

    def _dispatch_notification(self, payload: dict[str, object]) -> None:
        try:
            job = Job.from_notification(payload)
        except (KeyError, TypeError, ValueError) as error:
            logger.warning("Ignoring malformed push notification: %s", error)
            return
        try:
            self.dispatch(job)
        except Exception as error:  # noqa: BLE001
            self._report_job_error(job, f"Failed to dispatch job {job.job_id}", error)

    async def _process_job(self, job: Job) -> None:
        workdir: JobWorkdir | None = None
        try:
            self.events.emit(EventKind.JOB_PROCESSING, job=job)
            if job.is_shared:
                outcome = await self.swarm.resolve(job)
                if outcome.status == AcceptanceStatus.FULL:
                    self._finish_swarm_full(job)
                    return
                job = outcome.job
                self.events.emit(
                    EventKind.JOB_ACCEPTED,
                    job=job,
                    details={
                        "status": outcome.status.value,
                        "slots_remaining": outcome.slots_remaining,
                        "budget_per_agent": job.budget_per_agent,
                    },
                )

            workdir = self.workdir_manager.materialize(job.job_id)
            result = await self.orchestrator.generate(job, workdir=workdir)
            self.events.emit(
                EventKind.RESPONSE_GENERATED,
                job=job,
                usage=result.usage,
                details={
                    "attempts": result.attempts,
                    "used_fallback": result.used_fallback,
                    "artifacts": len(result.artifacts),
                    "estimated_cost_usd": result.estimated_cost_usd,
                },
            )

            receipt = await self.submitter.submit(
                job,
                result,
                use_alternate_endpoint=job.is_shared,
            )
            self.events.emit(EventKind.RESPONSE_SUBMITTED, job=job, receipt=receipt)
            self._record_outcome(job, JobOutcome.SUCCEEDED)
            self._processed += 1
        except asyncio.CancelledError:
            self._record_outcome(job, JobOutcome.FAILED)
            raise
        except Exception as error:  # noqa: BLE001
            self._errors += 1
            logger.exception("Job %s failed", job.job_id)
            self.events.emit(
                EventKind.ERROR,
                job=job,
                message=f"Job {job.job_id} failed: {error}",
                error=error,
                details=_error_details(error),
            )
            self._record_outcome(job, JobOutcome.FAILED)
        finally:
            if workdir is not None and not self.keep_workdirs:
                workdir.cleanup()

    def _finish_swarm_full(self, job: Job) -> None:
        self._skipped += 1
        self._record_outcome(job, JobOutcome.SKIPPED_SWARM_FULL)
        self.events.emit(
            EventKind.JOB_SKIPPED,
            job=job,
            reason=SkipReason.SWARM_FULL,
            message="All agent slots are taken",
        )
        self._spawn_background(self._decline(job, "swarm is full"))

    def _record_outcome(self, job: Job, outcome: JobOutcome) -> None:
        """Complete `job`; a dedup store failure is reported, never raised.

        The in-memory registry is updated before the store write, so the job
        is not re-admitted by this process even when persisting fails.
        """

        try:
            self.registry.mark_completed(job.job_id, outcome)
        except Exception as error:  # noqa: BLE001
            self._report_job_error(job, f"Failed to record job {job.job_id}", error)

    def _report_job_error(self, job: Job, message: str, error: Exception) -> None:
        self._errors += 1
        logger.warning("%s: %s", message, error)
        self.events.emit(EventKind.ERROR, job=job, message=f"{message}: {error}", error=error)

    async def _decline(self, job: Job, reason: str) -> None:
        try:
            await self.source.decline_job(job.job_id, reason)
        except Exception as error:  # noqa: BLE001
            logger.debug("Declining job %s failed: %s", job.job_id, error)

    def _spawn_background(self, coroutine: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coroutine)
        self._background.add(task)
        task.add_done_callback(self._background.discard)


def _error_details(error: Exception) -> dict[str, object]:
    classification = getattr(error, "classification", None)
    details: dict[str, object] = {"error_type": type(error).__name__}
    attempts = getattr(error, "attempts", None)
    if attempts is not None:
        details["attempts"] = attempts
    if classification is not None:
        details.update(classification.to_event_details())
    return details
