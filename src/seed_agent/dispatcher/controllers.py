"""Controllers for dispatcher CLI commands."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from rich.logging import RichHandler

from seed_agent.config import Settings
from seed_agent.dispatcher.backend import CliAgentBackend
from seed_agent.dispatcher.events import AgentEvent, EventBus, EventKind, EventSubscription
from seed_agent.dispatcher.generation import GenerationOrchestrator
from seed_agent.dispatcher.registry import ProcessingRegistry
from seed_agent.dispatcher.repository import ProcessedJobRepository
from seed_agent.dispatcher.workdir import JobWorkdirManager
from seed_agent.dispatcher.worker import DispatcherStats, JobDispatcher
from seed_agent.marketplace.base import JobSource
from seed_agent.marketplace.client import MarketplaceClient

logger = logging.getLogger(__name__)

_TERMINAL_EVENTS = frozenset({EventKind.RESPONSE_SUBMITTED, EventKind.ERROR})


@dataclass(slots=True)
class RunCommand:
    """CLI input for the dispatcher run."""

    db_path: Path | None
    once: bool
    max_jobs: int | None


@dataclass(slots=True)
class ProcessedCommand:
    """CLI input for dedup store listing."""

    db_path: Path | None
    limit: int


@dataclass(slots=True)
class ForgetCommand:
    """CLI input for removing one job id from the dedup store."""

    db_path: Path | None
    job_id: str


class DispatcherCliController:
    """Coordinates the dispatcher run and dedup store inspection."""

    def __init__(self, source: JobSource | None = None) -> None:
        self._source = source

    def run(self, command: RunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        if self._source is None:
            settings.validate_for_run()
        configure_logging(settings.log_level)
        with _repository(settings) as repository:
            stats = asyncio.run(self._run_async(settings, repository, command))

        return [
            "Dispatcher summary: "
            f"processed={stats.processed} skipped={stats.skipped} errors={stats.errors} "
            f"uptime={stats.uptime_seconds:.1f}s",
            "Usage: "
            f"generations={stats.usage.generations} "
            f"prompt_tokens={stats.usage.prompt_tokens} "
            f"completion_tokens={stats.usage.completion_tokens} "
            f"total_tokens={stats.usage.total_tokens} "
            f"estimated_cost_usd={stats.usage.estimated_cost_usd:.4f}",
        ]

    def processed(self, command: ProcessedCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            total = repository.count()
            rows = repository.list_recent(limit=command.limit)

        if not rows:
            return ["No processed jobs recorded."]
        lines = [f"Processed jobs: {total} (showing {len(rows)})"]
        for row in rows:
            lines.append(
                f"- {row.job_id} outcome={row.outcome} "
                f"recorded_at={row.recorded_at.isoformat()}",
            )
        return lines

    def forget(self, command: ForgetCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            removed = repository.forget(command.job_id)
        if not removed:
            return [f"Job {command.job_id} was not in the processed store."]
        return [f"Job {command.job_id} forgotten; it can be processed again."]

    async def _run_async(
        self,
        settings: Settings,
        repository: ProcessedJobRepository,
        command: RunCommand,
    ) -> DispatcherStats:
        client: MarketplaceClient | None = None
        source = self._source
        if source is None:
            client = MarketplaceClient(
                api_key=settings.marketplace.api_key,
                api_url=settings.marketplace.api_url,
                api_url_v2=settings.marketplace.api_url_v2,
                timeout_seconds=settings.marketplace.request_timeout_seconds,
            )
            source = client

        events = EventBus()
        dispatcher = build_dispatcher(
            settings=settings,
            source=source,
            repository=repository,
            events=events,
        )
        subscription = events.subscribe()
        finished = asyncio.Event()
        observer = asyncio.create_task(
            _observe_events(subscription, max_jobs=command.max_jobs, finished=finished),
        )
        try:
            if command.once:
                dispatcher.events.emit(EventKind.STARTUP, message="Single poll pass")
                await dispatcher.poll_once()
                await dispatcher.wait_idle()
                dispatcher.events.emit(EventKind.SHUTDOWN, message="Single poll pass done")
            else:
                with _stop_on_signals(finished):
                    await dispatcher.start()
                    await finished.wait()
                    await dispatcher.stop()
                    await dispatcher.wait_idle()
        finally:
            events.close()
            await observer
            if client is not None:
                await client.aclose()
        return dispatcher.stats()


def build_dispatcher(
    *,
    settings: Settings,
    source: JobSource,
    repository: ProcessedJobRepository | None,
    events: EventBus | None = None,
) -> JobDispatcher:
    """Wire the dispatcher and its collaborators from settings."""

    backend = CliAgentBackend(
        agent=settings.backend.agent,
        model=settings.backend.model,
        command_template=settings.backend.command_template,
        no_tools_command_template=settings.backend.no_tools_command_template,
        timeout_seconds=settings.backend.timeout_seconds,
    )
    orchestrator = GenerationOrchestrator(
        backend=backend,
        max_retries=settings.retry.max_retries,
        base_delay_seconds=settings.retry.base_delay_seconds,
        max_delay_seconds=settings.retry.max_delay_seconds,
        fallback_no_tools=settings.retry.fallback_no_tools,
    )
    registry = ProcessingRegistry(repository, capacity=settings.dispatch.dedup_capacity)
    return JobDispatcher(
        source=source,
        orchestrator=orchestrator,
        registry=registry,
        workdir_manager=JobWorkdirManager(settings.backend.workdir_root),
        events=events,
        poll_interval_seconds=settings.dispatch.poll_interval_seconds,
        page_size=settings.dispatch.page_size,
        min_budget=settings.dispatch.min_budget,
        max_concurrent_jobs=settings.dispatch.max_concurrent_jobs,
    )


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


def describe_event(event: AgentEvent) -> str:
    """One human-readable line per event."""

    job = f" {event.job_id}" if event.job_id else ""
    if event.kind == EventKind.JOB_FOUND and event.job is not None:
        return f"Found job{job} (${event.job.effective_budget:.2f}, {event.job.kind.value})"
    if event.kind == EventKind.JOB_SKIPPED:
        reason = event.reason.value if event.reason is not None else "unknown"
        suffix = f": {event.message}" if event.message else ""
        return f"Skipped job{job} ({reason}){suffix}"
    if event.kind == EventKind.RESPONSE_GENERATED and event.usage is not None:
        return f"Generated response for job{job} ({event.usage.total_tokens} tokens)"
    if event.kind == EventKind.RESPONSE_SUBMITTED and event.receipt is not None:
        files = " with files" if event.receipt.with_artifacts else ""
        return f"Submitted response for job{job}{files}"
    message = f": {event.message}" if event.message else ""
    return f"{event.kind.value.replace('_', ' ').capitalize()}{job}{message}"


async def _observe_events(
    subscription: EventSubscription,
    *,
    max_jobs: int | None,
    finished: asyncio.Event,
) -> None:
    finished_jobs: set[str] = set()
    async for event in subscription:
        level = logging.ERROR if event.kind == EventKind.ERROR else logging.INFO
        if event.kind == EventKind.POLLING:
            level = logging.DEBUG
        logger.log(level, "%s", describe_event(event))
        if event.kind in _TERMINAL_EVENTS and event.job_id is not None:
            finished_jobs.add(event.job_id)
            if max_jobs is not None and len(finished_jobs) >= max_jobs:
                finished.set()


@contextmanager
def _stop_on_signals(finished: asyncio.Event) -> Iterator[None]:
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signum, finished.set)
            installed.append(signum)
    try:
        yield
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)


@contextmanager
def _repository(settings: Settings) -> Iterator[ProcessedJobRepository]:
    repository = ProcessedJobRepository(
        db_path=settings.db_path,
        capacity=settings.dispatch.dedup_capacity,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
