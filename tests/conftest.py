"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import random
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest

from seed_agent.dispatcher.backend.base import BackendResponse, GenerationRequest
from seed_agent.dispatcher.events import EventBus
from seed_agent.dispatcher.generation import GenerationOrchestrator
from seed_agent.dispatcher.models import (
    AcceptJobResult,
    FileAttachment,
    GenerationUsage,
    Job,
    JobKind,
    JobsPage,
    SubmissionReceipt,
)
from seed_agent.dispatcher.registry import ProcessingRegistry
from seed_agent.dispatcher.repository import ProcessedJobRepository
from seed_agent.dispatcher.workdir import JobWorkdirManager
from seed_agent.dispatcher.worker import JobDispatcher
from seed_agent.marketplace.base import MarketplaceError

ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m seed_agent.dispatcher.backend.echo_agent --prompt-file {{prompt_file}}"
)


def make_job(
    job_id: str,
    *,
    budget: float = 2.0,
    kind: JobKind = JobKind.STANDARD,
    budget_per_agent: float | None = None,
    prompt: str | None = None,
) -> Job:
    return Job(
        job_id=job_id,
        prompt=prompt or f"Write a haiku about {job_id}",
        budget=budget,
        kind=kind,
        budget_per_agent=budget_per_agent,
        max_agents=3 if kind == JobKind.SHARED else None,
    )


class FakeJobSource:
    """In-memory marketplace recording every call."""

    def __init__(self, jobs: list[Job] | None = None) -> None:
        self.jobs = list(jobs or [])
        self.list_error: Exception | None = None
        self.list_calls = 0
        self.accept_outcomes: dict[str, AcceptJobResult | Exception] = {}
        self.accepted: list[str] = []
        self.declined: list[tuple[str, str | None]] = []
        self.upload_error: Exception | None = None
        self.uploaded: list[Path] = []
        self.submit_error: Exception | None = None
        self.submissions: list[dict[str, Any]] = []

    async def list_jobs(self, limit: int = 20, offset: int = 0) -> JobsPage:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        page = self.jobs[offset : offset + limit]
        return JobsPage(
            jobs=page,
            limit=limit,
            offset=offset,
            has_more=len(self.jobs) > offset + limit,
        )

    async def get_job(self, job_id: str) -> Job:
        for job in self.jobs:
            if job.job_id == job_id:
                return job
        raise MarketplaceError(f"Job {job_id} not found", status_code=404)

    async def accept_job(self, job_id: str) -> AcceptJobResult:
        await asyncio.sleep(0)
        self.accepted.append(job_id)
        outcome = self.accept_outcomes.get(job_id)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            return AcceptJobResult(
                accepted=True,
                slots_remaining=2,
                is_full=False,
                effective_budget=None,
            )
        return outcome

    async def decline_job(self, job_id: str, reason: str | None = None) -> None:
        self.declined.append((job_id, reason))

    async def upload_files(self, paths: list[Path]) -> list[FileAttachment]:
        if self.upload_error is not None:
            raise self.upload_error
        self.uploaded.extend(paths)
        return [
            FileAttachment(
                url=f"https://files.example.com/{path.name}",
                name=path.name,
                size=path.stat().st_size,
                type="application/zip",
            )
            for path in paths
        ]

    async def submit_response(self, job_id: str, text: str) -> SubmissionReceipt:
        return self._submit(job_id, text, [], endpoint="v1_text", alternate=False)

    async def submit_response_with_artifacts(
        self,
        job_id: str,
        text: str,
        artifacts: list[FileAttachment],
    ) -> SubmissionReceipt:
        return self._submit(job_id, text, artifacts, endpoint="v1_files", alternate=False)

    async def submit_response_v2(
        self,
        job_id: str,
        text: str,
        artifacts: list[FileAttachment] | None = None,
    ) -> SubmissionReceipt:
        return self._submit(job_id, text, artifacts or [], endpoint="v2", alternate=True)

    def _submit(
        self,
        job_id: str,
        text: str,
        artifacts: list[FileAttachment],
        *,
        endpoint: str,
        alternate: bool,
    ) -> SubmissionReceipt:
        if self.submit_error is not None:
            raise self.submit_error
        self.submissions.append(
            {"job_id": job_id, "text": text, "artifacts": artifacts, "endpoint": endpoint},
        )
        return SubmissionReceipt(
            job_id=job_id,
            response_id=f"resp-{len(self.submissions)}",
            with_artifacts=bool(artifacts),
            alternate_endpoint=alternate,
        )


class FakeBackend:
    """Scripted generation backend.

    `outcomes` is consumed in order; an exception is raised, a response is
    returned. Once exhausted every call answers with the prompt. While `gate`
    is set to an unset event, calls block until it is set.
    """

    agent = "fake"
    model = "fake-model"

    def __init__(
        self,
        outcomes: list[BackendResponse | Exception] | None = None,
        *,
        write_files: tuple[str, ...] = (),
    ) -> None:
        self.outcomes = list(outcomes or [])
        self.write_files = write_files
        self.gate: asyncio.Event | None = None
        self.requests: list[GenerationRequest] = []
        self.active = 0
        self.max_active = 0

    async def generate(self, request: GenerationRequest) -> BackendResponse:
        self.requests.append(request)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            if self.outcomes:
                outcome = self.outcomes.pop(0)
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
            artifacts = []
            if self.write_files and request.workdir is not None:
                for name in self.write_files:
                    target = request.workdir.files_dir / name
                    target.write_text(f"{name}: {request.prompt}\n", "utf-8")
                artifacts = request.workdir.package_files()
            return BackendResponse(
                text=f"answer: {request.prompt}",
                usage=GenerationUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
                artifacts=artifacts,
            )
        finally:
            self.active -= 1


class RecordingSleep:
    """Sleep stand-in that records delays and yields once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


async def park(_: float) -> None:
    """Sleep that never returns; the discovery loop is cancelled by stop()."""

    await asyncio.Event().wait()


@pytest.fixture()
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def dispatcher_factory(tmp_path: Path) -> Callable[..., JobDispatcher]:
    """Build a dispatcher around fakes; discovery sleeps forever unless overridden."""

    def _build(
        source: FakeJobSource,
        backend: FakeBackend,
        *,
        repository: ProcessedJobRepository | None = None,
        sleep: Callable[[float], Awaitable[None]] = park,
        **kwargs: Any,
    ) -> JobDispatcher:
        orchestrator = GenerationOrchestrator(
            backend=backend,
            max_retries=kwargs.pop("max_retries", 1),
            base_delay_seconds=0.0,
            max_delay_seconds=0.0,
            rng=random.Random(0),
            sleep=RecordingSleep(),
        )
        return JobDispatcher(
            source=source,
            orchestrator=orchestrator,
            registry=ProcessingRegistry(repository),
            workdir_manager=JobWorkdirManager(tmp_path / "work"),
            events=EventBus(),
            sleep=sleep,
            **kwargs,
        )

    return _build


@pytest.fixture()
def wait_until() -> Callable[..., Awaitable[None]]:
    async def _wait(predicate: Callable[[], bool], *, timeout: float = 5.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("Condition not met before timeout.")
            await asyncio.sleep(0.005)

    return _wait


@pytest.fixture()
def echo_agent_env(monkeypatch, tmp_path: Path) -> Path:
    """Point the CLI backend at the bundled echo agent."""

    workdir_root = tmp_path / "work"
    monkeypatch.setenv("SEED_AGENT_LLM_COMMAND_TEMPLATE", ECHO_AGENT_COMMAND_TEMPLATE)
    monkeypatch.setenv("SEED_AGENT_LLM_NO_TOOLS_COMMAND_TEMPLATE", ECHO_AGENT_COMMAND_TEMPLATE)
    monkeypatch.setenv("SEED_AGENT_WORKDIR_ROOT", str(workdir_root))
    monkeypatch.setenv("SEED_AGENT_LLM_AGENT", "echo")
    monkeypatch.setenv("SEED_AGENT_LLM_MODEL", "echo-1")
    monkeypatch.delenv("SEED_AGENT_LLM_PRICING", raising=False)
    return workdir_root
