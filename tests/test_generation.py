from __future__ import annotations

import asyncio
import random
from dataclasses import replace

import allure
import pytest
from conftest import FakeBackend, RecordingSleep, make_job

from seed_agent.dispatcher.backend import BackendResponse, BackendRunError
from seed_agent.dispatcher.failure_classifier import GenerationError
from seed_agent.dispatcher.generation import (
    NO_TOOLS_INSTRUCTION,
    GenerationOrchestrator,
    build_system_prompt,
    compute_retry_delay,
)
from seed_agent.dispatcher.models import GenerationStep, GenerationUsage, JobKind
from seed_agent.dispatcher.pricing import PRICING_ENV_VAR

pytestmark = [
    allure.epic("Generation"),
    allure.feature("Retry And Fallback"),
]


class _MidpointRandom(random.Random):
    """Jitter source that always returns the midpoint, i.e. no jitter."""

    def uniform(self, a: float, b: float) -> float:
        return (a + b) / 2


def _retryable(message: str = "invalid tool arguments for web_search") -> BackendRunError:
    return BackendRunError(f"CLI agent exited with code 1: {message}", exit_code=1)


def _orchestrator(
    backend: FakeBackend,
    sleep: RecordingSleep,
    *,
    fallback_no_tools: bool = True,
) -> GenerationOrchestrator:
    return GenerationOrchestrator(
        backend=backend,
        max_retries=3,
        base_delay_seconds=1.0,
        max_delay_seconds=10.0,
        fallback_no_tools=fallback_no_tools,
        rng=_MidpointRandom(),
        sleep=sleep,
    )


def test_retry_delays_double_per_attempt(recording_sleep: RecordingSleep) -> None:
    backend = FakeBackend([_retryable(), _retryable(), _retryable()])
    orchestrator = _orchestrator(backend, recording_sleep)

    result = asyncio.run(orchestrator.generate(make_job("job-1")))

    assert result.attempts == 4
    assert not result.used_fallback
    assert recording_sleep.delays == [1.0, 2.0, 4.0]


@pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
def test_retry_delay_jitter_stays_within_bounds(seed: int) -> None:
    rng = random.Random(seed)
    for attempt, nominal in enumerate((1.0, 2.0, 4.0, 8.0, 10.0)):
        delay = compute_retry_delay(
            attempt,
            base_delay_seconds=1.0,
            max_delay_seconds=10.0,
            rng=rng,
        )
        assert nominal * 0.75 <= delay <= nominal * 1.25


def test_retry_delay_is_capped() -> None:
    delay = compute_retry_delay(
        6,
        base_delay_seconds=1.0,
        max_delay_seconds=10.0,
        rng=_MidpointRandom(),
    )
    assert delay == 10.0


def test_non_retryable_error_fails_immediately(recording_sleep: RecordingSleep) -> None:
    backend = FakeBackend([RuntimeError("401 Unauthorized")])
    orchestrator = _orchestrator(backend, recording_sleep)

    with pytest.raises(GenerationError) as excinfo:
        asyncio.run(orchestrator.generate(make_job("job-1")))

    assert excinfo.value.retryable is False
    assert excinfo.value.attempts == 1
    assert len(backend.requests) == 1
    assert recording_sleep.delays == []


def test_fallback_runs_without_tools_after_retries(recording_sleep: RecordingSleep) -> None:
    backend = FakeBackend(
        [_retryable(), _retryable(), _retryable(), _retryable()],
    )
    orchestrator = _orchestrator(backend, recording_sleep)

    result = asyncio.run(orchestrator.generate(make_job("job-1", prompt="Explain DNS")))

    assert result.used_fallback
    assert result.attempts == 5
    assert result.text.startswith("answer: Explain DNS")
    assert [request.tools_enabled for request in backend.requests] == [True] * 4 + [False]
    assert backend.requests[-1].prompt == f"Explain DNS{NO_TOOLS_INSTRUCTION}"


def test_failed_fallback_reports_last_retryable_error(recording_sleep: RecordingSleep) -> None:
    last = _retryable("tool_use_failed on attempt 4")
    backend = FakeBackend(
        [_retryable(), _retryable(), _retryable(), last, RuntimeError("fallback exploded")],
    )
    orchestrator = _orchestrator(backend, recording_sleep)

    with pytest.raises(GenerationError) as excinfo:
        asyncio.run(orchestrator.generate(make_job("job-1")))

    assert excinfo.value.retryable is True
    assert excinfo.value.attempts == 5
    assert excinfo.value.__cause__ is last
    assert excinfo.value.classification is not None
    assert excinfo.value.classification.matched_pattern == "tool_use_failed"


def test_disabled_fallback_stops_after_retries(recording_sleep: RecordingSleep) -> None:
    backend = FakeBackend([_retryable()] * 4)
    orchestrator = _orchestrator(backend, recording_sleep, fallback_no_tools=False)

    with pytest.raises(GenerationError) as excinfo:
        asyncio.run(orchestrator.generate(make_job("job-1")))

    assert excinfo.value.attempts == 4
    assert len(backend.requests) == 4


def test_empty_final_text_is_backfilled_from_steps(recording_sleep: RecordingSleep) -> None:
    backend = FakeBackend(
        [
            BackendResponse(
                text="  ",
                steps=[GenerationStep(text="draft"), GenerationStep(text="final answer")],
            ),
        ],
    )
    orchestrator = _orchestrator(backend, recording_sleep)

    result = asyncio.run(orchestrator.generate(make_job("job-1")))

    assert result.text == "final answer"


def test_usage_accumulates_with_cost(monkeypatch, recording_sleep: RecordingSleep) -> None:
    monkeypatch.setenv(PRICING_ENV_VAR, "fake:fake-model:1.0:2.0")
    backend = FakeBackend(
        [
            BackendResponse(
                text="one",
                usage=GenerationUsage(
                    prompt_tokens=1_000_000,
                    completion_tokens=500_000,
                    total_tokens=1_500_000,
                ),
            ),
            BackendResponse(text="two"),
        ],
    )
    orchestrator = _orchestrator(backend, recording_sleep)

    first = asyncio.run(orchestrator.generate(make_job("job-1")))
    second = asyncio.run(orchestrator.generate(make_job("job-2")))

    assert first.estimated_cost_usd == pytest.approx(2.0)
    assert second.estimated_cost_usd is None
    snapshot = orchestrator.usage.snapshot()
    assert snapshot.generations == 2
    assert snapshot.total_tokens == 1_500_000
    assert snapshot.estimated_cost_usd == pytest.approx(2.0)


def test_total_only_usage_is_priced_at_average_rate(
    monkeypatch,
    recording_sleep: RecordingSleep,
) -> None:
    monkeypatch.setenv(PRICING_ENV_VAR, "fake:fake-model:1.0:3.0")
    backend = FakeBackend(
        [BackendResponse(text="one", usage=GenerationUsage(total_tokens=1_000_000))],
    )
    orchestrator = _orchestrator(backend, recording_sleep)

    result = asyncio.run(orchestrator.generate(make_job("job-1")))

    assert result.estimated_cost_usd == pytest.approx(2.0)


def test_system_prompt_mentions_effective_budget_and_skills() -> None:
    job = make_job("swarm-1", budget=3.0, kind=JobKind.SHARED, budget_per_agent=1.25)
    job = replace(job, required_skills=("python", "writing"))

    prompt = build_system_prompt(job)

    assert "$1.25 USD" in prompt
    assert "Required skills: python, writing." in prompt
