"""Generation with retry, exponential backoff and a no-tools fallback."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import replace

from seed_agent.dispatcher.backend.base import BackendResponse, GenerationBackend, GenerationRequest
from seed_agent.dispatcher.failure_classifier import (
    GenerationError,
    GenerationFailureClassification,
    classify_generation_failure,
)
from seed_agent.dispatcher.models import GenerationResult, Job
from seed_agent.dispatcher.pricing import estimate_cost_usd
from seed_agent.dispatcher.usage import UsageAccumulator
from seed_agent.dispatcher.workdir import JobWorkdir

logger = logging.getLogger(__name__)

JITTER_RATIO = 0.25
NO_TOOLS_INSTRUCTION = (
    "\n\nIMPORTANT: Tools are unavailable for this request. "
    "Answer directly in plain text without calling any tools."
)

Sleep = Callable[[float], Awaitable[None]]


def compute_retry_delay(
    attempt: int,
    *,
    base_delay_seconds: float,
    max_delay_seconds: float,
    rng: random.Random,
) -> float:
    """Delay after failed attempt `attempt` (0-based), with +/-25% jitter."""

    capped = min(base_delay_seconds * (2 ** max(attempt, 0)), max_delay_seconds)
    return capped * rng.uniform(1 - JITTER_RATIO, 1 + JITTER_RATIO)


def build_system_prompt(job: Job) -> str:
    """System prompt framing one marketplace job."""

    lines = [
        "You are an AI agent working on the Seedstr job marketplace. "
        "Provide the best possible response to the job request.",
        "",
        "Guidelines:",
        "- Be helpful, accurate, and thorough",
        "- Use tools when needed to get current information",
        "- Provide well-structured, clear responses",
        "- If you use web search, cite your sources",
        "- Files that belong to the deliverable go under output/files/",
        "",
        f"Job budget: ${job.effective_budget:.2f} USD. "
        "This indicates how much the requester values this task.",
    ]
    if job.required_skills:
        lines.append(f"Required skills: {', '.join(job.required_skills)}.")
    return "\n".join(lines)


class GenerationOrchestrator:
    """Drives the backend through the retry policy for one job at a time.

    Holds no per-job state: each call gets its own workdir and its own
    attempt counter, so concurrent jobs never share a build context.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        backend: GenerationBackend,
        usage: UsageAccumulator | None = None,
        max_retries: int = 3,
        base_delay_seconds: float = 1.0,
        max_delay_seconds: float = 10.0,
        fallback_no_tools: bool = True,
        rng: random.Random | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self.usage = usage or UsageAccumulator()
        self.max_retries = max(0, max_retries)
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self.fallback_no_tools = fallback_no_tools
        self._random = rng or random.Random()  # noqa: S311
        self._sleep = sleep

    async def generate(self, job: Job, *, workdir: JobWorkdir | None = None) -> GenerationResult:
        request = GenerationRequest(
            prompt=job.prompt,
            system_prompt=build_system_prompt(job),
            tools_enabled=True,
            workdir=workdir,
        )

        last_error: Exception | None = None
        last_classification: GenerationFailureClassification | None = None
        attempts = 0
        for attempt in range(self.max_retries + 1):
            attempts += 1
            try:
                response = await self._attempt(request)
            except Exception as error:  # noqa: BLE001
                classification = classify_generation_failure(error)
                if not classification.retryable:
                    logger.warning(
                        "Generation for job %s failed (non-retryable): %s",
                        job.job_id,
                        error,
                    )
                    raise GenerationError(
                        str(error),
                        retryable=False,
                        attempts=attempts,
                        classification=classification,
                    ) from error

                last_error = error
                last_classification = classification
                if attempt >= self.max_retries:
                    break
                delay = compute_retry_delay(
                    attempt,
                    base_delay_seconds=self.base_delay_seconds,
                    max_delay_seconds=self.max_delay_seconds,
                    rng=self._random,
                )
                logger.warning(
                    "Generation for job %s failed on attempt %d/%d (%s); retrying in %.2fs",
                    job.job_id,
                    attempts,
                    self.max_retries + 1,
                    classification.reason_code,
                    delay,
                )
                await self._sleep(delay)
                continue
            return self._finalize(response, attempts=attempts, used_fallback=False)

        if last_error is None:
            raise RuntimeError("Retry loop ended without an error to report.")

        if self.fallback_no_tools:
            attempts += 1
            logger.info("Retries exhausted for job %s; trying once without tools", job.job_id)
            fallback_request = replace(
                request,
                prompt=f"{request.prompt}{NO_TOOLS_INSTRUCTION}",
                tools_enabled=False,
            )
            try:
                response = await self._attempt(fallback_request)
            except Exception as fallback_error:  # noqa: BLE001
                logger.warning(
                    "No-tools fallback for job %s failed: %s",
                    job.job_id,
                    fallback_error,
                )
            else:
                return self._finalize(response, attempts=attempts, used_fallback=True)

        raise GenerationError(
            str(last_error),
            retryable=True,
            attempts=attempts,
            classification=last_classification,
        ) from last_error

    async def _attempt(self, request: GenerationRequest) -> BackendResponse:
        if request.workdir is not None:
            request.workdir.reset_output()
        return await self.backend.generate(request)

    def _finalize(
        self,
        response: BackendResponse,
        *,
        attempts: int,
        used_fallback: bool,
    ) -> GenerationResult:
        usage = response.usage
        cost = None
        if usage is not None:
            # Agents that only report a total leave the split at zero.
            has_split = bool(usage.prompt_tokens or usage.completion_tokens)
            cost = estimate_cost_usd(
                agent=self.backend.agent,
                model=self.backend.model,
                prompt_tokens=usage.prompt_tokens if has_split else None,
                completion_tokens=usage.completion_tokens if has_split else None,
                total_tokens=usage.total_tokens,
            )
        self.usage.record(usage, cost_usd=cost)
        return GenerationResult(
            text=_backfill_text(response),
            tool_calls=list(response.tool_calls),
            usage=usage,
            artifacts=list(response.artifacts),
            attempts=attempts,
            used_fallback=used_fallback,
            estimated_cost_usd=cost,
        )


def _backfill_text(response: BackendResponse) -> str:
    """Final text, or the latest intermediate step text when the final one is empty."""

    if response.text.strip():
        return response.text
    for step in reversed(response.steps):
        if step.text.strip():
            return step.text
    return response.text
