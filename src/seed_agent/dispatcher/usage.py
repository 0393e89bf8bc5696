"""Token usage extraction and process-lifetime accounting."""

from __future__ import annotations

import re
from dataclasses import dataclass

from seed_agent.dispatcher.models import GenerationUsage

_JSON_PROMPT_TOKENS = re.compile(r'"(?:prompt|input)_tokens"\s*:\s*(\d+)', re.IGNORECASE)
_JSON_COMPLETION_TOKENS = re.compile(
    r'"(?:completion|output)_tokens"\s*:\s*(\d+)',
    re.IGNORECASE,
)
_JSON_TOTAL_TOKENS = re.compile(r'"total_tokens"\s*:\s*(\d+)', re.IGNORECASE)

_TOKENS_USED = re.compile(r"tokens used\s*[\r\n ]+\s*([\d,]+)", re.IGNORECASE)
_INPUT_TOKENS = re.compile(r"input[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE)
_OUTPUT_TOKENS = re.compile(r"(?:output|completion)[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE)
_TOTAL_TOKENS = re.compile(r"total[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE)


@dataclass(slots=True)
class UsageSnapshot:
    """Point-in-time copy of accumulated usage."""

    generations: int
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    estimated_cost_usd: float


class UsageAccumulator:
    """Running totals across the process lifetime; only ever grows."""

    def __init__(self) -> None:
        self.generations = 0
        self.prompt_tokens = 0
        self.completion_tokens = 0
        self.total_tokens = 0
        self.estimated_cost_usd = 0.0

    def record(self, usage: GenerationUsage | None, *, cost_usd: float | None = None) -> None:
        self.generations += 1
        if usage is not None:
            self.prompt_tokens += max(0, usage.prompt_tokens)
            self.completion_tokens += max(0, usage.completion_tokens)
            self.total_tokens += max(0, usage.total_tokens)
        if cost_usd is not None and cost_usd > 0:
            self.estimated_cost_usd += cost_usd

    def snapshot(self) -> UsageSnapshot:
        return UsageSnapshot(
            generations=self.generations,
            prompt_tokens=self.prompt_tokens,
            completion_tokens=self.completion_tokens,
            total_tokens=self.total_tokens,
            estimated_cost_usd=self.estimated_cost_usd,
        )


def extract_usage(*, stdout: str, stderr: str) -> GenerationUsage | None:
    """Extract token usage from structured or textual agent output."""

    structured = _extract_structured(stdout=stdout, stderr=stderr)
    if structured is not None:
        return structured
    return _extract_textual(stdout=stdout, stderr=stderr)


def _extract_structured(*, stdout: str, stderr: str) -> GenerationUsage | None:
    for text in (stdout, stderr):
        prompt = _extract_int(_JSON_PROMPT_TOKENS, text)
        completion = _extract_int(_JSON_COMPLETION_TOKENS, text)
        total = _extract_int(_JSON_TOTAL_TOKENS, text)
        if prompt is None and completion is None and total is None:
            continue
        return _usage(prompt, completion, total)
    return None


def _extract_textual(*, stdout: str, stderr: str) -> GenerationUsage | None:
    prompt: int | None = None
    completion: int | None = None
    total: int | None = None

    for text in (stderr, stdout):
        if total is None:
            total = _extract_int(_TOTAL_TOKENS, text) or _extract_int(_TOKENS_USED, text)
        if prompt is None:
            prompt = _extract_int(_INPUT_TOKENS, text)
        if completion is None:
            completion = _extract_int(_OUTPUT_TOKENS, text)

    if prompt is None and completion is None and total is None:
        return None
    return _usage(prompt, completion, total)


def _usage(prompt: int | None, completion: int | None, total: int | None) -> GenerationUsage:
    if total is None:
        total = (prompt or 0) + (completion or 0)
    return GenerationUsage(
        prompt_tokens=prompt or 0,
        completion_tokens=completion or 0,
        total_tokens=total,
    )


def _extract_int(pattern: re.Pattern[str], text: str) -> int | None:
    match = pattern.search(text)
    if match is None:
        return None
    raw = match.group(1).replace(",", "").strip()
    if not raw.isdigit():
        return None
    return int(raw)
