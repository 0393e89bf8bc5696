"""Domain models for job discovery, admission and execution."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any


class JobKind(str, Enum):
    """Marketplace job flavours."""

    STANDARD = "standard"
    SHARED = "shared"

    @classmethod
    def from_wire(cls, value: object) -> JobKind:
        """Map marketplace job type (`STANDARD`/`SWARM`) to a job kind."""

        normalized = str(value or "").strip().lower()
        if normalized in {"swarm", "shared"}:
            return cls.SHARED
        return cls.STANDARD


class SkipReason(str, Enum):
    """Why a discovered job was not processed."""

    ALREADY_SEEN = "already_seen"
    AT_CAPACITY = "at_capacity"
    BUDGET_TOO_LOW = "budget_too_low"
    SWARM_FULL = "swarm_full"


class JobOutcome(str, Enum):
    """Terminal outcomes recorded in the dedup store."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED_BUDGET = "skipped_budget"
    SKIPPED_SWARM_FULL = "skipped_swarm_full"


@dataclass(frozen=True, slots=True)
class Job:
    """Immutable job snapshot as reported by the marketplace."""

    job_id: str
    prompt: str
    budget: float
    kind: JobKind = JobKind.STANDARD
    budget_per_agent: float | None = None
    max_agents: int | None = None
    required_skills: tuple[str, ...] = ()
    expires_at: datetime | None = None
    status: str | None = None

    @property
    def is_shared(self) -> bool:
        return self.kind == JobKind.SHARED

    @property
    def effective_budget(self) -> float:
        """Budget this worker would earn: per-agent share for shared jobs."""

        if self.is_shared and self.budget_per_agent is not None:
            return self.budget_per_agent
        return self.budget

    def with_budget_per_agent(self, budget_per_agent: float | None) -> Job:
        """Copy with the server-confirmed per-agent budget."""

        if budget_per_agent is None:
            return self
        return replace(self, budget_per_agent=budget_per_agent)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Job:
        """Build a job from a list/get response entry."""

        return cls(
            job_id=str(payload["id"]),
            prompt=str(payload.get("prompt") or ""),
            budget=float(payload.get("budget") or 0.0),
            kind=JobKind.from_wire(payload.get("jobType")),
            budget_per_agent=_optional_float(payload.get("budgetPerAgent")),
            max_agents=_optional_int(payload.get("maxAgents")),
            required_skills=tuple(str(skill) for skill in payload.get("requiredSkills") or ()),
            expires_at=_optional_datetime(payload.get("expiresAt")),
            status=payload.get("status"),
        )

    @classmethod
    def from_notification(cls, payload: dict[str, Any]) -> Job:
        """Build a job from a push notification payload."""

        return cls(
            job_id=str(payload["jobId"]),
            prompt=str(payload.get("prompt") or ""),
            budget=float(payload.get("budget") or 0.0),
            kind=JobKind.from_wire(payload.get("jobKind") or payload.get("jobType")),
            budget_per_agent=_optional_float(payload.get("budgetPerAgent")),
            max_agents=_optional_int(payload.get("maxAgents")),
            required_skills=tuple(str(skill) for skill in payload.get("requiredSkills") or ()),
            expires_at=_optional_datetime(payload.get("expiresAt")),
            status=payload.get("status"),
        )


@dataclass(slots=True)
class JobsPage:
    """One page of the job listing."""

    jobs: list[Job]
    limit: int
    offset: int
    has_more: bool


@dataclass(slots=True)
class AcceptJobResult:
    """Response of a shared-job acceptance call."""

    accepted: bool
    slots_remaining: int | None
    is_full: bool
    effective_budget: float | None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> AcceptJobResult:
        return cls(
            accepted=bool(payload.get("accepted", payload.get("success", False))),
            slots_remaining=_optional_int(payload.get("slotsRemaining")),
            is_full=bool(payload.get("isFull", False)),
            effective_budget=_optional_float(
                payload.get("effectiveBudget", payload.get("budgetPerAgent")),
            ),
        )


@dataclass(slots=True)
class AdmissionDecision:
    """Result of admission filtering for one candidate job."""

    admitted: bool
    reason: SkipReason | None = None
    detail: str | None = None

    @property
    def terminal(self) -> bool:
        """Whether the skip is final and recorded in the dedup store."""

        return self.reason == SkipReason.BUDGET_TOO_LOW


@dataclass(frozen=True, slots=True)
class ToolCall:
    """One tool invocation made by the backend during generation."""

    name: str
    args: dict[str, Any] = field(default_factory=dict)
    result: Any = None


@dataclass(slots=True)
class GenerationStep:
    """Intermediate backend step: text produced plus tool calls issued."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


@dataclass(slots=True)
class GenerationUsage:
    """Token usage of one generation."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True, slots=True)
class Artifact:
    """File produced by generation, to be uploaded with the response."""

    path: Path
    size_bytes: int


@dataclass(slots=True)
class FileAttachment:
    """Uploaded file reference accepted by the submission endpoints."""

    url: str
    name: str
    size: int
    type: str

    def to_payload(self) -> dict[str, object]:
        return {"url": self.url, "name": self.name, "size": self.size, "type": self.type}


@dataclass(slots=True)
class GenerationResult:
    """Final generation output handed to the submitter."""

    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: GenerationUsage | None = None
    artifacts: list[Artifact] = field(default_factory=list)
    attempts: int = 1
    used_fallback: bool = False
    estimated_cost_usd: float | None = None


@dataclass(slots=True)
class SubmissionReceipt:
    """What the marketplace acknowledged for a submitted response."""

    job_id: str
    response_id: str | None
    with_artifacts: bool
    alternate_endpoint: bool
    already_submitted: bool = False


def _optional_float(value: object) -> float | None:
    if value is None or value == "":
        return None
    return float(value)  # type: ignore[arg-type]


def _optional_int(value: object) -> int | None:
    if value is None or value == "":
        return None
    return int(value)  # type: ignore[call-overload]


def _optional_datetime(value: object) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    # Marketplace timestamps are ISO 8601, usually with a trailing Z.
    text = str(value).strip()
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed
