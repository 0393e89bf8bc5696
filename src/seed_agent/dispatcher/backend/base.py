"""Backend interface for content generation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from seed_agent.dispatcher.models import Artifact, GenerationStep, GenerationUsage, ToolCall
from seed_agent.dispatcher.workdir import JobWorkdir


@dataclass(slots=True)
class GenerationRequest:
    """Inputs required to execute one generation attempt."""

    prompt: str
    system_prompt: str
    tools_enabled: bool = True
    workdir: JobWorkdir | None = None


@dataclass(slots=True)
class BackendResponse:
    """Raw backend output for one attempt."""

    text: str
    steps: list[GenerationStep] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: GenerationUsage | None = None
    artifacts: list[Artifact] = field(default_factory=list)


class GenerationBackend(Protocol):
    """Protocol implemented by generation backends."""

    agent: str
    model: str

    async def generate(self, request: GenerationRequest) -> BackendResponse:
        """Run one generation attempt."""
