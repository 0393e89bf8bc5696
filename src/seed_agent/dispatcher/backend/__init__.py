"""Generation backend implementations."""

from seed_agent.dispatcher.backend.base import BackendResponse, GenerationBackend, GenerationRequest
from seed_agent.dispatcher.backend.cli_backend import BackendRunError, CliAgentBackend

__all__ = [
    "BackendResponse",
    "BackendRunError",
    "CliAgentBackend",
    "GenerationBackend",
    "GenerationRequest",
]
