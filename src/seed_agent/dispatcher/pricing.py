"""Token cost estimation helpers for generations."""

from __future__ import annotations

import os
from dataclasses import dataclass

PRICING_ENV_VAR = "SEED_AGENT_LLM_PRICING"


@dataclass(slots=True)
class ModelPricing:
    """Per-model input/output pricing in USD per 1M tokens."""

    input_per_1m: float
    output_per_1m: float


def estimate_cost_usd(
    *,
    agent: str,
    model: str,
    prompt_tokens: int | None,
    completion_tokens: int | None,
    total_tokens: int | None,
) -> float | None:
    """Estimate generation cost in USD from token usage and configured pricing."""

    pricing = _lookup_pricing(agent=agent, model=model)
    if pricing is None:
        return None

    if prompt_tokens is not None and completion_tokens is not None:
        return (
            (prompt_tokens / 1_000_000) * pricing.input_per_1m
            + (completion_tokens / 1_000_000) * pricing.output_per_1m
        )

    if total_tokens:
        average = (pricing.input_per_1m + pricing.output_per_1m) / 2
        return (total_tokens / 1_000_000) * average
    return None


def _lookup_pricing(*, agent: str, model: str) -> ModelPricing | None:
    mapping = _parse_pricing_mapping(os.getenv(PRICING_ENV_VAR, ""))
    for key in (
        (agent.strip().lower(), model.strip()),
        (agent.strip().lower(), "*"),
        ("*", "*"),
    ):
        pricing = mapping.get(key)
        if pricing is not None:
            return pricing
    return None


def _parse_pricing_mapping(raw: str) -> dict[tuple[str, str], ModelPricing]:
    """Parse `SEED_AGENT_LLM_PRICING` mapping.

    Format:
    - `agent:model:input_per_1m:output_per_1m`
    - multiple entries separated by `,`
    - supports wildcards in agent/model (`*`)

    Model ids containing `:` are supported: the last two fields are prices and
    the first one is the agent.
    """

    parsed: dict[tuple[str, str], ModelPricing] = {}
    if not raw.strip():
        return parsed

    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        parts = [part.strip() for part in value.split(":")]
        if len(parts) < 4:
            continue
        agent = parts[0]
        model = ":".join(parts[1:-2])
        try:
            input_per_1m = float(parts[-2])
            output_per_1m = float(parts[-1])
        except ValueError:
            continue
        parsed[(agent.lower(), model)] = ModelPricing(
            input_per_1m=input_per_1m,
            output_per_1m=output_per_1m,
        )
    return parsed
