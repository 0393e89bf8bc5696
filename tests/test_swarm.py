from __future__ import annotations

import asyncio

import allure
import pytest
from conftest import FakeJobSource, make_job

from seed_agent.dispatcher.models import AcceptJobResult, JobKind
from seed_agent.dispatcher.swarm import AcceptanceStatus, SwarmAcceptanceResolver
from seed_agent.marketplace.base import MarketplaceError

pytestmark = [
    allure.epic("Job Dispatch"),
    allure.feature("Swarm Acceptance"),
]


class _OneSlotSource(FakeJobSource):
    """Marketplace that hands out a single slot on a first-come basis."""

    def __init__(self) -> None:
        super().__init__()
        self.slots = 1

    async def accept_job(self, job_id: str) -> AcceptJobResult:
        await asyncio.sleep(0)
        self.accepted.append(job_id)
        if self.slots <= 0:
            raise MarketplaceError("Job is full", status_code=409)
        self.slots -= 1
        return AcceptJobResult(
            accepted=True,
            slots_remaining=self.slots,
            is_full=self.slots == 0,
            effective_budget=0.8,
        )


def _shared_job(job_id: str = "swarm-1"):
    return make_job(job_id, budget=2.4, kind=JobKind.SHARED)


def test_concurrent_accept_with_one_slot_gives_one_winner() -> None:
    source = _OneSlotSource()
    job = _shared_job()

    async def scenario():
        first = SwarmAcceptanceResolver(source)
        second = SwarmAcceptanceResolver(source)
        return await asyncio.gather(first.resolve(job), second.resolve(job))

    outcomes = asyncio.run(scenario())

    statuses = sorted(outcome.status.value for outcome in outcomes)
    assert statuses == ["accepted", "full"]
    winner = next(o for o in outcomes if o.status == AcceptanceStatus.ACCEPTED)
    assert winner.job.effective_budget == 0.8
    assert winner.slots_remaining == 0


def test_already_accepted_proceeds_without_budget_change() -> None:
    source = FakeJobSource()
    source.accept_outcomes["swarm-1"] = MarketplaceError("You have already accepted this job")
    job = _shared_job()

    outcome = asyncio.run(SwarmAcceptanceResolver(source).resolve(job))

    assert outcome.status == AcceptanceStatus.ALREADY_ACCEPTED
    assert outcome.proceed
    assert outcome.job is job


def test_rejection_flagged_full_is_terminal() -> None:
    source = FakeJobSource()
    source.accept_outcomes["swarm-1"] = AcceptJobResult(
        accepted=False,
        slots_remaining=0,
        is_full=True,
        effective_budget=None,
    )

    outcome = asyncio.run(SwarmAcceptanceResolver(source).resolve(_shared_job()))

    assert outcome.status == AcceptanceStatus.FULL
    assert not outcome.proceed


def test_unexplained_rejection_raises() -> None:
    source = FakeJobSource()
    source.accept_outcomes["swarm-1"] = AcceptJobResult(
        accepted=False,
        slots_remaining=2,
        is_full=False,
        effective_budget=None,
    )

    with pytest.raises(MarketplaceError, match="not accepted"):
        asyncio.run(SwarmAcceptanceResolver(source).resolve(_shared_job()))


def test_unrelated_marketplace_error_propagates() -> None:
    source = FakeJobSource()
    source.accept_outcomes["swarm-1"] = MarketplaceError("Internal error", status_code=500)

    with pytest.raises(MarketplaceError, match="Internal error"):
        asyncio.run(SwarmAcceptanceResolver(source).resolve(_shared_job()))
