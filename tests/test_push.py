from __future__ import annotations

import asyncio

import allure
import pytest

from seed_agent.marketplace.push import PushChannelClosed, QueuePushChannel

pytestmark = [
    allure.epic("Marketplace"),
    allure.feature("Push Notifications"),
]


def test_published_payloads_are_delivered_until_close() -> None:
    async def scenario():
        channel = QueuePushChannel()
        await channel.connect()
        channel.publish({"jobId": "job-1"})
        channel.publish({"jobId": "job-2"})
        await channel.close()
        return [payload async for payload in channel.notifications()], channel

    payloads, channel = asyncio.run(scenario())

    assert [payload["jobId"] for payload in payloads] == ["job-1", "job-2"]
    assert not channel.connected


def test_fail_drops_subscription_and_allows_reconnect() -> None:
    async def scenario():
        channel = QueuePushChannel()
        await channel.connect()
        channel.fail("socket reset")
        with pytest.raises(PushChannelClosed, match="socket reset"):
            async for _ in channel.notifications():
                pass
        assert not channel.connected
        await channel.connect()
        return channel.connect_count

    assert asyncio.run(scenario()) == 2


def test_connect_after_close_raises() -> None:
    async def scenario():
        channel = QueuePushChannel()
        await channel.close()
        await channel.connect()

    with pytest.raises(PushChannelClosed):
        asyncio.run(scenario())
