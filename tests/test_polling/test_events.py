"""Tests for session events and the event channel."""

import asyncio
import json

import pytest

from govwatch.deployment.schemas import DeployStatus
from govwatch.limits import capture, classify
from govwatch.polling import (
    BaselineCaptured,
    ErrorEvent,
    EventChannel,
    MonitoringStarted,
    MonitoringUpdate,
    OperationStarted,
)


class TestEventChannel:
    @pytest.mark.asyncio
    async def test_sync_and_async_subscribers(self):
        channel = EventChannel("test")
        seen_sync, seen_async = [], []

        async def async_handler(event):
            seen_async.append(event)

        channel.subscribe(seen_sync.append)
        channel.subscribe(async_handler)

        event = MonitoringStarted(operation_id="0Af000000000001")
        await channel.publish(event)

        assert seen_sync == [event]
        assert seen_async == [event]

    @pytest.mark.asyncio
    async def test_type_filter(self):
        channel = EventChannel()
        errors = []
        channel.subscribe(errors.append, ErrorEvent)

        await channel.publish(MonitoringStarted(operation_id="x"))
        await channel.publish(ErrorEvent(kind="baseline", error="down"))

        assert [e.type for e in errors] == ["error"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        channel = EventChannel()
        seen = []
        unsubscribe = channel.subscribe(seen.append)

        unsubscribe()
        unsubscribe()
        await channel.publish(MonitoringStarted(operation_id="x"))

        assert seen == []
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_failing_subscriber_isolated(self):
        channel = EventChannel()
        seen = []

        def broken(event):
            raise RuntimeError("subscriber bug")

        channel.subscribe(broken)
        channel.subscribe(seen.append)
        await channel.publish(MonitoringStarted(operation_id="x"))

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_close_drops_subscribers_and_ends_streams(self):
        channel = EventChannel()
        seen = []
        channel.subscribe(seen.append)

        received = []

        async def consume():
            async for event in channel.stream():
                received.append(event)

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)
        await channel.publish(MonitoringStarted(operation_id="x"))
        channel.close()
        channel.close()
        await asyncio.wait_for(consumer, timeout=1.0)

        await channel.publish(MonitoringStarted(operation_id="y"))

        assert channel.closed
        assert len(received) == 1
        assert len(seen) == 1
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_stream_after_close_ends_immediately(self):
        channel = EventChannel()
        channel.close()

        async def consume():
            return [event async for event in channel.stream()]

        received = await asyncio.wait_for(consume(), timeout=1.0)

        assert received == []
        assert channel.subscriber_count == 0


class TestEventSerialization:
    def test_to_dict_is_json_serializable(self):
        records = classify({"DailyApiRequests": {"Max": 100000, "Remaining": 99000}})
        baseline = capture(records)
        current = {r.key: r for r in records}
        update = MonitoringUpdate(
            operation_id="0Af000000000001",
            deployment_status=DeployStatus(id="0Af000000000001", state="InProgress"),
            current_limits=current,
            deltas={},
        )

        for event in (
            OperationStarted(command="sf", args=["project", "deploy", "start"]),
            BaselineCaptured(baseline=baseline),
            update,
        ):
            data = event.to_dict()
            assert data["type"] == event.type
            json.dumps(data)

    def test_error_event_type(self):
        data = ErrorEvent(kind="spawn", error="not found").to_dict()
        assert data["type"] == "error"
        assert data["kind"] == "spawn"
