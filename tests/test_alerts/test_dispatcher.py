"""Tests for concurrent alert dispatch with per-channel cooldown."""

import asyncio

import pytest

from govwatch.alerts import (
    AlertConfig,
    AlertDispatcher,
    AlertEvent,
    ConsoleChannel,
    NotificationChannel,
)
from govwatch.exceptions import ChannelDeliveryError
from govwatch.limits import classify


class RecordingChannel(NotificationChannel):
    """Channel that records deliveries and can be told to fail."""

    def __init__(self, name: str, error: Exception | None = None, delay: float = 0.0):
        self._name = name
        self.error = error
        self.delay = delay
        self.sent: list[AlertEvent] = []

    @property
    def name(self) -> str:
        return self._name

    async def send(self, event: AlertEvent) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.sent.append(event)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def warning_event():
    limits = classify({"DailyApiRequests": {"Max": 100000, "Remaining": 15000}})
    return AlertEvent.from_limits(limits, org="acme")


@pytest.fixture
def clock():
    return FakeClock()


class TestDispatch:
    @pytest.mark.asyncio
    async def test_end_to_end_one_channel_fails(self, warning_event):
        """85% usage alerts at warning; a failing channel does not block the other."""
        ok = RecordingChannel("console")
        broken = RecordingChannel("webhook", error=ChannelDeliveryError("webhook", "500"))
        dispatcher = AlertDispatcher([ok, broken], AlertConfig())

        results = await dispatcher.dispatch(warning_event)

        assert warning_event.severity == "warning"
        assert [(r.channel, r.success) for r in results] == [("console", True), ("webhook", False)]
        assert "500" in results[1].error
        assert ok.sent == [warning_event]

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_contained(self, warning_event):
        broken = RecordingChannel("slack", error=KeyError("boom"))
        dispatcher = AlertDispatcher([broken], AlertConfig())

        results = await dispatcher.dispatch(warning_event)

        assert results[0].success is False
        assert results[0].suppressed is False

    @pytest.mark.asyncio
    async def test_channels_run_concurrently(self, warning_event):
        channels = [RecordingChannel(f"c{i}", delay=0.05) for i in range(4)]
        dispatcher = AlertDispatcher(channels, AlertConfig())

        loop = asyncio.get_running_loop()
        start = loop.time()
        await dispatcher.dispatch(warning_event)

        assert loop.time() - start < 0.15
        assert all(len(c.sent) == 1 for c in channels)

    @pytest.mark.asyncio
    async def test_disabled_is_noop(self, warning_event):
        channel = RecordingChannel("console")
        dispatcher = AlertDispatcher([channel], AlertConfig(enabled=False))

        assert await dispatcher.dispatch(warning_event) == []
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_no_channels(self, warning_event):
        assert await AlertDispatcher([], AlertConfig()).dispatch(warning_event) == []


class TestCooldown:
    @pytest.mark.asyncio
    async def test_repeat_suppressed_within_cooldown(self, warning_event, clock):
        channel = RecordingChannel("console")
        dispatcher = AlertDispatcher([channel], AlertConfig(), clock=clock)

        await dispatcher.dispatch(warning_event)
        clock.now = 599.0
        results = await dispatcher.dispatch(warning_event)

        assert results[0].suppressed is True
        assert results[0].success is False
        assert len(channel.sent) == 1

        clock.now = 600.0
        results = await dispatcher.dispatch(warning_event)
        assert results[0].success is True
        assert len(channel.sent) == 2

    @pytest.mark.asyncio
    async def test_failed_channel_not_suppressed(self, warning_event, clock):
        ok = RecordingChannel("console")
        flaky = RecordingChannel("webhook", error=ChannelDeliveryError("webhook", "timeout"))
        dispatcher = AlertDispatcher([ok, flaky], AlertConfig(), clock=clock)

        await dispatcher.dispatch(warning_event)
        flaky.error = None
        results = await dispatcher.dispatch(warning_event)

        by_channel = {r.channel: r for r in results}
        assert by_channel["console"].suppressed is True
        assert by_channel["webhook"].success is True
        assert len(flaky.sent) == 1

    @pytest.mark.asyncio
    async def test_escalation_is_not_suppressed(self, warning_event, clock):
        channel = RecordingChannel("console")
        dispatcher = AlertDispatcher([channel], AlertConfig(), clock=clock)
        critical = AlertEvent.from_limits(
            classify({"DailyApiRequests": {"Max": 100000, "Remaining": 1000}}), org="acme",
        )

        await dispatcher.dispatch(warning_event)
        results = await dispatcher.dispatch(critical)

        assert critical.subject == warning_event.subject
        assert results[0].success is True
        assert dispatcher.cooldown("console").should_send(critical.subject, "critical") is False


class TestConcurrentDispatch:
    @pytest.mark.asyncio
    async def test_overlapping_dispatches_deliver_once(self, warning_event):
        channel = RecordingChannel("console", delay=0.05)
        dispatcher = AlertDispatcher([channel], AlertConfig())
        event = AlertEvent.from_limits(warning_event.limits, subject_id="deploy-0Af")

        first, second = await asyncio.gather(
            dispatcher.dispatch(event), dispatcher.dispatch(event),
        )

        assert len(channel.sent) == 1
        assert sorted([first[0].suppressed, second[0].suppressed]) == [False, True]

    @pytest.mark.asyncio
    async def test_failed_delivery_releases_reservation(self, warning_event):
        channel = RecordingChannel(
            "webhook", error=ChannelDeliveryError("webhook", "500"), delay=0.05,
        )
        dispatcher = AlertDispatcher([channel], AlertConfig())

        results = await dispatcher.dispatch(warning_event)
        assert results[0].success is False

        channel.error = None
        results = await dispatcher.dispatch(warning_event)
        assert results[0].success is True
        assert channel.sent == [warning_event]


class TestPerLimitCooldown:
    @pytest.mark.asyncio
    async def test_new_limit_does_not_resend_cooling_one(self, clock):
        channel = RecordingChannel("console")
        dispatcher = AlertDispatcher([channel], AlertConfig(), clock=clock)
        api_only = classify({"DailyApiRequests": {"Max": 100000, "Remaining": 15000}})
        both = classify({
            "DailyApiRequests": {"Max": 100000, "Remaining": 15000},
            "DataStorageMB": {"Max": 1000, "Remaining": 150},
        })

        await dispatcher.dispatch(AlertEvent.from_limits(api_only))
        results = await dispatcher.dispatch(AlertEvent.from_limits(both))

        assert results[0].success is True
        assert [[r.key for r in e.limits] for e in channel.sent] == [
            ["DailyApiRequests"], ["DataStorageMB"],
        ]
        assert channel.sent[1].message.startswith("1 limit(s) above threshold:")

    @pytest.mark.asyncio
    async def test_all_limits_cooling_is_suppressed(self, clock):
        channel = RecordingChannel("console")
        dispatcher = AlertDispatcher([channel], AlertConfig(), clock=clock)
        both = classify({
            "DailyApiRequests": {"Max": 100000, "Remaining": 15000},
            "DataStorageMB": {"Max": 1000, "Remaining": 150},
        })

        await dispatcher.dispatch(AlertEvent.from_limits(both))
        results = await dispatcher.dispatch(AlertEvent.from_limits(both[:1]))

        assert results[0].suppressed is True
        assert len(channel.sent) == 1

    @pytest.mark.asyncio
    async def test_flapping_limit_stays_suppressed(self, clock):
        channel = RecordingChannel("console")
        dispatcher = AlertDispatcher([channel], AlertConfig(), clock=clock)
        api = classify({"DailyApiRequests": {"Max": 100000, "Remaining": 15000}})
        storage = classify({"DataStorageMB": {"Max": 1000, "Remaining": 150}})

        await dispatcher.dispatch(AlertEvent.from_limits(api + storage))
        clock.now = 60.0
        await dispatcher.dispatch(AlertEvent.from_limits(storage))
        clock.now = 120.0
        results = await dispatcher.dispatch(AlertEvent.from_limits(api + storage))

        assert results[0].suppressed is True
        assert len(channel.sent) == 1


class TestDuplicateChannelNames:
    @pytest.mark.asyncio
    async def test_same_name_channels_keep_separate_cooldowns(self, warning_event):
        first = RecordingChannel("webhook")
        second = RecordingChannel("webhook", error=ChannelDeliveryError("webhook", "500"))
        dispatcher = AlertDispatcher([first, second], AlertConfig())

        results = await dispatcher.dispatch(warning_event)
        assert [r.success for r in results] == [True, False]

        second.error = None
        results = await dispatcher.dispatch(warning_event)

        assert results[0].suppressed is True
        assert results[1].success is True
        assert len(first.sent) == 1
        assert len(second.sent) == 1


class TestDispatchBatch:
    @pytest.mark.asyncio
    async def test_batch_delivers_each(self, warning_event):
        channel = RecordingChannel("console")
        dispatcher = AlertDispatcher([channel], AlertConfig())
        other = AlertEvent.from_limits(
            classify({"DataStorageMB": {"Max": 1000, "Remaining": 10}}),
        )

        await dispatcher.dispatch_batch([warning_event, other])

        assert len(channel.sent) == 2


class TestFromConfig:
    def test_builds_configured_channels(self):
        dispatcher = AlertDispatcher.from_config(AlertConfig(types=["console"]))
        assert [type(c) for c in dispatcher.channels] == [ConsoleChannel]

    def test_skips_unconfigured_channels(self):
        dispatcher = AlertDispatcher.from_config(AlertConfig(types=["console", "slack", "email"]))
        assert [c.name for c in dispatcher.channels] == ["console"]
