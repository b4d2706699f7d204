from core.events import AlertRaised, BackupFailed, EventBus


async def test_publish_reaches_every_subscriber(collector):
    seen = []

    async def other(event):
        seen.append(event)

    bus = EventBus([collector])
    bus.subscribe(other)
    await bus.publish(BackupFailed(error="boom"))

    assert collector.events == [BackupFailed(error="boom")]
    assert seen == [BackupFailed(error="boom")]


async def test_failing_subscriber_is_isolated(collector):
    async def broken(event):
        raise RuntimeError("webhook down")

    bus = EventBus([broken, collector])
    await bus.publish(AlertRaised(title="t", message="m"))

    assert len(collector.events) == 1
