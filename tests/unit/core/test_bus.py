import asyncio

import pytest

from riskgate.config.configs import BusConfig, SubscriptionConfig
from riskgate.core.bus import BackpressurePolicy, Bus
from riskgate.core.clock import SimClock
from riskgate.errors.errors import BusError
from riskgate.types.topics import T_LOG, T_LOTS, T_RISK_RESPONSE
from riskgate.types.types import LogEvent


def make_bus(**overrides) -> Bus:
    return Bus(BusConfig(**overrides), SimClock(start_ms=1_000))


# --- Topic Management ---


@pytest.mark.asyncio
async def test_register_topic_and_stats_defaults():
    bus = make_bus()
    await bus.register_topic(T_LOTS)

    stats = await bus.topic_stats(T_LOTS)
    assert stats.name == T_LOTS
    assert stats.high_seq == 0
    assert stats.subscribers == 0
    assert stats.publish_count == 0
    assert stats.max_lag_by_sub == {}


@pytest.mark.asyncio
async def test_topic_stats_unknown_raises():
    bus = make_bus()
    with pytest.raises(KeyError):
        await bus.topic_stats("unknown.topic")


@pytest.mark.asyncio
async def test_register_topic_schema_mismatch_raises():
    bus = make_bus()
    await bus.register_topic(T_LOTS, schema=int)
    # same schema is fine
    await bus.register_topic(T_LOTS, schema=int)
    with pytest.raises(BusError):
        await bus.register_topic(T_LOTS, schema=float)


@pytest.mark.asyncio
async def test_subscribe_unknown_topic_raises_bus_error():
    bus = make_bus()
    with pytest.raises(BusError):
        await bus.subscribe("sub", SubscriptionConfig(topics={"missing.topic"}))


# --- Publish ---


@pytest.mark.asyncio
async def test_publish_assigns_per_topic_sequence_and_key():
    bus = make_bus()
    await bus.register_topic(T_RISK_RESPONSE)
    sub = await bus.subscribe("writer", SubscriptionConfig(topics={T_RISK_RESPONSE}))

    assert await bus.publish(T_RISK_RESPONSE, ts_utc=1_000, payload="a", key="AAPL") == 1
    assert await bus.publish(T_RISK_RESPONSE, ts_utc=1_001, payload="b", key="TSLA") == 2

    async with sub.consume() as env:
        assert (env.seq, env.payload, env.key, env.ts) == (1, "a", "AAPL", 1_000)
    async with sub.consume() as env:
        assert (env.seq, env.payload, env.key) == (2, "b", "TSLA")


@pytest.mark.asyncio
async def test_publish_rejects_bad_inputs():
    bus = make_bus()
    await bus.register_topic(T_LOTS)

    with pytest.raises(BusError):
        await bus.publish("nope", ts_utc=1, payload=None)
    with pytest.raises(BusError):
        await bus.publish(T_LOTS, ts_utc=1.5, payload=None)


@pytest.mark.asyncio
async def test_schema_validation_when_enabled():
    bus = make_bus(validate_schema=True)
    await bus.register_topic(T_LOTS, schema=int)

    await bus.publish(T_LOTS, ts_utc=1, payload=5)
    with pytest.raises(BusError):
        await bus.publish(T_LOTS, ts_utc=1, payload="five")


@pytest.mark.asyncio
async def test_fan_out_reaches_every_subscriber():
    bus = make_bus()
    await bus.register_topic(T_LOTS)
    a = await bus.subscribe("a", SubscriptionConfig(topics={T_LOTS}))
    b = await bus.subscribe("b", SubscriptionConfig(topics={T_LOTS}))

    await bus.publish(T_LOTS, ts_utc=1, payload="x")
    await bus.flush(timeout=1.0)

    assert a.depth() == 1
    assert b.depth() == 1
    stats = await bus.topic_stats(T_LOTS)
    assert stats.max_lag_by_sub == {"a": 0, "b": 0}


@pytest.mark.asyncio
async def test_drop_newest_policy_drops_and_reports():
    bus = make_bus()
    await bus.register_topic(T_LOTS)
    sub = await bus.subscribe(
        "slow", SubscriptionConfig(topics={T_LOTS}, buffer_size=1), BackpressurePolicy.DROP_NEWEST
    )
    dropped = []
    bus.on_dropped(lambda topic, name, env, reason: dropped.append((topic, name, env.seq, reason)))

    await bus.publish(T_LOTS, ts_utc=1, payload="kept")
    await bus.publish(T_LOTS, ts_utc=1, payload="dropped")

    assert sub.depth() == 1
    assert bus.total_drops() == 1
    assert dropped == [(T_LOTS, "slow", 2, "drop_newest")]


# --- Logs ---


@pytest.mark.asyncio
async def test_emit_log_is_noop_without_log_topic():
    bus = make_bus()
    await bus.emit_log("INFO", "HELLO")
    with pytest.raises(KeyError):
        await bus.topic_stats(T_LOG)


@pytest.mark.asyncio
async def test_emit_log_publishes_log_event():
    bus = make_bus()
    await bus.register_topic(T_LOG)
    sub = await bus.subscribe("logs", SubscriptionConfig(topics={T_LOG}))

    await bus.emit_log("WARN", "SOMETHING", {"k": 1}, component="svc")

    # the first entry is the subscriber attach notice
    async with sub.consume() as env:
        assert env.payload.msg == "BUS_SUBSCRIBER_ATTACHED"
    async with sub.consume() as env:
        event = env.payload
        assert isinstance(event, LogEvent)
        assert (event.level, event.msg, event.component, event.payload) == (
            "WARN",
            "SOMETHING",
            "svc",
            {"k": 1},
        )
        assert event.ts_utc == 1_000


# --- Lifecycle ---


@pytest.mark.asyncio
async def test_close_delivers_pending_then_sentinel():
    bus = make_bus()
    await bus.register_topic(T_LOTS)
    sub = await bus.subscribe("c", SubscriptionConfig(topics={T_LOTS}))

    await bus.publish(T_LOTS, ts_utc=1, payload="last")
    await bus.close(reason="done")

    async with sub.consume() as env:
        assert env.payload == "last"
    async with sub.consume() as env:
        assert env is None
    assert sub.closed
    assert sub.close_reason == "done"
    assert not bus.is_running


@pytest.mark.asyncio
async def test_publish_and_subscribe_after_close_raise():
    bus = make_bus()
    await bus.register_topic(T_LOTS)
    await bus.close()
    # idempotent
    await bus.close()

    with pytest.raises(BusError):
        await bus.publish(T_LOTS, ts_utc=1, payload=None)
    with pytest.raises(BusError):
        await bus.subscribe("late", SubscriptionConfig(topics={T_LOTS}))


@pytest.mark.asyncio
async def test_unsubscribe_sends_sentinel_and_detaches():
    bus = make_bus()
    await bus.register_topic(T_LOTS)
    sub = await bus.subscribe("gone", SubscriptionConfig(topics={T_LOTS}))

    await bus.unsubscribe(sub, reason="stop")
    await bus.publish(T_LOTS, ts_utc=1, payload="unseen")

    async with sub.consume() as env:
        assert env is None
    assert sub.depth() == 0
    assert (await bus.topic_stats(T_LOTS)).subscribers == 0


@pytest.mark.asyncio
async def test_wait_until_idle_waits_for_consumers():
    bus = make_bus()
    await bus.register_topic(T_LOTS)
    sub = await bus.subscribe("worker", SubscriptionConfig(topics={T_LOTS}))
    seen = []

    async def worker():
        while True:
            async with sub.consume() as env:
                if env is None:
                    return
                await asyncio.sleep(0)
                seen.append(env.payload)

    task = asyncio.create_task(worker())
    for i in range(5):
        await bus.publish(T_LOTS, ts_utc=1, payload=i)

    await bus.wait_until_idle(timeout=1.0)
    assert seen == [0, 1, 2, 3, 4]

    await bus.close()
    await asyncio.wait_for(task, timeout=1.0)
