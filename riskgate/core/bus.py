from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator, Callable, Optional

from riskgate.config.configs import BusConfig, SubscriptionConfig
from riskgate.core.clock import Clock, Millis
from riskgate.errors.errors import BusError
from riskgate.types.topics import T_LOG
from riskgate.types.types import LogEvent

# --- Data structures ---


@dataclass(frozen=True)
class Envelope:
    """Immutable message envelope delivered to subscribers."""

    topic: str
    seq: int  # per topic, strictly increasing
    ts: Millis
    payload: Any
    key: Optional[str] = None  # partition key (e.g., ticker for decisions)


class _BusState(str, Enum):
    """
    Internal enum for lifecycle: Running -> Closing -> Closed
    """

    RUNNING = "RUNNING"  # all APIs are available
    CLOSING = "CLOSING"  # shutting down, new publishes are refused
    CLOSED = "CLOSED"  # everything is torn down


class BackpressurePolicy(str, Enum):
    BLOCK = "block"
    DROP_NEWEST = "drop_newest"


@dataclass
class _TopicState:
    name: str
    schema: Optional[type] = None
    subscribers: set["Subscription"] = field(default_factory=set)
    # sorted by name for deterministic fan-out
    _subscribers_ordered: list["Subscription"] = field(default_factory=list)
    high_seq: int = 0
    _pub_count: int = 0


@dataclass
class TopicStats:
    name: str
    high_seq: int
    subscribers: int
    publish_count: int
    max_lag_by_sub: dict[str, int]


# --- Subscription object ---


class Subscription:
    """
    Consumer handle on the bus.
    A single merged queue holds events from all topics this subscriber cares about,
    in publish order.
    """

    def __init__(
        self,
        bus: "Bus",
        name: str,
        sub_config: SubscriptionConfig,
        policy: BackpressurePolicy = BackpressurePolicy.BLOCK,
    ) -> None:
        self.bus = bus
        self.name = name
        self.topics: set[str] = set(sub_config.topics)
        eff_buffer_size: int = (
            sub_config.buffer_size
            if sub_config.buffer_size is not None
            else bus._cfg.default_buffer_size
        )
        self.queue: asyncio.Queue[Optional[Envelope]] = asyncio.Queue(maxsize=eff_buffer_size)
        self._policy = policy
        self._closed: bool = False
        self._close_reason: Optional[str] = None
        self._enqueued_seq: dict[str, int] = {t: 0 for t in self.topics}
        self._drops: int = 0
        self._delivered: int = 0

    @asynccontextmanager
    async def consume(self) -> AsyncGenerator[Optional[Envelope], None]:
        """
        Context manager to process a message. Yields None once the bus has closed.
        Acknowledges the item (task_done) only when exiting the block.
        """
        item = await self.queue.get()
        try:
            yield item
        finally:
            self.queue.task_done()
            if item is not None:
                self._delivered += 1

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def close_reason(self) -> Optional[str]:
        return self._close_reason

    def depth(self) -> int:
        return self.queue.qsize()

    def enqueued_seq(self, topic: str) -> int:
        return self._enqueued_seq.get(topic, 0)

    async def mark_closed(self, reason: str) -> None:
        """Signal shutdown to the consumer with a sentinel None (idempotent)."""
        if self._closed:
            return
        self._closed = True
        self._close_reason = reason
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            # evict one item so the sentinel always fits
            try:
                self.queue.get_nowait()
                self.queue.task_done()
                self._drops += 1
            except asyncio.QueueEmpty:
                pass
            self.queue.put_nowait(None)

    async def enqueue(self, env: Envelope) -> bool:
        """Returns True if the envelope was queued, False if it was dropped."""
        if self._closed:
            self._mark_seen(env)
            return False
        if not self.queue.full():
            self.queue.put_nowait(env)
            self._enqueued_seq[env.topic] = env.seq
            return True
        if self._policy == BackpressurePolicy.BLOCK:
            await self.queue.put(env)
            self._enqueued_seq[env.topic] = env.seq
            return True
        self._mark_seen(env)
        self._drops += 1
        await self.bus._record_drop(env.topic, self.name, env, "drop_newest")
        return False

    def _mark_seen(self, env: Envelope) -> None:
        # must be called, even if dropped
        if env.seq > self._enqueued_seq.get(env.topic, 0):
            self._enqueued_seq[env.topic] = env.seq


# --- Bus object ---


class Bus:
    """
    In-process asyncio pub/sub.

    - 1. Create a bus
    - 2. Create topics with register_topic
    - 3. For each consumer, subscribe with a SubscriptionConfig
    - 4. publish(topic, ts_utc, payload, key=...) fans out to subscribers in name order
    - 5. close() drains and sends every subscriber a sentinel
    """

    def __init__(self, cfg: BusConfig, clock: Clock) -> None:
        self._cfg = cfg
        self._clock = clock
        self._state: _BusState = _BusState.RUNNING
        self._subscriptions: set[Subscription] = set()
        self._topics: dict[str, _TopicState] = {}
        self._lock = asyncio.Lock()
        self._progress = asyncio.Event()
        self._progress.set()
        self._drops_by_topic: dict[str, int] = {}
        self._on_drop: list[Callable[[str, str, Optional[Envelope], str], None]] = []
        self._no_sub_once: set[str] = set()

    # --- helpers ---

    async def _record_drop(
        self, topic: str, sub_name: str, env: Optional[Envelope], reason: str
    ) -> None:
        self._drops_by_topic[topic] = self._drops_by_topic.get(topic, 0) + 1
        for cb in list(self._on_drop):
            cb(topic, sub_name, env, reason)
        if topic == T_LOG:
            return
        await self.emit_log(
            "WARN",
            "BUS_DROP",
            payload={
                "topic": topic,
                "subscriber": sub_name,
                "reason": reason,
                "seq": env.seq if env is not None else None,
                "key": env.key if env is not None else None,
            },
        )

    def on_dropped(self, callback: Callable[[str, str, Optional[Envelope], str], None]) -> None:
        """Register a drop hook: callback(topic, subscriber_name, envelope_or_none, reason)."""
        self._on_drop.append(callback)

    async def emit_log(
        self,
        level: str,
        msg: str,
        payload: Optional[dict[str, Any]] = None,
        component: str = "BUS",
    ) -> None:
        """Payload must be JSON serializable. No-op once the bus stops running."""
        if self._state != _BusState.RUNNING or T_LOG not in self._topics:
            return
        ts = self._clock.now()
        log_event = LogEvent(
            level=level,
            component=component,
            msg=msg,
            payload=payload or {},
            ts_utc=ts,
        )
        await self.publish(topic=T_LOG, ts_utc=ts, payload=log_event)

    # --- Topic Management ---

    async def register_topic(self, name: str, *, schema: Optional[type] = None) -> None:
        """Declare a topic. Re-registering validates that the schema matches."""
        async with self._lock:
            existing = self._topics.get(name)
            if existing is None:
                self._topics[name] = _TopicState(name=name, schema=schema)
            elif schema is not None and existing.schema is not None and schema is not existing.schema:
                raise BusError(
                    f"Topic '{name}' schema mismatch: {schema} vs existing {existing.schema}"
                )
            else:
                return
        await self.emit_log(
            "INFO",
            "BUS_TOPIC_REGISTERED",
            {"topic": name, "schema": getattr(schema, "__name__", None)},
        )

    # --- subscriptions ---

    async def subscribe(
        self,
        name: str,
        sub_config: SubscriptionConfig,
        policy: BackpressurePolicy = BackpressurePolicy.BLOCK,
    ) -> Subscription:
        if self._state != _BusState.RUNNING:
            raise BusError("Cannot subscribe: bus is closing/closed")

        sub = Subscription(self, name, sub_config, policy)
        async with self._lock:
            for t in sub.topics:
                ts = self._topics.get(t)
                if ts is None:
                    raise BusError(f"Topic {t!r} not registered")
            for t in sub.topics:
                ts = self._topics[t]
                ts.subscribers.add(sub)
                ts._subscribers_ordered = sorted(ts.subscribers, key=lambda s: s.name)
            self._subscriptions.add(sub)

        await self.emit_log(
            "INFO",
            "BUS_SUBSCRIBER_ATTACHED",
            {
                "subscriber": name,
                "topics": sorted(sub.topics),
                "buffer_size": sub.queue.maxsize,
                "policy": sub._policy.value,
            },
        )
        return sub

    async def unsubscribe(self, subscription: Subscription, reason: str = "unsubscribe") -> None:
        """Detach a subscription. It receives a sentinel and stops getting new events."""
        await subscription.mark_closed(reason)
        async with self._lock:
            self._subscriptions.discard(subscription)
            for ts in self._topics.values():
                ts.subscribers.discard(subscription)
                ts._subscribers_ordered = sorted(ts.subscribers, key=lambda s: s.name)

    # --- publish ---

    async def publish(
        self, topic: str, ts_utc: Millis, payload: Any, key: Optional[str] = None
    ) -> int:
        """Fan-out to all subscribers of topic. Returns the topic sequence number."""
        if self._state != _BusState.RUNNING:
            raise BusError("Cannot publish: bus is closing/closed")
        if not isinstance(ts_utc, int):
            raise BusError(f"ts_utc is of type {type(ts_utc)}")

        async with self._lock:
            tstate = self._topics.get(topic)
            if tstate is None:
                raise BusError(f"Publish: Topic {topic} unknown")
            if (
                self._cfg.validate_schema
                and tstate.schema is not None
                and not isinstance(payload, tstate.schema)
            ):
                raise BusError(
                    f"Schema {tstate.schema} does not align with payload type {type(payload)}"
                )
            tstate.high_seq += 1
            tstate._pub_count += 1
            seq = tstate.high_seq
            subscribers = list(tstate._subscribers_ordered)

        if not subscribers and topic not in self._no_sub_once and topic != T_LOG:
            self._no_sub_once.add(topic)
            await self.emit_log("WARN", "BUS_PUBLISH_NO_SUBSCRIBERS", {"topic": topic})

        env = Envelope(topic=topic, seq=seq, ts=ts_utc, payload=payload, key=key)
        any_enqueued = False
        for sub in subscribers:
            ok = await sub.enqueue(env)
            any_enqueued = any_enqueued or ok
        if any_enqueued:
            await asyncio.sleep(0)
            self._progress.set()
        return seq

    # --- Lifecycle API ---

    async def flush(self, timeout: Optional[float] = None) -> None:
        """
        Block until every message published before this call has been enqueued in
        every mailbox. Does not wait for consumers to process them.
        """
        if self._state == _BusState.CLOSED:
            return
        async with self._lock:
            watermark = {t: ts.high_seq for t, ts in self._topics.items()}
            subs = list(self._subscriptions)
        if not watermark or not subs:
            return
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            if all(
                sub.closed or sub.enqueued_seq(t) >= watermark[t]
                for sub in subs
                for t in sub.topics & watermark.keys()
            ):
                return
            wait_for = self._cfg.flush_check_interval
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0.0:
                    raise asyncio.TimeoutError("Bus.flush timed out")
                wait_for = min(wait_for, remaining)
            self._progress.clear()
            try:
                await asyncio.wait_for(self._progress.wait(), timeout=wait_for)
            except asyncio.TimeoutError:
                pass

    async def wait_until_idle(self, timeout: Optional[float] = 5.0) -> None:
        """Barrier. Blocks until all items in all queues have been processed."""
        async with self._lock:
            subs = list(self._subscriptions)
        await asyncio.wait_for(asyncio.gather(*[sub.queue.join() for sub in subs]), timeout)

    async def close(
        self, reason: Optional[str] = None, *, drain: bool = True, timeout: Optional[float] = None
    ) -> None:
        """
        Graceful shutdown. Safe to call multiple times.
        - Optionally flush (drain=True) to deliver all messages already published
        - Signal all subscriptions with a sentinel (None) and mark CLOSED
        """
        async with self._lock:
            if self._state != _BusState.RUNNING:
                return
            sub_count = len(self._subscriptions)

        await self.emit_log(
            "INFO",
            "BUS_CLOSE_START",
            {"reason": reason or "unspecified", "drain": drain, "subscriptions": sub_count},
        )

        async with self._lock:
            self._state = _BusState.CLOSING

        if drain:
            try:
                await self.flush(timeout=timeout)
            except asyncio.TimeoutError:
                pass

        async with self._lock:
            subs = list(self._subscriptions)
        for sub in subs:
            await sub.mark_closed(reason or "bus.close()")

        async with self._lock:
            self._subscriptions.clear()
            self._topics.clear()
            self._state = _BusState.CLOSED
            self._progress.set()

    # --- diagnostics ---

    @property
    def is_running(self) -> bool:
        return self._state == _BusState.RUNNING

    async def topic_stats(self, topic: str) -> TopicStats:
        async with self._lock:
            ts = self._topics.get(topic)
            if ts is None:
                raise KeyError(f"Topic '{topic}' not found")
            subs = list(ts.subscribers)
            high_seq = ts.high_seq
            pub_count = ts._pub_count
        return TopicStats(
            name=topic,
            high_seq=high_seq,
            subscribers=len(subs),
            publish_count=pub_count,
            max_lag_by_sub={sub.name: high_seq - sub.enqueued_seq(topic) for sub in subs},
        )

    def total_drops(self) -> int:
        return sum(self._drops_by_topic.values())
