"""
Risk service host loop.

Consumes lots, trade intents and market-status events from the bus in publish order and
drives the RiskManager:
    - Lot          -> update holdings
    - TradeIntent  -> risk_check, publish the decision on T_RISK_RESPONSE keyed by ticker
    - MarketStatus -> stop consuming once the market is closed and the next open is
                      further away than the configured threshold

Payloads may be typed events or raw JSON (bytes/str) straight from a transport.
Input and dependency errors are logged, counted and skipped; no decision is published
for a failed check. Hydration errors propagate out of start().
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from riskgate.config.configs import ServiceConfig, SubscriptionConfig
from riskgate.core.bus import Bus, Envelope, Subscription
from riskgate.core.clock import Clock, to_millis
from riskgate.core.codec import parse_input
from riskgate.core.risk_manager import RiskManager
from riskgate.errors.errors import DependencyError, InputError, MessageParseError
from riskgate.types.topics import (
    T_CONTROL,
    T_LOG,
    T_LOTS,
    T_MARKET_STATUS,
    T_RISK_REQUEST,
    T_RISK_RESPONSE,
)
from riskgate.types.types import (
    ControlEvent,
    DecisionResult,
    Input,
    LogEvent,
    Lot,
    MarketStatus,
    TradeIntent,
)

_LOGGER = logging.getLogger(__name__)

_HOUR_MS = 3_600_000


@dataclass
class ServiceStats:
    lots: int = 0
    intents: int = 0
    granted: int = 0
    denied: int = 0
    input_errors: int = 0
    dependency_errors: int = 0
    market_status: int = 0
    dropped_decisions: int = 0


class RiskService:
    def __init__(
        self,
        bus: Bus,
        risk_manager: RiskManager,
        clock: Clock,
        cfg: Optional[ServiceConfig] = None,
    ) -> None:
        self._bus = bus
        self._rm = risk_manager
        self._clock = clock
        self._cfg = cfg or ServiceConfig()
        self._sub: Optional[Subscription] = None
        self._running = False
        self._stop_reason: Optional[str] = None
        self.stats = ServiceStats()

    @property
    def name(self) -> str:
        return self._cfg.name

    @property
    def stop_reason(self) -> Optional[str]:
        return self._stop_reason

    # --- lifecycle ---

    async def start(self) -> None:
        """Hydrate the portfolio, register topics and subscribe. Hydration errors propagate."""
        snapshot = await asyncio.to_thread(self._rm.initialize)

        for topic in (T_LOTS, T_RISK_REQUEST, T_MARKET_STATUS, T_RISK_RESPONSE, T_CONTROL, T_LOG):
            await self._bus.register_topic(topic)
        self._sub = await self._bus.subscribe(
            self.name,
            SubscriptionConfig(
                topics={T_LOTS, T_RISK_REQUEST, T_MARKET_STATUS},
                buffer_size=self._cfg.buffer_size,
            ),
        )
        self._running = True
        await self._emit_log(
            "INFO",
            "SERVICE_STARTED",
            {
                "cash": str(self._rm.cash),
                "pattern_day_trader": snapshot.is_pattern_day_trader,
                "has_prior_day": snapshot.has_prior_day,
            },
        )

    async def run(self) -> None:
        """Consume until the bus closes or a market-status event stops the service."""
        if self._sub is None:
            raise RuntimeError("RiskService.run() called before start()")
        while self._running:
            async with self._sub.consume() as env:
                if env is None:
                    self._running = False
                    self._stop_reason = self._stop_reason or self._sub.close_reason
                    break
                await self.handle(env)
        _LOGGER.info(
            "risk_service_stopped",
            extra={"event": "risk_service_stopped", "reason": self._stop_reason},
        )

    async def stop(self, reason: str) -> None:
        if not self._running:
            return
        self._running = False
        self._stop_reason = reason
        await self._publish_control("stop", {"reason": reason})
        if self._sub is not None:
            await self._bus.unsubscribe(self._sub, reason=reason)

    # --- dispatch ---

    async def handle(self, env: Envelope) -> None:
        try:
            event = self._decode(env.payload)
            if isinstance(event, Lot):
                await self.on_lot(event)
            elif isinstance(event, TradeIntent):
                await self.on_trade_intent(event)
            elif isinstance(event, MarketStatus):
                await self.on_market_status(event)
            else:
                raise MessageParseError(
                    f"Unsupported payload type {type(event).__name__}", component=self.name
                )
        except InputError as exc:
            self.stats.input_errors += 1
            await self._report_error("INPUT_ERROR", exc, env)
        except DependencyError as exc:
            self.stats.dependency_errors += 1
            await self._report_error("DEPENDENCY_ERROR", exc, env)

    @staticmethod
    def _decode(payload: Any) -> Input:
        if isinstance(payload, (bytes, bytearray, str)):
            return parse_input(payload)
        return payload

    async def on_lot(self, lot: Lot) -> None:
        self.stats.lots += 1
        self._rm.apply_lot(lot)

    async def on_trade_intent(self, intent: TradeIntent) -> None:
        self.stats.intents += 1
        # market orders may block on the price source
        decision = await asyncio.to_thread(self._rm.risk_check, intent)
        if decision.result == DecisionResult.GRANTED:
            self.stats.granted += 1
        else:
            self.stats.denied += 1
        if not self._bus.is_running:
            self.stats.dropped_decisions += 1
            _LOGGER.warning(
                "risk_decision_dropped",
                extra={
                    "event": "risk_decision_dropped",
                    "intent_id": intent.id,
                    "ticker": intent.ticker,
                    "result": decision.result.value,
                },
            )
            return
        await self._bus.publish(
            T_RISK_RESPONSE, ts_utc=self._clock.now(), payload=decision, key=intent.ticker
        )

    async def on_market_status(self, status: MarketStatus) -> None:
        self.stats.market_status += 1
        if status.is_open or not self._cfg.stop_on_market_close:
            return
        if status.next_open is None:
            return
        gap_ms = to_millis(status.next_open) - self._clock.now()
        threshold_ms = int(self._cfg.market_close_threshold_hours * _HOUR_MS)
        if gap_ms > threshold_ms:
            await self._emit_log(
                "INFO",
                "MARKET_CLOSED_STOPPING",
                {"next_open": status.next_open.isoformat(), "gap_ms": gap_ms},
            )
            await self.stop("market_closed")

    # --- logging ---

    async def _report_error(self, msg: str, exc: Exception, env: Envelope) -> None:
        _LOGGER.error(
            "risk_service_event_failed",
            extra={
                "event": "risk_service_event_failed",
                "topic": env.topic,
                "seq": env.seq,
                "error": str(exc),
            },
        )
        await self._emit_log(
            "ERROR",
            msg,
            {
                "topic": env.topic,
                "seq": env.seq,
                "error_type": type(exc).__name__,
                "error": str(exc),
            },
        )

    async def _emit_log(self, level: str, msg: str, payload: Optional[dict[str, Any]]) -> None:
        """Publish a LogEvent; silently skipped once the bus stopped running."""
        if not self._bus.is_running:
            return
        now = self._clock.now()
        log_event = LogEvent(
            level=level, component=self.name, msg=msg, payload=payload or {}, ts_utc=now
        )
        await self._bus.publish(topic=T_LOG, ts_utc=now, payload=log_event)

    async def _publish_control(self, type_: str, details: dict[str, Any]) -> None:
        if not self._bus.is_running:
            return
        now = self._clock.now()
        await self._bus.publish(
            T_CONTROL,
            ts_utc=now,
            payload=ControlEvent(type=type_, source=self.name, ts_utc=now, details=details),
        )
