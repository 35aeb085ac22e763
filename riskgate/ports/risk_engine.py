"""RiskEngine Port Interface.

Contract: Pre-trade checks return a decision (Granted or Denied). Malformed requests
raise instead of producing a decision.
"""

from __future__ import annotations

from typing import Protocol

from riskgate.types.types import RiskCheckResponse, TradeIntent


class RiskEngine(Protocol):
    def risk_check(self, trade_intent: TradeIntent) -> RiskCheckResponse: ...
