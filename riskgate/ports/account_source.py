"""AccountSource Port Interface.

Contract: Fetch the brokerage account and its open positions. Called once at startup to
hydrate the portfolio, and again only on explicit re-hydration.
"""

from __future__ import annotations

from typing import Protocol

from riskgate.types.types import AccountInfo, BrokerPosition


class AccountSource(Protocol):
    def get_account(self) -> AccountInfo: ...

    def get_positions(self) -> list[BrokerPosition]: ...
