"""
Broker simulation for backtesting.

Fills every order at the current bar's close adjusted by a proportional
slippage rate and charges a proportional commission on fill notional.
"""

import math
from dataclasses import dataclass
from datetime import datetime

from krx_engine.backtest.models import Side
from krx_engine.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Fill:
    """A simulated execution."""

    symbol: str
    side: Side
    quantity: int
    price: float
    commission: float
    timestamp: datetime

    @property
    def notional(self) -> float:
        return self.quantity * self.price


@dataclass
class BrokerSim:
    """
    Simulated broker for backtesting.

    Fill price model:
    - BUY: fill at bar_close * (1 + slippage_rate)
    - SELL: fill at bar_close * (1 - slippage_rate)

    Both sides move against the trader. KRX equities trade in whole shares.
    """

    commission_rate: float = 0.0
    slippage_rate: float = 0.0

    def calculate_fill_price(self, bar_close: float, side: Side) -> float:
        if side == Side.BUY:
            return bar_close * (1.0 + self.slippage_rate)
        return bar_close * (1.0 - self.slippage_rate)

    def calculate_commission(self, quantity: int, price: float) -> float:
        return quantity * price * self.commission_rate

    def max_affordable_quantity(self, budget: float, bar_close: float) -> int:
        """Largest whole-share BUY whose notional plus commission fits ``budget``."""
        if budget <= 0:
            return 0
        unit_cost = self.calculate_fill_price(bar_close, Side.BUY) * (1.0 + self.commission_rate)
        return max(0, math.floor(budget / unit_cost))

    def execute(
        self,
        symbol: str,
        side: Side,
        quantity: int,
        bar_close: float,
        timestamp: datetime,
    ) -> Fill:
        """Fill ``quantity`` shares in full at the slipped price."""
        price = self.calculate_fill_price(bar_close, side)
        commission = self.calculate_commission(quantity, price)
        logger.debug(
            "Fill %s %s %d @ %.2f (close=%.2f, commission=%.2f)",
            side.value,
            symbol,
            quantity,
            price,
            bar_close,
            commission,
        )
        return Fill(
            symbol=symbol,
            side=side,
            quantity=quantity,
            price=price,
            commission=commission,
            timestamp=timestamp,
        )
