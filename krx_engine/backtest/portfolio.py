"""
Position book for backtesting.

Tracks cash, long positions at average cost, and realized trades.
Invariants:
- equity = cash + sum(quantity * last price)
- sum(trade.net_pnl) over a fully closed book == cash - initial_cash
"""

from dataclasses import dataclass, field
from datetime import datetime

from krx_engine.backtest.broker_sim import Fill
from krx_engine.backtest.models import EquityPoint, ExitReason, Side, Trade
from krx_engine.logging import get_logger

logger = get_logger(__name__)


@dataclass
class OpenPosition:
    """A long position held at average cost."""

    symbol: str
    quantity: int
    avg_price: float
    entry_time: datetime
    entry_commission: float = 0.0

    def add(self, fill: Fill) -> None:
        total = self.quantity + fill.quantity
        self.avg_price = (self.avg_price * self.quantity + fill.price * fill.quantity) / total
        self.quantity = total
        self.entry_commission += fill.commission

    def market_value(self, price: float) -> float:
        return self.quantity * price


@dataclass
class Portfolio:
    """Cash, open positions and closed trades for one run."""

    initial_cash: float
    cash: float = field(init=False)
    positions: dict[str, OpenPosition] = field(default_factory=dict)
    trades: list[Trade] = field(default_factory=list)
    last_prices: dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.cash = self.initial_cash

    @property
    def position_value(self) -> float:
        return sum(
            pos.market_value(self.last_prices.get(symbol, pos.avg_price))
            for symbol, pos in self.positions.items()
        )

    @property
    def equity(self) -> float:
        return self.cash + self.position_value

    def get_position(self, symbol: str) -> OpenPosition | None:
        return self.positions.get(symbol)

    def mark(self, symbol: str, price: float) -> None:
        self.last_prices[symbol] = price

    def apply_buy(self, fill: Fill) -> OpenPosition:
        """Open or add to a position; average cost is updated."""
        self.cash -= fill.notional + fill.commission
        position = self.positions.get(fill.symbol)
        if position is None:
            position = OpenPosition(
                symbol=fill.symbol,
                quantity=fill.quantity,
                avg_price=fill.price,
                entry_time=fill.timestamp,
                entry_commission=fill.commission,
            )
            self.positions[fill.symbol] = position
        else:
            position.add(fill)
        return position

    def apply_sell(self, fill: Fill, reason: ExitReason = ExitReason.SIGNAL) -> Trade:
        """
        Reduce or close a position and realize P&L into a Trade.

        Entry commission is allocated pro rata to the closed quantity.
        """
        position = self.positions.get(fill.symbol)
        if position is None or fill.quantity > position.quantity:
            raise ValueError(f"Cannot sell {fill.quantity} {fill.symbol}: position too small")

        share = fill.quantity / position.quantity
        entry_commission = position.entry_commission * share
        gross = (fill.price - position.avg_price) * fill.quantity
        commission = entry_commission + fill.commission
        net = gross - commission
        entry_notional = position.avg_price * fill.quantity

        trade = Trade(
            symbol=fill.symbol,
            side=Side.BUY,
            quantity=fill.quantity,
            entry_time=position.entry_time,
            exit_time=fill.timestamp,
            entry_price=position.avg_price,
            exit_price=fill.price,
            commission=commission,
            gross_pnl=gross,
            net_pnl=net,
            return_pct=net / entry_notional * 100.0 if entry_notional > 0 else 0.0,
            exit_reason=reason,
        )

        self.cash += fill.notional - fill.commission
        position.quantity -= fill.quantity
        position.entry_commission -= entry_commission
        if position.quantity == 0:
            del self.positions[fill.symbol]

        self.trades.append(trade)
        logger.debug("Closed %d %s net_pnl=%.2f", fill.quantity, fill.symbol, net)
        return trade

    def snapshot(self, timestamp: datetime) -> EquityPoint:
        position_value = self.position_value
        return EquityPoint(
            timestamp=timestamp,
            equity=self.cash + position_value,
            cash=self.cash,
            position_value=position_value,
        )
