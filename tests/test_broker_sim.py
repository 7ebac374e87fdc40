"""
Tests for broker simulation.

Verifies slippage, commission and affordability calculations.
"""

from datetime import datetime

import pytest

from krx_engine.backtest.broker_sim import BrokerSim
from krx_engine.backtest.models import Side

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def default_broker() -> BrokerSim:
    """Frictionless broker."""
    return BrokerSim()


@pytest.fixture
def configured_broker() -> BrokerSim:
    """Broker with KRX-like costs."""
    return BrokerSim(commission_rate=0.0015, slippage_rate=0.001)


class TestFillPrice:
    def test_frictionless_fills_at_close(self, default_broker: BrokerSim) -> None:
        assert default_broker.calculate_fill_price(70_000, Side.BUY) == 70_000
        assert default_broker.calculate_fill_price(70_000, Side.SELL) == 70_000

    def test_buy_pays_up(self, configured_broker: BrokerSim) -> None:
        assert configured_broker.calculate_fill_price(70_000, Side.BUY) == pytest.approx(70_070)

    def test_sell_receives_less(self, configured_broker: BrokerSim) -> None:
        assert configured_broker.calculate_fill_price(70_000, Side.SELL) == pytest.approx(69_930)


class TestCommission:
    def test_commission_on_notional(self, configured_broker: BrokerSim) -> None:
        assert configured_broker.calculate_commission(10, 70_000) == pytest.approx(1_050)

    def test_zero_rate(self, default_broker: BrokerSim) -> None:
        assert default_broker.calculate_commission(10, 70_000) == 0


class TestAffordability:
    def test_includes_slippage_and_commission(self, configured_broker: BrokerSim) -> None:
        """1,000,000 / (70,070 * 1.0015) = 14.25 -> 14 shares."""
        assert configured_broker.max_affordable_quantity(1_000_000, 70_000) == 14

    def test_exact_budget(self, default_broker: BrokerSim) -> None:
        assert default_broker.max_affordable_quantity(700_000, 70_000) == 10

    def test_no_cash(self, configured_broker: BrokerSim) -> None:
        assert configured_broker.max_affordable_quantity(0, 70_000) == 0
        assert configured_broker.max_affordable_quantity(-5, 70_000) == 0


class TestExecute:
    def test_fill_fields(self, configured_broker: BrokerSim) -> None:
        ts = datetime(2024, 3, 4, 9, 30)
        fill = configured_broker.execute("005930", Side.BUY, 10, 70_000, ts)

        assert fill.symbol == "005930"
        assert fill.side == Side.BUY
        assert fill.quantity == 10
        assert fill.price == pytest.approx(70_070)
        assert fill.commission == pytest.approx(700_700 * 0.0015)
        assert fill.notional == pytest.approx(700_700)
        assert fill.timestamp == ts
