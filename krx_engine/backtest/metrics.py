"""
Performance metrics calculation for backtesting.

Curve metrics (return, Sharpe, Sortino, Calmar, drawdown) come from the equity
curve. Win rate, profit factor and the risk profile (VaR, CVaR, moments,
Kelly) come from closed trades. All functions are pure; percentages are in
percent units.
"""

import math
from collections.abc import Sequence

from krx_engine.backtest.models import EquityPoint, PerformanceMetrics, RiskMetrics, Trade
from krx_engine.config import get_settings
from krx_engine.logging import get_logger

logger = get_logger(__name__)

DEFAULT_PERIODS_PER_YEAR = 252.0

# math.exp overflows just above 709
_MAX_EXPONENT = 700.0


def calculate_total_return_pct(initial_capital: float, final_capital: float) -> float:
    """(final - initial) / initial * 100."""
    if initial_capital <= 0:
        return 0.0
    return (final_capital - initial_capital) / initial_capital * 100.0


def calculate_returns(equity_curve: Sequence[EquityPoint]) -> list[float]:
    """Calculate period-over-period returns from equity curve."""
    returns = []
    for prev, curr in zip(equity_curve, equity_curve[1:]):
        if prev.equity > 0:
            returns.append((curr.equity - prev.equity) / prev.equity)
        else:
            returns.append(0.0)
    return returns


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _pstdev(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    mean = _mean(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return math.sqrt(variance) if variance > 0 else 0.0


def calculate_sharpe_ratio(
    returns: Sequence[float],
    periods_per_year: float = DEFAULT_PERIODS_PER_YEAR,
    risk_free_rate: float = 0.0,
) -> float:
    """
    Calculate Sharpe ratio.

    Sharpe = (mean_return - rf_per_period) / pstdev * sqrt(periods_per_year)

    Flat equity (zero standard deviation) yields 0 instead of NaN.
    """
    if len(returns) < 2:
        return 0.0

    std_dev = _pstdev(returns)
    if std_dev <= 0:
        return 0.0

    excess = _mean(returns) - risk_free_rate / periods_per_year
    return excess / std_dev * math.sqrt(periods_per_year)


def calculate_sortino_ratio(
    returns: Sequence[float],
    periods_per_year: float = DEFAULT_PERIODS_PER_YEAR,
    risk_free_rate: float = 0.0,
) -> float:
    """
    Calculate Sortino ratio (uses downside deviation).

    Downside deviation is the root mean square of negative returns over all
    periods. No downside yields 0.
    """
    if len(returns) < 2:
        return 0.0

    downside = math.sqrt(sum(min(r, 0.0) ** 2 for r in returns) / len(returns))
    if downside <= 0:
        return 0.0

    excess = _mean(returns) - risk_free_rate / periods_per_year
    return excess / downside * math.sqrt(periods_per_year)


def calculate_max_drawdown(equity_curve: Sequence[EquityPoint]) -> tuple[float, float, int]:
    """
    Calculate maximum drawdown in one forward pass over the curve.

    Returns (max_drawdown_absolute, max_drawdown_pct, max_drawdown_duration_bars).
    """
    if len(equity_curve) < 2:
        return 0.0, 0.0, 0

    peak = equity_curve[0].equity
    max_dd = 0.0
    max_dd_pct = 0.0
    duration = 0
    max_duration = 0

    for point in equity_curve:
        if point.equity >= peak:
            peak = point.equity
            duration = 0
            continue

        duration += 1
        max_duration = max(max_duration, duration)
        dd = peak - point.equity
        max_dd = max(max_dd, dd)
        if peak > 0:
            max_dd_pct = max(max_dd_pct, dd / peak * 100.0)

    return max_dd, max_dd_pct, max_duration


def calculate_annualized_return_pct(
    initial_capital: float,
    final_capital: float,
    num_periods: int,
    periods_per_year: float = DEFAULT_PERIODS_PER_YEAR,
) -> float:
    """Compound annual growth rate in percent; at least one trading day is assumed."""
    if initial_capital <= 0 or num_periods <= 0:
        return 0.0
    ratio = final_capital / initial_capital
    if ratio <= 0:
        return -100.0
    years = max(num_periods / periods_per_year, 1.0 / DEFAULT_PERIODS_PER_YEAR)
    exponent = math.log(ratio) / years
    if exponent > _MAX_EXPONENT:
        return math.inf
    return (math.exp(exponent) - 1.0) * 100.0


def calculate_calmar_ratio(annualized_return_pct: float, max_drawdown_pct: float) -> float:
    """Calmar = annualized return / max drawdown."""
    if max_drawdown_pct <= 0:
        return 0.0
    return annualized_return_pct / max_drawdown_pct


def calculate_volatility_pct(
    returns: Sequence[float],
    periods_per_year: float = DEFAULT_PERIODS_PER_YEAR,
) -> float:
    """Annualized volatility of period returns, in percent."""
    if len(returns) < 2:
        return 0.0
    return _pstdev(returns) * math.sqrt(periods_per_year) * 100.0


def calculate_profit_factor(trades: Sequence[Trade], cap: float) -> float:
    """
    Gross profit / gross loss.

    Returns ``cap`` when there are no losing trades, so that comparisons stay
    well-ordered and a no-loss run never reports infinity.
    """
    gross_profit = sum(t.net_pnl for t in trades if t.net_pnl > 0)
    gross_loss = abs(sum(t.net_pnl for t in trades if t.net_pnl < 0))
    if gross_loss == 0:
        return cap
    return min(gross_profit / gross_loss, cap)


def calculate_trade_metrics(trades: Sequence[Trade], profit_factor_cap: float) -> dict[str, float]:
    """Calculate trading metrics from closed trades."""
    wins = [t.net_pnl for t in trades if t.net_pnl > 0]
    losses = [t.net_pnl for t in trades if t.net_pnl < 0]
    total = len(trades)

    return {
        "total_trades": total,
        "winning_trades": len(wins),
        "losing_trades": len(losses),
        "win_rate": len(wins) / total * 100.0 if total else 0.0,
        "profit_factor": calculate_profit_factor(trades, profit_factor_cap),
        "avg_trade_return_pct": _mean([t.return_pct for t in trades]),
        "avg_win": _mean(wins),
        "avg_loss": _mean(losses),
        "largest_win": max(wins, default=0.0),
        "largest_loss": min(losses, default=0.0),
    }


def compute_performance_metrics(
    trades: Sequence[Trade],
    equity_curve: Sequence[EquityPoint],
    initial_capital: float,
    periods_per_year: float = DEFAULT_PERIODS_PER_YEAR,
    profit_factor_cap: float | None = None,
    risk_free_rate: float | None = None,
) -> PerformanceMetrics:
    """
    Compute the complete metrics snapshot for a run.

    Args:
        trades: Closed trades
        equity_curve: Equity points in time order
        initial_capital: Starting capital
        periods_per_year: Annualization factor for the bar timeframe
        profit_factor_cap: No-loss sentinel, defaults to settings
        risk_free_rate: Annual risk-free rate, defaults to settings

    Returns:
        PerformanceMetrics
    """
    settings = get_settings()
    if profit_factor_cap is None:
        profit_factor_cap = settings.profit_factor_cap
    if risk_free_rate is None:
        risk_free_rate = settings.risk_free_rate

    final_capital = equity_curve[-1].equity if equity_curve else initial_capital
    returns = calculate_returns(equity_curve)

    total_return_pct = calculate_total_return_pct(initial_capital, final_capital)
    annualized = calculate_annualized_return_pct(
        initial_capital, final_capital, len(returns), periods_per_year
    )
    max_dd, max_dd_pct, max_dd_duration = calculate_max_drawdown(equity_curve)
    trade_metrics = calculate_trade_metrics(trades, profit_factor_cap)

    return PerformanceMetrics(
        total_return_pct=total_return_pct,
        total_pnl=final_capital - initial_capital,
        annualized_return_pct=annualized,
        sharpe_ratio=calculate_sharpe_ratio(returns, periods_per_year, risk_free_rate),
        sortino_ratio=calculate_sortino_ratio(returns, periods_per_year, risk_free_rate),
        calmar_ratio=calculate_calmar_ratio(annualized, max_dd_pct),
        volatility_pct=calculate_volatility_pct(returns, periods_per_year),
        max_drawdown=max_dd,
        max_drawdown_pct=max_dd_pct,
        max_drawdown_duration_bars=max_dd_duration,
        **trade_metrics,
    )


# =============================================================================
# Trade-level risk
# =============================================================================


def _moments(returns: Sequence[float]) -> tuple[float, float, float]:
    """Population standard deviation plus the third and fourth central moments."""
    mean = _mean(returns)
    n = len(returns)
    m2 = sum((r - mean) ** 2 for r in returns) / n
    m3 = sum((r - mean) ** 3 for r in returns) / n
    m4 = sum((r - mean) ** 4 for r in returns) / n
    return math.sqrt(m2), m3, m4


def calculate_var(returns: Sequence[float], confidence: float = 0.95) -> float:
    """Historical VaR: the sorted return at index floor((1 - confidence) * n)."""
    if not returns:
        return 0.0
    ordered = sorted(returns)
    index = min(int((1.0 - confidence) * len(ordered)), len(ordered) - 1)
    return ordered[index]


def calculate_cvar(returns: Sequence[float], confidence: float = 0.95) -> float:
    """Mean of the returns strictly worse than VaR; VaR itself when there are none."""
    var = calculate_var(returns, confidence)
    worse = [r for r in returns if r < var]
    return _mean(worse) if worse else var


def calculate_omega_ratio(returns: Sequence[float], cap: float) -> float:
    """Sum of gains over sum of losses around a zero threshold."""
    if not returns:
        return 0.0
    gains = sum(r for r in returns if r > 0)
    losses = sum(-r for r in returns if r <= 0)
    if losses == 0:
        return cap if gains > 0 else 1.0
    return min(gains / losses, cap)


def calculate_kelly_fraction(trades: Sequence[Trade]) -> float:
    """
    Kelly = p - q / b, clamped to [0, 1].

    p is the win rate, q = 1 - p and b is the average winning return over the
    average losing return. No losing trades yields 0.
    """
    wins = [t.return_pct for t in trades if t.net_pnl > 0]
    losses = [abs(t.return_pct) for t in trades if t.net_pnl < 0]
    if not trades or not losses:
        return 0.0
    avg_loss = _mean(losses)
    payoff = _mean(wins) / avg_loss if avg_loss > 0 else 0.0
    if payoff <= 0:
        return 0.0
    p = len(wins) / len(trades)
    return min(max(p - (1.0 - p) / payoff, 0.0), 1.0)


def calculate_tail_ratio(returns: Sequence[float], cap: float) -> float:
    """|95th percentile| / |5th percentile|; 1.0 below 20 trades."""
    if len(returns) < 20:
        return 1.0
    ordered = sorted(returns)
    n = len(ordered)
    low = abs(ordered[int(0.05 * n)])
    high = abs(ordered[min(int(0.95 * n), n - 1)])
    if low == 0:
        return cap if high > 0 else 1.0
    return min(high / low, cap)


def calculate_gain_to_pain_ratio(returns: Sequence[float], cap: float) -> float:
    """Sum of all returns over the sum of absolute losing returns."""
    if not returns:
        return 0.0
    total = sum(returns)
    pain = sum(-r for r in returns if r < 0)
    if pain == 0:
        return cap if total > 0 else 0.0
    return min(total / pain, cap)


def calculate_risk_metrics(
    trades: Sequence[Trade],
    total_return_pct: float,
    max_drawdown_pct: float,
    cap: float | None = None,
) -> RiskMetrics:
    """
    Risk profile of a run from its closed trades.

    Ratios that would divide by zero return ``cap`` (profit-factor cap from
    settings by default) when the numerator is positive.
    """
    if cap is None:
        cap = get_settings().profit_factor_cap
    returns = [t.return_pct for t in trades]
    if not returns:
        return RiskMetrics()

    std, m3, m4 = _moments(returns)
    losing = [r for r in returns if r < 0]
    skewness = m3 / std**3 if len(returns) >= 3 and std > 0 else 0.0
    kurtosis = m4 / std**4 if len(returns) >= 4 and std > 0 else 3.0
    kelly = calculate_kelly_fraction(trades)

    return RiskMetrics(
        volatility_pct=std,
        downside_deviation_pct=math.sqrt(_mean([r * r for r in losing])) if losing else 0.0,
        var_95_pct=calculate_var(returns, 0.95),
        cvar_95_pct=calculate_cvar(returns, 0.95),
        recovery_factor=total_return_pct / max_drawdown_pct if max_drawdown_pct > 0 else 0.0,
        omega_ratio=calculate_omega_ratio(returns, cap),
        skewness=skewness,
        kurtosis=kurtosis,
        excess_kurtosis=kurtosis - 3.0,
        kelly_fraction=kelly,
        half_kelly=kelly / 2.0,
        tail_ratio=calculate_tail_ratio(returns, cap),
        gain_to_pain_ratio=calculate_gain_to_pain_ratio(returns, cap),
    )
