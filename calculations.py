"""
Portfolio Calculation Engine
Return series, risk metrics, correlation and performance attribution
"""

import math
import warnings
import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from exceptions import InvalidInputError, DivisionByZeroWarning
from models import (
    AttributionResult, CorrelationPair, Holding, HoldingAttribution,
    PricePoint, RiskMetrics, as_return_series,
)

logger = logging.getLogger(__name__)

TRADING_DAYS = 252
DEFAULT_RISK_FREE_RATE = 0.02
VAR_CONFIDENCE = 0.95
DEFAULT_BENCHMARK_WEIGHT = 0.1


def _as_series(values: Sequence[float], name: str, min_length: int = 2) -> np.ndarray:
    """Validate a 1-D finite series and return it as a float array"""
    try:
        series = np.asarray(values, dtype=float)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"{name} must be a sequence of numbers") from e

    if series.ndim != 1:
        raise InvalidInputError(f"{name} must be one-dimensional")
    if len(series) < min_length:
        raise InvalidInputError(
            f"{name} needs at least {min_length} observations, got {len(series)}"
        )
    if not np.all(np.isfinite(series)):
        raise InvalidInputError(f"{name} contains non-finite values")
    return series


def _variance(x: np.ndarray) -> float:
    """Population variance; exactly zero for a constant series"""
    if np.ptp(x) == 0:
        return 0.0
    return float(np.var(x))


def _covariance(x: np.ndarray, y: np.ndarray) -> float:
    """Population covariance"""
    if np.ptp(x) == 0 or np.ptp(y) == 0:
        return 0.0
    return float(np.mean((x - x.mean()) * (y - y.mean())))


def safe_divide(numerator: float, denominator: float, metric: str) -> float:
    """
    Divide, returning a sentinel when the denominator is exactly zero

    Emits DivisionByZeroWarning and returns +/-inf with the numerator's sign,
    or NaN when the numerator is zero too.
    """
    if denominator == 0:
        warnings.warn(
            f"{metric} is undefined: denominator is zero",
            DivisionByZeroWarning,
            stacklevel=3,
        )
        if numerator == 0 or math.isnan(numerator):
            return float('nan')
        return math.copysign(float('inf'), numerator)
    return float(numerator) / float(denominator)


# ---------------------------------------------------------------------------
# Return series
# ---------------------------------------------------------------------------

def compute_returns(prices: Sequence[float]) -> np.ndarray:
    """
    Simple period returns from a price sequence
    r[i-1] = (p[i] - p[i-1]) / p[i-1]
    """
    p = _as_series(prices, 'prices')
    if np.any(p <= 0):
        raise InvalidInputError("prices must be strictly positive")
    return as_return_series(np.diff(p) / p[:-1])


def cumulative_returns(returns: Sequence[float]) -> np.ndarray:
    """Calculate cumulative returns from period returns"""
    r = _as_series(returns, 'returns', min_length=1)
    return as_return_series(np.cumprod(1 + r) - 1)


def prices_from_returns(initial_price: float, returns: Sequence[float]) -> np.ndarray:
    """Rebuild a price path from a starting price and period returns"""
    if not initial_price > 0:
        raise InvalidInputError("initial_price must be positive")
    r = _as_series(returns, 'returns', min_length=1)
    return as_return_series(initial_price * np.concatenate(([1.0], np.cumprod(1 + r))))


def returns_from_history(price_history: Sequence[PricePoint]) -> np.ndarray:
    """Returns from a {date, close} history, ordered by date"""
    ordered = sorted(price_history, key=lambda point: point.date)
    return compute_returns([point.close for point in ordered])


# ---------------------------------------------------------------------------
# Risk metrics
# ---------------------------------------------------------------------------

class RiskCalculator:
    """
    Static methods for risk metric calculations

    Moments are population moments of daily returns, annualized with a
    fixed 252 trading days.
    """

    @staticmethod
    def annualized_return(returns: Sequence[float], periods_per_year: int = TRADING_DAYS) -> float:
        """Arithmetic annualized return: mean * periods"""
        r = _as_series(returns, 'returns', min_length=1)
        return float(r.mean()) * periods_per_year

    @staticmethod
    def volatility(returns: Sequence[float], periods_per_year: int = TRADING_DAYS) -> float:
        """
        Calculate annualized volatility
        σ = sqrt(var) * sqrt(252)
        """
        r = _as_series(returns, 'returns')
        return math.sqrt(_variance(r)) * math.sqrt(periods_per_year)

    @staticmethod
    def sharpe_ratio(
        returns: Sequence[float],
        risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
        periods_per_year: int = TRADING_DAYS
    ) -> float:
        """
        Calculate Sharpe Ratio
        Sharpe = (Rp - Rf) / σp
        """
        excess = RiskCalculator.annualized_return(returns, periods_per_year) - risk_free_rate
        vol = RiskCalculator.volatility(returns, periods_per_year)
        return safe_divide(excess, vol, 'sharpe_ratio')

    @staticmethod
    def downside_deviation(
        returns: Sequence[float],
        risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
        periods_per_year: int = TRADING_DAYS
    ) -> float:
        """Annualized root mean square of returns below the daily risk-free rate"""
        r = _as_series(returns, 'returns')
        shortfall = np.minimum(r - risk_free_rate / periods_per_year, 0.0)
        return math.sqrt(float(np.mean(shortfall ** 2))) * math.sqrt(periods_per_year)

    @staticmethod
    def sortino_ratio(
        returns: Sequence[float],
        risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
        periods_per_year: int = TRADING_DAYS
    ) -> float:
        """
        Calculate Sortino Ratio
        Sortino = (Rp - Rf) / σd (downside deviation)
        """
        excess = RiskCalculator.annualized_return(returns, periods_per_year) - risk_free_rate
        downside = RiskCalculator.downside_deviation(returns, risk_free_rate, periods_per_year)
        return safe_divide(excess, downside, 'sortino_ratio')

    @staticmethod
    def _tail_index(n: int, confidence: float) -> int:
        # rounding first keeps floor(0.05 * n) exact for float products like 0.05 * 60
        return int(math.floor(round((1 - confidence) * n, 9)))

    @staticmethod
    def var_historical(returns: Sequence[float], confidence: float = VAR_CONFIDENCE) -> float:
        """
        Calculate Historical Value at Risk as a positive loss
        VaR = -sorted(returns)[floor((1 - confidence) * n)]
        """
        r = np.sort(_as_series(returns, 'returns'))
        return -float(r[RiskCalculator._tail_index(len(r), confidence)])

    @staticmethod
    def cvar(returns: Sequence[float], confidence: float = VAR_CONFIDENCE) -> float:
        """
        Calculate Conditional VaR (Expected Shortfall) as a positive loss
        Mean of the sorted returns up to and including the VaR index
        """
        r = np.sort(_as_series(returns, 'returns'))
        index = RiskCalculator._tail_index(len(r), confidence)
        return -float(r[:index + 1].mean())

    @staticmethod
    def drawdown_series(returns: Sequence[float]) -> np.ndarray:
        """
        Drawdown from the running peak of compounded growth
        The peak is seeded by the first compounded value.
        """
        r = _as_series(returns, 'returns', min_length=1)
        cumulative = np.cumprod(1 + r)
        running_max = np.maximum.accumulate(cumulative)
        with np.errstate(divide='ignore', invalid='ignore'):
            drawdown = (running_max - cumulative) / running_max
        return as_return_series(np.nan_to_num(drawdown, nan=0.0))

    @staticmethod
    def max_drawdown(returns: Sequence[float]) -> float:
        """
        Calculate Maximum Drawdown as a positive fraction
        MDD = max peak-to-trough decline
        """
        return max(0.0, float(RiskCalculator.drawdown_series(returns).max()))

    @staticmethod
    def calmar_ratio(returns: Sequence[float], periods_per_year: int = TRADING_DAYS) -> float:
        """
        Calculate Calmar Ratio
        Calmar = Annualized Return / Max Drawdown
        """
        ann_return = RiskCalculator.annualized_return(returns, periods_per_year)
        return safe_divide(ann_return, RiskCalculator.max_drawdown(returns), 'calmar_ratio')

    @staticmethod
    def _aligned(portfolio_returns, benchmark_returns):
        r = _as_series(portfolio_returns, 'returns')
        b = _as_series(benchmark_returns, 'benchmark_returns')
        if len(r) != len(b):
            raise InvalidInputError(
                f"returns and benchmark_returns differ in length ({len(r)} vs {len(b)})"
            )
        return r, b

    @staticmethod
    def beta(portfolio_returns: Sequence[float], benchmark_returns: Sequence[float]) -> float:
        """
        Calculate Beta relative to benchmark
        β = Cov(Rp, Rm) / Var(Rm)
        """
        r, b = RiskCalculator._aligned(portfolio_returns, benchmark_returns)
        return safe_divide(_covariance(r, b), _variance(b), 'beta')

    @staticmethod
    def alpha(
        portfolio_returns: Sequence[float],
        benchmark_returns: Sequence[float],
        risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
        periods_per_year: int = TRADING_DAYS
    ) -> float:
        """
        Calculate Jensen's Alpha
        α = Rp - [Rf + β(Rm - Rf)]
        """
        r, b = RiskCalculator._aligned(portfolio_returns, benchmark_returns)
        beta = RiskCalculator.beta(r, b)
        port_ann = float(r.mean()) * periods_per_year
        bench_ann = float(b.mean()) * periods_per_year
        return port_ann - (risk_free_rate + beta * (bench_ann - risk_free_rate))

    @staticmethod
    def tracking_error(
        portfolio_returns: Sequence[float],
        benchmark_returns: Sequence[float],
        periods_per_year: int = TRADING_DAYS
    ) -> float:
        """Root mean square active return, annualized"""
        r, b = RiskCalculator._aligned(portfolio_returns, benchmark_returns)
        return math.sqrt(float(np.mean((r - b) ** 2))) * math.sqrt(periods_per_year)

    @staticmethod
    def information_ratio(
        portfolio_returns: Sequence[float],
        benchmark_returns: Sequence[float],
        periods_per_year: int = TRADING_DAYS
    ) -> float:
        """
        Calculate Information Ratio
        IR = (Rp - Rb) / Tracking Error
        """
        r, b = RiskCalculator._aligned(portfolio_returns, benchmark_returns)
        active = (float(r.mean()) - float(b.mean())) * periods_per_year
        te = RiskCalculator.tracking_error(r, b, periods_per_year)
        return safe_divide(active, te, 'information_ratio')

    @staticmethod
    def treynor_ratio(
        portfolio_returns: Sequence[float],
        benchmark_returns: Sequence[float],
        risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
        periods_per_year: int = TRADING_DAYS
    ) -> float:
        """
        Calculate Treynor Ratio
        Treynor = (Rp - Rf) / β
        """
        r, b = RiskCalculator._aligned(portfolio_returns, benchmark_returns)
        beta = RiskCalculator.beta(r, b)
        excess = float(r.mean()) * periods_per_year - risk_free_rate
        return safe_divide(excess, beta, 'treynor_ratio')

    @staticmethod
    def r_squared(portfolio_returns: Sequence[float], benchmark_returns: Sequence[float]) -> float:
        """R-squared against the benchmark; NaN when either series is constant"""
        r, b = RiskCalculator._aligned(portfolio_returns, benchmark_returns)
        correlation = _pearson(r, b)
        return float('nan') if correlation is None else correlation ** 2


def calculate_risk_metrics(
    returns: Sequence[float],
    benchmark_returns: Sequence[float],
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE
) -> RiskMetrics:
    """
    Calculate the full risk metric set for a return series

    Ratios with a zero denominator come back as +/-inf (or NaN) with a
    DivisionByZeroWarning; their names are listed in ``zero_denominators``.
    """
    r, b = RiskCalculator._aligned(returns, benchmark_returns)
    zero_denominators: List[str] = []

    def ratio(name: str, numerator: float, denominator: float) -> float:
        if denominator == 0:
            zero_denominators.append(name)
        return safe_divide(numerator, denominator, name)

    ann_return = float(r.mean()) * TRADING_DAYS
    bench_return = float(b.mean()) * TRADING_DAYS
    excess = ann_return - risk_free_rate

    volatility = math.sqrt(_variance(r)) * math.sqrt(TRADING_DAYS)
    max_dd = RiskCalculator.max_drawdown(r)
    beta = ratio('beta', _covariance(r, b), _variance(b))
    tracking_error = RiskCalculator.tracking_error(r, b)
    downside = RiskCalculator.downside_deviation(r, risk_free_rate)

    metrics = RiskMetrics(
        volatility=volatility,
        sharpe_ratio=ratio('sharpe_ratio', excess, volatility),
        var_95=RiskCalculator.var_historical(r, VAR_CONFIDENCE),
        cvar_95=RiskCalculator.cvar(r, VAR_CONFIDENCE),
        max_drawdown=max_dd,
        beta=beta,
        alpha=ann_return - (risk_free_rate + beta * (bench_return - risk_free_rate)),
        tracking_error=tracking_error,
        information_ratio=ratio('information_ratio', ann_return - bench_return, tracking_error),
        treynor_ratio=ratio('treynor_ratio', excess, beta),
        calmar_ratio=ratio('calmar_ratio', ann_return, max_dd),
        annualized_return=ann_return,
        benchmark_return=bench_return,
        sortino_ratio=ratio('sortino_ratio', excess, downside),
        r_squared=RiskCalculator.r_squared(r, b),
        zero_denominators=tuple(zero_denominators),
    )

    if zero_denominators:
        logger.debug("Risk metrics with zero denominators: %s", ", ".join(zero_denominators))
    return metrics


# ---------------------------------------------------------------------------
# Correlation
# ---------------------------------------------------------------------------

def _pearson(x: np.ndarray, y: np.ndarray) -> Optional[float]:
    """Pearson correlation, None when either series has zero variance"""
    if np.ptp(x) == 0 or np.ptp(y) == 0:
        return None
    dx = x - x.mean()
    dy = y - y.mean()
    denominator = math.sqrt(float(np.dot(dx, dx)) * float(np.dot(dy, dy)))
    if denominator == 0:
        return None
    return float(np.clip(np.dot(dx, dy) / denominator, -1.0, 1.0))


def _holding_return_matrix(holdings: Sequence[Holding]) -> List[np.ndarray]:
    series = [_as_series(h.returns, f"returns for {h.symbol}") for h in holdings]
    lengths = {len(s) for s in series}
    if len(lengths) > 1:
        raise InvalidInputError(
            f"holdings have return series of different lengths: {sorted(lengths)}"
        )
    return series


def calculate_correlation_matrix(holdings: Sequence[Holding]) -> List[CorrelationPair]:
    """
    Pairwise Pearson correlations for every unordered pair (i < j)

    Pairs come out in (0,1), (0,2), ..., (1,2), ... order. A pair involving
    a zero-variance series has correlation None.
    """
    series = _holding_return_matrix(holdings)
    pairs = []

    for i in range(len(holdings)):
        for j in range(i + 1, len(holdings)):
            pairs.append(CorrelationPair(
                asset_a=holdings[i].symbol,
                asset_b=holdings[j].symbol,
                correlation=_pearson(series[i], series[j]),
            ))

    undefined = sum(1 for p in pairs if p.correlation is None)
    if undefined:
        logger.info("%d of %d correlations undefined (zero variance)", undefined, len(pairs))
    return pairs


def correlation_frame(holdings: Sequence[Holding]) -> pd.DataFrame:
    """Square correlation matrix with symbols as index and columns"""
    series = _holding_return_matrix(holdings)
    n = len(holdings)
    matrix = np.full((n, n), np.nan)

    for i in range(n):
        if np.ptp(series[i]) > 0:
            matrix[i, i] = 1.0

    k = 0
    pairs = calculate_correlation_matrix(holdings)
    for i in range(n):
        for j in range(i + 1, n):
            value = pairs[k].correlation
            matrix[i, j] = matrix[j, i] = np.nan if value is None else value
            k += 1

    symbols = [h.symbol for h in holdings]
    return pd.DataFrame(matrix, index=symbols, columns=symbols)


# ---------------------------------------------------------------------------
# Performance attribution
# ---------------------------------------------------------------------------

def calculate_performance_attribution(
    portfolio_returns: Sequence[float],
    benchmark_returns: Sequence[float],
    holdings: Sequence[Holding],
    benchmark_weight: float = DEFAULT_BENCHMARK_WEIGHT,
    benchmark_weights: Optional[Dict[str, float]] = None
) -> AttributionResult:
    """
    Single-period Brinson attribution over summed returns

    Each holding is compared against the whole benchmark return (the sector
    benchmark is the benchmark itself). Benchmark weights are flat at
    ``benchmark_weight`` unless a per-symbol override is given.

    allocation  = Σ (w - wb)(Rh - Rb)
    selection   = Σ wb (Rh - Rb)
    interaction = Σ (w - wb)(Rh - Rb)
    """
    port = _as_series(portfolio_returns, 'portfolio_returns', min_length=1)
    bench = _as_series(benchmark_returns, 'benchmark_returns', min_length=1)
    if not holdings:
        raise InvalidInputError("attribution needs at least one holding")

    benchmark_weights = benchmark_weights or {}
    benchmark_return = float(bench.sum())
    contributions = []

    for holding in holdings:
        wb = benchmark_weights.get(holding.symbol, benchmark_weight)
        holding_return = float(_as_series(
            holding.returns, f"returns for {holding.symbol}", min_length=1
        ).sum())
        active = holding_return - benchmark_return

        contributions.append(HoldingAttribution(
            symbol=holding.symbol,
            allocation=(holding.weight - wb) * active,
            selection=wb * active,
            interaction=(holding.weight - wb) * active,
        ))

    allocation = sum(c.allocation for c in contributions)
    selection = sum(c.selection for c in contributions)
    interaction = sum(c.interaction for c in contributions)

    return AttributionResult(
        asset_allocation=allocation,
        security_selection=selection,
        interaction=interaction,
        total_attribution=allocation + selection + interaction,
        portfolio_return=float(port.sum()),
        benchmark_return=benchmark_return,
        contributions=tuple(contributions),
    )


# ---------------------------------------------------------------------------
# Portfolio-level analysis
# ---------------------------------------------------------------------------

class PortfolioAnalyzer:
    """
    Main class for portfolio analysis
    """

    def __init__(
        self,
        holdings: Sequence[Holding],
        benchmark_returns: Sequence[float],
        risk_free_rate: float = DEFAULT_RISK_FREE_RATE
    ):
        """
        Initialize portfolio analyzer

        Args:
            holdings: Holdings with equal-length return series
            benchmark_returns: Benchmark period returns aligned to the holdings
            risk_free_rate: Annual risk-free rate
        """
        if not holdings:
            raise InvalidInputError("portfolio needs at least one holding")
        self.holdings = list(holdings)
        self.benchmark_returns = _as_series(benchmark_returns, 'benchmark_returns')
        self.risk_free_rate = risk_free_rate

        self.portfolio_returns = self._calculate_portfolio_returns()

    def _calculate_portfolio_returns(self) -> np.ndarray:
        """Weighted sum of holding returns; weights are used as given"""
        series = _holding_return_matrix(self.holdings)
        weights = np.array([h.weight for h in self.holdings])
        total = weights.sum()
        if not np.isclose(total, 1.0):
            logger.warning("Holding weights sum to %.4f, not 1; using them as given", total)
        return as_return_series(weights @ np.vstack(series))

    def calculate_all_metrics(self) -> RiskMetrics:
        """Calculate all portfolio metrics"""
        return calculate_risk_metrics(
            self.portfolio_returns, self.benchmark_returns, self.risk_free_rate
        )

    def get_correlations(self) -> List[CorrelationPair]:
        """Correlations between holdings"""
        return calculate_correlation_matrix(self.holdings)

    def get_attribution(self, **kwargs) -> AttributionResult:
        """Brinson attribution of the portfolio against the benchmark"""
        return calculate_performance_attribution(
            self.portfolio_returns, self.benchmark_returns, self.holdings, **kwargs
        )

    def get_contribution_analysis(self) -> pd.DataFrame:
        """Analyze contribution of each holding to portfolio returns"""
        contributions = []

        for holding in self.holdings:
            returns = holding.returns
            contributions.append({
                'symbol': holding.symbol,
                'weight': holding.weight,
                'total_return': float(np.prod(1 + returns) - 1),
                'avg_daily_return': float(returns.mean()),
                'volatility': math.sqrt(_variance(returns)) * math.sqrt(TRADING_DAYS),
                'contribution': holding.weight * float(returns.sum()),
            })

        return pd.DataFrame(contributions)
