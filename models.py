"""
Data Models for the Analytics Core
Immutable records passed into and returned from the calculation engines
"""

import math
from dataclasses import dataclass, field
from datetime import date as Date
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from exceptions import InvalidInputError


def as_return_series(values: Sequence[float]) -> np.ndarray:
    """Copy values into a read-only float array"""
    series = np.array(values, dtype=float)
    series.flags.writeable = False
    return series


class Strategy(str, Enum):
    """Optimization objective"""
    MAX_SHARPE = "max_sharpe"
    MIN_VARIANCE = "min_variance"
    MAX_RETURN = "max_return"
    RISK_PARITY = "risk_parity"


@dataclass(frozen=True)
class PricePoint:
    """Single close price observation"""
    date: Date
    close: float


@dataclass(frozen=True, eq=False)
class Holding:
    """
    A position in a portfolio

    The weight must lie in [0, 1]. Weights are never renormalized; callers
    own normalization.
    """
    symbol: str
    weight: float
    returns: np.ndarray = field(default_factory=lambda: as_return_series([]))
    price_history: Tuple[PricePoint, ...] = ()
    sector: Optional[str] = None

    def __post_init__(self):
        try:
            weight = float(self.weight)
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"weight for {self.symbol} must be a number") from e
        if not (math.isfinite(weight) and 0 <= weight <= 1):
            raise InvalidInputError(
                f"weight for {self.symbol} must be in [0, 1], got {self.weight}"
            )
        object.__setattr__(self, 'weight', weight)
        object.__setattr__(self, 'returns', as_return_series(self.returns))
        object.__setattr__(self, 'price_history', tuple(self.price_history))


@dataclass(frozen=True)
class CorrelationPair:
    """Pearson correlation between two holdings; None when undefined"""
    asset_a: str
    asset_b: str
    correlation: Optional[float]


@dataclass(frozen=True)
class RiskMetrics:
    """Container for risk metrics of one return series against a benchmark"""
    volatility: float
    sharpe_ratio: float
    var_95: float
    cvar_95: float
    max_drawdown: float
    beta: float
    alpha: float
    tracking_error: float
    information_ratio: float
    treynor_ratio: float
    calmar_ratio: float
    annualized_return: float
    benchmark_return: float
    sortino_ratio: float
    r_squared: float
    zero_denominators: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, float]:
        return {
            name: getattr(self, name)
            for name in self.__dataclass_fields__
            if name != 'zero_denominators'
        }


@dataclass(frozen=True)
class HoldingAttribution:
    """Brinson effects contributed by a single holding"""
    symbol: str
    allocation: float
    selection: float
    interaction: float


@dataclass(frozen=True)
class AttributionResult:
    """Brinson decomposition of active return"""
    asset_allocation: float
    security_selection: float
    interaction: float
    total_attribution: float
    portfolio_return: float = 0.0
    benchmark_return: float = 0.0
    contributions: Tuple[HoldingAttribution, ...] = ()

    @property
    def active_return(self) -> float:
        return self.portfolio_return - self.benchmark_return


@dataclass(frozen=True)
class OptimizationConstraints:
    """
    Allocation constraints for the optimizer

    Only the per-asset bounds are enforced. Sector, region and drift limits
    are carried through to the result for the caller.
    """
    max_asset_allocation: float = 1.0
    min_asset_allocation: float = 0.0
    max_sector_exposure: float = 1.0
    max_region_exposure: float = 1.0
    max_drift: float = 0.05


@dataclass(frozen=True)
class MarketView:
    """
    Absolute view on the average annual return of one or more assets

    Confidence in (0, 1]; at 1 the posterior matches the view exactly.
    """
    assets: Tuple[str, ...]
    expected_return: float
    confidence: float

    def __post_init__(self):
        if isinstance(self.assets, str):
            object.__setattr__(self, 'assets', (self.assets,))
        else:
            object.__setattr__(self, 'assets', tuple(self.assets))


@dataclass(frozen=True)
class ImprovementMetrics:
    """Optimized portfolio compared with the current allocation"""
    return_improvement: float
    risk_reduction: float
    sharpe_improvement: float
    turnover: float


@dataclass(frozen=True, eq=False)
class OptimizationResult:
    """Optimized weights aligned to the input asset order"""
    weights: np.ndarray
    expected_return: float
    volatility: float
    sharpe_ratio: float
    assets: Tuple[str, ...] = ()
    strategy: Optional[Strategy] = None
    converged: bool = True
    iterations: int = 0
    risk_contributions: np.ndarray = field(default_factory=lambda: as_return_series([]))
    diversification_ratio: float = float('nan')
    constraints: OptimizationConstraints = field(default_factory=OptimizationConstraints)
    improvement: Optional[ImprovementMetrics] = None

    def weights_by_asset(self) -> Dict[str, float]:
        return dict(zip(self.assets, (float(w) for w in self.weights)))


@dataclass(frozen=True)
class FrontierPoint:
    """One point on the efficient frontier"""
    risk: float
    expected_return: float

    def as_dict(self) -> Dict[str, float]:
        return {'risk': self.risk, 'return': self.expected_return}


@dataclass(frozen=True)
class RebalanceSuggestion:
    """Trade needed to move a holding back to its target weight"""
    symbol: str
    action: str
    current_weight: float
    target_weight: float

    @property
    def drift(self) -> float:
        return abs(self.current_weight - self.target_weight)


@dataclass(frozen=True)
class ScenarioResult:
    """Portfolio return under a hypothetical set of asset shocks"""
    scenario: str
    portfolio_return: float
    contributions: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class ScenarioSummary:
    """Best, worst and average portfolio return across scenarios"""
    best_case: float
    worst_case: float
    average_case: float
    best_scenario: str
    worst_scenario: str
