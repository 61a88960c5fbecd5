"""
Portfolio Optimization Engine
Mean-variance optimization, risk parity, Black-Litterman and the efficient frontier
"""

import math
import warnings
import logging
from dataclasses import replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy.optimize import minimize, brentq

from calculations import (
    TRADING_DAYS, DEFAULT_RISK_FREE_RATE, safe_divide, _holding_return_matrix,
)
from exceptions import InvalidInputError, InfeasibleConstraintsError, ConvergenceWarning
from models import (
    FrontierPoint, Holding, ImprovementMetrics, MarketView, OptimizationConstraints,
    OptimizationResult, RebalanceSuggestion, ScenarioResult, ScenarioSummary, Strategy,
    as_return_series,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITER = 500
DEFAULT_TOLERANCE = 1e-10
DEFAULT_FRONTIER_POINTS = 50
BOUND_TOLERANCE = 1e-9
DEFAULT_TAU = 0.05
DEFAULT_RISK_AVERSION = 3.0


def _validate_inputs(
    assets: Sequence[str],
    expected_returns: Sequence[float],
    covariance: Sequence[Sequence[float]]
) -> Tuple[np.ndarray, np.ndarray]:
    """Check that returns and covariance line up with the asset list"""
    n = len(assets)
    if n == 0:
        raise InvalidInputError("at least one asset is required")

    try:
        mu = np.asarray(expected_returns, dtype=float)
        cov = np.asarray(covariance, dtype=float)
    except (TypeError, ValueError) as e:
        raise InvalidInputError("expected returns and covariance must be numeric") from e

    if mu.shape != (n,):
        raise InvalidInputError(f"expected {n} expected returns, got shape {mu.shape}")
    if cov.shape != (n, n):
        raise InvalidInputError(f"covariance must be {n}x{n}, got shape {cov.shape}")
    if not (np.all(np.isfinite(mu)) and np.all(np.isfinite(cov))):
        raise InvalidInputError("expected returns and covariance must be finite")
    if not np.allclose(cov, cov.T, rtol=1e-8, atol=1e-12):
        raise InvalidInputError("covariance matrix must be symmetric")
    if np.any(np.diag(cov) < 0):
        raise InvalidInputError("covariance diagonal (variances) must be non-negative")

    return mu, (cov + cov.T) / 2


def _check_bounds(n_assets: int, constraints: OptimizationConstraints) -> Tuple[float, float]:
    """Per-asset bounds, raising when no weight vector can satisfy them"""
    lo = constraints.min_asset_allocation
    hi = constraints.max_asset_allocation
    if (
        lo < 0 or hi > 1 or lo > hi
        or n_assets * lo > 1 + BOUND_TOLERANCE
        or n_assets * hi < 1 - BOUND_TOLERANCE
    ):
        raise InfeasibleConstraintsError(n_assets, lo, hi)
    return lo, hi


def project_to_bounds(weights: Sequence[float], lower: float, upper: float) -> np.ndarray:
    """
    Euclidean projection onto {w : Σw = 1, lower <= w_i <= upper}

    Finds the shift τ with Σ clip(w - τ, lower, upper) = 1.
    """
    w = np.asarray(weights, dtype=float)
    n = len(w)
    if not np.all(np.isfinite(w)):
        logger.warning("Non-finite weights from solver; falling back to equal weights")
        w = np.full(n, 1.0 / n)

    def excess(shift: float) -> float:
        return float(np.clip(w - shift, lower, upper).sum() - 1.0)

    a = float(w.min()) - upper - 1.0
    b = float(w.max()) - lower + 1.0
    if excess(a) <= 0:
        shift = a
    elif excess(b) >= 0:
        shift = b
    else:
        shift = brentq(excess, a, b, xtol=1e-15)
    return np.clip(w - shift, lower, upper)


def risk_contributions(weights: Sequence[float], covariance: Sequence[Sequence[float]]) -> np.ndarray:
    """
    Fractional contribution of each asset to portfolio variance
    RC_i = w_i (Σw)_i / wᵀΣw, summing to 1
    """
    w = np.asarray(weights, dtype=float)
    cov = np.asarray(covariance, dtype=float)
    variance = float(w @ cov @ w)
    if variance <= 0:
        return as_return_series(np.zeros(len(w)))
    return as_return_series(w * (cov @ w) / variance)


def diversification_ratio(weights: Sequence[float], covariance: Sequence[Sequence[float]]) -> float:
    """Weighted average asset volatility over portfolio volatility"""
    w = np.asarray(weights, dtype=float)
    cov = np.asarray(covariance, dtype=float)
    vol = math.sqrt(max(float(w @ cov @ w), 0.0))
    if vol == 0:
        return float('nan')
    return float(w @ np.sqrt(np.diag(cov))) / vol


def estimate_inputs(holdings: Sequence[Holding]) -> Tuple[np.ndarray, np.ndarray]:
    """
    Annualized expected returns and covariance from holdings' return series

    Uses population moments scaled by 252 trading days.
    """
    series = _holding_return_matrix(holdings)
    if not series:
        raise InvalidInputError("at least one holding is required")
    returns = pd.DataFrame(np.column_stack(series), columns=[h.symbol for h in holdings])

    expected_returns = returns.mean().values * TRADING_DAYS
    cov_matrix = returns.cov(ddof=0).values * TRADING_DAYS
    return expected_returns, cov_matrix


def implied_equilibrium_returns(
    market_weights: Sequence[float],
    covariance: Sequence[Sequence[float]],
    risk_aversion: float = DEFAULT_RISK_AVERSION
) -> np.ndarray:
    """Reverse optimization: π = δΣw of the market portfolio"""
    w = np.asarray(market_weights, dtype=float)
    return risk_aversion * np.asarray(covariance, dtype=float) @ w


def black_litterman_inputs(
    assets: Sequence[str],
    market_weights: Sequence[float],
    covariance: Sequence[Sequence[float]],
    views: Optional[Sequence[MarketView]] = None,
    tau: float = DEFAULT_TAU,
    risk_aversion: float = DEFAULT_RISK_AVERSION
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Posterior expected returns and covariance

    Each view is an absolute view on the equally weighted average of its
    assets. View uncertainty is Ω_k = (1 - c)/c · (PτΣPᵀ)_kk, so a single
    view on one asset moves that asset to (1 - c)·π + c·q.

    Returns:
        (posterior returns, posterior covariance Σ + M)
    """
    assets = tuple(assets)
    n = len(assets)
    _, cov = _validate_inputs(assets, np.zeros(n), covariance)

    w = np.asarray(market_weights, dtype=float)
    if w.shape != (n,) or not np.all(np.isfinite(w)) or np.any(w < 0):
        raise InvalidInputError("market weights must be non-negative and aligned to assets")
    if abs(w.sum() - 1) > 1e-6:
        raise InvalidInputError(f"market weights must sum to 1, got {w.sum():.6f}")
    if not (tau > 0 and risk_aversion > 0):
        raise InvalidInputError("tau and risk_aversion must be positive")

    prior = implied_equilibrium_returns(w, cov, risk_aversion)
    scaled = tau * cov
    if not views:
        return prior, cov + scaled

    index = {asset: i for i, asset in enumerate(assets)}
    picks = np.zeros((len(views), n))
    targets = np.zeros(len(views))
    confidence = np.zeros(len(views))

    for k, view in enumerate(views):
        unknown = [a for a in view.assets if a not in index]
        if not view.assets or unknown:
            raise InvalidInputError(f"view references unknown assets: {unknown or 'none given'}")
        if not 0 < view.confidence <= 1:
            raise InvalidInputError(f"view confidence must be in (0, 1], got {view.confidence}")
        for asset in set(view.assets):
            picks[k, index[asset]] = 1.0 / len(set(view.assets))
        targets[k] = view.expected_return
        confidence[k] = view.confidence

    view_cov = picks @ scaled @ picks.T
    omega = np.diag((1 - confidence) / confidence * np.diag(view_cov))
    try:
        gain = np.linalg.solve(view_cov + omega, picks @ scaled).T
    except np.linalg.LinAlgError as e:
        raise InvalidInputError("views are redundant or only cover riskless assets") from e

    posterior = prior + gain @ (targets - picks @ prior)
    posterior_cov = cov + scaled - gain @ picks @ scaled
    logger.debug("Black-Litterman posterior from %d views", len(views))
    return posterior, (posterior_cov + posterior_cov.T) / 2


class PortfolioOptimizer:
    """
    Mean-Variance Optimization and Efficient Frontier
    """

    def __init__(
        self,
        assets: Sequence[str],
        expected_returns: Sequence[float],
        covariance: Sequence[Sequence[float]],
        constraints: Optional[OptimizationConstraints] = None,
        risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
        max_iter: int = DEFAULT_MAX_ITER,
        tol: float = DEFAULT_TOLERANCE
    ):
        """
        Initialize with annualized inputs

        Args:
            assets: Asset identifiers; results follow this order
            expected_returns: Annualized expected return per asset
            covariance: Annualized covariance matrix aligned to assets
            constraints: Per-asset allocation bounds plus advisory limits
            risk_free_rate: Annual risk-free rate
            max_iter: Iteration budget for the iterative solvers
            tol: Convergence tolerance for risk parity
        """
        self.assets = tuple(assets)
        self.expected_returns, self.cov_matrix = _validate_inputs(
            self.assets, expected_returns, covariance
        )
        self.n_assets = len(self.assets)
        self.constraints = constraints or OptimizationConstraints()
        self.lower, self.upper = _check_bounds(self.n_assets, self.constraints)
        self.risk_free_rate = risk_free_rate
        self.max_iter = max_iter
        self.tol = tol

    @classmethod
    def from_holdings(cls, holdings: Sequence[Holding], **kwargs) -> 'PortfolioOptimizer':
        """Build an optimizer from holdings' historical return series"""
        expected_returns, cov_matrix = estimate_inputs(holdings)
        return cls([h.symbol for h in holdings], expected_returns, cov_matrix, **kwargs)

    def portfolio_return(self, weights: np.ndarray) -> float:
        """Calculate portfolio expected return"""
        return float(np.dot(weights, self.expected_returns))

    def portfolio_volatility(self, weights: np.ndarray) -> float:
        """Calculate portfolio volatility"""
        return math.sqrt(max(float(weights @ self.cov_matrix @ weights), 0.0))

    def portfolio_sharpe(self, weights: np.ndarray) -> float:
        """Calculate portfolio Sharpe ratio"""
        ret = self.portfolio_return(weights)
        vol = self.portfolio_volatility(weights)
        return safe_divide(ret - self.risk_free_rate, vol, 'sharpe_ratio')

    def _within_bounds(self, weights: np.ndarray) -> bool:
        return bool(
            np.all(weights >= self.lower - BOUND_TOLERANCE)
            and np.all(weights <= self.upper + BOUND_TOLERANCE)
        )

    def _solve(self, objective, jac=None, init_weights=None, target_return=None):
        """Run SLSQP over the bounded simplex"""
        constraints = [{'type': 'eq', 'fun': lambda x: np.sum(x) - 1}]

        if target_return is not None:
            constraints.append({
                'type': 'eq',
                'fun': lambda x: self.portfolio_return(x) - target_return
            })

        bounds = tuple((self.lower, self.upper) for _ in range(self.n_assets))
        if init_weights is None:
            init_weights = np.full(self.n_assets, 1.0 / self.n_assets)

        result = minimize(
            objective,
            init_weights,
            jac=jac,
            method='SLSQP',
            bounds=bounds,
            constraints=constraints,
            options={'maxiter': self.max_iter, 'ftol': 1e-12}
        )

        if not result.success:
            logger.warning("SLSQP did not converge: %s", result.message)
            warnings.warn(
                f"SLSQP did not converge: {result.message}",
                ConvergenceWarning,
                stacklevel=3,
            )
        return result.x, bool(result.success), int(result.nit)

    def _variance(self, weights: np.ndarray) -> float:
        return float(weights @ self.cov_matrix @ weights)

    def _variance_grad(self, weights: np.ndarray) -> np.ndarray:
        return 2 * self.cov_matrix @ weights

    def _closed_form(self, rhs: np.ndarray) -> Optional[np.ndarray]:
        """Normalized Σ⁻¹·rhs, or None if singular or outside the bounds"""
        try:
            z = np.linalg.solve(self.cov_matrix, rhs)
        except np.linalg.LinAlgError:
            return None
        total = z.sum()
        if not np.all(np.isfinite(z)) or total <= 0:
            return None
        weights = z / total
        if not self._within_bounds(weights):
            logger.info("Unconstrained solution violates allocation bounds; using SLSQP")
            return None
        return weights

    def _greedy_fill(self, order: Sequence[int]) -> np.ndarray:
        """Start every asset at the lower bound, then fill in the given order"""
        weights = np.full(self.n_assets, self.lower)
        remaining = 1.0 - weights.sum()
        for i in order:
            if remaining <= 0:
                break
            add = min(self.upper - self.lower, remaining)
            weights[i] += add
            remaining -= add
        return weights

    def minimize_volatility(self) -> OptimizationResult:
        """Find minimum volatility portfolio"""
        weights = self._closed_form(np.ones(self.n_assets))
        if weights is not None:
            logger.debug("Minimum variance solved in closed form")
            return self._build_result(weights, Strategy.MIN_VARIANCE)

        weights, success, nit = self._solve(self._variance, jac=self._variance_grad)
        return self._build_result(weights, Strategy.MIN_VARIANCE, success, nit)

    def maximize_sharpe(self) -> OptimizationResult:
        """Find maximum Sharpe ratio portfolio"""
        weights = self._closed_form(self.expected_returns - self.risk_free_rate)
        if weights is not None:
            logger.debug("Tangency portfolio solved in closed form")
            return self._build_result(weights, Strategy.MAX_SHARPE)

        def neg_sharpe(w: np.ndarray) -> float:
            vol = math.sqrt(max(self._variance(w), 1e-16))
            return -(self.portfolio_return(w) - self.risk_free_rate) / vol

        weights, success, nit = self._solve(neg_sharpe)
        return self._build_result(weights, Strategy.MAX_SHARPE, success, nit)

    def maximize_return(self) -> OptimizationResult:
        """
        Highest-return portfolio

        Fills assets in descending expected return; with default bounds all
        weight goes to the single best asset. Concentration is a known
        limitation of this objective.
        """
        order = np.argsort(-self.expected_returns, kind='stable')
        return self._build_result(self._greedy_fill(order), Strategy.MAX_RETURN)

    def risk_parity(self) -> OptimizationResult:
        """
        Equal risk contribution portfolio

        Uncorrelated assets get the closed form w ∝ 1/σ. Otherwise cyclical
        coordinate descent on ½xᵀΣx - Σ b·ln(x) with b = 1/n, then x is
        normalized.
        """
        variances = np.diag(self.cov_matrix)
        if np.any(variances <= 0):
            raise InvalidInputError("risk parity requires strictly positive variances")

        x = 1.0 / np.sqrt(variances)
        x /= x.sum()
        off_diagonal = self.cov_matrix - np.diag(variances)

        if not np.any(off_diagonal):
            logger.debug("Uncorrelated assets; risk parity in closed form")
            return self._build_result(x, Strategy.RISK_PARITY)

        budget = 1.0 / self.n_assets
        converged = False
        iterations = 0

        for iterations in range(1, self.max_iter + 1):
            previous = x.copy()
            for i in range(self.n_assets):
                c = float(self.cov_matrix[i] @ x) - variances[i] * x[i]
                x[i] = (-c + math.sqrt(c * c + 4 * variances[i] * budget)) / (2 * variances[i])
            if np.max(np.abs(x - previous)) <= self.tol * np.max(np.abs(x)):
                converged = True
                break

        if not converged:
            logger.warning("Risk parity did not converge in %d iterations", self.max_iter)
            warnings.warn(
                f"risk parity did not converge within {self.max_iter} iterations",
                ConvergenceWarning,
                stacklevel=2,
            )

        return self._build_result(x / x.sum(), Strategy.RISK_PARITY, converged, iterations)

    def optimize(
        self,
        strategy: Union[Strategy, str],
        current_weights: Optional[Union[Mapping[str, float], Sequence[float]]] = None
    ) -> OptimizationResult:
        """
        Optimize for the given strategy

        When current_weights are given, the result carries improvement
        metrics against them.
        """
        try:
            strategy = Strategy(strategy)
        except ValueError as e:
            raise InvalidInputError(f"unknown strategy: {strategy!r}") from e

        solvers = {
            Strategy.MAX_SHARPE: self.maximize_sharpe,
            Strategy.MIN_VARIANCE: self.minimize_volatility,
            Strategy.MAX_RETURN: self.maximize_return,
            Strategy.RISK_PARITY: self.risk_parity,
        }
        logger.debug("Optimizing %d assets for %s", self.n_assets, strategy.value)
        result = solvers[strategy]()

        if current_weights is not None:
            result = replace(result, improvement=self.improvement_over(result, current_weights))
        return result

    def black_litterman(
        self,
        market_weights: Sequence[float],
        views: Optional[Sequence[MarketView]] = None,
        tau: float = DEFAULT_TAU,
        risk_aversion: float = DEFAULT_RISK_AVERSION,
        strategy: Union[Strategy, str] = Strategy.MAX_SHARPE
    ) -> OptimizationResult:
        """
        Optimize on Black-Litterman posterior inputs

        The optimizer's expected returns are replaced by the equilibrium
        returns implied by market_weights, tilted toward the views. Without
        views the market portfolio itself is returned.
        """
        posterior_returns, posterior_cov = black_litterman_inputs(
            self.assets, market_weights, self.cov_matrix, views, tau, risk_aversion
        )
        blended = PortfolioOptimizer(
            self.assets, posterior_returns, posterior_cov, self.constraints,
            risk_free_rate=self.risk_free_rate, max_iter=self.max_iter, tol=self.tol,
        )

        if not views:
            logger.info("No views given; returning the market portfolio")
            return blended._build_result(np.asarray(market_weights, dtype=float), None)
        return blended.optimize(strategy)

    def _align_weights(self, weights: Union[Mapping[str, float], Sequence[float]]) -> np.ndarray:
        """Weights by symbol or in asset order, as an array in asset order"""
        if isinstance(weights, Mapping):
            unknown = sorted(set(weights) - set(self.assets))
            if unknown:
                raise InvalidInputError(f"weights for unknown assets: {', '.join(unknown)}")
            w = np.array([weights.get(a, 0.0) for a in self.assets], dtype=float)
        else:
            w = np.asarray(weights, dtype=float)
            if w.shape != (self.n_assets,):
                raise InvalidInputError(f"expected {self.n_assets} weights, got shape {w.shape}")
        if not np.all(np.isfinite(w)):
            raise InvalidInputError("weights must be finite")
        return w

    def improvement_over(
        self,
        result: OptimizationResult,
        current_weights: Union[Mapping[str, float], Sequence[float]]
    ) -> ImprovementMetrics:
        """Return, risk and Sharpe gained by moving from current_weights to result"""
        current = self._align_weights(current_weights)
        target = np.asarray(result.weights, dtype=float)
        return ImprovementMetrics(
            return_improvement=result.expected_return - self.portfolio_return(current),
            risk_reduction=self.portfolio_volatility(current) - result.volatility,
            sharpe_improvement=result.sharpe_ratio - self.portfolio_sharpe(current),
            turnover=float(np.abs(target - current).sum()) / 2,
        )

    def _build_result(
        self,
        weights: np.ndarray,
        strategy: Optional[Strategy],
        converged: bool = True,
        iterations: int = 0
    ) -> OptimizationResult:
        weights = project_to_bounds(weights, self.lower, self.upper)
        return OptimizationResult(
            weights=as_return_series(weights),
            expected_return=self.portfolio_return(weights),
            volatility=self.portfolio_volatility(weights),
            sharpe_ratio=self.portfolio_sharpe(weights),
            assets=self.assets,
            strategy=strategy,
            converged=converged,
            iterations=iterations,
            risk_contributions=risk_contributions(weights, self.cov_matrix),
            diversification_ratio=diversification_ratio(weights, self.cov_matrix),
            constraints=self.constraints,
        )

    def calculate_frontier(self, n_points: int = DEFAULT_FRONTIER_POINTS) -> List[FrontierPoint]:
        """
        Calculate the efficient frontier

        Target returns run from the minimum variance portfolio's return to
        the highest attainable return under the bounds.
        """
        if n_points < 1:
            raise InvalidInputError("n_points must be at least 1")

        min_var = self.minimize_volatility()
        top = self._greedy_fill(np.argsort(-self.expected_returns, kind='stable'))
        low, high = min_var.expected_return, self.portfolio_return(top)

        if n_points == 1 or high - low <= 1e-12:
            return [FrontierPoint(risk=min_var.volatility, expected_return=low)]

        points = [FrontierPoint(risk=min_var.volatility, expected_return=low)]
        weights = np.asarray(min_var.weights, dtype=float)

        for target in np.linspace(low, high, n_points)[1:-1]:
            candidate, _, _ = self._solve(
                self._variance,
                jac=self._variance_grad,
                init_weights=weights,
                target_return=target,
            )
            candidate = project_to_bounds(candidate, self.lower, self.upper)
            if abs(self.portfolio_return(candidate) - target) > 1e-6:
                logger.warning("Skipping frontier point at target return %.6f", target)
                continue
            weights = candidate
            points.append(FrontierPoint(
                risk=self.portfolio_volatility(weights),
                expected_return=self.portfolio_return(weights),
            ))

        points.append(FrontierPoint(risk=self.portfolio_volatility(top), expected_return=high))
        return sorted(points, key=lambda p: p.expected_return)


def optimize_portfolio(
    assets: Sequence[str],
    expected_returns: Sequence[float],
    covariance: Sequence[Sequence[float]],
    strategy: Union[Strategy, str],
    constraints: Optional[OptimizationConstraints] = None,
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
    max_iter: int = DEFAULT_MAX_ITER,
    tol: float = DEFAULT_TOLERANCE,
    current_weights: Optional[Union[Mapping[str, float], Sequence[float]]] = None
) -> OptimizationResult:
    """Optimize portfolio weights for a strategy under allocation constraints"""
    optimizer = PortfolioOptimizer(
        assets, expected_returns, covariance, constraints,
        risk_free_rate=risk_free_rate, max_iter=max_iter, tol=tol,
    )
    return optimizer.optimize(strategy, current_weights)


def calculate_efficient_frontier(
    assets: Sequence[str],
    expected_returns: Sequence[float],
    covariance: Sequence[Sequence[float]],
    n_points: int = DEFAULT_FRONTIER_POINTS,
    constraints: Optional[OptimizationConstraints] = None,
    max_iter: int = DEFAULT_MAX_ITER
) -> List[FrontierPoint]:
    """Sample the efficient frontier in increasing-return order"""
    optimizer = PortfolioOptimizer(
        assets, expected_returns, covariance, constraints, max_iter=max_iter
    )
    return optimizer.calculate_frontier(n_points)


# ---------------------------------------------------------------------------
# Rebalancing and scenarios
# ---------------------------------------------------------------------------

def turnover(current: Mapping[str, float], target: Mapping[str, float]) -> float:
    """One-way turnover: half the total absolute weight change"""
    symbols = set(current) | set(target)
    return sum(abs(current.get(s, 0.0) - target.get(s, 0.0)) for s in symbols) / 2


def suggest_rebalancing(
    current: Mapping[str, float],
    target: Mapping[str, float],
    threshold: Optional[float] = None
) -> List[RebalanceSuggestion]:
    """
    Trades for every holding that drifted beyond the threshold

    The threshold defaults to the max_drift of the default constraints.
    """
    if threshold is None:
        threshold = OptimizationConstraints().max_drift

    suggestions = []
    symbols = list(target) + [s for s in current if s not in target]

    for symbol in symbols:
        current_weight = current.get(symbol, 0.0)
        target_weight = target.get(symbol, 0.0)
        if abs(current_weight - target_weight) > threshold:
            suggestions.append(RebalanceSuggestion(
                symbol=symbol,
                action='buy' if target_weight > current_weight else 'sell',
                current_weight=current_weight,
                target_weight=target_weight,
            ))

    return suggestions


def run_scenario_analysis(
    weights: Mapping[str, float],
    scenarios: Mapping[str, Mapping[str, float]]
) -> List[ScenarioResult]:
    """
    Portfolio return under each named scenario of asset returns

    Assets missing from a scenario are assumed flat.
    """
    results = []

    for name, asset_returns in scenarios.items():
        contributions: Dict[str, float] = {
            symbol: weight * asset_returns.get(symbol, 0.0)
            for symbol, weight in weights.items()
        }
        results.append(ScenarioResult(
            scenario=name,
            portfolio_return=sum(contributions.values()),
            contributions=contributions,
        ))

    return results


def summarize_scenarios(results: Sequence[ScenarioResult]) -> ScenarioSummary:
    """Best, worst and average case over scenario results"""
    if not results:
        raise InvalidInputError("at least one scenario result is required")

    best = max(results, key=lambda r: r.portfolio_return)
    worst = min(results, key=lambda r: r.portfolio_return)
    return ScenarioSummary(
        best_case=best.portfolio_return,
        worst_case=worst.portfolio_return,
        average_case=sum(r.portfolio_return for r in results) / len(results),
        best_scenario=best.scenario,
        worst_scenario=worst.scenario,
    )
