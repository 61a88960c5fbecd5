"""
Unit Tests for the Portfolio Optimizer
"""

import numpy as np
import pytest

from calculations import TRADING_DAYS
from exceptions import (
    InvalidInputError, InfeasibleConstraintsError, ConvergenceWarning, DivisionByZeroWarning,
)
from models import (
    FrontierPoint, Holding, MarketView, OptimizationConstraints, OptimizationResult, Strategy,
)
from optimization import (
    PortfolioOptimizer, optimize_portfolio, calculate_efficient_frontier,
    estimate_inputs, project_to_bounds, risk_contributions, diversification_ratio,
    implied_equilibrium_returns, black_litterman_inputs,
    turnover, suggest_rebalancing, run_scenario_analysis, summarize_scenarios,
)

ASSETS = ['BOND', 'VALUE', 'GROWTH']
EXPECTED_RETURNS = [0.10, 0.08, 0.12]
DIAGONAL_COV = np.diag([0.04, 0.0225, 0.09])


@pytest.fixture
def correlated_problem():
    """Four assets with a covariance estimated from correlated returns"""
    np.random.seed(42)
    n = 252
    market = np.random.normal(0.0004, 0.01, n)
    returns = np.column_stack([
        0.8 * market + np.random.normal(0.0003, 0.008, n),
        1.2 * market + np.random.normal(0.0005, 0.012, n),
        0.3 * market + np.random.normal(0.0002, 0.004, n),
        1.0 * market + np.random.normal(0.0004, 0.015, n),
    ])
    assets = ['AAPL', 'NVDA', 'BND', 'VTI']
    expected = returns.mean(axis=0) * TRADING_DAYS
    cov = np.cov(returns, rowvar=False, ddof=0) * TRADING_DAYS
    return assets, expected, cov


def assert_valid_weights(result, lower=0.0, upper=1.0):
    weights = np.asarray(result.weights)
    assert abs(weights.sum() - 1) <= 1e-6
    assert np.all(weights >= lower - 1e-9)
    assert np.all(weights <= upper + 1e-9)


class TestPortfolioOptimizer:
    """Test suite for PortfolioOptimizer class"""

    def test_min_variance_diagonal(self):
        """Test inverse-variance weights for uncorrelated assets"""
        result = optimize_portfolio(ASSETS, EXPECTED_RETURNS, DIAGONAL_COV, Strategy.MIN_VARIANCE)

        inverse = np.array([1 / 0.04, 1 / 0.0225, 1 / 0.09])
        assert isinstance(result, OptimizationResult)
        assert result.weights == pytest.approx(inverse / inverse.sum(), abs=1e-9)
        assert result.strategy == Strategy.MIN_VARIANCE

    def test_min_variance_beats_equal_weight(self, correlated_problem):
        """Test minimum variance is no riskier than equal weighting"""
        assets, expected, cov = correlated_problem
        result = optimize_portfolio(assets, expected, cov, 'min_variance')

        equal = np.full(len(assets), 1 / len(assets))
        assert result.volatility <= np.sqrt(equal @ cov @ equal) + 1e-12

    def test_result_metrics(self):
        """Test return, volatility and Sharpe follow from the weights"""
        result = optimize_portfolio(ASSETS, EXPECTED_RETURNS, DIAGONAL_COV, 'min_variance')
        w = np.asarray(result.weights)

        assert result.expected_return == pytest.approx(w @ EXPECTED_RETURNS)
        assert result.volatility == pytest.approx(np.sqrt(w @ DIAGONAL_COV @ w))
        assert result.sharpe_ratio == pytest.approx((result.expected_return - 0.02) / result.volatility)
        assert result.weights_by_asset()['VALUE'] == pytest.approx(w[1])

    def test_max_sharpe_closed_form(self):
        """Test tangency weights for uncorrelated assets"""
        result = optimize_portfolio(ASSETS, EXPECTED_RETURNS, DIAGONAL_COV, Strategy.MAX_SHARPE)

        z = (np.array(EXPECTED_RETURNS) - 0.02) / np.diag(DIAGONAL_COV)
        assert result.weights == pytest.approx(z / z.sum(), abs=1e-9)

    def test_max_sharpe_dominates(self, correlated_problem):
        """Test max Sharpe is at least as good as other strategies"""
        assets, expected, cov = correlated_problem
        best = optimize_portfolio(assets, expected, cov, Strategy.MAX_SHARPE)

        for strategy in [Strategy.MIN_VARIANCE, Strategy.RISK_PARITY]:
            other = optimize_portfolio(assets, expected, cov, strategy)
            assert best.sharpe_ratio >= other.sharpe_ratio - 1e-4

    def test_max_sharpe_with_binding_bounds(self):
        """Test SLSQP path when the tangency portfolio breaks the cap"""
        constraints = OptimizationConstraints(max_asset_allocation=0.4)
        result = optimize_portfolio(
            ASSETS, EXPECTED_RETURNS, DIAGONAL_COV, 'max_sharpe', constraints
        )

        assert_valid_weights(result, upper=0.4)
        equal = np.full(3, 1 / 3)
        equal_sharpe = (equal @ EXPECTED_RETURNS - 0.02) / np.sqrt(equal @ DIAGONAL_COV @ equal)
        assert result.sharpe_ratio >= equal_sharpe - 1e-9

    def test_max_return(self):
        """Test all weight goes to the best asset by default"""
        result = optimize_portfolio(ASSETS, EXPECTED_RETURNS, DIAGONAL_COV, 'max_return')

        assert result.weights == pytest.approx([0.0, 0.0, 1.0])
        assert result.expected_return == pytest.approx(0.12)

    def test_max_return_respects_cap(self):
        """Test the greedy fill spills over to the next best asset"""
        constraints = OptimizationConstraints(max_asset_allocation=0.5)
        result = optimize_portfolio(
            ASSETS, EXPECTED_RETURNS, DIAGONAL_COV, 'max_return', constraints
        )

        assert result.weights == pytest.approx([0.5, 0.0, 0.5])

    def test_risk_parity_diagonal(self):
        """Test inverse-volatility weights and equal risk contributions"""
        result = optimize_portfolio(ASSETS, EXPECTED_RETURNS, DIAGONAL_COV, 'risk_parity')

        assert result.weights == pytest.approx([1 / 3, 4 / 9, 2 / 9], abs=1e-9)
        assert result.risk_contributions == pytest.approx([1 / 3] * 3, abs=1e-9)
        assert result.converged

    def test_risk_parity_correlated(self, correlated_problem):
        """Test coordinate descent equalizes risk contributions"""
        assets, expected, cov = correlated_problem
        result = optimize_portfolio(assets, expected, cov, Strategy.RISK_PARITY)

        assert result.converged
        assert result.iterations > 0
        assert result.risk_contributions == pytest.approx([0.25] * 4, abs=1e-6)
        assert_valid_weights(result)

    def test_risk_parity_iteration_budget(self, correlated_problem):
        """Test non-convergence is flagged, not raised"""
        assets, expected, cov = correlated_problem

        with pytest.warns(ConvergenceWarning):
            result = optimize_portfolio(assets, expected, cov, 'risk_parity', max_iter=1)

        assert not result.converged
        assert result.iterations == 1
        assert_valid_weights(result)

    def test_risk_parity_zero_variance(self):
        """Test risk parity rejects riskless assets"""
        with pytest.raises(InvalidInputError):
            optimize_portfolio(['A', 'B'], [0.05, 0.03], np.diag([0.04, 0.0]), 'risk_parity')

    @pytest.mark.parametrize("strategy", list(Strategy))
    def test_weights_respect_bounds(self, correlated_problem, strategy):
        """Test every strategy honours the allocation bounds"""
        assets, expected, cov = correlated_problem
        constraints = OptimizationConstraints(min_asset_allocation=0.05, max_asset_allocation=0.6)

        result = optimize_portfolio(assets, expected, cov, strategy, constraints)

        assert_valid_weights(result, lower=0.05, upper=0.6)
        assert len(result.weights) == len(assets)
        assert result.assets == tuple(assets)

    def test_advisory_constraints_pass_through(self):
        """Test sector, region and drift limits are returned untouched"""
        constraints = OptimizationConstraints(max_sector_exposure=0.3, max_region_exposure=0.5)
        result = optimize_portfolio(ASSETS, EXPECTED_RETURNS, DIAGONAL_COV, 'min_variance', constraints)

        assert result.constraints.max_sector_exposure == 0.3
        assert result.constraints.max_region_exposure == 0.5

    @pytest.mark.parametrize("lower,upper", [(0.4, 1.0), (0.0, 0.2), (0.5, 0.3), (-0.1, 1.0)])
    def test_infeasible_constraints(self, lower, upper):
        """Test empty feasible regions are rejected"""
        constraints = OptimizationConstraints(
            min_asset_allocation=lower, max_asset_allocation=upper
        )

        with pytest.raises(InfeasibleConstraintsError):
            optimize_portfolio(ASSETS, EXPECTED_RETURNS, DIAGONAL_COV, 'min_variance', constraints)

    @pytest.mark.parametrize("assets,returns,cov", [
        ([], [], []),
        (['A', 'B'], [0.1], np.eye(2)),
        (['A', 'B'], [0.1, 0.2], np.eye(3)),
        (['A', 'B'], [0.1, 0.2], [[0.04, 0.01], [0.02, 0.09]]),
        (['A', 'B'], [0.1, 0.2], [[-0.04, 0.0], [0.0, 0.09]]),
        (['A', 'B'], [0.1, float('nan')], np.eye(2)),
    ])
    def test_invalid_inputs(self, assets, returns, cov):
        """Test malformed optimizer inputs"""
        with pytest.raises(InvalidInputError):
            optimize_portfolio(assets, returns, cov, 'min_variance')

    def test_unknown_strategy(self):
        """Test strategies outside the enum"""
        with pytest.raises(InvalidInputError):
            optimize_portfolio(ASSETS, EXPECTED_RETURNS, DIAGONAL_COV, 'equal_weight')

    def test_zero_volatility_sharpe(self):
        """Test a riskless portfolio reports an infinite Sharpe ratio"""
        with pytest.warns(DivisionByZeroWarning):
            result = optimize_portfolio(['CASH'], [0.05], [[0.0]], 'max_return')

        assert result.volatility == 0
        assert result.sharpe_ratio == float('inf')

    def test_from_holdings(self):
        """Test building the optimizer straight from return series"""
        np.random.seed(1)
        holdings = [
            Holding('A', 0.5, np.random.normal(0.0005, 0.01, 100)),
            Holding('B', 0.5, np.random.normal(0.0003, 0.02, 100)),
        ]

        optimizer = PortfolioOptimizer.from_holdings(holdings)
        result = optimizer.optimize('min_variance')

        assert optimizer.assets == ('A', 'B')
        assert_valid_weights(result)


    def test_slsqp_iteration_budget(self):
        """Test SLSQP failure is flagged like risk parity non-convergence"""
        constraints = OptimizationConstraints(max_asset_allocation=0.4)

        with pytest.warns(ConvergenceWarning):
            result = optimize_portfolio(
                ASSETS, EXPECTED_RETURNS, DIAGONAL_COV, 'max_sharpe', constraints, max_iter=1
            )

        assert not result.converged
        assert_valid_weights(result, upper=0.4)

    def test_improvement_over_current(self):
        """Test improvement metrics against an all-growth allocation"""
        result = optimize_portfolio(
            ASSETS, EXPECTED_RETURNS, DIAGONAL_COV, 'min_variance', current_weights=[0.0, 0.0, 1.0]
        )
        improvement = result.improvement

        assert improvement.return_improvement == pytest.approx(result.expected_return - 0.12)
        assert improvement.risk_reduction == pytest.approx(0.3 - result.volatility)
        assert improvement.risk_reduction > 0
        assert improvement.sharpe_improvement == pytest.approx(result.sharpe_ratio - 0.1 / 0.3)
        assert improvement.turnover == pytest.approx(1 - result.weights[2])

    def test_improvement_by_symbol(self):
        """Test current weights keyed by symbol; missing symbols count as 0"""
        optimizer = PortfolioOptimizer(ASSETS, EXPECTED_RETURNS, DIAGONAL_COV)
        by_symbol = optimizer.optimize('risk_parity', {'GROWTH': 1.0}).improvement
        by_order = optimizer.optimize('risk_parity', [0.0, 0.0, 1.0]).improvement

        assert by_symbol == by_order
        assert optimizer.optimize('risk_parity').improvement is None

    @pytest.mark.parametrize("current", [[0.5, 0.5], {'CASH': 1.0}, [0.5, 0.5, float('nan')]])
    def test_improvement_invalid_current(self, current):
        """Test misaligned current weights"""
        with pytest.raises(InvalidInputError):
            optimize_portfolio(
                ASSETS, EXPECTED_RETURNS, DIAGONAL_COV, 'min_variance', current_weights=current
            )


class TestBlackLitterman:
    """Test suite for Black-Litterman posterior inputs"""

    MARKET_WEIGHTS = [0.3, 0.3, 0.4]

    def test_implied_equilibrium_returns(self):
        """Test reverse optimization from market weights"""
        implied = implied_equilibrium_returns(self.MARKET_WEIGHTS, DIAGONAL_COV, 3.0)

        assert implied == pytest.approx([3 * 0.04 * 0.3, 3 * 0.0225 * 0.3, 3 * 0.09 * 0.4])

    def test_no_views(self):
        """Test the posterior is the equilibrium with inflated covariance"""
        returns, cov = black_litterman_inputs(ASSETS, self.MARKET_WEIGHTS, DIAGONAL_COV, tau=0.05)

        assert returns == pytest.approx(implied_equilibrium_returns(self.MARKET_WEIGHTS, DIAGONAL_COV))
        assert cov == pytest.approx(1.05 * DIAGONAL_COV)

    @pytest.mark.parametrize("confidence", [0.25, 0.5, 1.0])
    def test_single_view_blend(self, confidence):
        """Test a view on one asset blends prior and view by confidence"""
        prior = implied_equilibrium_returns(self.MARKET_WEIGHTS, DIAGONAL_COV)
        view = MarketView('GROWTH', 0.2, confidence)

        returns, cov = black_litterman_inputs(ASSETS, self.MARKET_WEIGHTS, DIAGONAL_COV, [view])

        assert returns[2] == pytest.approx((1 - confidence) * prior[2] + confidence * 0.2)
        assert returns[:2] == pytest.approx(prior[:2])
        assert cov[2, 2] == pytest.approx(0.09 * (1 + 0.05 * (1 - confidence)))

    def test_views_tilt_weights(self):
        """Test a bullish view raises the asset's optimized weight"""
        optimizer = PortfolioOptimizer(ASSETS, EXPECTED_RETURNS, DIAGONAL_COV, risk_free_rate=0.0)

        bullish = optimizer.black_litterman(self.MARKET_WEIGHTS, [MarketView('GROWTH', 0.2, 0.5)])
        bearish = optimizer.black_litterman(self.MARKET_WEIGHTS, [MarketView('GROWTH', 0.05, 0.5)])

        assert bullish.weights[2] > bearish.weights[2]
        assert bullish.strategy == Strategy.MAX_SHARPE
        assert_valid_weights(bullish)

    def test_market_portfolio_without_views(self):
        """Test no views returns the market weights"""
        optimizer = PortfolioOptimizer(ASSETS, EXPECTED_RETURNS, DIAGONAL_COV)
        result = optimizer.black_litterman(self.MARKET_WEIGHTS)

        assert result.weights == pytest.approx(self.MARKET_WEIGHTS)
        assert result.strategy is None

    @pytest.mark.parametrize("weights,views", [
        ([0.5, 0.5, 0.5], None),
        ([0.3, 0.3], None),
        ([0.3, 0.3, 0.4], [MarketView('CASH', 0.1, 0.5)]),
        ([0.3, 0.3, 0.4], [MarketView('GROWTH', 0.1, 0.0)]),
        ([0.3, 0.3, 0.4], [MarketView((), 0.1, 0.5)]),
    ])
    def test_invalid_inputs(self, weights, views):
        """Test malformed market weights and views"""
        with pytest.raises(InvalidInputError):
            black_litterman_inputs(ASSETS, weights, DIAGONAL_COV, views)


class TestEfficientFrontier:
    """Test suite for efficient frontier sampling"""

    def test_frontier_shape(self):
        """Test ordering and endpoints of the frontier"""
        points = calculate_efficient_frontier(ASSETS, EXPECTED_RETURNS, DIAGONAL_COV, 10)
        min_var = optimize_portfolio(ASSETS, EXPECTED_RETURNS, DIAGONAL_COV, 'min_variance')

        returns = [p.expected_return for p in points]
        risks = [p.risk for p in points]

        assert 2 <= len(points) <= 10
        assert all(isinstance(p, FrontierPoint) for p in points)
        assert returns == sorted(returns)
        assert all(b >= a - 1e-6 for a, b in zip(risks, risks[1:]))
        assert points[0].risk == pytest.approx(min_var.volatility)
        assert points[-1].expected_return == pytest.approx(0.12)

    def test_frontier_correlated(self, correlated_problem):
        """Test frontier points lie on or above minimum variance"""
        assets, expected, cov = correlated_problem
        points = calculate_efficient_frontier(assets, expected, cov, n_points=15)
        min_var = optimize_portfolio(assets, expected, cov, 'min_variance')

        assert all(p.risk >= min_var.volatility - 1e-6 for p in points)

    def test_single_point(self):
        """Test a one-point frontier is the minimum variance portfolio"""
        points = calculate_efficient_frontier(ASSETS, EXPECTED_RETURNS, DIAGONAL_COV, 1)

        assert len(points) == 1
        assert points[0].as_dict().keys() == {'risk', 'return'}

    def test_invalid_point_count(self):
        """Test a non-positive number of points"""
        with pytest.raises(InvalidInputError):
            calculate_efficient_frontier(ASSETS, EXPECTED_RETURNS, DIAGONAL_COV, 0)


class TestDiagnostics:
    """Test suite for weight diagnostics and helpers"""

    def test_project_to_bounds(self):
        """Test projection onto the capped simplex"""
        weights = project_to_bounds([0.7, 0.2, 0.1], 0.0, 0.5)

        assert weights == pytest.approx([0.5, 0.3, 0.2])

    def test_project_to_bounds_lifts_to_minimum(self):
        """Test small weights are raised to the floor"""
        weights = project_to_bounds([0.9, 0.05, 0.05], 0.25, 1.0)

        assert weights == pytest.approx([0.5, 0.25, 0.25])

    def test_risk_contributions(self):
        """Test contributions sum to one"""
        cov = np.array([[0.04, 0.01], [0.01, 0.09]])
        contributions = risk_contributions([0.6, 0.4], cov)

        assert contributions.sum() == pytest.approx(1.0)
        assert risk_contributions([0.0, 0.0], cov) == pytest.approx([0.0, 0.0])

    def test_diversification_ratio(self):
        """Test ratio is one for a single asset and above one when diversified"""
        cov = np.array([[0.04, 0.0], [0.0, 0.04]])

        assert diversification_ratio([1.0, 0.0], cov) == pytest.approx(1.0)
        assert diversification_ratio([0.5, 0.5], cov) == pytest.approx(np.sqrt(2))

    def test_estimate_inputs(self):
        """Test annualized population moments"""
        np.random.seed(2)
        a, b = np.random.normal(0, 0.01, 50), np.random.normal(0, 0.02, 50)
        expected, cov = estimate_inputs([Holding('A', 0.5, a), Holding('B', 0.5, b)])

        assert expected == pytest.approx([a.mean() * 252, b.mean() * 252])
        assert cov == pytest.approx(np.cov(np.vstack([a, b]), ddof=0) * 252)

    def test_turnover(self):
        """Test one-way turnover"""
        assert turnover({'A': 0.5, 'B': 0.5}, {'A': 0.3, 'B': 0.7}) == pytest.approx(0.2)
        assert turnover({'A': 1.0}, {'B': 1.0}) == pytest.approx(1.0)

    def test_suggest_rebalancing(self):
        """Test drifted holdings produce buy and sell suggestions"""
        current = {'A': 0.5, 'B': 0.3, 'C': 0.2}
        target = {'A': 0.3, 'B': 0.4, 'C': 0.2, 'D': 0.1}

        suggestions = suggest_rebalancing(current, target)

        assert [(s.symbol, s.action) for s in suggestions] == [
            ('A', 'sell'), ('B', 'buy'), ('D', 'buy')
        ]
        assert suggestions[0].drift == pytest.approx(0.2)
        assert suggest_rebalancing(current, target, threshold=0.15)[0].symbol == 'A'

    def test_scenario_analysis(self):
        """Test deterministic scenario returns"""
        results = run_scenario_analysis(
            {'A': 0.6, 'B': 0.4},
            {'crash': {'A': -0.2, 'B': -0.1}, 'rally': {'A': 0.1}}
        )

        assert [r.scenario for r in results] == ['crash', 'rally']
        assert results[0].portfolio_return == pytest.approx(-0.16)
        assert results[1].portfolio_return == pytest.approx(0.06)
        assert results[1].contributions['B'] == 0.0

    def test_scenario_summary(self):
        """Test best, worst and average case across scenarios"""
        results = run_scenario_analysis(
            {'A': 0.6, 'B': 0.4},
            {'crash': {'A': -0.2, 'B': -0.1}, 'rally': {'A': 0.1}, 'flat': {}}
        )

        summary = summarize_scenarios(results)

        assert summary.best_case == pytest.approx(0.06)
        assert summary.worst_case == pytest.approx(-0.16)
        assert summary.average_case == pytest.approx(-0.1 / 3)
        assert (summary.best_scenario, summary.worst_scenario) == ('rally', 'crash')

        with pytest.raises(InvalidInputError):
            summarize_scenarios([])


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
