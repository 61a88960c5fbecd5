"""
Analytics Exceptions
Errors and warnings raised by the analytics core
"""


class AnalyticsError(Exception):
    """Base exception for analytics errors"""
    pass


class InvalidInputError(AnalyticsError, ValueError):
    """Raised for malformed inputs (short series, misaligned lengths, bad prices)"""
    pass


class InfeasibleConstraintsError(AnalyticsError, ValueError):
    """Raised when allocation constraints admit no valid weight vector"""

    def __init__(self, n_assets: int, min_allocation: float, max_allocation: float):
        self.n_assets = n_assets
        self.min_allocation = min_allocation
        self.max_allocation = max_allocation
        super().__init__(
            f"No feasible weights for {n_assets} assets with bounds "
            f"[{min_allocation}, {max_allocation}]"
        )


class DivisionByZeroWarning(RuntimeWarning):
    """A ratio's denominator was zero; an infinite or NaN sentinel was returned"""
    pass


class ConvergenceWarning(RuntimeWarning):
    """An iterative solver exhausted its iteration budget"""
    pass
