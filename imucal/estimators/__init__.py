"""
Estimation algorithms used by the calibrators.

Available estimators:
    - Linear Least Squares (closed-form, SVD based)
    - Nonlinear Least Squares (Levenberg-Marquardt)
    - Robust consensus estimation (RANSAC, MSAC, LMedS, PROSAC, PROMedS)
"""

from imucal.estimators.least_squares import linear_least_squares
from imucal.estimators.nonlinear_least_squares import (
    NonlinearLSResult,
    levenberg_marquardt,
)
from imucal.estimators.robust import (
    MAX_RESIDUAL,
    InliersData,
    LmedsStrategy,
    MsacStrategy,
    PromedsStrategy,
    ProsacStrategy,
    RansacStrategy,
    RobustEstimator,
    RobustEstimatorError,
    RobustEstimatorResult,
    RobustMethod,
    RobustStrategy,
    make_strategy,
    required_iterations,
)

__all__ = [
    # Linear LS
    "linear_least_squares",
    # Nonlinear LS
    "levenberg_marquardt",
    "NonlinearLSResult",
    # Robust consensus
    "RobustMethod",
    "RobustStrategy",
    "RansacStrategy",
    "MsacStrategy",
    "LmedsStrategy",
    "ProsacStrategy",
    "PromedsStrategy",
    "make_strategy",
    "RobustEstimator",
    "RobustEstimatorResult",
    "RobustEstimatorError",
    "InliersData",
    "required_iterations",
    "MAX_RESIDUAL",
]
