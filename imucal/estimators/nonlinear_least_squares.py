"""
Nonlinear least squares solver (Levenberg-Marquardt).

Mathematical Formulation:
    Given observations y and measurement model h(x), we seek:
        x̂ = argmin ½‖r(x)‖²_W
    where r(x) = y - h(x) is the residual vector and W = diag(w).

    Levenberg-Marquardt update:
        (J'WJ + μI) Δx = J'W r
    where μ is an adaptive damping parameter, initialised relative to the
    largest diagonal entry of J'WJ and adapted with the gain ratio between
    actual and predicted cost decrease (Madsen, Nielsen & Tingleff, 2004).

    Covariance at the solution:
        P = (J'WJ)⁻¹            (weights are inverse measurement variances)
        P = σ̂² (J'WJ)⁻¹         (scale_covariance=True, σ̂² = r'Wr / (m - n))
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class NonlinearLSResult:
    """Result container for nonlinear least squares optimization.

    Attributes:
        x: Estimated state vector.
        covariance: Covariance matrix (n × n), or None.
        iterations: Number of iterations performed.
        residuals: Final residuals r = y - h(x̂).
        cost: Final cost value ½‖r‖²_W.
        converged: Whether the solver converged within tolerance.
        weights: Measurement weights used by the fit.
    """

    x: np.ndarray
    covariance: Optional[np.ndarray]
    iterations: int
    residuals: np.ndarray
    cost: float
    converged: bool
    weights: Optional[np.ndarray] = None

    @property
    def chi_sq(self) -> float:
        """Weighted sum of squared residuals r'Wr."""
        return 2.0 * self.cost

    @property
    def mse(self) -> float:
        """Unweighted mean of squared residuals."""
        return float(np.mean(self.residuals**2))


def levenberg_marquardt(
    h: Callable[[np.ndarray], np.ndarray],
    jacobian: Callable[[np.ndarray], np.ndarray],
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray] = None,
    max_iter: int = 100,
    tol: float = 1e-10,
    ftol: float = 1e-12,
    mu0: float = 1e-3,
    return_covariance: bool = True,
    scale_covariance: bool = False,
) -> NonlinearLSResult:
    """
    Levenberg-Marquardt solver for nonlinear least squares.

    Solves: x̂ = argmin ½‖y - h(x)‖²_W

    Trial steps for which h(x) cannot be evaluated (h raises
    numpy.linalg.LinAlgError or returns non-finite values) are rejected
    like any other step that does not decrease the cost.

    Args:
        h: Measurement model function h: R^n → R^m.
        jacobian: Function returning Jacobian matrix J = ∂h/∂x (m × n).
        y: Observation vector (m,).
        x0: Initial state estimate (n,).
        weights: Optional measurement weights (m,), typically 1/σ².
            If None, uses uniform weights (standard LS).
        max_iter: Maximum number of accepted-or-rejected iterations.
        tol: Convergence tolerance on the relative step ‖Δx‖ / (‖x‖ + tol).
        ftol: Convergence tolerance on the relative cost decrease.
        mu0: Initial damping, relative to max(diag(J'WJ)).
        return_covariance: If True, compute covariance at final estimate.
        scale_covariance: If True, scale (J'WJ)⁻¹ by the residual variance.

    Returns:
        NonlinearLSResult containing estimate, covariance, and diagnostics.

    Raises:
        ValueError: If shapes are inconsistent or h(x0) is not finite.

    Example:
        >>> import numpy as np
        >>> anchors = np.array([[0, 0], [10, 0], [0, 10], [10, 10]])
        >>> def h(x):
        ...     return np.linalg.norm(anchors - x, axis=1)
        >>> def jac(x):
        ...     diff = x - anchors
        ...     ranges = np.linalg.norm(diff, axis=1, keepdims=True)
        ...     return diff / np.maximum(ranges, 1e-10)
        >>> y = np.array([5.0, 7.07, 7.07, 5.0])
        >>> result = levenberg_marquardt(h, jac, y, x0=np.array([1.0, 1.0]))
        >>> print(f"Estimate: {result.x}, Converged: {result.converged}")
    """
    y = np.asarray(y, dtype=np.float64)
    x = np.array(x0, dtype=np.float64)

    if y.ndim != 1:
        raise ValueError(f"y must be 1D array, got shape {y.shape}")
    if x.ndim != 1:
        raise ValueError(f"x0 must be 1D array, got shape {x.shape}")

    m = len(y)
    n = len(x)

    if weights is None:
        w = np.ones(m)
    else:
        w = np.asarray(weights, dtype=np.float64)
        if w.ndim != 1 or len(w) != m:
            raise ValueError(f"weights must be 1D array of length {m}")
        if np.any(w < 0):
            raise ValueError("weights must be non-negative")

    def evaluate(x_eval):
        hx = np.asarray(h(x_eval), dtype=np.float64)
        if hx.shape != (m,):
            raise ValueError(f"h(x) returned shape {hx.shape}, expected ({m},)")
        r_eval = y - hx
        return r_eval, 0.5 * float(r_eval @ (w * r_eval))

    r, cost = evaluate(x)
    if not np.isfinite(cost):
        raise ValueError("cost is not finite at the initial estimate")

    mu = None
    nu = 2.0
    converged = False
    iteration = 0

    for iteration in range(1, max_iter + 1):
        J = np.asarray(jacobian(x), dtype=np.float64)
        if J.shape != (m, n):
            raise ValueError(f"Jacobian shape {J.shape}, expected ({m}, {n})")

        JtW = J.T * w
        JtWJ = JtW @ J
        JtWr = JtW @ r

        if mu is None:
            mu = mu0 * max(float(np.max(np.diag(JtWJ))), 1e-12)

        accepted = False
        while not accepted:
            try:
                delta_x = np.linalg.solve(JtWJ + mu * np.eye(n), JtWr)
            except np.linalg.LinAlgError:
                delta_x = np.linalg.lstsq(JtWJ + mu * np.eye(n), JtWr, rcond=None)[0]

            if np.linalg.norm(delta_x) <= tol * (np.linalg.norm(x) + tol):
                converged = True
                break

            x_new = x + delta_x
            try:
                r_new, cost_new = evaluate(x_new)
            except np.linalg.LinAlgError:
                cost_new = np.inf

            # Predicted decrease: ½ Δx'(μΔx + J'Wr)
            predicted_decrease = 0.5 * delta_x @ (mu * delta_x + JtWr)
            actual_decrease = cost - cost_new
            if np.isfinite(cost_new) and predicted_decrease > 0.0:
                gain_ratio = actual_decrease / predicted_decrease
            else:
                gain_ratio = -1.0

            if gain_ratio > 0:
                accepted = True
                x, r = x_new, r_new
                mu = mu * max(1.0 / 3.0, 1.0 - (2.0 * gain_ratio - 1.0) ** 3)
                nu = 2.0
                if actual_decrease <= ftol * cost_new or cost_new == 0.0:
                    converged = True
                cost = cost_new
            else:
                mu = mu * nu
                nu = 2.0 * nu
                if mu > 1e16 * max(float(np.max(np.diag(JtWJ))), 1.0):
                    logger.debug("damping diverged after %d iterations", iteration)
                    break

        if converged or not accepted:
            break

    P = None
    if return_covariance:
        J = np.asarray(jacobian(x), dtype=np.float64)
        JtWJ = (J.T * w) @ J
        sigma2 = 1.0
        if scale_covariance and m > n:
            sigma2 = 2.0 * cost / (m - n)
        # Unobservable directions get zero variance instead of a blown-up inverse
        if np.linalg.cond(JtWJ) < 1e12:
            P = sigma2 * np.linalg.inv(JtWJ)
        else:
            P = sigma2 * np.linalg.pinv(JtWJ, rcond=1e-12, hermitian=True)

    return NonlinearLSResult(
        x=x,
        covariance=P,
        iterations=iteration,
        residuals=r,
        cost=cost,
        converged=converged,
        weights=w,
    )
