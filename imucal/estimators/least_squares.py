"""
Linear least squares estimation.

The solver works on the SVD of the design matrix rather than on
the normal equations, so the effective condition number is cond(A) and not
cond(A)², and it rejects rank-deficient systems with ValueError.
"""

from typing import Optional, Tuple

import numpy as np


def _validate_system(A: np.ndarray, b: np.ndarray) -> Tuple[int, int]:
    if A.ndim != 2 or b.ndim != 1:
        raise ValueError(f"A must be 2D and b must be 1D. Got A: {A.shape}, b: {b.shape}")

    m, n = A.shape
    if m < n:
        raise ValueError(f"Underdetermined system: m={m} < n={n}. Need m ≥ n.")
    if len(b) != m:
        raise ValueError(f"Dimension mismatch: A has {m} rows, b has {len(b)} elements")
    if not (np.all(np.isfinite(A)) and np.all(np.isfinite(b))):
        raise ValueError("A and b must contain only finite values")
    return m, n


def _svd_solve(A: np.ndarray, b: np.ndarray, rcond: Optional[float]):
    m, n = A.shape
    try:
        U, s, Vt = np.linalg.svd(A, full_matrices=False)
    except np.linalg.LinAlgError as e:
        raise ValueError(f"SVD of design matrix failed: {e}") from e

    if rcond is None:
        rcond = max(m, n) * np.finfo(np.float64).eps
    rank = int(np.sum(s > rcond * s[0])) if s.size and s[0] > 0 else 0
    if rank < n:
        raise ValueError(
            f"A is rank deficient: rank={rank} < n={n}. System has no unique solution."
        )

    x_hat = Vt.T @ ((U.T @ b) / s)
    # (A'A)⁻¹ = V diag(1/s²) V'
    inv_normal = (Vt.T / s**2) @ Vt
    return x_hat, inv_normal


def linear_least_squares(
    A: np.ndarray,
    b: np.ndarray,
    return_covariance: bool = True,
    rcond: Optional[float] = None,
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Standard linear least squares estimation.

    Solves: x_hat = argmin ||Ax - b||²
    Solution: x_hat = (A'A)⁻¹ A'b, computed through the SVD of A.

    Args:
        A: Design matrix (m × n), where m ≥ n.
        b: Observation vector (m,).
        return_covariance: If True, compute covariance matrix
            σ̂² (A'A)⁻¹ with σ̂² the unbiased residual variance.
        rcond: Relative singular-value cutoff used for the rank test.
            Defaults to max(m, n)·eps.

    Returns:
        Tuple of:
            - x_hat: Estimated state vector (n,).
            - P: Covariance matrix (n × n), or None if return_covariance is False.

    Raises:
        ValueError: If A and b dimensions don't match or A is rank deficient.

    Example:
        >>> import numpy as np
        >>> A = np.array([[1, 0], [0, 1], [1, 1], [1, -1]], dtype=float)
        >>> b = np.array([1.0, 2.0, 3.5, -0.5])
        >>> x_hat, P = linear_least_squares(A, b)
    """
    A = np.asarray(A, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    m, n = _validate_system(A, b)

    x_hat, inv_normal = _svd_solve(A, b, rcond)

    P = None
    if return_covariance:
        residuals = b - A @ x_hat
        sigma2 = np.sum(residuals**2) / (m - n) if m > n else 1.0
        P = sigma2 * inv_normal

    return x_hat, P
