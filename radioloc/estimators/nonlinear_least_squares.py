"""
Nonlinear Least Squares solver using Levenberg-Marquardt.

This module implements the damped Gauss-Newton iteration used by every
nonlinear fit in the package (lateration and received power models).

Mathematical Formulation:
    Given observations y and measurement model h(x), we seek:
        x̂ = argmin ½‖r(x)‖²_W
    where r(x) = y - h(x) is the residual vector and W = diag(1/σ²).

    Levenberg-Marquardt update:
        (J'WJ + μI) Δx = J'W r
    where μ is an adaptive damping parameter updated from the gain ratio.

    Covariance at the solution:
        P = (J'WJ)⁻¹
    the formal covariance from the stated measurement standard deviations.
"""

from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from radioloc.exceptions import FittingError


@dataclass
class NonlinearLSResult:
    """Result container for nonlinear least squares optimization.

    Attributes:
        x: Estimated state vector.
        covariance: Formal covariance (J'WJ)⁻¹ at the estimate (n × n).
        iterations: Number of iterations performed.
        residuals: Final residuals r = y - h(x̂).
        cost: Final cost value ½‖r‖²_W.
        converged: Whether the solver converged within tolerance.
    """

    x: np.ndarray
    covariance: np.ndarray
    iterations: int
    residuals: np.ndarray
    cost: float
    converged: bool

    @property
    def chi_sq(self) -> float:
        """Weighted sum of squared residuals r'Wr."""
        return 2.0 * self.cost


def levenberg_marquardt(
    h: Callable[[np.ndarray], np.ndarray],
    jacobian: Callable[[np.ndarray], np.ndarray],
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray] = None,
    max_iter: int = 100,
    tol: float = 1e-10,
    mu0: float = 1e-3,
) -> NonlinearLSResult:
    """
    Levenberg-Marquardt solver for nonlinear least squares.

    Solves: x̂ = argmin ½‖y - h(x)‖²_W

    LM combines Gauss-Newton (fast near solution) with gradient descent
    (robust far from solution) by adaptively adjusting μ:
        - Small μ: Gauss-Newton behavior (quadratic convergence)
        - Large μ: Gradient descent behavior (global convergence)

    Args:
        h: Measurement model function h: R^n → R^m.
        jacobian: Function returning Jacobian matrix J = ∂h/∂x (m × n).
        y: Observation vector (m,).
        x0: Initial state estimate (n,).
        weights: Optional measurement weights (m,), typically 1/σ².
        max_iter: Maximum number of iterations.
        tol: Convergence tolerance on ‖Δx‖ and on the gradient ‖J'Wr‖.
        mu0: Initial damping parameter (default 1e-3).

    Returns:
        NonlinearLSResult containing estimate, covariance, and diagnostics.

    Raises:
        ValueError: If inputs have inconsistent shapes.
        FittingError: If the model produces non-finite values or the
            problem is underdetermined (m < n).

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
    y = np.asarray(y, dtype=float)
    x0 = np.asarray(x0, dtype=float)

    if y.ndim != 1:
        raise ValueError(f"y must be 1D array, got shape {y.shape}")
    if x0.ndim != 1:
        raise ValueError(f"x0 must be 1D array, got shape {x0.shape}")

    m = len(y)
    n = len(x0)
    if m < n:
        raise FittingError(f"Need at least {n} observations, got {m}")
    x = x0.copy()

    # Setup weight matrix
    if weights is None:
        W = np.eye(m)
    else:
        weights = np.asarray(weights, dtype=float)
        if weights.ndim != 1 or len(weights) != m:
            raise ValueError(f"weights must be 1D array of length {m}")
        if np.any(weights < 0) or not np.all(np.isfinite(weights)):
            raise ValueError("weights must be finite and non-negative")
        W = np.diag(weights)

    mu = mu0
    nu = 2.0

    converged = False
    iteration = 0

    for iteration in range(max_iter):
        hx = _evaluate(h, x, m)
        J = _evaluate_jacobian(jacobian, x, m, n)

        # Residual: r = y - h(x)
        r = y - hx

        # Weighted normal equations: (J'WJ) Δx = J'Wr
        JtW = J.T @ W
        JtWJ = JtW @ J
        JtWr = JtW @ r

        # Cost function: f = ½ r'Wr
        cost = 0.5 * r @ W @ r

        # Gradient vanishes at an exact fit
        if np.linalg.norm(JtWr, ord=np.inf) < tol:
            converged = True
            break

        while True:
            JtWJ_damped = JtWJ + mu * np.eye(n)

            try:
                delta_x = np.linalg.solve(JtWJ_damped, JtWr)
            except np.linalg.LinAlgError:
                delta_x = np.linalg.lstsq(JtWJ_damped, JtWr, rcond=None)[0]

            x_new = x + delta_x
            r_new = y - h(x_new)
            cost_new = 0.5 * r_new @ W @ r_new

            # Predicted decrease: ½ Δx'(μΔx + J'Wr)
            predicted_decrease = 0.5 * delta_x @ (mu * delta_x + JtWr)
            actual_decrease = cost - cost_new

            if predicted_decrease > 1e-15 and np.isfinite(cost_new):
                gain_ratio = actual_decrease / predicted_decrease
            else:
                gain_ratio = 0.0

            if gain_ratio > 0:
                # Accept step
                x = x_new
                mu = mu * max(1.0 / 3.0, 1.0 - (2.0 * gain_ratio - 1.0) ** 3)
                nu = 2.0
                break
            else:
                # Reject step, increase damping
                mu = mu * nu
                nu = 2.0 * nu

                if mu > 1e10:
                    break

        if np.linalg.norm(delta_x) < tol * (np.linalg.norm(x) + tol):
            converged = True
            break

    # Final evaluation
    hx = _evaluate(h, x, m)
    r = y - hx
    cost = 0.5 * r @ W @ r

    J = _evaluate_jacobian(jacobian, x, m, n)
    JtWJ = J.T @ W @ J
    try:
        P = np.linalg.inv(JtWJ)
    except np.linalg.LinAlgError:
        P = np.linalg.pinv(JtWJ)

    return NonlinearLSResult(
        x=x,
        covariance=P,
        iterations=iteration + 1,
        residuals=r,
        cost=float(cost),
        converged=converged,
    )


def _evaluate(h: Callable[[np.ndarray], np.ndarray], x: np.ndarray, m: int) -> np.ndarray:
    hx = np.asarray(h(x), dtype=float)
    if hx.shape != (m,):
        raise ValueError(f"h(x) returned shape {hx.shape}, expected ({m},)")
    if not np.all(np.isfinite(hx)):
        raise FittingError("Measurement model returned non-finite values")
    return hx


def _evaluate_jacobian(
    jacobian: Callable[[np.ndarray], np.ndarray], x: np.ndarray, m: int, n: int
) -> np.ndarray:
    J = np.asarray(jacobian(x), dtype=float)
    if J.shape != (m, n):
        raise ValueError(f"Jacobian shape {J.shape}, expected ({m}, {n})")
    if not np.all(np.isfinite(J)):
        raise FittingError("Jacobian contains non-finite values")
    return J
