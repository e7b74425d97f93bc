"""
Lateration algorithms for ranging-based source positioning.

This module implements solvers that locate a point from distances measured
at known positions, in any dimension (2D or 3D):
- Linear inhomogeneous lateration (reference-difference least squares)
- Linear homogeneous lateration (SVD null space)
- Nonlinear lateration (Levenberg-Marquardt with covariance)

The linear solvers need no initial guess and are used to seed the
nonlinear solver.
"""

from typing import Dict, Optional, Tuple
import warnings

import numpy as np

from radioloc.estimators.nonlinear_least_squares import levenberg_marquardt
from radioloc.exceptions import LaterationError


def _validate(positions: np.ndarray, distances: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    positions = np.asarray(positions, dtype=float)
    distances = np.asarray(distances, dtype=float)

    if positions.ndim != 2:
        raise ValueError(f"positions must be 2D array (N, d), got shape {positions.shape}")
    if distances.shape != (positions.shape[0],):
        raise ValueError(
            f"Expected {positions.shape[0]} distances, got shape {distances.shape}"
        )

    n_points, dim = positions.shape
    if n_points < dim + 1:
        raise LaterationError(
            f"Lateration in {dim}D requires at least {dim + 1} positions, got {n_points}"
        )
    return positions, distances


def inhomogeneous_lateration(
    positions: np.ndarray,
    distances: np.ndarray,
    ref_idx: int = 0,
) -> Tuple[np.ndarray, Dict]:
    """
    Closed-form lateration by differencing against a reference position.

    Subtracting the squared range equation of the reference point from the
    others removes the quadratic term |x|² and leaves a linear system:
        H x = y
        h_i = 2 (p_i - p_ref)
        y_i = d_ref² - d_i² + |p_i|² - |p_ref|²

    which is solved in the least squares sense.

    Args:
        positions: Known positions, shape (N, d) with N >= d + 1.
        distances: Measured distances, shape (N,).
        ref_idx: Index of the reference position (default 0).

    Returns:
        position: Estimated position, shape (d,).
        info: Dictionary with solver information:
            - 'method': 'inhomogeneous'
            - 'condition_number': condition number of H
            - 'residual': residual norm of the linear system

    Raises:
        LaterationError: If there are too few positions or they are
            degenerate (e.g., collinear in 2D, coplanar in 3D).

    Example:
        >>> positions = np.array([[0, 0], [10, 0], [10, 10], [0, 10]])
        >>> distances = np.linalg.norm(positions - np.array([5.0, 5.0]), axis=1)
        >>> pos, info = inhomogeneous_lateration(positions, distances)
        >>> print(f"Position: {pos}")  # Should be close to [5, 5]
    """
    positions, distances = _validate(positions, distances)
    n_points, dim = positions.shape
    if ref_idx < 0 or ref_idx >= n_points:
        raise ValueError(f"ref_idx must be in [0, {n_points - 1}], got {ref_idx}")

    p_ref = positions[ref_idx]
    d_ref = distances[ref_idx]
    others = np.delete(np.arange(n_points), ref_idx)

    H = 2.0 * (positions[others] - p_ref)
    y = (
        d_ref**2
        - distances[others] ** 2
        + np.sum(positions[others] ** 2, axis=1)
        - np.sum(p_ref**2)
    )

    if np.linalg.matrix_rank(H) < dim:
        raise LaterationError("Positions are degenerate, lateration system is rank deficient")

    cond_num = np.linalg.cond(H)
    if cond_num > 1e12:
        warnings.warn(
            f"Ill-conditioned lateration system (cond={cond_num:.2e})",
            RuntimeWarning,
            stacklevel=2,
        )
    position = np.linalg.lstsq(H, y, rcond=None)[0]

    info = {
        "method": "inhomogeneous",
        "condition_number": cond_num,
        "residual": float(np.linalg.norm(H @ position - y)),
    }

    return position, info


def homogeneous_lateration(
    positions: np.ndarray,
    distances: np.ndarray,
) -> Tuple[np.ndarray, Dict]:
    """
    Closed-form lateration as a homogeneous linear system.

    Each squared range equation |x - p_i|² = d_i² is written as
        [-2 p_i', 1, |p_i|² - d_i²] · [x w, |x|² w, w]' = 0
    and the unknown homogeneous vector is the right singular vector of the
    smallest singular value. The position is recovered by dividing by w.

    Args:
        positions: Known positions, shape (N, d) with N >= d + 1.
        distances: Measured distances, shape (N,).

    Returns:
        position: Estimated position, shape (d,).
        info: Dictionary with solver information:
            - 'method': 'homogeneous'
            - 'singular_values': singular values of the design matrix

    Raises:
        LaterationError: If the null space is not one-dimensional or the
            homogeneous solution lies at infinity.
    """
    positions, distances = _validate(positions, distances)
    n_points, dim = positions.shape

    A = np.empty((n_points, dim + 2))
    A[:, :dim] = -2.0 * positions
    A[:, dim] = 1.0
    A[:, dim + 1] = np.sum(positions**2, axis=1) - distances**2

    # Normalize rows to improve conditioning
    row_norms = np.linalg.norm(A, axis=1, keepdims=True)
    A = A / np.maximum(row_norms, 1e-12)

    try:
        _, s, Vt = np.linalg.svd(A)
    except np.linalg.LinAlgError as e:
        raise LaterationError("SVD did not converge") from e

    # Null space must be one-dimensional: the (d+1)th singular value is non-zero
    if s[dim] <= 1e-12 * s[0]:
        raise LaterationError("Positions are degenerate, null space is not unique")

    v = Vt[-1]
    if abs(v[-1]) < 1e-12 * np.linalg.norm(v):
        raise LaterationError("Homogeneous solution lies at infinity")

    position = v[:dim] / v[-1]

    info = {
        "method": "homogeneous",
        "singular_values": s,
    }

    return position, info


class NonlinearLaterationSolver:
    """
    Nonlinear lateration using Levenberg-Marquardt.

    Minimizes the weighted squared range errors
        x̂ = argmin Σ (d_i - ‖x - p_i‖)² / σ_i²
    starting from an initial guess, and returns the position together with
    its formal covariance (J'WJ)⁻¹.

    Attributes:
        positions: Known positions, shape (N, d) where d=2 or 3.
        n_points: Number of positions N.
        dim: Dimensionality d.
    """

    def __init__(self, positions: np.ndarray):
        """
        Initialize lateration solver.

        Args:
            positions: Known positions, shape (N, 2) or (N, 3).
        """
        self.positions = np.asarray(positions, dtype=float)
        if self.positions.ndim != 2:
            raise ValueError(
                f"positions must be 2D array (N, d), got shape {self.positions.shape}"
            )
        self.n_points = self.positions.shape[0]
        self.dim = self.positions.shape[1]

    def _predict(self, x: np.ndarray) -> np.ndarray:
        return np.linalg.norm(x - self.positions, axis=1)

    def _jacobian(self, x: np.ndarray) -> np.ndarray:
        diff = x - self.positions
        ranges = np.linalg.norm(diff, axis=1, keepdims=True)
        return diff / np.maximum(ranges, 1e-10)

    def solve(
        self,
        distances: np.ndarray,
        initial_guess: np.ndarray,
        distance_stds: Optional[np.ndarray] = None,
        max_iters: int = 100,
        tol: float = 1e-10,
    ) -> Tuple[np.ndarray, Dict]:
        """
        Solve lateration problem from an initial guess.

        Args:
            distances: Measured distances, shape (N,).
            initial_guess: Initial position estimate, shape (d,).
            distance_stds: Standard deviations of the distances, shape (N,).
                Uniform weights are used if None.
            max_iters: Maximum number of iterations. Defaults to 100.
            tol: Convergence tolerance. Defaults to 1e-10.

        Returns:
            position: Estimated position, shape (d,).
            info: Dictionary with convergence information:
                - 'iterations': number of iterations
                - 'converged': True if converged
                - 'covariance': position covariance (d, d)
                - 'chi_sq': weighted sum of squared residuals

        Raises:
            LaterationError: If there are too few distances or the fit fails.
        """
        distances = np.asarray(distances, dtype=float)
        initial_guess = np.asarray(initial_guess, dtype=float)

        if distances.shape != (self.n_points,):
            raise ValueError(
                f"Expected {self.n_points} distances, got shape {distances.shape}"
            )
        if initial_guess.shape != (self.dim,):
            raise ValueError(
                f"initial_guess must have shape ({self.dim},), got {initial_guess.shape}"
            )
        if self.n_points < self.dim + 1:
            raise LaterationError(
                f"Lateration in {self.dim}D requires at least {self.dim + 1} "
                f"positions, got {self.n_points}"
            )

        weights = None
        if distance_stds is not None:
            distance_stds = np.asarray(distance_stds, dtype=float)
            if np.any(distance_stds <= 0):
                raise ValueError("distance_stds must be positive")
            weights = 1.0 / distance_stds**2

        result = levenberg_marquardt(
            self._predict,
            self._jacobian,
            distances,
            initial_guess,
            weights=weights,
            max_iter=max_iters,
            tol=tol,
        )

        if not np.all(np.isfinite(result.x)):
            raise LaterationError("Nonlinear lateration diverged")

        info = {
            "iterations": result.iterations,
            "converged": result.converged,
            "covariance": result.covariance,
            "chi_sq": result.chi_sq,
        }

        return result.x, info
