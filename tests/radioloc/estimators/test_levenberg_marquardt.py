"""
Unit tests for the Levenberg-Marquardt solver.

Tests cover:
    - Convergence on 2D range positioning
    - Weighted fits and formal covariance
    - Covariance scaling by the a-posteriori variance
    - Error handling for underdetermined and non-finite problems
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from radioloc.estimators.nonlinear_least_squares import (
    NonlinearLSResult,
    levenberg_marquardt,
)
from radioloc.exceptions import FittingError


class TestLevenbergMarquardtRangePositioning(unittest.TestCase):
    """Test LM on the canonical 2D range positioning problem."""

    def setUp(self):
        """Setup 4 anchors at corners of 10x10 area."""
        self.anchors = np.array([[0, 0], [10, 0], [0, 10], [10, 10]], dtype=float)
        self.true_pos = np.array([3.0, 4.0])

        def h(x):
            return np.linalg.norm(self.anchors - x, axis=1)

        def jacobian(x):
            diff = x - self.anchors
            ranges = np.linalg.norm(diff, axis=1, keepdims=True)
            return diff / np.maximum(ranges, 1e-10)

        self.h = h
        self.jacobian = jacobian
        self.y_clean = h(self.true_pos)

    def test_exact_measurements_convergence(self):
        """LM converges to the true position with exact measurements."""
        result = levenberg_marquardt(self.h, self.jacobian, self.y_clean, np.array([8.0, 8.0]))

        self.assertIsInstance(result, NonlinearLSResult)
        assert_allclose(result.x, self.true_pos, atol=1e-6)
        self.assertTrue(result.converged)
        self.assertAlmostEqual(result.chi_sq, 0.0, places=10)

    def test_start_at_solution(self):
        """Zero gradient stops immediately."""
        result = levenberg_marquardt(self.h, self.jacobian, self.y_clean, self.true_pos)

        self.assertTrue(result.converged)
        self.assertEqual(result.iterations, 1)
        assert_allclose(result.x, self.true_pos)

    def test_weighted_covariance(self):
        """Covariance is (J'WJ)⁻¹ at the solution."""
        weights = np.array([1.0, 4.0, 4.0, 1.0])
        result = levenberg_marquardt(
            self.h, self.jacobian, self.y_clean, np.array([5.0, 5.0]), weights=weights
        )

        J = self.jacobian(result.x)
        expected = np.linalg.inv(J.T @ np.diag(weights) @ J)
        assert_allclose(result.covariance, expected, rtol=1e-6)

    def test_covariance_is_formal(self):
        """Covariance depends on the weights only, not on the residual size."""
        rng = np.random.default_rng(0)
        y = self.y_clean + 0.1 * rng.standard_normal(4)

        result = levenberg_marquardt(self.h, self.jacobian, y, np.array([5.0, 5.0]))

        self.assertGreater(result.chi_sq, 0.0)
        J = self.jacobian(result.x)
        assert_allclose(result.covariance, np.linalg.inv(J.T @ J), rtol=1e-6)


class TestLevenbergMarquardtErrors(unittest.TestCase):
    """Test input validation and failure reporting."""

    def test_underdetermined(self):
        with self.assertRaises(FittingError):
            levenberg_marquardt(
                lambda x: np.array([x.sum()]),
                lambda x: np.ones((1, 2)),
                np.array([1.0]),
                np.zeros(2),
            )

    def test_non_finite_model(self):
        with self.assertRaises(FittingError):
            levenberg_marquardt(
                lambda x: np.array([np.inf, 0.0]),
                lambda x: np.eye(2),
                np.zeros(2),
                np.zeros(2),
            )

    def test_wrong_weights(self):
        with self.assertRaises(ValueError):
            levenberg_marquardt(
                lambda x: x,
                lambda x: np.eye(2),
                np.zeros(2),
                np.zeros(2),
                weights=np.ones(3),
            )

    def test_wrong_jacobian_shape(self):
        with self.assertRaises(ValueError):
            levenberg_marquardt(
                lambda x: x,
                lambda x: np.eye(3),
                np.zeros(2),
                np.ones(2),
            )


if __name__ == "__main__":
    unittest.main()
