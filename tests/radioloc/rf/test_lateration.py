"""
Unit tests for lateration solvers.

Tests inhomogeneous, homogeneous and nonlinear lateration in 2D and 3D.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from radioloc.exceptions import LaterationError
from radioloc.rf.lateration import (
    NonlinearLaterationSolver,
    homogeneous_lateration,
    inhomogeneous_lateration,
)

SQUARE = np.array([[0, 0], [10, 0], [10, 10], [0, 10]], dtype=float)
CUBE = np.array(
    [[0, 0, 0], [10, 0, 0], [10, 10, 0], [0, 10, 0], [5, 5, 10]], dtype=float
)


class TestLinearLateration:
    """Test closed-form lateration solvers."""

    @pytest.mark.parametrize("solver", [inhomogeneous_lateration, homogeneous_lateration])
    def test_exact_2d(self, solver):
        true_pos = np.array([3.0, 7.0])
        distances = np.linalg.norm(SQUARE - true_pos, axis=1)

        position, info = solver(SQUARE, distances)

        assert_allclose(position, true_pos, atol=1e-8)
        assert "method" in info

    @pytest.mark.parametrize("solver", [inhomogeneous_lateration, homogeneous_lateration])
    def test_exact_3d(self, solver):
        true_pos = np.array([4.0, 6.0, 3.0])
        distances = np.linalg.norm(CUBE - true_pos, axis=1)

        position, _ = solver(CUBE, distances)

        assert_allclose(position, true_pos, atol=1e-8)

    @pytest.mark.parametrize("solver", [inhomogeneous_lateration, homogeneous_lateration])
    def test_minimal_set_2d(self, solver):
        """Three non-collinear positions determine a 2D point."""
        true_pos = np.array([2.0, 3.0])
        positions = SQUARE[:3]
        distances = np.linalg.norm(positions - true_pos, axis=1)

        position, _ = solver(positions, distances)

        assert_allclose(position, true_pos, atol=1e-8)

    @pytest.mark.parametrize("solver", [inhomogeneous_lateration, homogeneous_lateration])
    def test_too_few_positions(self, solver):
        with pytest.raises(LaterationError):
            solver(SQUARE[:2], np.array([1.0, 1.0]))

    def test_collinear_positions_rejected(self):
        positions = np.array([[0, 0], [1, 0], [2, 0], [3, 0]], dtype=float)
        distances = np.array([1.0, 1.0, 1.0, 1.0])

        with pytest.raises(LaterationError):
            inhomogeneous_lateration(positions, distances)

    def test_reference_index(self):
        """Any reference position gives the same exact solution."""
        true_pos = np.array([6.0, 1.0])
        distances = np.linalg.norm(SQUARE - true_pos, axis=1)

        for ref_idx in range(4):
            position, _ = inhomogeneous_lateration(SQUARE, distances, ref_idx=ref_idx)
            assert_allclose(position, true_pos, atol=1e-8)

        with pytest.raises(ValueError):
            inhomogeneous_lateration(SQUARE, distances, ref_idx=4)

    def test_mismatched_distances(self):
        with pytest.raises(ValueError):
            homogeneous_lateration(SQUARE, np.ones(3))


class TestNonlinearLateration:
    """Test Levenberg-Marquardt lateration."""

    def test_perfect_measurements(self):
        true_pos = np.array([5.0, 5.0])
        distances = np.linalg.norm(SQUARE - true_pos, axis=1)

        solver = NonlinearLaterationSolver(SQUARE)
        position, info = solver.solve(distances, initial_guess=np.array([6.0, 6.0]))

        assert info["converged"]
        assert np.linalg.norm(position - true_pos) < 1e-6
        assert info["covariance"].shape == (2, 2)
        assert info["chi_sq"] == pytest.approx(0.0, abs=1e-12)

    def test_noisy_measurements_3d(self):
        rng = np.random.default_rng(42)
        true_pos = np.array([5.0, 5.0, 5.0])
        distances = np.linalg.norm(CUBE - true_pos, axis=1) + 0.05 * rng.standard_normal(5)

        solver = NonlinearLaterationSolver(CUBE)
        position, info = solver.solve(
            distances, initial_guess=np.array([4.0, 4.0, 4.0]), distance_stds=np.full(5, 0.05)
        )

        assert np.linalg.norm(position - true_pos) < 0.3
        assert info["covariance"].shape == (3, 3)

    def test_covariance_scales_with_distance_std(self):
        """Formal covariance grows with σ²."""
        true_pos = np.array([3.0, 4.0])
        distances = np.linalg.norm(SQUARE - true_pos, axis=1)
        solver = NonlinearLaterationSolver(SQUARE)

        _, info_1 = solver.solve(distances, true_pos, distance_stds=np.full(4, 1.0))
        _, info_2 = solver.solve(distances, true_pos, distance_stds=np.full(4, 2.0))

        assert_allclose(info_2["covariance"], 4.0 * info_1["covariance"], rtol=1e-9)

    def test_invalid_inputs(self):
        solver = NonlinearLaterationSolver(SQUARE)
        with pytest.raises(ValueError):
            solver.solve(np.ones(3), np.zeros(2))
        with pytest.raises(ValueError):
            solver.solve(np.ones(4), np.zeros(3))
        with pytest.raises(ValueError):
            solver.solve(np.ones(4), np.zeros(2), distance_stds=np.zeros(4))

    def test_too_few_positions(self):
        solver = NonlinearLaterationSolver(SQUARE[:2])
        with pytest.raises(LaterationError):
            solver.solve(np.ones(2), np.zeros(2))
