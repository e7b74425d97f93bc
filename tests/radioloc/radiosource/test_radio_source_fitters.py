"""
Unit tests for non-robust radio source fits.

Tests cover:
    - Minimum number of readings per parameter combination
    - Position accuracy and effective distance standard deviations
    - Ranging, RSSI and combined fits on exact readings
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from radioloc.exceptions import FittingError, LaterationError
from radioloc.radiosource.fitters import (
    fit_ranging,
    fit_ranging_and_rssi,
    fit_rssi,
    distance_stds,
    position_accuracy,
    ranging_and_rssi_min_readings,
    ranging_min_readings,
    rssi_min_readings,
)
from radioloc.rf.measurement_models import received_power
from radioloc.rf.readings import (
    RadioSource,
    RangingAndRssiReading,
    RangingReading,
    RssiReading,
)

SOURCE = RadioSource("beacon", 2.4e9)
RECEIVERS = np.array(
    [[0, 0], [10, 0], [10, 10], [0, 10], [2, 8], [8, 3], [4, 1], [9, 6]], dtype=float
)
TRUE_POS = np.array([4.0, 6.0])
TRUE_POWER = 10.0


def expected_rssi(positions, source=TRUE_POS, power=TRUE_POWER, n=2.0):
    sqr = np.sum((positions - source) ** 2, axis=1)
    return received_power(power, sqr, SOURCE.frequency, n)


def combined_readings(n=2.0):
    distances = np.linalg.norm(RECEIVERS - TRUE_POS, axis=1)
    rssi = expected_rssi(RECEIVERS, n=n)
    return [
        RangingAndRssiReading(SOURCE, p, d, r) for p, d, r in zip(RECEIVERS, distances, rssi)
    ]


class TestMinReadings:
    """Test minimum number of readings per configuration."""

    def test_values(self):
        assert ranging_min_readings(2) == 3
        assert ranging_min_readings(3) == 4
        assert rssi_min_readings(2) == 4
        assert rssi_min_readings(3, True, True, True) == 6
        assert rssi_min_readings(2, False, True, False) == 2
        assert ranging_and_rssi_min_readings(2) == 4
        assert ranging_and_rssi_min_readings(3, True, True) == 6

    def test_monotonic_in_enabled_parameters(self):
        """Enabling a parameter never lowers the minimum."""
        for dims in (2, 3):
            assert ranging_min_readings(dims) < ranging_min_readings(dims + 1)
            assert rssi_min_readings(dims, True, True, False) < rssi_min_readings(dims, True, True, True)
            assert rssi_min_readings(dims, False, True, False) < rssi_min_readings(dims, True, True, False)
            assert ranging_and_rssi_min_readings(dims, False, False) < ranging_and_rssi_min_readings(dims, True, False)
            assert ranging_and_rssi_min_readings(dims, True, False) < ranging_and_rssi_min_readings(dims, True, True)


class TestHelpers:
    def test_position_accuracy(self):
        """Mean of the one-sigma axes."""
        assert position_accuracy(np.diag([4.0, 1.0])) == pytest.approx(1.5)

    def test_distance_stds(self):
        readings = [
            RangingReading(SOURCE, [0.0, 0.0], 1.0, distance_std=0.3),
            RangingReading(SOURCE, [1.0, 0.0], 1.0, distance_std=0.3,
                           position_covariance=0.16 * np.eye(2)),
            RangingReading(SOURCE, [2.0, 0.0], 1.0),
        ]

        assert_allclose(distance_stds(readings), [0.3, 0.5, 1.0])
        assert_allclose(distance_stds(readings, use_reading_position_covariances=False), [0.3, 0.3, 1.0])


class TestFitRanging:
    """Test position fit from distances."""

    def _readings(self, positions, true_pos):
        distances = np.linalg.norm(positions - true_pos, axis=1)
        return [RangingReading(SOURCE, p, d, distance_std=0.5) for p, d in zip(positions, distances)]

    @pytest.mark.parametrize("homogeneous", [True, False])
    def test_exact_2d(self, homogeneous):
        fit = fit_ranging(self._readings(RECEIVERS, TRUE_POS), use_homogeneous_linear_solver=homogeneous)

        assert_allclose(fit.position, TRUE_POS, atol=1e-6)
        assert fit.transmitted_power_dbm is None
        assert fit.covariance.shape == (2, 2)
        assert_allclose(fit.covariance, fit.position_covariance)

    def test_exact_3d(self):
        positions = np.array(
            [[0, 0, 0], [10, 0, 0], [10, 10, 0], [0, 10, 0], [5, 5, 10]], dtype=float
        )
        true_pos = np.array([4.0, 6.0, 3.0])

        fit = fit_ranging(self._readings(positions, true_pos))

        assert_allclose(fit.position, true_pos, atol=1e-6)
        assert fit.position_covariance.shape == (3, 3)

    def test_inhomogeneous_seed(self):
        fit = fit_ranging(self._readings(RECEIVERS, TRUE_POS), use_homogeneous_linear_solver=False)

        assert_allclose(fit.position, TRUE_POS, atol=1e-6)
        assert fit.covariance.shape == (2, 2)

    def test_initial_position(self):
        fit = fit_ranging(self._readings(RECEIVERS, TRUE_POS), initial_position=np.array([5.0, 5.0]))
        assert_allclose(fit.position, TRUE_POS, atol=1e-6)

    def test_too_few_readings(self):
        with pytest.raises(FittingError):
            fit_ranging(self._readings(RECEIVERS[:2], TRUE_POS))

    def test_collinear_readings(self):
        positions = np.array([[0, 0], [1, 0], [2, 0], [3, 0]], dtype=float)
        with pytest.raises(LaterationError):
            fit_ranging(self._readings(positions, TRUE_POS))


class TestFitRssi:
    """Test received power fits."""

    def _readings(self, n=2.0):
        return [RssiReading(SOURCE, p, r, rssi_std=1.0)
                for p, r in zip(RECEIVERS, expected_rssi(RECEIVERS, n=n))]

    def test_position_and_power(self):
        fit = fit_rssi(self._readings(), initial_position=TRUE_POS + np.array([0.5, -0.5]))

        assert_allclose(fit.position, TRUE_POS, atol=1e-5)
        assert fit.transmitted_power_dbm == pytest.approx(TRUE_POWER, abs=1e-5)
        assert fit.path_loss_exponent == 2.0
        assert fit.covariance.shape == (3, 3)
        assert_allclose(fit.position_covariance, fit.covariance[:2, :2])

    def test_power_only(self):
        fit = fit_rssi(
            self._readings(), initial_position=TRUE_POS, position_estimation_enabled=False
        )

        assert_allclose(fit.position, TRUE_POS)
        assert fit.transmitted_power_dbm == pytest.approx(TRUE_POWER, abs=1e-8)
        assert fit.covariance.shape == (1, 1)
        assert fit.position_covariance is None
        # Power variance is σ²/N for N equally weighted readings
        assert fit.covariance[0, 0] == pytest.approx(1.0 / len(RECEIVERS))

    def test_power_and_path_loss(self):
        fit = fit_rssi(
            self._readings(n=2.6),
            initial_position=TRUE_POS,
            position_estimation_enabled=False,
            path_loss_estimation_enabled=True,
        )

        assert fit.transmitted_power_dbm == pytest.approx(TRUE_POWER, abs=1e-6)
        assert fit.path_loss_exponent == pytest.approx(2.6, abs=1e-6)
        assert fit.covariance.shape == (2, 2)

    def test_path_loss_only(self):
        fit = fit_rssi(
            self._readings(n=1.8),
            initial_position=TRUE_POS,
            initial_transmitted_power_dbm=TRUE_POWER,
            position_estimation_enabled=False,
            transmitted_power_estimation_enabled=False,
            path_loss_estimation_enabled=True,
        )

        assert fit.transmitted_power_dbm == TRUE_POWER
        assert fit.path_loss_exponent == pytest.approx(1.8, abs=1e-6)

    def test_nothing_enabled(self):
        with pytest.raises(FittingError):
            fit_rssi(
                self._readings(),
                position_estimation_enabled=False,
                transmitted_power_estimation_enabled=False,
            )

    def test_too_few_readings(self):
        with pytest.raises(FittingError):
            fit_rssi(self._readings()[:3])


class TestFitRangingAndRssi:
    def test_position_and_power(self):
        fit = fit_ranging_and_rssi(combined_readings())

        assert_allclose(fit.position, TRUE_POS, atol=1e-6)
        assert fit.transmitted_power_dbm == pytest.approx(TRUE_POWER, abs=1e-6)
        assert fit.covariance.shape == (3, 3)
        # Position and power are fitted separately
        assert_allclose(fit.covariance[:2, 2], 0.0)
        assert_allclose(fit.covariance[:2, :2], fit.position_covariance)

    def test_with_path_loss(self):
        fit = fit_ranging_and_rssi(combined_readings(n=2.4), path_loss_estimation_enabled=True)

        assert fit.path_loss_exponent == pytest.approx(2.4, abs=1e-6)
        assert fit.covariance.shape == (4, 4)

    def test_power_disabled(self):
        fit = fit_ranging_and_rssi(
            combined_readings(),
            initial_transmitted_power_dbm=3.0,
            transmitted_power_estimation_enabled=False,
        )

        assert fit.transmitted_power_dbm == 3.0
        assert fit.covariance.shape == (2, 2)
