"""Unit tests for the robust combined ranging and RSSI estimator."""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from radioloc.estimators.consensus import RobustEstimatorMethod
from radioloc.radiosource import (
    RobustEstimatorConfig,
    RobustRangingAndRssiRadioSourceEstimator,
    RobustRangingRadioSourceEstimator,
    RobustRssiRadioSourceEstimator,
    create,
)
from radioloc.rf.measurement_models import received_power
from radioloc.rf.readings import RadioSource, RangingAndRssiReading, RangingReading, RssiReading

SOURCE = RadioSource("ble-tag", 2.45e9)
RECEIVERS = np.array(
    [[0, 0], [10, 0], [10, 10], [0, 10], [2, 8], [8, 3], [4, 1], [9, 6], [1, 4], [6, 9]],
    dtype=float,
)
TRUE_POS = np.array([4.0, 6.0])
TRUE_POWER = -3.0
# Receivers seeing a reflected path: longer range and weaker power
REFLECTED = [2, 7]


def combined_readings(n=2.0, reflected=()):
    distances = np.linalg.norm(RECEIVERS - TRUE_POS, axis=1)
    rssi = received_power(TRUE_POWER, distances**2, SOURCE.frequency, n)
    distances[list(reflected)] += 8.0
    rssi[list(reflected)] -= 12.0
    return [
        RangingAndRssiReading(SOURCE, p, d, r, distance_std=0.1, rssi_std=1.0)
        for p, d, r in zip(RECEIVERS, distances, rssi)
    ]


def quality_scores(bad=()):
    scores = np.linspace(1.0, 0.9, len(RECEIVERS))
    scores[list(bad)] = 0.2
    return scores


class TestRobustRangingAndRssiEstimator:
    @pytest.mark.parametrize("method", list(RobustEstimatorMethod))
    def test_reflected_paths_rejected(self, method):
        estimator = RobustRangingAndRssiRadioSourceEstimator.create(
            RobustEstimatorConfig(threshold=None if method.uses_median else 0.5, random_seed=8),
            method,
            readings=combined_readings(reflected=REFLECTED),
            quality_scores=quality_scores(bad=REFLECTED),
        )

        estimator.estimate()

        assert_allclose(estimator.estimated_position, TRUE_POS, atol=1e-4)
        assert estimator.estimated_transmitted_power_dbm == pytest.approx(TRUE_POWER, abs=1e-4)
        assert not np.any(estimator.inliers_data.inliers[REFLECTED])

    def test_covariance_layout(self):
        """[position, power, path-loss] with independent position block."""
        estimator = RobustRangingAndRssiRadioSourceEstimator(
            readings=combined_readings(n=2.2),
            config=RobustEstimatorConfig(
                path_loss_estimation_enabled=True, threshold=0.5, random_seed=0
            ),
            method=RobustEstimatorMethod.RANSAC,
        )

        estimator.estimate()
        covariance = estimator.estimated_covariance

        assert estimator.min_readings == 5
        assert covariance.shape == (4, 4)
        assert_allclose(covariance[:2, 2:], 0.0)
        assert_allclose(covariance[:2, :2], estimator.estimated_position_covariance)
        assert estimator.estimated_transmitted_power_variance == pytest.approx(covariance[2, 2])
        assert estimator.estimated_path_loss_exponent_variance == pytest.approx(covariance[3, 3])
        assert estimator.estimated_path_loss_exponent == pytest.approx(2.2, abs=1e-6)

        located = estimator.estimated_radio_source
        assert located.transmitted_power_std_db == pytest.approx(np.sqrt(covariance[2, 2]))
        assert located.path_loss_exponent_std == pytest.approx(np.sqrt(covariance[3, 3]))

    def test_fixed_power_requires_initial_value(self):
        estimator = RobustRangingAndRssiRadioSourceEstimator(
            readings=combined_readings(), method=RobustEstimatorMethod.LMEDS
        )
        estimator.transmitted_power_estimation_enabled = False
        assert not estimator.is_ready()

        estimator.initial_transmitted_power_dbm = TRUE_POWER
        assert estimator.is_ready()
        assert estimator.min_readings == 3

    def test_only_combined_readings_accepted(self):
        estimator = RobustRangingAndRssiRadioSourceEstimator()
        with pytest.raises(TypeError):
            estimator.readings = [RangingReading(SOURCE, p, 1.0) for p in RECEIVERS]


class TestCreate:
    """Test estimator selection by reading type."""

    def test_selects_by_reading_type(self):
        combined = combined_readings()

        assert isinstance(create(readings=combined), RobustRangingAndRssiRadioSourceEstimator)
        assert isinstance(
            create(readings=[r.to_ranging() for r in combined]), RobustRangingRadioSourceEstimator
        )
        assert isinstance(
            create(readings=[r.to_rssi() for r in combined]), RobustRssiRadioSourceEstimator
        )

    def test_default_method(self):
        estimator = create(readings=combined_readings())
        assert estimator.method == RobustEstimatorMethod.PROMEDS

    def test_method_and_config_forwarded(self):
        config = RobustEstimatorConfig(threshold=0.25)
        estimator = create(config, RobustEstimatorMethod.MSAC, readings=combined_readings())

        assert estimator.method == RobustEstimatorMethod.MSAC
        assert estimator.threshold == 0.25

    def test_mixed_or_missing_readings(self):
        mixed = [RangingReading(SOURCE, p, 1.0) for p in RECEIVERS[:3]] + [
            RssiReading(SOURCE, p, -50.0) for p in RECEIVERS[3:]
        ]
        with pytest.raises(TypeError):
            create(readings=mixed)
        with pytest.raises(ValueError):
            create(readings=[])
