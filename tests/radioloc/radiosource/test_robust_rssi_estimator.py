"""
Unit tests for the robust RSSI radio source estimator.

Readings follow the isotropic model exactly except for a few receivers
with gross multipath errors.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from radioloc.estimators.consensus import RobustEstimatorMethod
from radioloc.radiosource.base import RobustEstimatorConfig
from radioloc.radiosource.robust import RobustRssiRadioSourceEstimator
from radioloc.rf.measurement_models import dbm_to_power, received_power
from radioloc.rf.readings import RadioSource, RangingReading, RssiReading

SOURCE = RadioSource("ap-lobby", 2.4e9)
RECEIVERS = np.array(
    [[0, 0], [10, 0], [10, 10], [0, 10], [2, 8], [8, 3], [4, 1], [9, 6],
     [1, 4], [6, 9], [7, 7], [3, 3]],
    dtype=float,
)
TRUE_POS = np.array([4.0, 6.0])
TRUE_POWER = 10.0
OUTLIERS = [1, 6]


def rssi_readings(n=2.0, outliers=()):
    sqr = np.sum((RECEIVERS - TRUE_POS) ** 2, axis=1)
    rssi = received_power(TRUE_POWER, sqr, SOURCE.frequency, n)
    rssi[list(outliers)] -= 20.0
    return [RssiReading(SOURCE, p, r, rssi_std=1.0) for p, r in zip(RECEIVERS, rssi)]


def quality_scores(bad=()):
    scores = np.linspace(1.0, 0.8, len(RECEIVERS))
    scores[list(bad)] = 0.1
    return scores


def make_config(method, **kwargs):
    kwargs.setdefault("threshold", None if method.uses_median else 0.5)
    kwargs.setdefault("random_seed", 3)
    kwargs.setdefault("initial_position", TRUE_POS + np.array([0.6, -0.4]))
    return RobustEstimatorConfig(**kwargs)


class TestRobustRssiEstimator:
    """Test every method on exact readings with outliers."""

    @pytest.mark.parametrize("method", list(RobustEstimatorMethod))
    def test_position_and_power(self, method):
        estimator = RobustRssiRadioSourceEstimator.create(
            make_config(method),
            method,
            readings=rssi_readings(outliers=OUTLIERS),
            quality_scores=quality_scores(bad=OUTLIERS),
        )

        estimator.estimate()

        assert_allclose(estimator.estimated_position, TRUE_POS, atol=1e-3)
        assert estimator.estimated_transmitted_power_dbm == pytest.approx(TRUE_POWER, abs=1e-3)
        assert estimator.estimated_transmitted_power == pytest.approx(dbm_to_power(TRUE_POWER), rel=1e-3)
        assert not np.any(estimator.inliers_data.inliers[OUTLIERS])
        assert estimator.estimated_covariance.shape == (3, 3)
        assert estimator.estimated_position_covariance.shape == (2, 2)
        assert estimator.estimated_transmitted_power_variance > 0.0
        assert estimator.estimated_path_loss_exponent_variance is None

    @pytest.mark.parametrize("method", [RobustEstimatorMethod.RANSAC, RobustEstimatorMethod.PROMEDS])
    def test_position_power_and_path_loss(self, method):
        estimator = RobustRssiRadioSourceEstimator.create(
            make_config(method, path_loss_estimation_enabled=True),
            method,
            readings=rssi_readings(n=2.3, outliers=OUTLIERS),
            quality_scores=quality_scores(bad=OUTLIERS),
        )

        estimator.estimate()

        assert estimator.min_readings == 5
        assert_allclose(estimator.estimated_position, TRUE_POS, atol=1e-3)
        assert estimator.estimated_path_loss_exponent == pytest.approx(2.3, abs=1e-3)
        assert estimator.estimated_covariance.shape == (4, 4)
        assert estimator.estimated_path_loss_exponent_variance > 0.0

    def test_power_only(self):
        """With position fixed only transmitted power is estimated."""
        method = RobustEstimatorMethod.LMEDS
        estimator = RobustRssiRadioSourceEstimator(
            readings=rssi_readings(outliers=OUTLIERS),
            config=make_config(method, initial_position=TRUE_POS, position_estimation_enabled=False),
            method=method,
        )

        estimator.estimate()

        assert estimator.min_readings == 2
        assert_allclose(estimator.estimated_position, TRUE_POS)
        assert estimator.estimated_transmitted_power_dbm == pytest.approx(TRUE_POWER, abs=1e-6)
        assert estimator.estimated_position_covariance is None
        assert estimator.estimated_covariance.shape == (1, 1)
        assert estimator.estimated_transmitted_power_variance == pytest.approx(
            1.0 / (len(RECEIVERS) - len(OUTLIERS))
        )

    def test_path_loss_only(self):
        method = RobustEstimatorMethod.MSAC
        estimator = RobustRssiRadioSourceEstimator(
            readings=rssi_readings(n=1.9, outliers=OUTLIERS),
            config=make_config(
                method,
                initial_position=TRUE_POS,
                initial_transmitted_power_dbm=TRUE_POWER,
                position_estimation_enabled=False,
                transmitted_power_estimation_enabled=False,
                path_loss_estimation_enabled=True,
            ),
            method=method,
        )

        estimator.estimate()

        assert estimator.estimated_path_loss_exponent == pytest.approx(1.9, abs=1e-6)
        assert estimator.estimated_transmitted_power_dbm == TRUE_POWER
        assert estimator.estimated_transmitted_power_variance is None


class TestRobustRssiReadiness:
    """Test configuration dependent readiness."""

    def test_min_readings_follow_flags(self):
        estimator = RobustRssiRadioSourceEstimator()
        assert estimator.min_readings == 4

        estimator.path_loss_estimation_enabled = True
        assert estimator.min_readings == 5

        estimator.position_estimation_enabled = False
        assert estimator.min_readings == 3

    def test_fixed_position_requires_initial_position(self):
        estimator = RobustRssiRadioSourceEstimator(
            readings=rssi_readings(), method=RobustEstimatorMethod.RANSAC
        )
        assert estimator.is_ready()

        estimator.position_estimation_enabled = False
        assert not estimator.is_ready()

        estimator.initial_position = TRUE_POS
        assert estimator.is_ready()

    def test_fixed_power_requires_initial_power(self):
        estimator = RobustRssiRadioSourceEstimator(
            readings=rssi_readings(), method=RobustEstimatorMethod.RANSAC
        )
        estimator.transmitted_power_estimation_enabled = False
        assert not estimator.is_ready()

        estimator.initial_transmitted_power_dbm = 5.0
        assert estimator.is_ready()

    def test_nothing_to_estimate(self):
        estimator = RobustRssiRadioSourceEstimator(
            readings=rssi_readings(),
            config=RobustEstimatorConfig(
                initial_position=TRUE_POS,
                initial_transmitted_power_dbm=TRUE_POWER,
                position_estimation_enabled=False,
                transmitted_power_estimation_enabled=False,
            ),
            method=RobustEstimatorMethod.RANSAC,
        )
        assert not estimator.is_ready()

    def test_ranging_readings_rejected(self):
        estimator = RobustRssiRadioSourceEstimator()
        with pytest.raises(TypeError):
            estimator.readings = [RangingReading(SOURCE, p, 1.0) for p in RECEIVERS]
