"""Unit tests for radio reading value objects."""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from radioloc.rf.readings import (
    RadioSource,
    RangingAndRssiReading,
    RangingReading,
    RssiReading,
    has_ranging,
    has_rssi,
)

SOURCE = RadioSource("ap-1", 2.4e9)


class TestRadioSource:
    def test_frequency_must_be_positive(self):
        with pytest.raises(ValueError):
            RadioSource("bad", 0.0)

    def test_equality_by_value(self):
        assert RadioSource("ap-1", 2.4e9) == SOURCE


class TestReadings:
    """Test reading construction and validation."""

    def test_position_converted_to_array(self):
        reading = RangingReading(SOURCE, [1, 2], 3.0)
        assert isinstance(reading.position, np.ndarray)
        assert reading.position.dtype == float
        assert reading.dim == 2

    def test_3d_reading(self):
        reading = RssiReading(SOURCE, [1.0, 2.0, 3.0], -50.0, rssi_std=1.0)
        assert reading.dim == 3

    def test_invalid_position_shape(self):
        with pytest.raises(ValueError):
            RangingReading(SOURCE, [1.0], 3.0)
        with pytest.raises(ValueError):
            RssiReading(SOURCE, [[1.0, 2.0]], -50.0)

    def test_negative_distance_rejected(self):
        with pytest.raises(ValueError):
            RangingReading(SOURCE, [0.0, 0.0], -1.0)

    def test_negative_std_rejected(self):
        with pytest.raises(ValueError):
            RangingReading(SOURCE, [0.0, 0.0], 1.0, distance_std=-0.1)
        with pytest.raises(ValueError):
            RssiReading(SOURCE, [0.0, 0.0], -40.0, rssi_std=-1.0)

    def test_position_covariance_shape_checked(self):
        reading = RangingReading(SOURCE, [0.0, 0.0], 1.0, position_covariance=np.eye(2))
        assert reading.position_covariance.shape == (2, 2)
        with pytest.raises(ValueError):
            RangingReading(SOURCE, [0.0, 0.0], 1.0, position_covariance=np.eye(3))

    def test_readings_are_immutable(self):
        reading = RangingReading(SOURCE, [0.0, 0.0], 1.0)
        with pytest.raises(AttributeError):
            reading.distance = 2.0


class TestRangingAndRssiReading:
    def test_split_into_components(self):
        reading = RangingAndRssiReading(
            SOURCE, [1.0, 2.0], 5.0, -45.0, distance_std=0.2, rssi_std=1.5,
            position_covariance=0.01 * np.eye(2),
        )

        ranging = reading.to_ranging()
        rssi = reading.to_rssi()

        assert isinstance(ranging, RangingReading)
        assert ranging.distance == 5.0
        assert ranging.distance_std == 0.2
        assert isinstance(rssi, RssiReading)
        assert rssi.rssi == -45.0
        assert rssi.rssi_std == 1.5
        assert_allclose(rssi.position_covariance, 0.01 * np.eye(2))

    def test_measurement_kind_predicates(self):
        ranging = RangingReading(SOURCE, [0.0, 0.0], 1.0)
        rssi = RssiReading(SOURCE, [0.0, 0.0], -40.0)
        both = RangingAndRssiReading(SOURCE, [0.0, 0.0], 1.0, -40.0)

        assert has_ranging(ranging) and not has_rssi(ranging)
        assert has_rssi(rssi) and not has_ranging(rssi)
        assert has_ranging(both) and has_rssi(both)
