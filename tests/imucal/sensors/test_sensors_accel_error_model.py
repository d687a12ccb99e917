"""
Unit tests for the accelerometer error model and unit helpers.

Tests cover:
    - distort_acceleration / fix_acceleration inversion, single and batch
    - Named-entry packing of Ma (general and common-axis)
    - Shape validation and singular (I + Ma)
    - mg / µg / ppm conversions
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from imucal.sensors.imu_models import (
    distort_acceleration,
    fix_acceleration,
    ma_from_parameters,
    ma_to_parameters,
)
from imucal.sensors.units import (
    format_accel_bias,
    mg_to_mps2,
    mps2_to_mg,
    mps2_to_ug,
    ratio_to_ppm,
    ug_to_mps2,
)


class TestAccelErrorModel(unittest.TestCase):

    def setUp(self):
        self.bias = np.array([0.08, -0.05, 0.12])
        self.ma = np.array(
            [
                [2e-3, -1e-3, 5e-4],
                [3e-4, -1.5e-3, 8e-4],
                [-6e-4, 2e-4, 1e-3],
            ]
        )

    def test_fix_undoes_distort(self):
        f_true = np.array([1.0, -3.0, 9.2])
        f_meas = distort_acceleration(f_true, self.bias, self.ma)
        assert_allclose(fix_acceleration(f_meas, self.bias, self.ma), f_true, atol=1e-12)

    def test_batch(self):
        np.random.seed(3)
        f_true = np.random.randn(20, 3) * 5.0
        f_meas = distort_acceleration(f_true, self.bias, self.ma)
        self.assertEqual(f_meas.shape, (20, 3))
        assert_allclose(f_meas[4], self.bias + (np.eye(3) + self.ma) @ f_true[4], atol=1e-12)
        assert_allclose(fix_acceleration(f_meas, self.bias, self.ma), f_true, atol=1e-12)

    def test_noise_is_added(self):
        f_true = np.array([0.0, 0.0, 9.8])
        noise = np.array([0.01, -0.02, 0.03])
        clean = distort_acceleration(f_true, self.bias, self.ma)
        noisy = distort_acceleration(f_true, self.bias, self.ma, noise)
        assert_allclose(noisy - clean, noise, atol=1e-15)

    def test_singular_matrix(self):
        with self.assertRaises(np.linalg.LinAlgError):
            fix_acceleration(np.ones(3), np.zeros(3), -np.eye(3))

    def test_shape_validation(self):
        with self.assertRaises(ValueError):
            fix_acceleration(np.ones(3), np.zeros(2), self.ma)
        with self.assertRaises(ValueError):
            fix_acceleration(np.ones(3), self.bias, np.eye(2))
        with self.assertRaises(ValueError):
            distort_acceleration(np.ones((4, 2)), self.bias, self.ma)
        with self.assertRaises(ValueError):
            distort_acceleration(np.ones(3), self.bias, self.ma, noise=np.ones(2))

    def test_parameter_packing_general(self):
        params = ma_to_parameters(self.ma)
        # [sx, sy, sz, mxy, mxz, myx, myz, mzx, mzy]
        assert_allclose(params, [2e-3, -1.5e-3, 1e-3, -1e-3, 5e-4, 3e-4, 8e-4, -6e-4, 2e-4])
        assert_allclose(ma_from_parameters(params), self.ma)

    def test_parameter_packing_common_axis(self):
        params = ma_to_parameters(self.ma, common_axis=True)
        assert_allclose(params, [2e-3, -1.5e-3, 1e-3, -1e-3, 5e-4, 8e-4])
        ma = ma_from_parameters(params, common_axis=True)
        self.assertEqual(ma[1, 0], 0.0)
        self.assertEqual(ma[2, 0], 0.0)
        self.assertEqual(ma[2, 1], 0.0)
        assert_allclose(np.triu(ma), np.triu(self.ma))

    def test_parameter_packing_wrong_length(self):
        with self.assertRaises(ValueError):
            ma_from_parameters(np.zeros(9), common_axis=True)


class TestAccelUnits(unittest.TestCase):

    def test_mg_round_trip(self):
        self.assertAlmostEqual(mg_to_mps2(10.0), 0.0980665)
        self.assertAlmostEqual(mps2_to_mg(mg_to_mps2(3.5)), 3.5)

    def test_ug_round_trip(self):
        self.assertAlmostEqual(mps2_to_ug(ug_to_mps2(250.0)), 250.0)

    def test_ppm(self):
        assert_allclose(ratio_to_ppm(np.array([1e-3, -2e-6])), [1000.0, -2.0])

    def test_format(self):
        self.assertEqual(format_accel_bias(mg_to_mps2(10.0)), "10.00 mg (0.0981 m/s²)")


if __name__ == "__main__":
    unittest.main()
