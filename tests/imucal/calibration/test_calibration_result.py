"""
Unit tests for CalibrationResult.

Tests cover:
    - Shape validation and read-only storage
    - Named Ma accessors and unit conversion
    - Bias uncertainty summaries and chi-square p-value
    - Correction of measured specific force
    - Covariance layout when the bias was known
"""

import dataclasses
import unittest

import numpy as np
from numpy.testing import assert_allclose
from scipy import stats

from imucal.calibration.result import CalibrationResult
from imucal.sensors.imu_models import distort_acceleration
from imucal.sensors.units import STANDARD_GRAVITY


BIAS = np.array([0.09, -0.06, 0.12])
MA = np.array([
    [500e-6, -300e-6, 200e-6],
    [150e-6, -600e-6, 250e-6],
    [-100e-6, 350e-6, 450e-6],
])


class TestCalibrationResult(unittest.TestCase):

    def test_named_entries(self):
        result = CalibrationResult(BIAS, MA)
        self.assertAlmostEqual(result.sx, 500e-6)
        self.assertAlmostEqual(result.sy, -600e-6)
        self.assertAlmostEqual(result.sz, 450e-6)
        self.assertAlmostEqual(result.mxy, -300e-6)
        self.assertAlmostEqual(result.mxz, 200e-6)
        self.assertAlmostEqual(result.myx, 150e-6)
        self.assertAlmostEqual(result.myz, 250e-6)
        self.assertAlmostEqual(result.mzx, -100e-6)
        self.assertAlmostEqual(result.mzy, 350e-6)

    def test_bias_mg(self):
        result = CalibrationResult(BIAS, MA)
        assert_allclose(result.bias_mg, BIAS / STANDARD_GRAVITY * 1000.0)

    def test_arrays_are_read_only_copies(self):
        bias = BIAS.copy()
        result = CalibrationResult(bias, MA)
        bias[0] = 1.0
        self.assertAlmostEqual(result.bias[0], 0.09)
        with self.assertRaises(ValueError):
            result.ma[0, 0] = 1.0
        with self.assertRaises(dataclasses.FrozenInstanceError):
            result.mse = 1.0

    def test_shape_validation(self):
        with self.assertRaises(ValueError):
            CalibrationResult(np.zeros(2), MA)
        with self.assertRaises(ValueError):
            CalibrationResult(BIAS, np.zeros((3, 2)))
        with self.assertRaises(ValueError):
            CalibrationResult(BIAS, MA, covariance=np.eye(9))
        with self.assertRaises(ValueError):
            CalibrationResult(BIAS, np.triu(MA), covariance=np.eye(12), common_axis=True)

    def test_bias_std(self):
        cov = np.diag([4e-6, 9e-6, 1e-6] + [1e-8] * 6)
        result = CalibrationResult(BIAS, np.triu(MA), covariance=cov, common_axis=True)
        assert_allclose(result.bias_std, [2e-3, 3e-3, 1e-3])
        self.assertAlmostEqual(result.bias_std_norm, np.sqrt(14e-6))
        self.assertAlmostEqual(result.average_bias_std, 2e-3)

    def test_bias_std_without_covariance(self):
        result = CalibrationResult(BIAS, MA)
        self.assertIsNone(result.bias_std)
        self.assertIsNone(result.bias_std_norm)
        self.assertIsNone(result.average_bias_std)

    def test_known_bias_covariance(self):
        result = CalibrationResult(BIAS, MA, covariance=np.eye(9), bias_known=True)
        self.assertTrue(result.bias_known)
        self.assertIsNone(result.bias_std)
        self.assertIsNone(result.bias_std_norm)
        self.assertIsNone(result.average_bias_std)
        CalibrationResult(BIAS, np.triu(MA), covariance=np.eye(6), common_axis=True, bias_known=True)
        with self.assertRaises(ValueError):
            CalibrationResult(BIAS, MA, covariance=np.eye(12), bias_known=True)

    def test_chi_sq_p_value(self):
        result = CalibrationResult(BIAS, MA, chi_sq=30.0, degrees_of_freedom=28)
        self.assertAlmostEqual(result.chi_sq_p_value, stats.chi2.sf(30.0, 28))
        self.assertIsNone(CalibrationResult(BIAS, MA, degrees_of_freedom=0).chi_sq_p_value)

    def test_fix(self):
        f_true = np.array([[0.0, 0.0, -9.8], [9.8, 0.0, 0.0]])
        result = CalibrationResult(BIAS, MA)
        f_meas = distort_acceleration(f_true, BIAS, MA)
        assert_allclose(result.fix(f_meas), f_true, atol=1e-12)


if __name__ == "__main__":
    unittest.main()
