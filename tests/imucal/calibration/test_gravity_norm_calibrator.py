"""
Unit tests for the gravity-norm calibrator.

Tests cover:
    - Exact recovery in the common-axis model from noise-free data
    - General model: corrected norms match gravity (Ma is only defined up to a rotation)
    - Gravity norm source (position vs explicit value)
    - Readiness, configuration validation and failure handling
    - Known-bias mode (Ma-only fit)
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from imucal.calibration.errors import CalibrationError, NotReadyError
from imucal.calibration.gravity_norm import GravityNormCalibrator
from imucal.sensors.gravity import gravity_norm
from imucal.sensors.types import Position
from imucal.sim.measurements import generate_static_measurements


SITE = Position.from_geodetic(np.deg2rad(41.3825), np.deg2rad(2.1769), 120.0)
BIAS = np.array([0.09, -0.06, 0.12])
MA_COMMON = np.array([
    [500e-6, -300e-6, 200e-6],
    [0.0, -600e-6, 250e-6],
    [0.0, 0.0, 450e-6],
])
MA_GENERAL = MA_COMMON + np.array([
    [0.0, 0.0, 0.0],
    [150e-6, 0.0, 0.0],
    [-100e-6, 350e-6, 0.0],
])


class TestGravityNormCalibrator(unittest.TestCase):

    def setUp(self):
        self.rng = np.random.default_rng(11)

    def test_exact_recovery_common_axis(self):
        ms = generate_static_measurements(SITE, BIAS, MA_COMMON, 40, rng=self.rng)
        cal = GravityNormCalibrator(ms, position=SITE, common_axis_used=True)
        result = cal.calibrate()

        assert_allclose(result.bias, BIAS, atol=1e-8)
        assert_allclose(result.ma, MA_COMMON, atol=1e-8)
        self.assertEqual(result.ma[1, 0], 0.0)
        self.assertEqual(result.ma[2, 0], 0.0)
        self.assertEqual(result.ma[2, 1], 0.0)
        self.assertLess(result.mse, 1e-16)
        self.assertEqual(result.degrees_of_freedom, 40 - 9)
        self.assertEqual(result.covariance.shape, (9, 9))
        self.assertTrue(result.common_axis)

    def test_general_model_corrects_norms(self):
        ms = generate_static_measurements(SITE, BIAS, MA_GENERAL, 40, rng=self.rng)
        result = GravityNormCalibrator(ms, position=SITE).calibrate()

        f_meas = np.array([m.specific_force for m in ms])
        norms = np.linalg.norm(result.fix(f_meas), axis=1)
        assert_allclose(norms, gravity_norm(SITE), atol=1e-7)
        assert_allclose(result.bias, BIAS, atol=1e-6)
        self.assertEqual(result.covariance.shape, (12, 12))
        self.assertEqual(result.degrees_of_freedom, 40 - 12)

    def test_noisy_common_axis(self):
        std = 1e-3
        ms = generate_static_measurements(
            SITE, BIAS, MA_COMMON, 300, specific_force_std=std, rng=self.rng
        )
        result = GravityNormCalibrator(ms, position=SITE, common_axis_used=True).calibrate()
        assert_allclose(result.bias, BIAS, atol=2e-3)
        assert_allclose(result.ma, MA_COMMON, atol=5e-4)
        self.assertTrue(np.all(np.diag(result.covariance) > 0.0))
        self.assertIsNotNone(result.chi_sq_p_value)

    def test_initial_guess_is_used(self):
        ms = generate_static_measurements(SITE, BIAS, MA_COMMON, 20, rng=self.rng)
        cal = GravityNormCalibrator(
            ms, position=SITE, common_axis_used=True,
            initial_bias=BIAS, initial_ma=MA_COMMON,
        )
        result = cal.calibrate()
        assert_allclose(result.bias, BIAS, atol=1e-9)
        assert_allclose(cal.initial_bias, BIAS)

    def test_gravity_norm_source(self):
        cal = GravityNormCalibrator(position=SITE)
        self.assertAlmostEqual(cal.gravity_norm, gravity_norm(SITE))
        cal.ground_truth_gravity_norm = 9.81
        self.assertEqual(cal.gravity_norm, 9.81)
        self.assertIsNone(GravityNormCalibrator().gravity_norm)

    def test_explicit_gravity_norm_without_position(self):
        g = gravity_norm(SITE)
        ms = generate_static_measurements(SITE, BIAS, MA_COMMON, 20, rng=self.rng)
        cal = GravityNormCalibrator(ms, common_axis_used=True, ground_truth_gravity_norm=g)
        self.assertTrue(cal.is_ready)
        assert_allclose(cal.calibrate().bias, BIAS, atol=1e-8)

    def test_minimum_measurements(self):
        cal = GravityNormCalibrator(position=SITE)
        self.assertEqual(cal.minimum_required_measurements, 13)
        cal.common_axis_used = True
        self.assertEqual(cal.minimum_required_measurements, 10)

        cal.measurements = generate_static_measurements(SITE, BIAS, MA_COMMON, 9, rng=self.rng)
        self.assertFalse(cal.is_ready)
        with self.assertRaises(NotReadyError):
            cal.calibrate()
        self.assertIsNone(cal.result)

    def test_not_converged_raises(self):
        ms = generate_static_measurements(SITE, BIAS, MA_COMMON, 20, rng=self.rng)
        cal = GravityNormCalibrator(ms, position=SITE, common_axis_used=True, max_iterations=1)
        with self.assertRaises(CalibrationError):
            cal.calibrate()
        self.assertIsNone(cal.result)
        self.assertFalse(cal.running)

    def test_configuration_validation(self):
        cal = GravityNormCalibrator()
        with self.assertRaises(ValueError):
            cal.ground_truth_gravity_norm = -9.8
        with self.assertRaises(ValueError):
            cal.max_iterations = 0
        with self.assertRaises(ValueError):
            cal.initial_bias = [0.0, 0.0]
        with self.assertRaises(ValueError):
            cal.initial_ma = np.eye(2)
        with self.assertRaises(ValueError):
            cal.position = [0.0, 0.0, 0.0]

    def test_known_bias_common_axis(self):
        ms = generate_static_measurements(SITE, BIAS, MA_COMMON, 30, rng=self.rng)
        cal = GravityNormCalibrator(ms, position=SITE, common_axis_used=True, known_bias=BIAS)
        self.assertEqual(cal.num_unknowns, 6)
        result = cal.calibrate()

        assert_allclose(result.bias, BIAS)
        assert_allclose(result.ma, MA_COMMON, atol=1e-8)
        self.assertTrue(result.bias_known)
        self.assertEqual(result.covariance.shape, (6, 6))
        self.assertEqual(result.degrees_of_freedom, 30 - 6)
        self.assertIsNone(result.bias_std)

    def test_known_bias_general(self):
        ms = generate_static_measurements(SITE, BIAS, MA_GENERAL, 30, rng=self.rng)
        result = GravityNormCalibrator(ms, position=SITE, known_bias=BIAS).calibrate()

        f_meas = np.array([m.specific_force for m in ms])
        norms = np.linalg.norm(result.fix(f_meas), axis=1)
        assert_allclose(norms, gravity_norm(SITE), atol=1e-7)
        assert_allclose(result.bias, BIAS)
        self.assertEqual(result.covariance.shape, (9, 9))

    def test_known_bias_minimum_measurements(self):
        cal = GravityNormCalibrator(position=SITE, known_bias=BIAS)
        self.assertEqual(cal.minimum_required_measurements, 10)
        cal.common_axis_used = True
        self.assertEqual(cal.minimum_required_measurements, 7)

        cal.measurements = generate_static_measurements(SITE, BIAS, MA_COMMON, 7, rng=self.rng)
        self.assertTrue(cal.is_ready)
        cal.known_bias = None
        self.assertFalse(cal.is_ready)

    def test_known_bias_is_copied(self):
        bias = BIAS.copy()
        cal = GravityNormCalibrator(known_bias=bias)
        bias[0] = 5.0
        cal.known_bias[1] = 5.0
        assert_allclose(cal.known_bias, BIAS)
        self.assertIsNone(GravityNormCalibrator().known_bias)

    def test_initial_values_are_copies(self):
        cal = GravityNormCalibrator()
        bias = cal.initial_bias
        bias[0] = 5.0
        assert_allclose(cal.initial_bias, np.zeros(3))


if __name__ == "__main__":
    unittest.main()
