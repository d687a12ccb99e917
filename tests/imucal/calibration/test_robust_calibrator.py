"""
Unit tests for the robust known-position calibrator.

Data set: 60 noise-free static measurements plus 10 whose specific force
is scaled by 1.5 (norm off by about g/2), common-axis model unless stated.

Tests cover:
    - All five robust methods reject the outliers and recover bias/Ma
    - Common-axis structure of the result
    - Refinement fallback and covariance retention
    - Readiness, locking during a run and listener notifications
    - Known-bias mode
    - Configuration validation
"""

import unittest
from unittest import mock

import numpy as np
from numpy.testing import assert_allclose, assert_array_equal

from imucal.calibration.base import RobustCalibratorListener
from imucal.calibration.errors import CalibrationError, LockedError, NotReadyError
from imucal.calibration.gravity_norm import GravityNormCalibrator
from imucal.calibration.robust import (
    MAX_ERROR,
    RobustKnownPositionCalibrator,
    compute_error,
    create_robust_calibrator,
)
from imucal.estimators.robust import RobustMethod
from imucal.sensors.gravity import gravity_norm
from imucal.sensors.types import Measurement, Position
from imucal.sim.measurements import corrupt_measurements, generate_static_measurements


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
NUM_MEASUREMENTS = 70
OUTLIER_INDICES = np.arange(3, NUM_MEASUREMENTS, 7)


def make_data(ma=MA_COMMON, seed=5):
    rng = np.random.default_rng(seed)
    clean = generate_static_measurements(SITE, BIAS, ma, NUM_MEASUREMENTS, rng=rng)
    measurements = corrupt_measurements(clean, OUTLIER_INDICES, scale=1.5)
    expected_inliers = np.ones(NUM_MEASUREMENTS, dtype=bool)
    expected_inliers[OUTLIER_INDICES] = False
    quality = np.where(expected_inliers, 1.0, 0.2)
    return measurements, expected_inliers, quality


class TestComputeError(unittest.TestCase):

    def test_zero_for_consistent_sample(self):
        g = gravity_norm(SITE)
        m = Measurement(specific_force=BIAS + (np.eye(3) + MA_COMMON) @ [0.0, 0.0, g])
        self.assertAlmostEqual(compute_error(m, BIAS, MA_COMMON, g), 0.0, places=20)

    def test_squared_norm_deviation(self):
        m = Measurement(specific_force=[0.0, 0.0, 12.0])
        self.assertAlmostEqual(compute_error(m, np.zeros(3), np.zeros((3, 3)), 9.8), 2.2**2)

    def test_singular_model(self):
        m = Measurement(specific_force=[0.0, 0.0, 9.8])
        self.assertEqual(compute_error(m, np.zeros(3), -np.eye(3), 9.8), MAX_ERROR)


class TestRobustMethods(unittest.TestCase):

    def setUp(self):
        self.measurements, self.expected_inliers, self.quality = make_data()

    def _calibrate(self, method, **kwargs):
        cal = RobustKnownPositionCalibrator(
            method,
            self.measurements,
            position=SITE,
            common_axis_used=True,
            random_state=1,
            **kwargs,
        )
        result = cal.calibrate()
        assert_allclose(result.bias, BIAS, atol=1e-6)
        assert_allclose(result.ma, MA_COMMON, atol=1e-6)
        assert_array_equal(cal.inliers_data.inliers, self.expected_inliers)
        self.assertEqual(cal.inliers_data.num_inliers, NUM_MEASUREMENTS - len(OUTLIER_INDICES))
        return cal, result

    def test_ransac(self):
        self._calibrate(RobustMethod.RANSAC)

    def test_lmeds(self):
        self._calibrate(RobustMethod.LMEDS)

    def test_msac(self):
        self._calibrate(RobustMethod.MSAC)

    def test_prosac(self):
        self._calibrate(RobustMethod.PROSAC, quality_scores=self.quality)

    def test_promeds(self):
        self._calibrate(RobustMethod.PROMEDS, quality_scores=self.quality)

    def test_common_axis_structure(self):
        _, result = self._calibrate(RobustMethod.LMEDS)
        self.assertEqual(result.ma[1, 0], 0.0)
        self.assertEqual(result.ma[2, 0], 0.0)
        self.assertEqual(result.ma[2, 1], 0.0)

    def test_factory(self):
        cal = create_robust_calibrator(
            "msac", measurements=self.measurements, position=SITE, common_axis_used=True,
        )
        self.assertIsInstance(cal, RobustKnownPositionCalibrator)
        self.assertEqual(cal.method, RobustMethod.MSAC)
        self.assertEqual(create_robust_calibrator().method, RobustMethod.LMEDS)

    def test_general_model(self):
        measurements, expected_inliers, _ = make_data(MA_GENERAL)
        cal = RobustKnownPositionCalibrator(
            RobustMethod.LMEDS, measurements, position=SITE, random_state=2,
        )
        result = cal.calibrate()

        assert_array_equal(cal.inliers_data.inliers, expected_inliers)
        f_meas = np.array([m.specific_force for m, ok in zip(measurements, expected_inliers) if ok])
        norms = np.linalg.norm(result.fix(f_meas), axis=1)
        assert_allclose(norms, gravity_norm(SITE), atol=1e-6)
        self.assertLess(result.mse, 1e-10)
        self.assertEqual(result.covariance.shape, (12, 12))


class TestRefinementAndCovariance(unittest.TestCase):

    def setUp(self):
        self.measurements, self.expected_inliers, _ = make_data()

    def _make(self, **kwargs):
        return RobustKnownPositionCalibrator(
            RobustMethod.RANSAC,
            self.measurements,
            position=SITE,
            common_axis_used=True,
            random_state=3,
            **kwargs,
        )

    def test_failed_refinement_returns_preliminary(self):
        subset_size = 10
        original_run = GravityNormCalibrator._run

        def failing_run(inner):
            # Only fits on more than a minimal subset are refinements
            if len(inner.measurements) > subset_size:
                raise CalibrationError("refinement failed")
            return original_run(inner)

        with mock.patch.object(GravityNormCalibrator, "_run", failing_run):
            fallback = self._make(refine_result=True).calibrate()
        unrefined = self._make(refine_result=False).calibrate()

        assert_array_equal(fallback.bias, unrefined.bias)
        assert_array_equal(fallback.ma, unrefined.ma)
        self.assertEqual(fallback.mse, unrefined.mse)

    def test_refinement_uses_all_inliers(self):
        refined = self._make(refine_result=True).calibrate()
        self.assertEqual(refined.degrees_of_freedom, 60 - 9)

        unrefined = self._make(refine_result=False).calibrate()
        self.assertEqual(unrefined.degrees_of_freedom, 10 - 9)

    def test_keep_covariance(self):
        without = self._make(keep_covariance=False).calibrate()
        self.assertIsNone(without.covariance)
        self.assertIsNone(without.bias_std)

        with_cov = self._make(keep_covariance=True).calibrate()
        self.assertEqual(with_cov.covariance.shape, (9, 9))
        self.assertTrue(np.all(np.diag(with_cov.covariance) > 0.0))

    def test_keep_covariance_without_refinement(self):
        result = self._make(keep_covariance=False, refine_result=False).calibrate()
        self.assertIsNone(result.covariance)


class TestLifecycle(unittest.TestCase):

    def setUp(self):
        self.measurements, _, self.quality = make_data()

    def test_not_ready_below_minimum(self):
        cal = RobustKnownPositionCalibrator(
            RobustMethod.RANSAC, self.measurements[:9], position=SITE, common_axis_used=True,
        )
        self.assertEqual(cal.minimum_required_measurements, 10)
        self.assertFalse(cal.is_ready)
        with self.assertRaises(NotReadyError):
            cal.calibrate()
        self.assertIsNone(cal.result)
        self.assertIsNone(cal.inliers_data)

    def test_not_ready_without_position(self):
        cal = RobustKnownPositionCalibrator(RobustMethod.RANSAC, self.measurements)
        self.assertFalse(cal.is_ready)

    def test_progressive_scores_must_match_measurements(self):
        cal = RobustKnownPositionCalibrator(
            RobustMethod.PROSAC, self.measurements, position=SITE,
            common_axis_used=True, quality_scores=self.quality[:20],
        )
        self.assertFalse(cal.is_ready)
        cal.quality_scores = self.quality
        self.assertTrue(cal.is_ready)

    def test_subset_size_larger_than_data(self):
        cal = RobustKnownPositionCalibrator(
            RobustMethod.LMEDS, self.measurements[:12], position=SITE,
            common_axis_used=True, preliminary_subset_size=15,
        )
        self.assertFalse(cal.is_ready)

    def test_locked_while_running(self):
        events = []

        class Listener:
            def on_calibrate_start(self, calibrator):
                events.append("start")
                for action in (
                    lambda: setattr(calibrator, "threshold", 0.5),
                    lambda: setattr(calibrator, "method", RobustMethod.MSAC),
                    lambda: setattr(calibrator, "measurements", []),
                    calibrator.calibrate,
                ):
                    try:
                        action()
                    except LockedError:
                        events.append("locked")

            def on_calibrate_next_iteration(self, calibrator, iteration):
                events.append(("iteration", iteration))

            def on_calibrate_progress_change(self, calibrator, progress):
                events.append(("progress", progress))

            def on_calibrate_end(self, calibrator):
                events.append("end")

        cal = RobustKnownPositionCalibrator(
            RobustMethod.RANSAC, self.measurements, position=SITE,
            common_axis_used=True, listener=Listener(), random_state=4,
        )
        cal.calibrate()

        self.assertEqual(events[:5], ["start", "locked", "locked", "locked", "locked"])
        self.assertEqual(events[-1], "end")
        iterations = [e[1] for e in events if isinstance(e, tuple) and e[0] == "iteration"]
        self.assertEqual(iterations, list(range(1, len(iterations) + 1)))
        progress = [e[1] for e in events if isinstance(e, tuple) and e[0] == "progress"]
        self.assertTrue(progress)
        self.assertTrue(all(0.0 < p <= 1.0 for p in progress))

        # Unlocked again once finished
        self.assertFalse(cal.running)
        cal.threshold = 0.5
        self.assertEqual(cal.threshold, 0.5)
        self.assertEqual(cal.method, RobustMethod.RANSAC)

    def test_unlocked_after_failure(self):
        cal = RobustKnownPositionCalibrator(
            RobustMethod.RANSAC, self.measurements, position=SITE,
            common_axis_used=True, max_iterations=5, random_state=0,
        )
        with mock.patch.object(
            RobustKnownPositionCalibrator, "_compute_preliminary_solutions", return_value=[]
        ):
            with self.assertRaises(CalibrationError):
                cal.calibrate()
        self.assertFalse(cal.running)
        self.assertIsNone(cal.result)


class TestKnownBias(unittest.TestCase):

    def setUp(self):
        self.measurements, self.expected_inliers, _ = make_data()

    def test_recovers_ma_with_known_bias(self):
        cal = RobustKnownPositionCalibrator(
            RobustMethod.LMEDS, self.measurements, position=SITE,
            common_axis_used=True, random_state=6, known_bias=BIAS,
        )
        self.assertEqual(cal.preliminary_subset_size, 7)
        result = cal.calibrate()

        assert_allclose(result.bias, BIAS)
        assert_allclose(result.ma, MA_COMMON, atol=1e-6)
        assert_array_equal(cal.inliers_data.inliers, self.expected_inliers)
        self.assertTrue(result.bias_known)
        self.assertEqual(result.covariance.shape, (6, 6))

    def test_inner_calibrators_hold_bias(self):
        cal = RobustKnownPositionCalibrator(
            RobustMethod.RANSAC, self.measurements, position=SITE,
            common_axis_used=True, known_bias=BIAS,
        )
        inner = cal._make_inner_calibrator(self.measurements[:7], np.zeros(3), np.zeros((3, 3)))
        assert_allclose(inner.known_bias, BIAS)
        self.assertEqual(inner.minimum_required_measurements, 7)

    def test_minimum_general(self):
        cal = RobustKnownPositionCalibrator(known_bias=BIAS)
        self.assertEqual(cal.minimum_required_measurements, 10)
        self.assertEqual(cal.preliminary_subset_size, 10)
        with self.assertRaises(ValueError):
            cal.preliminary_subset_size = 9


class TestListenerProtocol(unittest.TestCase):

    def test_partial_listener(self):
        ended = []

        class EndOnly(RobustCalibratorListener):
            def on_calibrate_end(self, calibrator):
                ended.append(calibrator.estimated_biases)

        measurements, _, _ = make_data()
        cal = RobustKnownPositionCalibrator(
            RobustMethod.LMEDS, measurements, position=SITE,
            common_axis_used=True, listener=EndOnly(), random_state=1,
        )
        cal.calibrate()
        self.assertEqual(len(ended), 1)
        assert_allclose(ended[0], BIAS, atol=1e-6)


class TestConfiguration(unittest.TestCase):

    def test_defaults(self):
        cal = RobustKnownPositionCalibrator()
        self.assertEqual(cal.method, RobustMethod.LMEDS)
        self.assertEqual(cal.confidence, 0.99)
        self.assertEqual(cal.max_iterations, 5000)
        self.assertEqual(cal.progress_delta, 0.05)
        self.assertEqual(cal.threshold, 1e-2)
        self.assertEqual(cal.stop_threshold, 1e-4)
        self.assertTrue(cal.refine_result)
        self.assertTrue(cal.keep_covariance)
        self.assertEqual(cal.preliminary_subset_size, 13)
        self.assertIsNone(cal.quality_scores)

    def test_invalid_values(self):
        cal = RobustKnownPositionCalibrator(common_axis_used=True)
        with self.assertRaises(ValueError):
            cal.confidence = 1.5
        with self.assertRaises(ValueError):
            cal.max_iterations = 0
        with self.assertRaises(ValueError):
            cal.progress_delta = -0.1
        with self.assertRaises(ValueError):
            cal.threshold = 0.0
        with self.assertRaises(ValueError):
            cal.stop_threshold = -1.0
        with self.assertRaises(ValueError):
            cal.preliminary_subset_size = 9
        with self.assertRaises(ValueError):
            cal.quality_scores = np.ones(9)
        with self.assertRaises(ValueError):
            cal.method = "mlesac"

    def test_progressive_method_requires_scores(self):
        with self.assertRaises(ValueError):
            RobustKnownPositionCalibrator(RobustMethod.PROMEDS)

    def test_method_from_name(self):
        cal = RobustKnownPositionCalibrator("Ransac")
        self.assertEqual(cal.method, RobustMethod.RANSAC)


if __name__ == "__main__":
    unittest.main()
