"""Exceptions raised by the calibrators."""


class LockedError(Exception):
    """A calibrator was reconfigured (or re-run) while a calibration is running."""


class NotReadyError(Exception):
    """calibrate() was called before the calibrator had enough data.

    Typical causes are too few measurements, a missing known position, or
    missing quality scores for the progressive robust methods.
    """


class CalibrationError(Exception):
    """The numerical estimation failed.

    Raised for singular or rank-deficient systems, non-convergence of the
    iterative refiner, and when a robust search finds no valid candidate.
    """
