"""
Base classes for accelerometer calibrators.

This module defines the lifecycle shared by every calibrator:

    configure (setters, rejected while running)
        → is_ready gate
        → calibrate() runs to completion or raises
        → estimate accessors valid until the next successful run

The running flag is set for the duration of calibrate() and cleared in a
``finally`` block, so an exception never leaves a calibrator locked.

Listeners follow RobustCalibratorListener. Every hook is optional: hooks
are looked up by name and those a listener defines are called synchronously
with the calibrator as first argument.

Setting ``known_bias`` switches any calibrator to known-bias mode, where
only Ma is estimated and the bias is reported as given.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from imucal.calibration.errors import LockedError, NotReadyError
from imucal.calibration.result import CalibrationResult
from imucal.sensors.types import Measurement, Position

logger = logging.getLogger(__name__)


class RobustCalibratorListener(Protocol):
    """
    Calibration lifecycle hooks.

    Listeners need not inherit from this class; any object defining some of
    these methods works. Subclassing it gives no-op defaults for the hooks
    that are not overridden.
    """

    def on_calibrate_start(self, calibrator: "Calibrator") -> None:
        """Called before the estimation starts."""

    def on_calibrate_end(self, calibrator: "Calibrator") -> None:
        """Called after a successful estimation."""

    def on_calibrate_next_iteration(self, calibrator: "Calibrator", iteration: int) -> None:
        """Called after each robust iteration (robust calibrators only)."""

    def on_calibrate_progress_change(self, calibrator: "Calibrator", progress: float) -> None:
        """Called when robust progress in [0, 1] advances (robust calibrators only)."""


class Calibrator(ABC):
    """Abstract base class for accelerometer calibrators."""

    def __init__(
        self,
        measurements: Sequence[Measurement] = (),
        common_axis_used: bool = False,
        listener: Optional[RobustCalibratorListener] = None,
        known_bias: Optional[Sequence[float]] = None,
    ):
        self._running = False
        self._result: Optional[CalibrationResult] = None
        self._measurements: Tuple[Measurement, ...] = ()
        self._common_axis_used = False
        self._listener = None
        self._known_bias: Optional[np.ndarray] = None

        self.measurements = measurements
        self.common_axis_used = common_axis_used
        self.listener = listener
        self.known_bias = known_bias

    def _check_not_running(self) -> None:
        if self._running:
            raise LockedError(f"{type(self).__name__} is running")

    @property
    def running(self) -> bool:
        return self._running

    @property
    def measurements(self) -> Tuple[Measurement, ...]:
        return self._measurements

    @measurements.setter
    def measurements(self, value: Sequence[Measurement]) -> None:
        self._check_not_running()
        value = tuple(value)
        for m in value:
            if not isinstance(m, Measurement):
                raise ValueError(f"measurements must be Measurement instances, got {type(m).__name__}")
        self._measurements = value

    @property
    def common_axis_used(self) -> bool:
        return self._common_axis_used

    @common_axis_used.setter
    def common_axis_used(self, value: bool) -> None:
        self._check_not_running()
        self._common_axis_used = bool(value)

    @property
    def listener(self) -> Optional[RobustCalibratorListener]:
        return self._listener

    @listener.setter
    def listener(self, value: Optional[RobustCalibratorListener]) -> None:
        self._check_not_running()
        self._listener = value

    @property
    def known_bias(self) -> Optional[np.ndarray]:
        """Bias held fixed during calibration, or None to estimate it."""
        return None if self._known_bias is None else self._known_bias.copy()

    @known_bias.setter
    def known_bias(self, value: Optional[Sequence[float]]) -> None:
        self._check_not_running()
        self._known_bias = None if value is None else _as_vector3(value, "known_bias")

    @property
    def bias_known(self) -> bool:
        return self._known_bias is not None

    @property
    def num_unknowns(self) -> int:
        """
        Number of estimated parameters.

        6 Ma terms (common-axis) or 9 (general), plus 3 bias terms unless
        the bias is known.
        """
        return (6 if self._common_axis_used else 9) + (0 if self.bias_known else 3)

    @property
    @abstractmethod
    def minimum_required_measurements(self) -> int:
        """Fewest measurements for which calibrate() can run."""

    @property
    def is_ready(self) -> bool:
        return len(self._measurements) >= self.minimum_required_measurements

    def _notify(self, hook: str, *args) -> None:
        callback = getattr(self._listener, hook, None)
        if callback is not None:
            callback(self, *args)

    @abstractmethod
    def _run(self) -> CalibrationResult:
        """Estimate the error model. Called with the calibrator locked."""

    def calibrate(self) -> CalibrationResult:
        """
        Run the calibration.

        Returns:
            The new estimate, also available through ``result``.

        Raises:
            LockedError: If a calibration is already running.
            NotReadyError: If is_ready is False.
            CalibrationError: If the estimation fails. ``result`` keeps
                its previous value.
        """
        self._check_not_running()
        if not self.is_ready:
            raise NotReadyError(
                f"{type(self).__name__} is not ready: {len(self._measurements)} measurements, "
                f"{self.minimum_required_measurements} required"
            )

        self._running = True
        try:
            logger.debug("%s: calibrating with %d measurements",
                         type(self).__name__, len(self._measurements))
            self._notify("on_calibrate_start")
            result = self._run()
            self._result = result
            self._notify("on_calibrate_end")
            return result
        finally:
            self._running = False

    # Estimate accessors (None until the first successful run)
    @property
    def result(self) -> Optional[CalibrationResult]:
        return self._result

    @property
    def estimated_biases(self) -> Optional[np.ndarray]:
        return None if self._result is None else self._result.bias

    @property
    def estimated_ma(self) -> Optional[np.ndarray]:
        return None if self._result is None else self._result.ma

    @property
    def estimated_covariance(self) -> Optional[np.ndarray]:
        return None if self._result is None else self._result.covariance

    @property
    def estimated_mse(self) -> Optional[float]:
        return None if self._result is None else self._result.mse

    @property
    def estimated_chi_sq(self) -> Optional[float]:
        return None if self._result is None else self._result.chi_sq


def _as_vector3(value, name: str) -> np.ndarray:
    arr = np.array(value, dtype=np.float64)
    if arr.shape != (3,):
        raise ValueError(f"{name} must have length 3, got shape {arr.shape}")
    return arr


class KnownPositionCalibrator(Calibrator):
    """
    Base class for calibrators that use the gravity norm at a known position.

    Adds the known position and the initial bias/Ma guess used to seed the
    iterative refiner. The initial bias is ignored in known-bias mode.
    """

    def __init__(
        self,
        measurements: Sequence[Measurement] = (),
        position: Union[None, Position, Sequence[float]] = None,
        common_axis_used: bool = False,
        initial_bias: Optional[Sequence[float]] = None,
        initial_ma: Optional[np.ndarray] = None,
        listener: Optional[RobustCalibratorListener] = None,
        known_bias: Optional[Sequence[float]] = None,
    ):
        self._position: Optional[Position] = None
        self._initial_bias = np.zeros(3)
        self._initial_ma = np.zeros((3, 3))
        super().__init__(measurements, common_axis_used, listener, known_bias)

        self.position = position
        if initial_bias is not None:
            self.initial_bias = initial_bias
        if initial_ma is not None:
            self.initial_ma = initial_ma

    @property
    def position(self) -> Optional[Position]:
        return self._position

    @position.setter
    def position(self, value: Union[None, Position, Sequence[float]]) -> None:
        self._check_not_running()
        if value is not None and not isinstance(value, Position):
            value = Position(value)
        self._position = value

    @property
    def initial_bias(self) -> np.ndarray:
        return self._initial_bias.copy()

    @initial_bias.setter
    def initial_bias(self, value: Sequence[float]) -> None:
        self._check_not_running()
        self._initial_bias = _as_vector3(value, "initial_bias")

    @property
    def initial_ma(self) -> np.ndarray:
        return self._initial_ma.copy()

    @initial_ma.setter
    def initial_ma(self, value: np.ndarray) -> None:
        self._check_not_running()
        arr = np.array(value, dtype=np.float64)
        if arr.shape != (3, 3):
            raise ValueError(f"initial_ma must be 3x3, got shape {arr.shape}")
        self._initial_ma = arr

    @property
    def minimum_required_measurements(self) -> int:
        return self.num_unknowns + 1

    @property
    def is_ready(self) -> bool:
        return super().is_ready and self._position is not None
