"""Constant-acceleration Kalman filter on a 3D position."""

from __future__ import annotations

import logging

import cv2
import numpy as np

from ..errors import SmootherNotInitializedError

logger = logging.getLogger(__name__)

STATE_SIZE = 9  # position (3), velocity (3), acceleration (3)
MEASUREMENT_SIZE = 3


class Position3DKalmanFilter:
    """Smooths a stream of 3D positions measured at irregular intervals.

    The state is [x, y, z, vx, vy, vz, ax, ay, az]. Only the position is
    measured. The transition and process noise are rebuilt for every step
    from the elapsed time, since estimates arrive whenever a frame is
    accepted.

    Example::

        kf = Position3DKalmanFilter(measurement_noise_variance=0.5)
        kf.update(np.array([1.0, 2.0, 0.5]), timestep=0.0)
        smoothed = kf.update(np.array([1.1, 2.0, 0.5]), timestep=0.2)
    """

    def __init__(
        self,
        measurement_noise_variance: float = 1.0,
        process_noise_variance_factor: float = 1.0,
    ) -> None:
        """Initialize filter.

        Args:
            measurement_noise_variance: Variance applied to each of x, y, z
            process_noise_variance_factor: Scale of the white-acceleration
                process noise
        """
        self._kf = cv2.KalmanFilter(STATE_SIZE, MEASUREMENT_SIZE, 0, cv2.CV_64F)
        self._kf.measurementMatrix = np.hstack(
            [np.eye(3), np.zeros((3, 6))]
        ).astype(np.float64)
        self.setup_parameters(measurement_noise_variance, process_noise_variance_factor)
        self._initialized = False
        self._reset_state()

    def setup_parameters(
        self,
        measurement_noise_variance: float,
        process_noise_variance_factor: float,
    ) -> None:
        """Set the noise parameters.

        Raises:
            ValueError: If a variance is not positive or the factor is negative
        """
        if not measurement_noise_variance > 0:
            raise ValueError(
                f"Measurement noise variance must be positive, got {measurement_noise_variance}"
            )
        if not process_noise_variance_factor >= 0:
            raise ValueError(
                f"Process noise factor must be >= 0, got {process_noise_variance_factor}"
            )
        logger.debug(
            "Kalman parameters: measurement noise %s, process noise factor %s",
            measurement_noise_variance,
            process_noise_variance_factor,
        )
        self._measurement_noise_variance = float(measurement_noise_variance)
        self._process_noise_variance_factor = float(process_noise_variance_factor)
        self._kf.measurementNoiseCov = np.eye(3, dtype=np.float64) * self._measurement_noise_variance

    @staticmethod
    def transition_matrix(timestep: float) -> np.ndarray:
        """Return the 9x9 constant-acceleration transition matrix for `timestep`."""
        t = float(timestep)
        I3 = np.eye(3)
        A = np.eye(STATE_SIZE, dtype=np.float64)
        A[0:3, 3:6] = t * I3
        A[0:3, 6:9] = (t * t / 2) * I3
        A[3:6, 6:9] = t * I3
        return A

    def process_noise_covariance(self, timestep: float) -> np.ndarray:
        """Return Q = G G^T * factor, G being the 9x3 acceleration input matrix."""
        t = float(timestep)
        I3 = np.eye(3)
        G = np.vstack([(t * t / 2) * I3, t * I3, I3])
        return (G @ G.T) * self._process_noise_variance_factor

    def update(self, measurement: np.ndarray, timestep: float) -> np.ndarray:
        """Fuse a position measurement taken `timestep` seconds after the last.

        The first measurement initializes the filter with zero velocity and
        acceleration and is returned unchanged.

        Args:
            measurement: (3,) measured position
            timestep: Seconds since the previous update (ignored on the first)

        Returns:
            (3,) filtered position

        Raises:
            ValueError: On a non-finite measurement or negative timestep
        """
        z = np.asarray(measurement, dtype=np.float64).reshape(MEASUREMENT_SIZE, 1)
        if not np.isfinite(z).all():
            raise ValueError(f"Measurement must be finite, got {z.flatten()}")

        if not self._initialized:
            self._kf.statePost = np.vstack([z, np.zeros((6, 1))])
            self._initialized = True
            return z.flatten().copy()

        self._set_timestep(timestep)
        self._kf.predict()
        corrected = self._kf.correct(z)
        return corrected[:3].flatten().copy()

    def predict(self, timestep: float) -> np.ndarray:
        """Advance the state by `timestep` seconds without a measurement.

        Returns:
            (3,) predicted position

        Raises:
            SmootherNotInitializedError: Before the first measurement
        """
        if not self._initialized:
            raise SmootherNotInitializedError(
                "predict() called before any measurement"
            )
        self._set_timestep(timestep)
        predicted = self._kf.predict()
        return predicted[:3].flatten().copy()

    def reset(self) -> None:
        """Return to the uninitialized state, keeping the noise parameters."""
        self._initialized = False
        self._reset_state()

    def _set_timestep(self, timestep: float) -> None:
        if not np.isfinite(timestep) or timestep < 0:
            raise ValueError(f"Timestep must be finite and >= 0, got {timestep}")
        self._kf.transitionMatrix = self.transition_matrix(timestep)
        self._kf.processNoiseCov = self.process_noise_covariance(timestep)

    def _reset_state(self) -> None:
        self._kf.statePre = np.zeros((STATE_SIZE, 1), dtype=np.float64)
        self._kf.statePost = np.zeros((STATE_SIZE, 1), dtype=np.float64)
        self._kf.errorCovPre = np.zeros((STATE_SIZE, STATE_SIZE), dtype=np.float64)
        self._kf.errorCovPost = np.eye(STATE_SIZE, dtype=np.float64) * 0.1

    @property
    def is_initialized(self) -> bool:
        """Return True once a measurement has been fused."""
        return self._initialized

    @property
    def state(self) -> np.ndarray:
        """Return the current (3,) position estimate.

        Raises:
            SmootherNotInitializedError: Before the first measurement
        """
        if not self._initialized:
            raise SmootherNotInitializedError("No measurement has been fused yet")
        return self._kf.statePost[:3].flatten().copy()

    @property
    def velocity(self) -> np.ndarray:
        if not self._initialized:
            raise SmootherNotInitializedError("No measurement has been fused yet")
        return self._kf.statePost[3:6].flatten().copy()

    @property
    def full_state(self) -> np.ndarray:
        """Return the (9,) state vector [position, velocity, acceleration]."""
        if not self._initialized:
            raise SmootherNotInitializedError("No measurement has been fused yet")
        return self._kf.statePost.flatten().copy()

    @property
    def measurement_noise_variance(self) -> float:
        return self._measurement_noise_variance

    @property
    def process_noise_variance_factor(self) -> float:
        return self._process_noise_variance_factor
