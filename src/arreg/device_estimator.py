"""Per-device registration: pipeline, smoothing and input policy."""

from __future__ import annotations

import logging
import threading
import time

import numpy as np

from .config import DeviceConfig
from .estimation.registration_estimator import RegistrationEstimator, RegistrationResult
from .estimation.status import RegistrationStatus
from .frontend.frame_input import FixedCameraFrame, FrameInput
from .pose import Pose
from .smoothing.position_filter import Position3DKalmanFilter

logger = logging.getLogger(__name__)


class DeviceEstimator:
    """Registration estimator for one AR device.

    Owns the device's RegistrationEstimator and position smoother. Updates
    for the same device are serialized by a lock, so `process` can be called
    from several threads (e.g. one per input stream).
    """

    def __init__(
        self,
        device_id: str,
        fixed_camera_to_world: Pose,
        config: DeviceConfig | None = None,
    ) -> None:
        """Initialize device estimator.

        Args:
            device_id: Identifier of the device
            fixed_camera_to_world: Pose of the fixed camera optical frame in
                world
            config: Device options (defaults if None)
        """
        self._device_id = device_id
        self._config = config or DeviceConfig()
        self._estimator = RegistrationEstimator(
            fixed_camera_to_world, self._config.registration
        )
        self._smoother = Position3DKalmanFilter(
            measurement_noise_variance=self._config.smoother.measurement_noise_variance,
            process_noise_variance_factor=self._config.smoother.process_noise_variance_factor,
        )
        self._lock = threading.Lock()

        self._last_accepted_timestamp: float | None = None
        self._smoothed_estimate: Pose | None = None
        self._last_alive = time.monotonic()

    def process(
        self,
        device: FrameInput,
        fixed: FixedCameraFrame,
        now: float | None = None,
    ) -> RegistrationResult:
        """Run one update for this device.

        Args:
            device: Device frame
            fixed: Fixed camera frame
            now: Current wall-clock time in seconds (time.time() if None),
                compared with the device capture timestamp

        Returns:
            RegistrationResult, with `smoothed_transform` set on acceptance
            when smoothing is enabled
        """
        self.signal_alive()
        if now is None:
            now = time.time()

        delay = now - device.timestamp
        if delay > self._config.max_message_delay_sec:
            logger.warning(
                "[%s] Dropping frame %.3f s old (max %.3f s)",
                self._device_id,
                delay,
                self._config.max_message_delay_sec,
            )
            return RegistrationResult(RegistrationStatus.STALE_FRAME, device.timestamp)

        with self._lock:
            result = self._estimator.update(device, fixed)
            if result.is_accepted and self._config.smoothing_enabled:
                result.smoothed_transform = self._smooth(result.transform, device.timestamp)
            return result

    def reset(self) -> None:
        """Forget the estimate and the smoother state."""
        with self._lock:
            self._estimator.reset()
            self._smoother.reset()
            self._last_accepted_timestamp = None
            self._smoothed_estimate = None

    def signal_alive(self) -> None:
        """Record that the device is still sending data."""
        self._last_alive = time.monotonic()

    def milliseconds_since_last_frame(self) -> int:
        """Return the time since the device last sent anything."""
        return int((time.monotonic() - self._last_alive) * 1000)

    def _smooth(self, transform: Pose, timestamp: float) -> Pose:
        if self._last_accepted_timestamp is None:
            timestep = 0.0
        else:
            # Out-of-order frames are fused without advancing the filter
            timestep = max(0.0, timestamp - self._last_accepted_timestamp)
        self._last_accepted_timestamp = timestamp

        position = self._smoother.update(transform.translation, timestep)
        logger.debug(
            "[%s] Smoothed translation %s -> %s (dt=%.3f s)",
            self._device_id,
            np.round(transform.translation, 4),
            np.round(position, 4),
            timestep,
        )
        self._smoothed_estimate = Pose(rotation=transform.rotation.copy(), translation=position)
        return self._smoothed_estimate

    @property
    def device_id(self) -> str:
        return self._device_id

    @property
    def config(self) -> DeviceConfig:
        return self._config

    @property
    def estimator(self) -> RegistrationEstimator:
        return self._estimator

    @property
    def smoother(self) -> Position3DKalmanFilter:
        return self._smoother

    @property
    def last_estimate(self) -> Pose | None:
        """Return the last accepted (unsmoothed) transform."""
        return self._estimator.last_estimate

    @property
    def smoothed_estimate(self) -> Pose | None:
        """Return the last smoothed transform, None before the first acceptance."""
        return self._smoothed_estimate
