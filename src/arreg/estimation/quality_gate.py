"""Acceptance checks applied to a solved registration before it is kept."""

from __future__ import annotations

import logging

import cv2
import numpy as np

from ..camera import CameraIntrinsics
from ..frontend.correspondences import Correspondences
from ..pose import Pose
from .pose_solver import MIN_CORRESPONDENCES, PnPResult
from .status import RegistrationStatus

logger = logging.getLogger(__name__)


def reprojection_error(
    correspondences: Correspondences,
    result: PnPResult,
    intrinsics: CameraIntrinsics,
) -> float:
    """Compute the reprojection error of the inliers under the solved pose.

    Every correspondence is projected through the pose and the device
    intrinsics. The pixel distances of the inliers are summed and divided by
    the total number of projected points, not by the inlier count, so the
    value is below the true inlier mean whenever some points are outliers.

    Returns:
        Reprojection error in pixels (0.0 with no correspondences)
    """
    n_points = len(correspondences)
    if n_points == 0 or result.num_inliers == 0:
        return 0.0

    rvec, tvec = result.pose.to_rvec_tvec()
    projected, _ = cv2.projectPoints(
        correspondences.points_3d.reshape(-1, 1, 3),
        rvec,
        tvec,
        intrinsics.to_matrix(),
        None,
    )
    projected = projected.reshape(-1, 2)

    errors = np.linalg.norm(
        projected[result.inliers] - correspondences.points_2d[result.inliers], axis=1
    )
    return float(np.sum(errors) / n_points)


class QualityGate:
    """Decides whether a solved registration may replace the last estimate.

    Each check returns None when it passes, or the rejection status.
    """

    def __init__(
        self,
        minimum_matches: int = 4,
        reprojection_error_threshold: float = 5.0,
        orientation_threshold_deg: float = 45.0,
        min_height: float | None = None,
        max_height: float | None = None,
    ) -> None:
        """Initialize gate.

        Args:
            minimum_matches: Minimum inlier count (never less than 4 in effect)
            reprojection_error_threshold: Maximum reprojection error (pixels)
            orientation_threshold_deg: Maximum angle between the device and
                fixed camera optical axes
            min_height: Lowest accepted device height in world (disabled
                when None)
            max_height: Highest accepted device height in world (disabled
                when None)
        """
        self._minimum_matches = minimum_matches
        self._reprojection_error_threshold = reprojection_error_threshold
        self._orientation_threshold_deg = orientation_threshold_deg
        self._min_height = min_height
        self._max_height = max_height

    def check_match_count(self, count: int) -> RegistrationStatus | None:
        """Reject when fewer than 4 or fewer than the configured minimum."""
        if count < MIN_CORRESPONDENCES or count < self._minimum_matches:
            logger.debug(
                "Only %d matches, need %d",
                count,
                max(MIN_CORRESPONDENCES, self._minimum_matches),
            )
            return RegistrationStatus.INSUFFICIENT_MATCHES
        return None

    def check_reprojection(self, error: float) -> RegistrationStatus | None:
        if not np.isfinite(error) or error > self._reprojection_error_threshold:
            logger.debug(
                "Reprojection error %.3f above threshold %.3f",
                error,
                self._reprojection_error_threshold,
            )
            return RegistrationStatus.REPROJECTION_TOO_HIGH
        return None

    def check_orientation(self, device_in_fixed: Pose) -> tuple[float, RegistrationStatus | None]:
        """Compare the device optical axis with the fixed camera optical axis.

        Args:
            device_in_fixed: T_fixed_device (device pose in the fixed camera
                optical frame)

        Returns:
            (angle in degrees, rejection status or None)
        """
        angle_deg = float(np.degrees(device_in_fixed.angle_between(Pose.identity())))
        if angle_deg > self._orientation_threshold_deg:
            logger.debug(
                "Device/camera orientation difference %.1f deg above %.1f deg",
                angle_deg,
                self._orientation_threshold_deg,
            )
            return angle_deg, RegistrationStatus.ORIENTATION_DIVERGENCE
        return angle_deg, None

    def check_height(self, world_from_device: Pose) -> RegistrationStatus | None:
        height = float(world_from_device.translation[2])
        if self._min_height is not None and height < self._min_height:
            return RegistrationStatus.POSE_HEIGHT_OUT_OF_RANGE
        if self._max_height is not None and height > self._max_height:
            return RegistrationStatus.POSE_HEIGHT_OUT_OF_RANGE
        return None

    @property
    def minimum_matches(self) -> int:
        return self._minimum_matches

    @property
    def reprojection_error_threshold(self) -> float:
        return self._reprojection_error_threshold

    @property
    def orientation_threshold_deg(self) -> float:
        return self._orientation_threshold_deg
